"""
Self Gateway -- Application entry point.

Run with:
    uvicorn selfgate.main:app --reload

Then open http://localhost:8000/docs for the interactive Swagger UI.

This file:
  1. Configures logging
  2. Builds the policy store and the proof verifier at startup
  3. Adds CORS middleware
  4. Mounts the route modules (verify, options)
  5. Defines the health check endpoint
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from selfgate import config
from selfgate.governance.action_keys import ActionKeyResolver
from selfgate.governance.orchestrator import VerificationOrchestrator, describe_validation_error
from selfgate.models.schemas import AttestationKind, HealthResponse, VerifyResponse
from selfgate.routes import options, verify
from selfgate.store import PolicyStore, build_policy_store
from selfgate.verifier import ProofVerifier, build_verifier

VERSION = "0.1.0"

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    store: PolicyStore | None = None,
    verifier: ProofVerifier | None = None,
) -> FastAPI:
    """Build the application.

    With no arguments the store and verifier come from the environment
    (see selfgate.config) and are constructed when the app starts; a
    failure there aborts startup. Tests pass their own instances."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_store = store is None
        owned_verifier = verifier is None
        app.state.store = store
        if owned_store:
            app.state.store = await build_policy_store(
                config.POLICY_STORE_BACKEND,
                url=config.KV_REST_API_URL,
                token=config.KV_REST_API_TOKEN,
                ttl_seconds=config.POLICY_TTL_SECONDS,
                seed=config.SEED_DEFAULT_POLICIES,
                resolver=ActionKeyResolver(threshold=config.ACTION_KEY_THRESHOLD),
            )
        app.state.verifier = verifier
        if owned_verifier:
            app.state.verifier = build_verifier(
                config.SELF_VERIFIER_URL,
                config.SELF_APP_SCOPE,
                timeout=config.VERIFY_TIMEOUT_SECONDS,
            )
        app.state.orchestrator = VerificationOrchestrator(
            app.state.store,
            app.state.verifier,
            allowed_attestations=[AttestationKind(a) for a in config.SELF_ALLOWED_ATTESTATIONS],
            timeout=config.VERIFY_TIMEOUT_SECONDS,
        )
        logger.info(
            "Self gateway ready (store=%s, verifier=%s)",
            app.state.store.backend, app.state.verifier.mode,
        )
        try:
            yield
        finally:
            if owned_verifier:
                await app.state.verifier.close()
            if owned_store:
                await app.state.store.close()

    app = FastAPI(
        title="Self Gateway",
        version=VERSION,
        description=(
            "Verifies Self identity proofs and returns the credential filtered by a "
            "per-key disclosure policy.\n\n"
            "| Endpoint | Purpose |\n"
            "|----------|--------|\n"
            "| `POST /api/verify` | Verify a proof and get the redacted credential |\n"
            "| `POST /api/saveOptions` | Store a verification policy |\n"
            "| `GET /api/options/{key}` | Read a verification policy |\n"
        ),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials="*" not in config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.include_router(verify.router)
    app.include_router(options.router)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        """Malformed bodies get the same error shape as every other failure."""
        body = VerifyResponse(status="error", result=False, message=describe_validation_error(exc))
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Returns the current status of the gateway. Use this for uptime monitoring.",
        tags=["System"],
    )
    async def health(request: Request) -> HealthResponse:
        return HealthResponse(
            status="healthy",
            store_backend=request.app.state.store.backend,
            verifier_mode=request.app.state.verifier.mode,
            version=VERSION,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    return app


app = create_app()
