"""
POST /api/verify -- Proof verification with selective disclosure.

The relayer forwards the proof produced by the Self app. The gateway has
it checked by the external verifier, looks up the policy for the
caller's action key, and returns the credential redacted according to
that policy together with the requirements that were applied.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from selfgate.errors import GatewayError
from selfgate.governance.orchestrator import VerificationOrchestrator
from selfgate.models.schemas import VerifyRequest, VerifyResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def error_response(exc: GatewayError) -> JSONResponse:
    """Render a GatewayError in the result shape. Never carries credential data."""
    body = VerifyResponse(status="error", result=False, message=exc.response_message())
    return JSONResponse(
        status_code=exc.http_status,
        content=body.model_dump(exclude_none=True),
    )


@router.post(
    "/api/verify",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    summary="Verify a Self proof",
    description=(
        "Checks the proof with the Self verifier, then returns the credential subject "
        "filtered by the policy stored for the caller's action key. Fields the policy "
        "does not disclose read 'Not disclosed'."
    ),
    responses={
        400: {"model": VerifyResponse, "description": "Invalid request or proof rejected"},
        500: {"model": VerifyResponse, "description": "Policy store fault"},
        502: {"model": VerifyResponse, "description": "Verifier unavailable"},
    },
    tags=["Verification"],
)
async def verify(body: VerifyRequest, request: Request):
    orchestrator: VerificationOrchestrator = request.app.state.orchestrator

    try:
        outcome = await orchestrator.verify(body)
    except GatewayError as exc:
        logger.info("Verification ended with %s at stage %s", exc.kind, exc.stage)
        return error_response(exc)

    return VerifyResponse(
        status="success",
        result=True,
        message="Verification successful",
        credentialSubject=outcome.credential_subject,
        verificationOptions=outcome.options,
    )
