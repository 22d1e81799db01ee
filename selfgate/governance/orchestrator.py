"""
Verification pipeline.

One run per request, strictly in order:

    received -> proof_validated -> policy_resolved -> filtered -> completed

Any step can fail into `errored`, which like `completed` is final. The
orchestrator keeps no state between runs apart from the store and
verifier it was built with, and it holds no lock while waiting on
either of them.

A run is bounded by an optional deadline. Whatever time is left is
passed to the verifier call and used to bound the store lookup.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from selfgate.errors import (
    GatewayError,
    ProofInvalid,
    RequestValidationFailed,
    StoreError,
    VerifierUnavailable,
)
from selfgate.governance.disclosure import DisclosureFilter
from selfgate.models.schemas import AttestationKind, VerificationOptions, VerifyRequest
from selfgate.store import PolicyStore
from selfgate.verifier import ProofVerifier

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous-user"


class Stage(str, Enum):
    received = "received"
    proof_validated = "proof_validated"
    policy_resolved = "policy_resolved"
    filtered = "filtered"
    completed = "completed"
    errored = "errored"


_NEXT_STAGE = {
    Stage.received: Stage.proof_validated,
    Stage.proof_validated: Stage.policy_resolved,
    Stage.policy_resolved: Stage.filtered,
    Stage.filtered: Stage.completed,
}

TERMINAL_STAGES = frozenset({Stage.completed, Stage.errored})


class VerificationRun:
    """State of one request moving through the pipeline."""

    def __init__(self) -> None:
        self.stage = Stage.received
        self.history: list[Stage] = [Stage.received]

    def advance(self, stage: Stage) -> None:
        if self.stage in TERMINAL_STAGES:
            raise RuntimeError(f"run already finished in {self.stage.value}")
        if stage is not Stage.errored and _NEXT_STAGE[self.stage] is not stage:
            raise RuntimeError(f"illegal transition {self.stage.value} -> {stage.value}")
        logger.debug("verification stage %s -> %s", self.stage.value, stage.value)
        self.stage = stage
        self.history.append(stage)

    def fail(self, error: GatewayError) -> GatewayError:
        """Move to errored, tagging the error with the stage it came from."""
        error.stage = self.stage.value
        self.advance(Stage.errored)
        return error


@dataclass
class VerificationOutcome:
    """Successful run: redacted subject plus the policy it was checked against."""

    credential_subject: dict[str, Any]
    options: VerificationOptions
    action_key: str
    user_identifier: str | None
    stages: list[Stage] = field(default_factory=list)


class _Deadline:
    """Remaining-time budget for one run. None means unbounded."""

    def __init__(self, timeout: float | None):
        self._loop = asyncio.get_running_loop()
        self._expires = None if timeout is None else self._loop.time() + timeout

    def remaining(self) -> float | None:
        if self._expires is None:
            return None
        return max(0.0, self._expires - self._loop.time())


class VerificationOrchestrator:
    """Composes verifier, policy store and disclosure filter.

    Args:
        store: Policy store; also derives the action key.
        verifier: External proof verifier.
        allowed_attestations: Attestation kinds accepted; others are a validation error.
        timeout: Default deadline per run, in seconds.
    """

    def __init__(
        self,
        store: PolicyStore,
        verifier: ProofVerifier,
        allowed_attestations: list[AttestationKind] | None = None,
        timeout: float | None = None,
        disclosure: DisclosureFilter | None = None,
    ):
        self.store = store
        self.verifier = verifier
        self.allowed_attestations = list(allowed_attestations or AttestationKind)
        self.timeout = timeout
        self.disclosure = disclosure or DisclosureFilter()

    def _validate(self, payload: VerifyRequest | Mapping[str, Any]) -> VerifyRequest:
        if isinstance(payload, VerifyRequest):
            request = payload
        else:
            try:
                request = VerifyRequest.model_validate(payload)
            except ValidationError as exc:
                raise RequestValidationFailed(describe_validation_error(exc)) from exc
        if request.attestation_id not in self.allowed_attestations:
            raise RequestValidationFailed(
                f"attestationId '{request.attestation_id.value}' is not accepted"
            )
        return request

    async def verify(
        self,
        payload: VerifyRequest | Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> VerificationOutcome:
        """Run the pipeline. Raises a GatewayError subclass on any failure."""
        run = VerificationRun()
        try:
            request = self._validate(payload)
        except RequestValidationFailed as exc:
            raise run.fail(exc)

        deadline = _Deadline(self.timeout if timeout is None else timeout)
        identity = request.user_id or ANONYMOUS_USER
        context_data = request.context_string()

        # received -> proof_validated
        try:
            result = await asyncio.wait_for(
                self.verifier.verify(
                    identity,
                    request.proof,
                    request.public_signals,
                    [request.attestation_id],
                    context_data,
                    timeout=deadline.remaining(),
                ),
                deadline.remaining(),
            )
        except asyncio.TimeoutError:
            logger.error("Verifier timed out for %s", identity)
            raise run.fail(VerifierUnavailable("verifier call exceeded the request deadline"))
        except VerifierUnavailable as exc:
            logger.error("Verifier error for %s: %s", identity, exc)
            raise run.fail(exc)
        if not result.is_valid:
            logger.warning("Proof rejected for %s (%s)", identity, request.attestation_id.value)
            raise run.fail(ProofInvalid(f"verifier rejected the proof for {identity}"))
        run.advance(Stage.proof_validated)

        # proof_validated -> policy_resolved
        action_key = self.store.derive_key(identity, context_data)
        try:
            record = await asyncio.wait_for(self.store.get(action_key), deadline.remaining())
        except asyncio.TimeoutError:
            logger.error("Policy lookup for %s timed out", action_key)
            raise run.fail(StoreError(f"policy lookup for {action_key!r} exceeded the request deadline"))
        except StoreError as exc:
            logger.error("Policy lookup for %s failed: %s", action_key, exc)
            raise run.fail(exc)
        run.advance(Stage.policy_resolved)

        # policy_resolved -> filtered
        subject = self.disclosure.redact(result.credential_subject, record)
        options = self.disclosure.summarize(record)
        run.advance(Stage.filtered)

        run.advance(Stage.completed)
        logger.info("Verified %s with policy %s", identity, action_key)
        return VerificationOutcome(
            credential_subject=subject,
            options=options,
            action_key=action_key,
            user_identifier=result.user_identifier,
            stages=list(run.history),
        )


def describe_validation_error(exc: ValidationError | RequestValidationError) -> str:
    """One line per problem, 'field: reason', using the wire field names."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"] if p != "body")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)
