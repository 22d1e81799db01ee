"""
External proof verification.

The gateway never checks zero-knowledge proofs itself. It hands the
proof to a Self verification service and gets back a validity verdict,
the disclosed credential subject and the user identifier.

  HttpProofVerifier -- POSTs to a Self verifier over HTTP (httpx).
  DemoProofVerifier -- accepts every proof and returns a fixed test
                       credential. Used when SELF_VERIFIER_URL is unset.

Two failure modes stay distinct:
  - the call failed (network, timeout, bad response) -> VerifierUnavailable
  - the call worked and the proof is invalid -> VerifierResult(is_valid=False)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from selfgate.errors import VerifierUnavailable
from selfgate.models.schemas import AttestationKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class VerifierResult:
    """What the verifier reported for one proof."""

    is_valid: bool
    credential_subject: dict[str, Any] = field(default_factory=dict)
    user_identifier: str | None = None
    # Per-check verdicts (isMinimumAgeValid, isOfacValid, ...) when provided.
    details: dict[str, Any] = field(default_factory=dict)


class ProofVerifier(Protocol):
    mode: str

    async def verify(
        self,
        identity: str,
        proof: dict[str, Any],
        public_signals: list[Any],
        attestation_kinds: list[AttestationKind],
        context_data: str,
        *,
        timeout: float | None = None,
    ) -> VerifierResult: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# HTTP verifier
# ---------------------------------------------------------------------------

class HttpProofVerifier:
    """Client for a Self verification service.

    Args:
        base_url: Service root; requests go to {base_url}/verify.
        scope: App scope the proofs were generated for.
        timeout: Default request timeout in seconds.
        client: Optional shared httpx.AsyncClient (tests inject a MockTransport).
    """

    mode = "http"

    def __init__(
        self,
        base_url: str,
        scope: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.scope = scope
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def verify(
        self,
        identity: str,
        proof: dict[str, Any],
        public_signals: list[Any],
        attestation_kinds: list[AttestationKind],
        context_data: str,
        *,
        timeout: float | None = None,
    ) -> VerifierResult:
        payload = {
            "scope": self.scope,
            "userId": identity,
            "attestationIds": [kind.value for kind in attestation_kinds],
            "proof": proof,
            "publicSignals": public_signals,
            "userContextData": context_data,
        }
        try:
            r = await self._client.post(
                f"{self.base_url}/verify",
                json=payload,
                timeout=self.timeout if timeout is None else timeout,
            )
            r.raise_for_status()
            data = r.json()
        except httpx.TimeoutException as exc:
            raise VerifierUnavailable(f"verifier timed out: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise VerifierUnavailable(
                f"verifier returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise VerifierUnavailable(f"cannot reach verifier at {self.base_url}: {exc}") from exc
        except ValueError as exc:
            raise VerifierUnavailable(f"verifier returned invalid JSON: {exc}") from exc

        return _parse_result(data)

    async def close(self) -> None:
        await self._client.aclose()


def _parse_result(data: Any) -> VerifierResult:
    """Read a Self verification result.

    Accepts both the SDK shape (isValidDetails / discloseOutput / userData)
    and a flat one (isValid / credentialSubject / userIdentifier)."""
    if not isinstance(data, dict):
        raise VerifierUnavailable("verifier response is not a JSON object")

    details = data.get("isValidDetails")
    if details is not None and not isinstance(details, dict):
        raise VerifierUnavailable("verifier isValidDetails is not a JSON object")
    if details and "isValid" in details:
        is_valid = details["isValid"]
    elif "isValid" in data:
        is_valid = data["isValid"]
        details = {}
    else:
        raise VerifierUnavailable("verifier response carries no validity verdict")
    if not isinstance(is_valid, bool):
        raise VerifierUnavailable("verifier validity verdict is not a boolean")

    subject = data.get("discloseOutput", data.get("credentialSubject")) or {}
    if not isinstance(subject, dict):
        raise VerifierUnavailable("verifier credential subject is not a JSON object")

    user_data = data.get("userData") or {}
    if not isinstance(user_data, dict):
        raise VerifierUnavailable("verifier userData is not a JSON object")
    user_identifier = user_data.get("userIdentifier", data.get("userIdentifier"))

    return VerifierResult(
        is_valid=is_valid,
        credential_subject=subject,
        user_identifier=user_identifier,
        details={k: v for k, v in details.items() if k != "isValid"},
    )


# ---------------------------------------------------------------------------
# Demo verifier
# ---------------------------------------------------------------------------

DEMO_SUBJECT: dict[str, Any] = {
    "nationality": "Test Country",
    "issuingState": "Test State",
    "name": "Test User",
    "dateOfBirth": "1990-01-01",
    "idNumber": "TEST123",
    "gender": "Test",
    "expiryDate": "2030-01-01",
}


class DemoProofVerifier:
    """Accepts every proof. Local testing only; it proves nothing."""

    mode = "demo"

    def __init__(self, subject: dict[str, Any] | None = None):
        self.subject = dict(subject or DEMO_SUBJECT)

    async def verify(
        self,
        identity: str,
        proof: dict[str, Any],
        public_signals: list[Any],
        attestation_kinds: list[AttestationKind],
        context_data: str,
        *,
        timeout: float | None = None,
    ) -> VerifierResult:
        logger.debug("Demo verifier accepting proof for %s", identity)
        return VerifierResult(
            is_valid=True,
            credential_subject=dict(self.subject),
            user_identifier=identity,
        )

    async def close(self) -> None:
        return None


def build_verifier(url: str, scope: str, timeout: float = DEFAULT_TIMEOUT) -> ProofVerifier:
    if url:
        logger.info("Using Self verifier at %s (scope=%s)", url, scope)
        return HttpProofVerifier(url, scope, timeout=timeout)
    logger.warning("SELF_VERIFIER_URL not set -- running with the demo verifier")
    return DemoProofVerifier()
