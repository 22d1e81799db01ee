"""
Gateway error taxonomy.

Every failure the verification pipeline can produce is one of these.
Each class knows its HTTP status and the message the caller is allowed
to see, so routes never have to decide what to leak.

  validation_error     -- malformed request, nothing else was called
  proof_invalid        -- the verifier ran and rejected the proof
  verifier_error       -- the verifier could not be reached or timed out
  store_fault          -- policy backend I/O failed
  configuration_error  -- a stored policy could not be decoded
"""


class GatewayError(Exception):
    """Base class for every error the gateway reports to a caller."""

    kind = "internal_error"
    http_status = 500
    public_message = "Internal server error"

    def __init__(self, message: str, *, stage: str | None = None):
        super().__init__(message)
        # Pipeline stage that was active when the error was raised.
        self.stage = stage

    def response_message(self) -> str:
        return self.public_message


class RequestValidationFailed(GatewayError):
    kind = "validation_error"
    http_status = 400
    public_message = "Invalid request"

    def response_message(self) -> str:
        # Validation messages describe the caller's own input, safe to echo.
        return str(self)


class ProofInvalid(GatewayError):
    kind = "proof_invalid"
    http_status = 400
    public_message = "Verification failed"


class VerifierUnavailable(GatewayError):
    kind = "verifier_error"
    http_status = 502
    public_message = "Verification failed: verifier unavailable"


class StoreError(GatewayError):
    """Policy backend failure. Always reported as a server-side fault."""

    kind = "store_fault"
    http_status = 500


class StoreConnectionError(StoreError):
    """Raised while constructing a durable store; fatal to startup."""


class PolicyDecodeError(StoreError):
    """A stored policy value is not a valid PolicyRecord."""

    kind = "configuration_error"
