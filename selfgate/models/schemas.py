"""
Self Gateway -- Pydantic Data Models

Every request, response and stored value is defined here. PolicyRecord
doubles as the wire format of the durable store: one flat JSON object
per key, camelCase field names, unknown fields ignored on read (but
rejected on write, see PolicyUpdate), absent optional fields kept absent.

The Field() calls add descriptions and examples that show up directly
in the interactive docs at /docs.
"""

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from selfgate.errors import PolicyDecodeError
from selfgate.models.countries import COUNTRY_CODES, MAX_EXCLUDED_COUNTRIES

# ---------------------------------------------------------------------------
# Disclosure vocabulary
#
# The seven credential fields a policy can reveal, in response order.
# Each one is controlled by exactly one toggle of the same name.
# ---------------------------------------------------------------------------

DISCLOSURE_FIELDS: tuple[str, ...] = (
    "issuingState",
    "name",
    "nationality",
    "dateOfBirth",
    "passportNumber",
    "gender",
    "expiryDate",
)

NOT_DISCLOSED = "Not disclosed"


class AttestationKind(str, Enum):
    """Document types the Self verifier can attest to."""

    passport = "passport"
    eucard = "eucard"


# Self's numeric attestation ids.
ATTESTATION_IDS = {1: AttestationKind.passport, 2: AttestationKind.eucard}


# ---------------------------------------------------------------------------
# PolicyRecord -- what gets stored per action key
# ---------------------------------------------------------------------------

class PolicyRecord(BaseModel):
    """Verification requirements and disclosure toggles for one action key.

    Frozen: writers replace a stored record, nobody mutates one in place.
    Optional fields left out mean "no requirement" / "not disclosed" and
    are never coerced to a zero value on the way through the store.
    Types are strict: a stored `"minimumAge": true` or `"name": 1` is
    rejected, not converted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore", strict=True)

    minimum_age: int | None = Field(
        default=None,
        ge=0, le=120,
        alias="minimumAge",
        description="Minimum age the holder must have. Omit for no age requirement.",
        examples=[21],
    )
    ofac_check: bool | None = Field(
        default=None,
        alias="ofac",
        description="Run the OFAC sanctions check. Omitted means disabled.",
        examples=[True],
    )
    excluded_countries: tuple[str, ...] = Field(
        default=(),
        strict=False,
        alias="excludedCountries",
        description=f"ISO 3166-1 alpha-3 codes to reject, at most {MAX_EXCLUDED_COUNTRIES}, no duplicates.",
        examples=[["RUS", "IRN"]],
    )
    issuing_state: bool | None = Field(default=None, alias="issuingState")
    name: bool | None = Field(default=None, alias="name")
    nationality: bool | None = Field(default=None, alias="nationality")
    date_of_birth: bool | None = Field(default=None, alias="dateOfBirth")
    passport_number: bool | None = Field(default=None, alias="passportNumber")
    gender: bool | None = Field(default=None, alias="gender")
    expiry_date: bool | None = Field(default=None, alias="expiryDate")

    @field_validator("excluded_countries", mode="before")
    @classmethod
    def _none_means_no_exclusions(cls, value: Any) -> Any:
        return () if value is None else value

    @field_validator("excluded_countries")
    @classmethod
    def _check_country_codes(cls, codes: tuple[str, ...]) -> tuple[str, ...]:
        if len(codes) > MAX_EXCLUDED_COUNTRIES:
            raise ValueError(
                f"at most {MAX_EXCLUDED_COUNTRIES} excluded countries allowed, got {len(codes)}"
            )
        unknown = [c for c in codes if c not in COUNTRY_CODES]
        if unknown:
            raise ValueError(f"not ISO 3166-1 alpha-3 country codes: {', '.join(unknown)}")
        seen: set[str] = set()
        for code in codes:
            if code in seen:
                raise ValueError(f"duplicate excluded country: {code}")
            seen.add(code)
        return codes

    @property
    def disclosure_toggles(self) -> dict[str, bool]:
        """Total field -> toggle mapping; missing toggles read as False."""
        return {
            field: bool(getattr(self, _TOGGLE_ATTRS[field]))
            for field in DISCLOSURE_FIELDS
        }

    def to_wire(self) -> str:
        """Serialize to the flat JSON object stored by the durable backend."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not data.get("excludedCountries"):
            data.pop("excludedCountries", None)
        return json.dumps(data, separators=(",", ":"))

    @classmethod
    def from_wire(cls, raw: str | bytes) -> "PolicyRecord":
        """Schema-validated decode of a stored value.

        A value that is not a valid record is a configuration error; it is
        never replaced by the default policy."""
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise PolicyDecodeError(f"stored policy is not a valid PolicyRecord: {exc}") from exc


# Wire name -> attribute name for the seven toggles.
_TOGGLE_ATTRS: dict[str, str] = {
    field: name
    for name, info in PolicyRecord.model_fields.items()
    for field in DISCLOSURE_FIELDS
    if info.alias == field
}

# Returned for keys nobody has written. Never persisted.
DEFAULT_POLICY = PolicyRecord(minimumAge=18, ofac=True)


# ---------------------------------------------------------------------------
# Policy echo -- the sanitized summary returned next to the credential
# ---------------------------------------------------------------------------

class VerificationOptions(BaseModel):
    """The requirements the proof was checked against, echoed to the caller.

    Exposes exactly these three fields and nothing else from the record."""

    minimumAge: int | None = Field(default=None, examples=[18])
    ofac: bool | None = Field(default=None, examples=[True])
    excludedCountries: list[str] = Field(default_factory=list, examples=[[]])


# ---------------------------------------------------------------------------
# /api/verify
# ---------------------------------------------------------------------------

class VerifyRequest(BaseModel):
    """Proof submission from the Self app relayer.

    proof and publicSignals are passed through to the verifier untouched.
    userContextData is any JSON value; it selects the policy tier."""

    model_config = ConfigDict(populate_by_name=True)

    attestation_id: AttestationKind = Field(
        alias="attestationId",
        description="Document type: 'passport' or 'eucard' (numeric ids 1 and 2 also accepted).",
        examples=["passport"],
    )
    proof: dict[str, Any] = Field(
        description="Zero-knowledge proof object (pi_a, pi_b, pi_c).",
        examples=[{"pi_a": ["123", "456"], "pi_b": [["789", "012"], ["345", "678"]], "pi_c": ["901", "234"]}],
    )
    public_signals: list[Any] = Field(
        alias="publicSignals",
        description="Public signals of the proof.",
        examples=[["1", "2", "3", "4", "5"]],
    )
    user_context_data: Any = Field(
        alias="userContextData",
        description="Caller-defined context bound into the proof.",
        examples=["premium-user-with-extended-data"],
    )
    user_id: str | None = Field(
        default=None,
        alias="userId",
        description="Identity of the holder. Defaults to 'anonymous-user'.",
        examples=["7f3c1e9a-2b4d-4c8e-9f10-1a2b3c4d5e6f"],
    )

    @field_validator("attestation_id", mode="before")
    @classmethod
    def _numeric_attestation_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return ATTESTATION_IDS.get(value, value)
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("user_context_data")
    @classmethod
    def _context_required(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("userContextData is required")
        return value

    def context_string(self) -> str:
        """userContextData as the string handed to the verifier and resolver."""
        if isinstance(self.user_context_data, str):
            return self.user_context_data
        return json.dumps(self.user_context_data, separators=(",", ":"), sort_keys=True)


class VerifyResponse(BaseModel):
    """Caller-facing result. credentialSubject and verificationOptions are
    only present on success."""

    status: Literal["success", "error"] = Field(examples=["success"])
    result: bool = Field(examples=[True])
    message: str | None = Field(default=None, examples=["Verification successful"])
    credentialSubject: dict[str, Any] | None = Field(
        default=None,
        description="Redacted credential: undisclosed fields read 'Not disclosed'.",
    )
    verificationOptions: VerificationOptions | None = None


# ---------------------------------------------------------------------------
# /api/saveOptions
# ---------------------------------------------------------------------------

class PolicyUpdate(PolicyRecord):
    """PolicyRecord as submitted by a writer. Unknown fields are rejected
    here so a misspelled toggle cannot be stored as "off"."""

    model_config = ConfigDict(extra="forbid")

    def to_record(self) -> PolicyRecord:
        return PolicyRecord.model_validate(self.model_dump(by_alias=True))


class SaveOptionsRequest(BaseModel):
    """Store a policy under a key (a user id or a tier key)."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(
        alias="userId",
        min_length=1,
        description="Key the policy is stored under.",
        examples=["premium-user-config"],
    )
    options: PolicyUpdate = Field(
        description="Policy to store. Replaces any existing policy for the key.",
    )


class SaveOptionsResponse(BaseModel):
    message: str = Field(examples=["Options saved successfully"])
    created: bool = Field(
        description="True if no policy was stored under this key before.",
        examples=[True],
    )


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = Field(examples=["healthy"])
    store_backend: str = Field(examples=["memory"])
    verifier_mode: str = Field(examples=["demo"])
    version: str = Field(examples=["0.1.0"])
    timestamp: str = Field(examples=["2026-01-01T00:00:00+00:00"])
