"""
Selective disclosure.

Applies a PolicyRecord's toggles to the credential subject the verifier
returned. Every one of the seven disclosable fields is either copied
verbatim (toggle on) or replaced with "Not disclosed" (toggle off).
Fields outside that set are dropped. The input mapping is never
modified; a new dict is returned.

Also builds the policy echo: minimumAge, ofac and excludedCountries,
and nothing else from the record.
"""

from collections.abc import Mapping
from typing import Any

from selfgate.models.schemas import (
    DISCLOSURE_FIELDS,
    NOT_DISCLOSED,
    PolicyRecord,
    VerificationOptions,
)

# The Self verifier reports the document number as idNumber.
_SOURCE_ALIASES: dict[str, tuple[str, ...]] = {
    "passportNumber": ("passportNumber", "idNumber"),
}


def _source_value(subject: Mapping[str, Any], field: str) -> Any:
    for source in _SOURCE_ALIASES.get(field, (field,)):
        if source in subject and subject[source] is not None:
            return subject[source]
    return None


def redact(subject: Mapping[str, Any], record: PolicyRecord) -> dict[str, Any]:
    """Return a new subject holding only the seven disclosable fields,
    each either the verifier's value or the NOT_DISCLOSED sentinel."""
    toggles = record.disclosure_toggles
    redacted: dict[str, Any] = {}
    for field in DISCLOSURE_FIELDS:
        value = _source_value(subject, field) if toggles[field] else None
        redacted[field] = NOT_DISCLOSED if value is None else value
    return redacted


def summarize(record: PolicyRecord) -> VerificationOptions:
    """Project the record onto the caller-facing verificationOptions."""
    return VerificationOptions(
        minimumAge=record.minimum_age,
        ofac=record.ofac_check,
        excludedCountries=list(record.excluded_countries),
    )


class DisclosureFilter:
    """Stateless wrapper so the orchestrator can take the filter as a collaborator."""

    def redact(self, subject: Mapping[str, Any], record: PolicyRecord) -> dict[str, Any]:
        return redact(subject, record)

    def summarize(self, record: PolicyRecord) -> VerificationOptions:
        return summarize(record)
