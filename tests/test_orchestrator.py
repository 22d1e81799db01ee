"""Tests for the verification pipeline and its failure modes."""

import asyncio

import pytest
from conftest import SUBJECT, CountingStore, ScriptedVerifier

from selfgate.errors import (
    PolicyDecodeError,
    ProofInvalid,
    RequestValidationFailed,
    StoreError,
    VerifierUnavailable,
)
from selfgate.governance.action_keys import PREMIUM_KEY, STANDARD_KEY
from selfgate.governance.orchestrator import (
    ANONYMOUS_USER,
    Stage,
    VerificationOrchestrator,
    VerificationRun,
)
from selfgate.models.schemas import NOT_DISCLOSED, AttestationKind, PolicyRecord
from selfgate.store import seed_policies


def payload(**overrides):
    body = {
        "attestationId": "passport",
        "proof": {"pi_a": ["1", "2"], "pi_b": [["3", "4"], ["5", "6"]], "pi_c": ["7", "8"]},
        "publicSignals": ["1", "2", "3"],
        "userContextData": "basic",
        "userId": "user-1",
    }
    body.update(overrides)
    return body


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    s = CountingStore()
    run(seed_policies(s))
    return s


class TestSuccess:

    def test_standard_tier(self, store, verifier):
        outcome = run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert outcome.action_key == STANDARD_KEY
        assert outcome.options.minimumAge == 18
        assert outcome.options.excludedCountries == []
        assert set(outcome.credential_subject.values()) == {NOT_DISCLOSED}
        assert outcome.stages == [
            Stage.received, Stage.proof_validated, Stage.policy_resolved,
            Stage.filtered, Stage.completed,
        ]

    def test_premium_tier(self, store, verifier):
        outcome = run(VerificationOrchestrator(store, verifier).verify(
            payload(userContextData="premium-user-with-extended-data")
        ))
        assert outcome.action_key == PREMIUM_KEY
        assert outcome.options.minimumAge == 21
        assert outcome.options.excludedCountries == ["RUS", "IRN"]

    def test_disclosure_toggles_applied(self, store, verifier):
        run(store.set(STANDARD_KEY, PolicyRecord(minimumAge=18, ofac=True, name=True)))
        outcome = run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert outcome.credential_subject["name"] == SUBJECT["name"]
        assert outcome.credential_subject["dateOfBirth"] == NOT_DISCLOSED

    def test_verifier_output_not_mutated(self, store, verifier):
        run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert verifier.subject == SUBJECT

    def test_anonymous_identity(self, store, verifier):
        body = payload()
        del body["userId"]
        run(VerificationOrchestrator(store, verifier).verify(body))
        assert verifier.calls[0]["identity"] == ANONYMOUS_USER

    def test_structured_context_serialized(self, store, verifier):
        run(VerificationOrchestrator(store, verifier).verify(payload(userContextData={"b": 1, "a": 2})))
        assert verifier.calls[0]["context_data"] == '{"a":2,"b":1}'

    def test_numeric_attestation_id(self, store, verifier):
        run(VerificationOrchestrator(store, verifier).verify(payload(attestationId=2)))
        assert verifier.calls[0]["attestation_kinds"] == [AttestationKind.eucard]


class TestValidation:

    def test_missing_context_data_calls_nothing(self, store, verifier):
        body = payload()
        del body["userContextData"]
        with pytest.raises(RequestValidationFailed) as exc_info:
            run(VerificationOrchestrator(store, verifier).verify(body))
        assert "userContextData" in str(exc_info.value)
        assert exc_info.value.stage == Stage.received.value
        assert verifier.calls == []
        assert store.gets == 0

    def test_null_context_data_rejected(self, store, verifier):
        with pytest.raises(RequestValidationFailed):
            run(VerificationOrchestrator(store, verifier).verify(payload(userContextData=None)))
        assert verifier.calls == []

    @pytest.mark.parametrize("field", ["attestationId", "proof", "publicSignals"])
    def test_missing_required_field(self, store, verifier, field):
        body = payload()
        del body[field]
        with pytest.raises(RequestValidationFailed):
            run(VerificationOrchestrator(store, verifier).verify(body))
        assert verifier.calls == []
        assert store.gets == 0

    def test_unknown_attestation(self, store, verifier):
        with pytest.raises(RequestValidationFailed):
            run(VerificationOrchestrator(store, verifier).verify(payload(attestationId="driving_licence")))

    def test_disallowed_attestation(self, store, verifier):
        orchestrator = VerificationOrchestrator(
            store, verifier, allowed_attestations=[AttestationKind.passport]
        )
        with pytest.raises(RequestValidationFailed, match="eucard"):
            run(orchestrator.verify(payload(attestationId="eucard")))
        assert verifier.calls == []


class TestVerifierFailures:

    def test_invalid_proof_skips_store(self, store):
        verifier = ScriptedVerifier(is_valid=False)
        with pytest.raises(ProofInvalid) as exc_info:
            run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert exc_info.value.http_status == 400
        assert exc_info.value.stage == Stage.received.value
        assert store.gets == 0

    def test_verifier_error_is_distinct(self, store):
        verifier = ScriptedVerifier(error=VerifierUnavailable("connection refused"))
        with pytest.raises(VerifierUnavailable) as exc_info:
            run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert exc_info.value.kind == "verifier_error"
        assert store.gets == 0

    def test_verifier_timeout(self, store):
        verifier = ScriptedVerifier(delay=1.0)
        with pytest.raises(VerifierUnavailable, match="deadline"):
            run(VerificationOrchestrator(store, verifier).verify(payload(), timeout=0.05))
        assert store.gets == 0

    def test_deadline_passed_to_verifier(self, store, verifier):
        run(VerificationOrchestrator(store, verifier, timeout=5.0).verify(payload()))
        assert 0 < verifier.calls[0]["timeout"] <= 5.0


class TestStoreFailures:

    def test_store_fault_after_valid_proof(self, verifier):
        store = CountingStore(error=StoreError("redis down"))
        with pytest.raises(StoreError) as exc_info:
            run(VerificationOrchestrator(store, verifier).verify(payload()))
        err = exc_info.value
        assert err.kind == "store_fault"
        assert err.http_status == 500
        assert err.stage == Stage.proof_validated.value
        assert "redis" not in err.response_message()
        assert len(verifier.calls) == 1

    def test_corrupt_policy_is_not_defaulted(self, verifier):
        store = CountingStore(error=PolicyDecodeError("bad json"))
        with pytest.raises(PolicyDecodeError) as exc_info:
            run(VerificationOrchestrator(store, verifier).verify(payload()))
        assert exc_info.value.kind == "configuration_error"


class TestVerificationRun:

    def test_errored_is_final(self):
        r = VerificationRun()
        r.advance(Stage.errored)
        with pytest.raises(RuntimeError):
            r.advance(Stage.proof_validated)

    def test_cannot_skip_stages(self):
        r = VerificationRun()
        with pytest.raises(RuntimeError):
            r.advance(Stage.filtered)

    def test_completed_is_final(self):
        r = VerificationRun()
        for stage in (Stage.proof_validated, Stage.policy_resolved, Stage.filtered, Stage.completed):
            r.advance(stage)
        with pytest.raises(RuntimeError):
            r.advance(Stage.errored)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
