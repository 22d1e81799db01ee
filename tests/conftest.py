"""Shared test doubles: an in-process Redis stand-in and a scripted verifier."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from selfgate.store import InMemoryPolicyStore, RedisPolicyStore
from selfgate.verifier import VerifierResult

SUBJECT = {
    "issuingState": "FRA",
    "name": "MARIE CURIE",
    "nationality": "FRA",
    "dateOfBirth": "07-11-67",
    "idNumber": "12AB34567",
    "gender": "F",
    "expiryDate": "01-01-31",
    "nullifier": "0x1234",
}


class FakeRedis:
    """Just the slice of redis.asyncio.Redis the policy store uses."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}
        self.fail = False
        self.calls: list[str] = []
        self.closed = False

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def ping(self):
        self._check("ping")
        return True

    async def get(self, key):
        self._check("get")
        return self.data.get(key)

    async def set(self, key, value, ex=None, get=False):
        self._check("set")
        previous = self.data.get(key)
        self.data[key] = value
        self.expiry[key] = ex
        return previous if get else True

    async def aclose(self):
        self.closed = True


class ScriptedVerifier:
    """Returns a fixed result (or raises) and counts calls."""

    mode = "scripted"

    def __init__(self, is_valid=True, subject=None, error=None, delay=0.0):
        self.is_valid = is_valid
        self.subject = dict(SUBJECT if subject is None else subject)
        self.error = error
        self.delay = delay
        self.calls: list[dict] = []

    async def verify(self, identity, proof, public_signals, attestation_kinds, context_data, *, timeout=None):
        self.calls.append({
            "identity": identity,
            "attestation_kinds": attestation_kinds,
            "context_data": context_data,
            "timeout": timeout,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return VerifierResult(is_valid=self.is_valid, credential_subject=dict(self.subject), user_identifier=identity)

    async def close(self):
        return None


class CountingStore(InMemoryPolicyStore):
    """In-memory store that counts lookups and can be told to fail."""

    def __init__(self, *args, error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.gets = 0
        self.error = error

    async def get(self, key):
        self.gets += 1
        if self.error is not None:
            raise self.error
        return await super().get(key)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis):
    return RedisPolicyStore(fake_redis)


@pytest.fixture
def memory_store():
    return InMemoryPolicyStore()


@pytest.fixture
def verifier():
    return ScriptedVerifier()
