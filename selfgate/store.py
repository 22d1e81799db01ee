"""
Policy store.

Holds one PolicyRecord per action key. Two backends share one interface:

  InMemoryPolicyStore -- a dict behind a reader/writer lock. Data is lost
                         on restart; fine for demos and tests.
  RedisPolicyStore    -- one JSON string per key in Redis, optional TTL.

get() never fails on a missing key: it returns DEFAULT_POLICY without
writing it. set() replaces the stored value and reports whether the key
was new. Callers depend on PolicyStore only; build_policy_store() picks
the backend at startup.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from selfgate.errors import PolicyDecodeError, StoreConnectionError, StoreError
from selfgate.governance.action_keys import PREMIUM_KEY, STANDARD_KEY, ActionKeyResolver
from selfgate.models.schemas import DEFAULT_POLICY, PolicyRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class PolicyStore(ABC):
    """Capability interface for policy lookup, storage and key derivation."""

    backend = "abstract"

    def __init__(self, resolver: ActionKeyResolver | None = None):
        self.resolver = resolver or ActionKeyResolver()

    def derive_key(self, identity: str, context_data: str) -> str:
        """Action key the policy for this identity/context lives under."""
        return self.resolver.resolve(identity, context_data)

    @abstractmethod
    async def get(self, key: str) -> PolicyRecord:
        """Stored record for key, or DEFAULT_POLICY. Raises StoreError on I/O failure."""

    @abstractmethod
    async def set(self, key: str, record: PolicyRecord) -> bool:
        """Replace the record for key. Returns True if the key was absent before."""

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class RWLock:
    """Readers-writer lock: many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            # Waiting writers go first so a steady read load cannot starve them.
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class InMemoryPolicyStore(PolicyStore):
    """Process-local store. Critical sections are plain dict accesses, never I/O."""

    backend = "memory"

    def __init__(self, resolver: ActionKeyResolver | None = None):
        super().__init__(resolver)
        self._records: dict[str, PolicyRecord] = {}
        self._lock = RWLock()

    async def get(self, key: str) -> PolicyRecord:
        with self._lock.read():
            record = self._records.get(key)
        return DEFAULT_POLICY if record is None else record

    async def set(self, key: str, record: PolicyRecord) -> bool:
        with self._lock.write():
            created = key not in self._records
            self._records[key] = record
        return created

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisPolicyStore(PolicyStore):
    """Durable store: one UTF-8 JSON value per key.

    A missing key reads as DEFAULT_POLICY. Any other Redis failure is a
    StoreError; an undecodable value is a PolicyDecodeError. Nothing is
    retried here."""

    backend = "redis"

    def __init__(
        self,
        client: "redis.Redis",
        ttl_seconds: int | None = None,
        resolver: ActionKeyResolver | None = None,
    ):
        super().__init__(resolver)
        self._client = client
        self._ttl = ttl_seconds or None

    @classmethod
    async def connect(
        cls,
        url: str,
        token: str | None = None,
        ttl_seconds: int | None = None,
        resolver: ActionKeyResolver | None = None,
    ) -> "RedisPolicyStore":
        """Open a client and ping it. Fails instead of retrying."""
        if not url:
            raise StoreConnectionError("KV_REST_API_URL is required for the redis policy store")
        # Credentials embedded in the URL take precedence over token.
        kwargs = {"password": token} if token else {}
        try:
            client = redis.from_url(url, encoding="utf-8", decode_responses=True, **kwargs)
        except ValueError as exc:
            raise StoreConnectionError(f"failed to parse Redis URL: {exc}") from exc
        try:
            await client.ping()
        except RedisError as exc:
            await client.aclose()
            raise StoreConnectionError(f"failed to connect to Redis: {exc}") from exc
        logger.info("Connected to Redis policy store (ttl=%s)", ttl_seconds or "none")
        return cls(client, ttl_seconds=ttl_seconds, resolver=resolver)

    async def get(self, key: str) -> PolicyRecord:
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            raise StoreError(f"failed to get policy {key!r} from Redis: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise PolicyDecodeError(f"stored policy {key!r} is not valid UTF-8: {exc}") from exc
        if raw is None:
            return DEFAULT_POLICY
        return PolicyRecord.from_wire(raw)

    async def set(self, key: str, record: PolicyRecord) -> bool:
        try:
            # SET ... GET returns the previous value, so the created flag is atomic.
            previous = await self._client.set(key, record.to_wire(), ex=self._ttl, get=True)
        except RedisError as exc:
            raise StoreError(f"failed to set policy {key!r} in Redis: {exc}") from exc
        return previous is None

    async def close(self) -> None:
        await self._client.aclose()


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

SEED_POLICIES: dict[str, PolicyRecord] = {
    STANDARD_KEY: PolicyRecord(minimumAge=18, ofac=True),
    PREMIUM_KEY: PolicyRecord(minimumAge=21, excludedCountries=["RUS", "IRN"], ofac=True),
}


async def seed_policies(store: PolicyStore, policies: dict[str, PolicyRecord] | None = None) -> None:
    """Write the standard and premium tier policies."""
    for key, record in (policies or SEED_POLICIES).items():
        await store.set(key, record)
        logger.info("Seeded policy %s", key)


async def build_policy_store(
    backend: str,
    *,
    url: str = "",
    token: str = "",
    ttl_seconds: int = 0,
    seed: bool = True,
    resolver: ActionKeyResolver | None = None,
) -> PolicyStore:
    """Create the configured store. Errors here abort startup."""
    if backend == "memory":
        store: PolicyStore = InMemoryPolicyStore(resolver)
        # Redis-backed tiers are written through /api/saveOptions, never seeded.
        if seed:
            await seed_policies(store)
    elif backend == "redis":
        store = await RedisPolicyStore.connect(url, token or None, ttl_seconds or None, resolver)
    else:
        raise StoreConnectionError(f"unknown policy store backend: {backend!r}")
    logger.info("Policy store ready: backend=%s resolver=%r", store.backend, store.resolver)
    return store
