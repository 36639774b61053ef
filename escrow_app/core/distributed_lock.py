import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Protocol

import httpx

from .breaker import breaker
from .errors import StateConflict
from .settings import settings

logger = logging.getLogger(__name__)


RELEASE_IF_OWNER = (
    "if redis.call('get', KEYS[1]) == ARGV[1] then "
    "return redis.call('del', KEYS[1]) else return 0 end"
)


class DistributedLock(Protocol):
    async def acquire(self, key: str, ttl: int) -> str | None: ...

    async def release(self, key: str, token: str) -> bool: ...

    async def run_once(
        self, key: str, coro: Callable[[], Awaitable], ttl: int = 30
    ): ...


class _RunOnceMixin:
    async def run_once(
        self,
        key: str,
        coro: Callable[[], Awaitable],
        ttl: int = 30,
    ):
        token = await self.acquire(key, ttl)
        if not token:
            logger.warning("Duplicate submission blocked for key=%s", key)
            raise StateConflict(
                "Duplicate request in progress. Please wait and try again.",
                code="DUPLICATE_SUBMISSION",
            )
        try:
            return await coro()
        finally:
            await self.release(key, token)


class UpstashLock(_RunOnceMixin):
    """SET NX EX lock over the Upstash Redis REST API.

    ``acquire`` returns the owner token written as the value; ``release``
    deletes the key only while it still holds that token, so a holder that
    outlived its TTL cannot drop a lock taken by another request.
    """

    def __init__(self, namespace: str = "escrow-lock"):
        redis_url = settings.UPSTASH_REDIS_URL
        if not redis_url or not settings.UPSTASH_REDIS_TOKEN:
            raise ValueError("Missing Upstash Redis environment variables")
        self.redis_url = redis_url.rstrip("/")
        self.namespace = namespace
        self.headers = {
            "Authorization": f"Bearer {settings.UPSTASH_REDIS_TOKEN}",
            "Content-Type": "application/json",
        }

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def _command(self, *command) -> dict:
        async with httpx.AsyncClient(timeout=5) as client:
            res = await client.post(self.redis_url, headers=self.headers, json=list(command))
        if res.status_code != 200:
            raise ConnectionError(f"Redis {command[0]} failed ({res.status_code})")
        return res.json()

    async def acquire(self, key: str, ttl: int) -> str | None:
        token = uuid.uuid4().hex

        async def handler():
            body = await self._command("SET", self._key(key), token, "EX", str(ttl), "NX")
            return token if body.get("result") == "OK" else None

        return await breaker.call(handler)

    async def release(self, key: str, token: str) -> bool:
        async def handler():
            body = await self._command("EVAL", RELEASE_IF_OWNER, "1", self._key(key), token)
            released = body.get("result") == 1
            if not released:
                logger.warning("Lock %s expired or taken over before release", key)
            return released

        return await breaker.call(handler)


class InMemoryLock(_RunOnceMixin):
    """Single-process lock with TTL and owner semantics, for tests and local runs."""

    def __init__(self):
        self._held: dict[str, tuple[str, float]] = {}
        self._guard = asyncio.Lock()

    async def acquire(self, key: str, ttl: int) -> str | None:
        async with self._guard:
            now = time.monotonic()
            held = self._held.get(key)
            if held is not None and held[1] > now:
                return None
            token = uuid.uuid4().hex
            self._held[key] = (token, now + ttl)
            return token

    async def release(self, key: str, token: str) -> bool:
        async with self._guard:
            held = self._held.get(key)
            if held is None or held[0] != token:
                return False
            del self._held[key]
            return True


def build_distributed_lock() -> DistributedLock:
    if settings.UPSTASH_REDIS_URL and settings.UPSTASH_REDIS_TOKEN:
        return UpstashLock()
    logger.warning("Upstash Redis not configured; using in-process lock")
    return InMemoryLock()
