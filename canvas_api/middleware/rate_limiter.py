"""
Rate limiting

Fixed-window counter with lockout, keyed by `prefix + client id`.

- The first request opens a window (count=1).
- Each request inside the window increments the count. Going past
  `max_attempts` blocks the key for `block_seconds`.
- Once the window (or the block) has elapsed the key starts a fresh window.

State lives behind a RateLimitStore:
- InMemoryRateLimitStore: single process and tests. check() never awaits
  anything that suspends between read and write, so it is atomic under
  asyncio scheduling.
- RedisRateLimitStore: shared across instances. get/put are separate round
  trips, so concurrent requests of one client may race (approximate limit).

References:
- Fixed window rate limiting: https://redis.io/glossary/rate-limiting/
"""

import asyncio
import json
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

from fastapi import Request, Response

from ..config import Settings, get_settings
from ..errors import RateLimitExceededError
from ..services.logging_service import central_logging
from ..utils.timestamps import iso_from_epoch
from .metrics import record_rate_limit_hit

logger = logging.getLogger(__name__)

# Entries whose window started longer ago than this are swept
ENTRY_RETENTION_SECONDS = 3600.0


@dataclass
class RateLimitEntry:
    count: int
    first_attempt: float
    blocked_until: Optional[float] = None


@dataclass(frozen=True)
class RateLimitOptions:
    max_attempts: int
    window_seconds: float
    block_seconds: Optional[float] = None  # defaults to the window
    key_prefix: str = ""

    @property
    def effective_block_seconds(self) -> float:
        if self.block_seconds is None:
            return self.window_seconds
        return self.block_seconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: Optional[int] = None
    remaining: Optional[int] = None


# ============================================================
# Stores
# ============================================================

class RateLimitStore(ABC):
    """Key-value storage for rate-limit entries"""

    @abstractmethod
    async def get(self, key: str) -> Optional[RateLimitEntry]:
        ...

    @abstractmethod
    async def put(self, key: str, entry: RateLimitEntry, ttl_seconds: float) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def sweep(self, now: float, retention_seconds: float) -> int:
        """Remove stale entries, return how many were removed"""

    @abstractmethod
    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        return None


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local dict store"""

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        return self._entries.get(key)

    async def put(self, key: str, entry: RateLimitEntry, ttl_seconds: float) -> None:
        # TTL is enforced by sweep()
        self._entries[key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def sweep(self, now: float, retention_seconds: float) -> int:
        stale = [
            key
            for key, entry in self._entries.items()
            if now - entry.first_attempt > retention_seconds
            and (entry.blocked_until is None or entry.blocked_until <= now)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisRateLimitStore(RateLimitStore):
    """Redis store; expiry is delegated to key TTLs"""

    def __init__(self, redis_url: str, namespace: str = "canvas:ratelimit:"):
        self.redis_url = redis_url
        self.namespace = namespace
        self._client = None

    def _get_client(self):
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[RateLimitEntry]:
        raw = await self._get_client().get(self.namespace + key)
        if raw is None:
            return None
        return RateLimitEntry(**json.loads(raw))

    async def put(self, key: str, entry: RateLimitEntry, ttl_seconds: float) -> None:
        await self._get_client().set(
            self.namespace + key,
            json.dumps(asdict(entry)),
            ex=max(1, math.ceil(ttl_seconds)),
        )

    async def delete(self, key: str) -> None:
        await self._get_client().delete(self.namespace + key)

    async def sweep(self, now: float, retention_seconds: float) -> int:
        return 0

    async def clear(self) -> None:
        client = self._get_client()
        async for key in client.scan_iter(match=self.namespace + "*"):
            await client.delete(key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ============================================================
# Limiter
# ============================================================

class RateLimiter:
    """Fixed-window limiter with lockout over a RateLimitStore"""

    def __init__(self, store: RateLimitStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def check(self, key: str, options: RateLimitOptions) -> RateLimitResult:
        """
        Count one attempt for `key` and decide whether it is allowed

        Returns:
            RateLimitResult(allowed, retry_after, remaining)
            - retry_after: whole seconds until the block ends (denied only)
            - remaining: attempts left in the window (allowed only)

        A failing store (e.g. Redis down) lets the request through.
        """
        try:
            return await self._check(key, options)
        except Exception as e:
            logger.warning(f"Rate limit check failed for {key}, allowing request: {e}")
            return RateLimitResult(allowed=True, remaining=options.max_attempts)

    async def _check(self, key: str, options: RateLimitOptions) -> RateLimitResult:
        now = self.clock()
        block = options.effective_block_seconds
        ttl = max(options.window_seconds, block)
        entry = await self.store.get(key)

        if entry is None:
            await self.store.put(key, RateLimitEntry(count=1, first_attempt=now), ttl)
            return RateLimitResult(allowed=True, remaining=options.max_attempts - 1)

        if entry.blocked_until is not None and now < entry.blocked_until:
            return RateLimitResult(
                allowed=False,
                retry_after=max(1, math.ceil(entry.blocked_until - now)),
            )

        block_elapsed = entry.blocked_until is not None
        if block_elapsed or now - entry.first_attempt > options.window_seconds:
            await self.store.put(key, RateLimitEntry(count=1, first_attempt=now), ttl)
            return RateLimitResult(allowed=True, remaining=options.max_attempts - 1)

        entry.count += 1
        if entry.count > options.max_attempts:
            entry.blocked_until = now + block
            await self.store.put(key, entry, block)
            logger.warning(f"Rate limit exceeded for {key}, blocked for {block:.0f}s")
            return RateLimitResult(allowed=False, retry_after=max(1, math.ceil(block)))

        await self.store.put(key, entry, ttl)
        return RateLimitResult(allowed=True, remaining=options.max_attempts - entry.count)

    async def reset(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.warning(f"Rate limit reset failed for {key}: {e}")

    async def sweep(self) -> int:
        try:
            removed = await self.store.sweep(self.clock(), ENTRY_RETENTION_SECONDS)
        except Exception as e:
            logger.warning(f"Rate limit sweep failed: {e}")
            return 0
        if removed:
            logger.debug(f"Rate limit sweep removed {removed} entries")
        return removed


async def run_periodic_sweep(limiter: "RateLimiter", interval_seconds: float):
    """Background task started from the app lifespan"""
    while True:
        await asyncio.sleep(interval_seconds)
        await limiter.sweep()


# ============================================================
# Process-wide limiter
# ============================================================

_rate_limiter: Optional[RateLimiter] = None


def build_rate_limiter(settings: Settings) -> RateLimiter:
    backend = settings.RATE_LIMIT_BACKEND.lower()
    if backend == "redis":
        logger.info("Rate limiting backed by Redis")
        return RateLimiter(RedisRateLimitStore(settings.REDIS_URL))
    if backend != "memory":
        logger.warning(f"Unknown RATE_LIMIT_BACKEND '{backend}', using memory")
    return RateLimiter(InMemoryRateLimitStore())


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = build_rate_limiter(get_settings())
    return _rate_limiter


def configure_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """Replace the process-wide limiter (None rebuilds it from settings)"""
    global _rate_limiter
    _rate_limiter = limiter


# ============================================================
# Client identity
# ============================================================

def get_client_id(request: Request) -> str:
    """
    Client identifier used in rate-limit keys

    Order: X-Forwarded-For (first hop), X-Real-IP, CF-Connecting-IP,
    socket peer, "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# ============================================================
# Endpoint policies
# ============================================================

AUTH_LIMITS = {
    "login": RateLimitOptions(max_attempts=5, window_seconds=15 * 60, block_seconds=15 * 60, key_prefix="login:"),
    "register": RateLimitOptions(max_attempts=5, window_seconds=60 * 60, block_seconds=60 * 60, key_prefix="register:"),
}

AI_LIMITS = {
    "chat": RateLimitOptions(max_attempts=20, window_seconds=60, key_prefix="ai-chat:"),
    "bpmn": RateLimitOptions(max_attempts=5, window_seconds=60, key_prefix="ai-bpmn:"),
    "vba": RateLimitOptions(max_attempts=5, window_seconds=60, key_prefix="ai-vba:"),
    "suggestions": RateLimitOptions(max_attempts=10, window_seconds=60, key_prefix="ai-suggestions:"),
    "workflow-extract": RateLimitOptions(max_attempts=10, window_seconds=60, key_prefix="ai-extract:"),
    "audio": RateLimitOptions(max_attempts=3, window_seconds=5 * 60, key_prefix="ai-audio:"),
}


def get_rate_limit(category: str, action: str) -> RateLimitOptions:
    """Look up an endpoint policy, e.g. get_rate_limit("auth", "login")"""
    limits = {"auth": AUTH_LIMITS, "ai": AI_LIMITS}[category]
    return limits[action]


class RateLimit:
    """
    FastAPI dependency enforcing a policy on a route

    Usage:
        @router.post("/login")
        async def login(limit=Depends(RateLimit(get_rate_limit("auth", "login"), "auth.login"))):
            ...

    Denied requests raise RateLimitExceededError (429 with Retry-After).
    Allowed requests get X-RateLimit-Limit / X-RateLimit-Remaining.
    """

    def __init__(self, options: RateLimitOptions, name: str):
        self.options = options
        self.name = name

    async def __call__(self, request: Request, response: Response) -> RateLimitResult:
        limiter = get_rate_limiter()
        client_id = get_client_id(request)
        result = await limiter.check(f"{self.options.key_prefix}{client_id}", self.options)

        if not result.allowed:
            record_rate_limit_hit(self.name)
            await central_logging.audit(
                "rate_limit.blocked",
                client_id=client_id,
                details={"endpoint": self.name, "retry_after": result.retry_after},
            )
            raise RateLimitExceededError(
                retry_after=result.retry_after,
                limit=self.options.max_attempts,
                reset_at=iso_from_epoch(limiter.clock() + result.retry_after),
            )

        response.headers["X-RateLimit-Limit"] = str(self.options.max_attempts)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return result
