"""
Billow Backend — Home Cache (Redis)
====================================

What:  Key-value cache for single-home lookups, keyed `home:<id>`.
Why:   GET /homes/{id} is the hottest read; Redis answers it without a query.
How:   Thin wrapper over `redis.asyncio.Redis` with a TTL on every write.
Who:   HomeService, which implements the read-through pattern on top of it.

Best-effort contract:
    The cache is never authoritative and must never fail a request.
    Every Redis error (connection refused, timeout, protocol error) is logged,
    counted by a circuit breaker, and turned into a miss (get) or a no-op
    (set/delete). After repeated failures the breaker opens and Redis is not
    even contacted until the recovery timeout elapses, so a dead cache costs
    nothing per request instead of one socket timeout per request.

    CLOSED ──N failures──▶ OPEN ──recovery timeout──▶ HALF_OPEN
       ▲                                                 │
       └──────────────── probe succeeds ◀────────────────┘
                         (probe fails → OPEN again)
"""

import logging
import time
import uuid
from typing import Optional, Union

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

KEY_PREFIX = "home"
DEFAULT_TTL_SECONDS = 86_400


class CircuitBreaker:
    """
    Circuit breaker guarding the Redis connection.

    Not thread-safe: plain counters, relying on single-process asyncio.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 30):
        """
        Args:
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before allowing a probe call
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if a call may proceed.

        Raises:
            CircuitBreakerOpenError while OPEN and the recovery timeout
            hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Cache circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Cache circuit breaker transitioning to CLOSED (Redis recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Cache circuit breaker returning to OPEN (probe failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Cache circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


class HomeCache:
    """
    Best-effort Redis cache for serialized homes.

    Args:
        client:          redis.asyncio client (decode_responses=True), or None
                         to run without a cache
        ttl_seconds:     default expiry for `set`
        enabled:         False turns every call into a miss/no-op
        circuit_breaker: injected for tests; built from defaults otherwise
    """

    def __init__(
        self,
        client: Optional[Redis],
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        enabled: bool = True,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled and client is not None
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

    @staticmethod
    def key_for(home_id: Union[uuid.UUID, str]) -> str:
        return f"{KEY_PREFIX}:{home_id}"

    async def get(self, key: str) -> Optional[str]:
        """Cached payload, or None on a miss or any cache failure."""
        if not self._available():
            return None
        try:
            value = await self.client.get(key)
        except (RedisError, OSError) as e:
            self._record_failure("get", key, e)
            return None
        self.circuit_breaker.record_success()
        if value is None:
            logger.debug("Cache miss: %s", key)
        return value

    async def set(self, key: str, payload: str, ttl_seconds: Optional[int] = None) -> None:
        """Store `payload` with an absolute expiry; overwrites silently."""
        if not self._available():
            return
        try:
            await self.client.set(key, payload, ex=ttl_seconds or self.ttl_seconds)
        except (RedisError, OSError) as e:
            self._record_failure("set", key, e)
            return
        self.circuit_breaker.record_success()

    async def delete(self, key: str) -> None:
        """Drop `key`; used to invalidate a home after update/delete."""
        if not self._available():
            return
        try:
            await self.client.delete(key)
        except (RedisError, OSError) as e:
            self._record_failure("delete", key, e)
            return
        self.circuit_breaker.record_success()
        logger.debug("Cache invalidated: %s", key)

    async def ping(self) -> bool:
        """True when Redis answers PING. Used by /health and startup."""
        if self.client is None:
            return False
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning("Cache ping failed: %s", str(e))
            return False

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    @property
    def status(self) -> str:
        if not self.enabled:
            return "disabled"
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    def _available(self) -> bool:
        if not self.enabled:
            return False
        try:
            return self.circuit_breaker.can_execute()
        except CircuitBreakerOpenError as e:
            logger.debug("Cache bypassed: %s", e.message)
            return False

    def _record_failure(self, operation: str, key: str, error: Exception) -> None:
        self.circuit_breaker.record_failure()
        logger.warning(
            "Cache %s failed for %s, serving from the store: %s",
            operation, key, str(error),
            extra={"cache_key": key, "cache_operation": operation, "error_type": type(error).__name__},
        )


def build_redis_client(redis_url: str, socket_timeout: float) -> Redis:
    """
    Construct the process-wide Redis client. No connection is opened until
    the first command.
    """
    return Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
