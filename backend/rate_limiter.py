"""
Redis-based Rate Limiter for tutor requests.

Token bucket per tutoring session, applied only to intents that call the
explanation service. Bucket state lives in Redis so several backend
workers share the same budget.
"""

import time
import redis.asyncio as redis
from typing import Optional, Tuple
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Bucket size and refill window."""
    limit: int = 10           # LLM calls per window
    window_seconds: int = 60  # 1 minute window


class RateLimiter:
    """
    Token Bucket Rate Limiter backed by Redis.

    Keys used:
    - tutor_rate:{session_id}:tokens  → remaining tokens
    - tutor_rate:{session_id}:last    → last refill timestamp
    """

    def __init__(
        self,
        redis_url: str,
        config: Optional[RateLimitConfig] = None,
        client: Optional[redis.Redis] = None
    ):
        self.redis_url = redis_url
        self.config = config or RateLimitConfig()
        self._client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """Initialize Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        # Test connection
        await self._client.ping()
        logger.info("Rate limiter connected to Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _keys(session_id: str) -> Tuple[str, str]:
        return f"tutor_rate:{session_id}:tokens", f"tutor_rate:{session_id}:last"

    async def _refilled_tokens(self, session_id: str, now: float) -> float:
        tokens_key, last_key = self._keys(session_id)
        pipe = self._client.pipeline()
        pipe.get(tokens_key)
        pipe.get(last_key)
        results = await pipe.execute()

        limit = self.config.limit
        current_tokens = float(results[0]) if results[0] else float(limit)
        last_time = float(results[1]) if results[1] else now

        # Gradual refill
        time_passed = now - last_time
        return min(limit, current_tokens + time_passed * (limit / self.config.window_seconds))

    async def check_rate_limit(self, session_id: str) -> Tuple[bool, int, int]:
        """
        Consume one token for `session_id` if available.

        Returns:
            Tuple of (allowed, remaining_tokens, reset_in_seconds)
        """
        if not self._client:
            raise RuntimeError("Rate limiter not connected. Call connect() first.")

        now = time.time()
        limit = self.config.limit
        window = self.config.window_seconds
        tokens = await self._refilled_tokens(session_id, now)

        if tokens >= 1:
            tokens -= 1
            allowed = True
            reset_in = 0
        else:
            allowed = False
            reset_in = max(1, int((1 - tokens) * (window / limit)))

        tokens_key, last_key = self._keys(session_id)
        pipe = self._client.pipeline()
        pipe.set(tokens_key, str(tokens), ex=window * 2)
        pipe.set(last_key, str(now), ex=window * 2)
        await pipe.execute()

        if not allowed:
            logger.warning(f"Rate limit exceeded for session {session_id} (limit={limit}/{window}s)")

        return allowed, max(0, int(tokens)), reset_in

    async def get_quota_status(self, session_id: str) -> dict:
        """Current bucket state for a session, without consuming a token."""
        if not self._client:
            raise RuntimeError("Rate limiter not connected")

        limit = self.config.limit
        window = self.config.window_seconds
        current = await self._refilled_tokens(session_id, time.time())
        tokens_needed = limit - current

        return {
            "remaining": max(0, int(current)),
            "limit": limit,
            "window_seconds": window,
            "reset_in_seconds": int(tokens_needed * (window / limit)) if tokens_needed > 0 else 0,
        }

    async def reset_session(self, session_id: str) -> None:
        """Forget the bucket for a session (called when the session is deleted)."""
        if not self._client:
            raise RuntimeError("Rate limiter not connected")
        await self._client.delete(*self._keys(session_id))
        logger.info(f"Reset rate limit for session {session_id}")


# Global instance (initialized on startup)
rate_limiter: Optional[RateLimiter] = None


async def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    if rate_limiter is None:
        raise RuntimeError("Rate limiter not initialized")
    return rate_limiter


async def init_rate_limiter(redis_url: str, config: Optional[RateLimitConfig] = None) -> RateLimiter:
    """Initialize the global rate limiter."""
    global rate_limiter
    limiter = RateLimiter(redis_url, config)
    await limiter.connect()
    rate_limiter = limiter
    return rate_limiter


async def close_rate_limiter() -> None:
    """Close the global rate limiter."""
    global rate_limiter
    if rate_limiter:
        await rate_limiter.close()
        rate_limiter = None
