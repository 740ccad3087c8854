"""Token bucket rate limiter for outbound API calls.

USAGE:
    limiter = RateLimiter.for_spotify()

    async with limiter:
        response = await client.get(url)

    # On 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    Spotify allows roughly 180 requests per minute; the defaults stay below that.
    """

    max_tokens: int = 10
    refill_rate: float = 2.0  # Tokens per second
    max_backoff_seconds: float = 600.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket with adaptive backoff on 429 responses."""

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def for_spotify(cls) -> "RateLimiter":
        """Limiter tuned for the Spotify Web API (2 req/s sustained, burst of 10)."""
        return cls(
            config=RateLimiterConfig(
                max_tokens=10,
                refill_rate=2.0,
                max_backoff_seconds=600.0,
                initial_backoff_seconds=1.0,
            ),
            name="spotify",
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            self.config.max_tokens, self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, sleeping until one is available."""
        async with self._lock:
            self._refill_tokens()
            while self._tokens < 1.0:
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
                logger.debug(
                    "RateLimiter[%s]: no tokens available, waiting %.2fs",
                    self.name,
                    wait_time,
                )
                await asyncio.sleep(wait_time)
                self._refill_tokens()
            self._tokens -= 1.0

    async def handle_rate_limit_response(self, retry_after: int | None = None) -> float:
        """Back off after a 429; honours Retry-After when the server sends one.

        Returns:
            The wait time actually used
        """
        async with self._lock:
            wait_time = (
                float(retry_after) if retry_after is not None else self._current_backoff
            )
            wait_time = min(wait_time, self.config.max_backoff_seconds)

            logger.warning(
                "RateLimiter[%s]: 429 rate limited, waiting %.1fs before retry",
                self.name,
                wait_time,
            )

            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            self._tokens = 0.0

        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        if exc_type is None:
            self.reset_backoff()

    @property
    def available_tokens(self) -> float:
        self._refill_tokens()
        return self._tokens


__all__ = ["RateLimiter", "RateLimiterConfig"]
