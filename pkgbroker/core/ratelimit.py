"""Per-token hourly rate limiting.

Each package-tool token carries its own ceiling (``rate_limit_max``). Counts
are kept in the shared key-value store under
``rate_limit:{token_id}:{window}``, where ``window`` is the number of whole
windows since the epoch, and expire with the window.

Features:
- NULL or 0 ceiling means unlimited (no counter is touched)
- Ceilings above the configured hard ceiling are clamped
- HTTP 429 with Retry-After pointing at the end of the current window
- Falls back to allowing requests if the store is unavailable

Counting is read-then-write with no cross-request locking. Under concurrent
bursts a token can exceed its ceiling by a few requests.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pkgbroker.core.errors import RateLimitExceeded
from pkgbroker.core.kv import KeyValueStore


DEFAULT_WINDOW = 3600  # seconds
DEFAULT_HARD_CEILING = 25000  # requests per window


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_at: int  # epoch seconds


class RateLimiter:
    """Fixed-window request counter per token."""

    def __init__(
        self,
        store: KeyValueStore,
        window: int = DEFAULT_WINDOW,
        hard_ceiling: int = DEFAULT_HARD_CEILING,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
        enabled: bool = True,
    ):
        self.store = store
        self.window = window
        self.hard_ceiling = hard_ceiling
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock
        self.enabled = enabled

    def _get_key(self, token_id: str, now: float) -> str:
        return f"rate_limit:{token_id}:{int(now // self.window)}"

    def effective_ceiling(self, ceiling: Optional[int]) -> Optional[int]:
        if not ceiling or ceiling < 0:
            return None
        return min(ceiling, self.hard_ceiling)

    async def hit(self, token_id: str, ceiling: Optional[int]) -> Optional[RateLimitStatus]:
        """
        Count one request against a token.

        Args:
            token_id: Token identifier
            ceiling: Requests allowed per window (None/0 = unlimited)

        Returns:
            The counter status, or None for unlimited tokens

        Raises:
            RateLimitExceeded: If the token already used its ceiling in this window
        """
        limit = self.effective_ceiling(ceiling)
        if limit is None or not self.enabled:
            return None

        now = self.clock()
        key = self._get_key(token_id, now)
        reset_at = (int(now // self.window) + 1) * self.window

        try:
            raw = await self.store.get(key)
            count = int(raw) if raw is not None else 0
        except ValueError:
            count = 0
        except Exception as e:
            # Store unavailable - allow request but don't count it
            self.logger.warning(f"Rate limit store unavailable, allowing request: {e}")
            return RateLimitStatus(limit=limit, remaining=limit, reset_at=reset_at)

        if count >= limit:
            raise RateLimitExceeded(limit=limit, retry_after=reset_at - int(now))

        try:
            await self.store.put(key, str(count + 1), self.window)
        except Exception as e:
            self.logger.warning(f"Failed to record rate limit hit for token {token_id}: {e}")

        return RateLimitStatus(limit=limit, remaining=max(0, limit - count - 1), reset_at=reset_at)
