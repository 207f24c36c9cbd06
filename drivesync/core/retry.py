from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from drivesync.core.config import SyncConfig

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with capped exponential backoff.

    After failed attempt ``n`` (1-based) the caller waits
    ``min(base_delay_ms * 2**n, max_delay_ms)`` before attempt ``n + 1``.
    """

    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 15000

    @classmethod
    def from_config(cls, sync_cfg: SyncConfig) -> "RetryPolicy":
        return cls(
            max_attempts=sync_cfg.max_attempts,
            base_delay_ms=sync_cfg.backoff_base_ms,
            max_delay_ms=sync_cfg.backoff_max_ms,
        )

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2**attempt, self.max_delay_ms)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429
