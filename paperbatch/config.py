"""Poller tunables, read from the environment."""

import os
from dataclasses import dataclass
from datetime import timedelta

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


@dataclass(frozen=True)
class PollerSettings:
    poll_limit: int = 50
    lookback: timedelta = timedelta(hours=25)
    interval_seconds: float = 15 * 60
    # Pause after a job that is still running at the vendor.
    job_delay_seconds: float = 0.5
    # Pause between result items of one batch.
    item_delay_seconds: float = 0.1
    error_message_max_chars: int = 1000
    expire_stale_jobs: bool = True

    @classmethod
    def from_env(cls) -> "PollerSettings":
        defaults = cls()
        return cls(
            poll_limit=int(os.environ.get("POLL_LIMIT", defaults.poll_limit)),
            lookback=timedelta(
                hours=float(os.environ.get("POLL_LOOKBACK_HOURS", defaults.lookback.total_seconds() / 3600))
            ),
            interval_seconds=float(
                os.environ.get("POLL_INTERVAL_MINUTES", defaults.interval_seconds / 60)
            )
            * 60,
            expire_stale_jobs=env_flag("EXPIRE_STALE_JOBS", defaults.expire_stale_jobs),
        )

    def truncate(self, message: str) -> str:
        return message[: self.error_message_max_chars]
