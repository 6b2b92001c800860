"""Shared typed values passed between the tracker and the batch vendors."""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


class BatchType(enum.StrEnum):
    OUTLINE = "outline"
    SUMMARY = "summary"


class VendorStatus(enum.StrEnum):
    """Processing status reported by a batch vendor, normalised to a closed set."""

    IN_PROGRESS = "in_progress"
    ENDED = "ended"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELED = "canceled"
    CANCELING = "canceling"
    UNKNOWN = "unknown"

    @classmethod
    def from_raw(cls, raw: str | None) -> "VendorStatus":
        value = (raw or "").strip().lower()
        if value in _RUNNING_ALIASES:
            return cls.IN_PROGRESS
        try:
            return cls(value)
        except ValueError:
            logger.warning("unrecognised vendor status %r, treating as unknown", raw)
            return cls.UNKNOWN


_RUNNING_ALIASES = frozenset({"in_progress", "validating", "finalizing", "queued", "pending", "running"})


@dataclass(frozen=True)
class BatchSnapshot:
    """Point-in-time view of a vendor batch."""

    status: VendorStatus
    succeeded: int = 0
    # errored + expired + canceled requests
    failed: int = 0
    results_url: str | None = None
    ended_at: datetime | None = None


@dataclass(frozen=True)
class BatchResultItem:
    """One entry of a vendor's result stream."""

    custom_id: str | None
    # succeeded | errored | expired | canceled
    outcome: str
    text: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == "succeeded"


@dataclass(frozen=True)
class BatchRequest:
    custom_id: str
    system: str
    prompt: str
    max_tokens: int
