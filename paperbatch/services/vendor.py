"""Batch vendor protocol and selection."""

import os
from collections.abc import Iterator, Sequence
from typing import Protocol

from paperbatch.services.types import BatchRequest, BatchResultItem, BatchSnapshot


class BatchVendor(Protocol):
    def create(self, requests: Sequence[BatchRequest]) -> str: ...

    def retrieve(self, batch_id: str) -> BatchSnapshot: ...

    def results(self, batch_id: str, paper_ids: Sequence[str] = ()) -> Iterator[BatchResultItem]: ...


def get_batch_vendor(name: str | None = None) -> BatchVendor:
    """Return the vendor named by *name* or BATCH_VENDOR (anthropic by default)."""
    vendor = (name or os.environ.get("BATCH_VENDOR", "") or "anthropic").strip().lower()
    if vendor == "anthropic":
        from paperbatch.services.claude_batches import ClaudeBatchClient

        return ClaudeBatchClient.from_env()
    if vendor == "gemini":
        from paperbatch.services.gemini_batches import GeminiBatchClient

        return GeminiBatchClient.from_env()
    raise ValueError(f"Unknown batch vendor: {vendor!r}")
