"""Anthropic Message Batches adapter."""

import logging
import os
from collections.abc import Iterator, Sequence
from typing import Any

import anthropic

from paperbatch.db import to_naive_utc
from paperbatch.services.types import BatchRequest, BatchResultItem, BatchSnapshot, VendorStatus

logger = logging.getLogger(__name__)


def _result_text(message: Any) -> str | None:
    content = getattr(message, "content", None) or []
    if not content:
        return None
    return getattr(content[0], "text", None)


def _to_item(entry: Any) -> BatchResultItem:
    result = entry.result
    if result.type == "succeeded":
        return BatchResultItem(
            custom_id=entry.custom_id or None,
            outcome="succeeded",
            text=_result_text(result.message),
        )
    error = getattr(result, "error", None)
    detail = getattr(getattr(error, "error", None), "type", None)
    return BatchResultItem(custom_id=entry.custom_id or None, outcome=result.type, error=detail)


class ClaudeBatchClient:
    """Creates, inspects and streams Anthropic message batches."""

    def __init__(self, client: anthropic.Anthropic, model: str | None = None) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_env(cls) -> "ClaudeBatchClient":
        api_key = os.environ.get("ANTHROPIC_API_KEY", "").strip()
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is not set")
        model = os.environ.get("ANTHROPIC_BATCH_MODEL", "").strip() or None
        return cls(anthropic.Anthropic(api_key=api_key), model=model)

    def create(self, requests: Sequence[BatchRequest]) -> str:
        if not self._model:
            raise ValueError("ANTHROPIC_BATCH_MODEL environment variable is not set")
        batch = self._client.messages.batches.create(
            requests=[
                {
                    "custom_id": r.custom_id,
                    "params": {
                        "model": self._model,
                        "max_tokens": r.max_tokens,
                        "system": r.system,
                        "messages": [{"role": "user", "content": r.prompt}],
                    },
                }
                for r in requests
            ]
        )
        if not batch.id:
            raise RuntimeError("Anthropic batch response did not include an id")
        logger.info("Anthropic batch %s created (%s)", batch.id, batch.processing_status)
        return batch.id

    def retrieve(self, batch_id: str) -> BatchSnapshot:
        batch = self._client.messages.batches.retrieve(batch_id)
        counts = batch.request_counts
        return BatchSnapshot(
            status=VendorStatus.from_raw(batch.processing_status),
            succeeded=counts.succeeded or 0,
            failed=(counts.errored or 0) + (counts.expired or 0) + (counts.canceled or 0),
            results_url=batch.results_url,
            ended_at=to_naive_utc(batch.ended_at),
        )

    def results(self, batch_id: str, paper_ids: Sequence[str] = ()) -> Iterator[BatchResultItem]:
        """Stream results; items carry their own custom_id so *paper_ids* is unused."""
        for entry in self._client.messages.batches.results(batch_id):
            yield _to_item(entry)
