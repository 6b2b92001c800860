"""Gemini Batch API adapter (inline requests)."""

import logging
import os
from collections.abc import Iterator, Sequence
from typing import Any

from google import genai

from paperbatch.db import to_naive_utc
from paperbatch.services.types import BatchRequest, BatchResultItem, BatchSnapshot, VendorStatus

logger = logging.getLogger(__name__)

_STATES: dict[str, VendorStatus] = {
    "JOB_STATE_SUCCEEDED": VendorStatus.COMPLETED,
    "JOB_STATE_PARTIALLY_SUCCEEDED": VendorStatus.COMPLETED,
    "JOB_STATE_FAILED": VendorStatus.FAILED,
    "JOB_STATE_EXPIRED": VendorStatus.EXPIRED,
    "JOB_STATE_CANCELLED": VendorStatus.CANCELED,
    "JOB_STATE_CANCELLING": VendorStatus.CANCELING,
    "JOB_STATE_QUEUED": VendorStatus.IN_PROGRESS,
    "JOB_STATE_PENDING": VendorStatus.IN_PROGRESS,
    "JOB_STATE_RUNNING": VendorStatus.IN_PROGRESS,
    "JOB_STATE_UPDATING": VendorStatus.IN_PROGRESS,
    "JOB_STATE_PAUSED": VendorStatus.IN_PROGRESS,
}


def vendor_status(state: Any) -> VendorStatus:
    name = state.name if state is not None else "JOB_STATE_UNSPECIFIED"
    status = _STATES.get(name)
    if status is None:
        logger.warning("unrecognised Gemini job state %s", name)
        return VendorStatus.UNKNOWN
    return status


def _inlined_responses(batch: Any) -> list[Any]:
    return list((batch.dest.inlined_responses if batch.dest is not None else None) or [])


class GeminiBatchClient:
    """Creates, inspects and reads Gemini inline batch jobs.

    Inline responses come back in request order without ids, so results are
    matched to the job's recorded paper ids by position.
    """

    def __init__(self, client: genai.Client, model: str | None = None) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_env(cls) -> "GeminiBatchClient":
        api_key = os.environ.get("GEMINI_API_KEY", "").strip()
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable is not set")
        model = os.environ.get("GEMINI_BATCH_MODEL", "").strip() or None
        return cls(genai.Client(api_key=api_key), model=model)

    def create(self, requests: Sequence[BatchRequest]) -> str:
        if not self._model:
            raise ValueError("GEMINI_BATCH_MODEL environment variable is not set")
        inline_requests: list[dict[str, object]] = [
            {
                "contents": [{"parts": [{"text": r.system + "\n\n" + r.prompt}], "role": "user"}],
                "config": {"max_output_tokens": r.max_tokens},
            }
            for r in requests
        ]
        batch = self._client.batches.create(
            model=self._model,
            src=inline_requests,  # type: ignore[arg-type]
            config={"display_name": f"paperbatch-{len(inline_requests)}"},
        )
        batch_name = batch.name or ""
        if not batch_name:
            raise RuntimeError("Gemini batch response did not include a name")
        logger.info("Gemini batch created: %s", batch_name)
        return batch_name

    def retrieve(self, batch_id: str) -> BatchSnapshot:
        batch = self._client.batches.get(name=batch_id)
        succeeded = failed = 0
        if batch.done:
            for response in _inlined_responses(batch):
                if response.error:
                    failed += 1
                else:
                    succeeded += 1
        return BatchSnapshot(
            status=vendor_status(batch.state),
            succeeded=succeeded,
            failed=failed,
            ended_at=to_naive_utc(batch.end_time),
        )

    def results(self, batch_id: str, paper_ids: Sequence[str] = ()) -> Iterator[BatchResultItem]:
        batch = self._client.batches.get(name=batch_id)
        for idx, response in enumerate(_inlined_responses(batch)):
            custom_id = paper_ids[idx] if idx < len(paper_ids) else None
            if response.error:
                yield BatchResultItem(custom_id=custom_id, outcome="errored", error=str(response.error))
                continue
            text = response.response.text if response.response is not None else None
            yield BatchResultItem(custom_id=custom_id, outcome="succeeded", text=text)
