"""Front-end cache revalidation webhook."""

import logging
import os

import httpx
from sqlalchemy.orm import Session

from paperbatch.models.paper import Paper

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10.0


def paper_path(paper: Paper) -> str | None:
    """Public page path for *paper*, or None when slug or platform is missing."""
    if not paper.slug or not paper.platform:
        return None
    return f"/papers/{paper.platform}/{paper.slug}"


def _describe(exc: Exception) -> str:
    # Status errors embed the request URL, which carries the secret.
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return f"{type(exc).__name__}: {exc}"


class Revalidator:
    """Asks the site to rebuild a paper's page after its row changed.

    Best-effort: failures are logged and reported as False, never raised.
    """

    def __init__(self, site_url: str, secret: str, timeout: float = _TIMEOUT_SECONDS) -> None:
        self._endpoint = site_url.rstrip("/") + "/api/revalidate"
        self._secret = secret
        self._timeout = timeout

    @classmethod
    def from_env(cls) -> "Revalidator | None":
        site_url = os.environ.get("SITE_URL", "").strip()
        secret = os.environ.get("REVALIDATE_SECRET", "").strip()
        if not site_url or not secret:
            logger.warning("SITE_URL or REVALIDATE_SECRET not set, revalidation disabled")
            return None
        return cls(site_url, secret)

    def revalidate(self, paper_id: int, db: Session) -> bool:
        try:
            paper = db.query(Paper).filter(Paper.id == paper_id).first()
            path = paper_path(paper) if paper is not None else None
            if path is None:
                logger.warning("cannot revalidate paper %s: missing slug or platform", paper_id)
                return False

            response = httpx.get(
                self._endpoint,
                params={"secret": self._secret, "path": path},
                timeout=self._timeout,
            )
            response.raise_for_status()
            body = response.json()
        except Exception as exc:
            logger.warning("revalidation failed for paper %s: %s", paper_id, _describe(exc))
            return False

        if isinstance(body, dict) and body.get("revalidated"):
            logger.info("revalidated %s for paper %s", path, paper_id)
            return True
        logger.info("revalidation of %s for paper %s returned %r", path, paper_id, body)
        return False
