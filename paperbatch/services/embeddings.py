"""Embedding generation for freshly summarised papers (OpenAI embeddings API)."""

import logging
import os

from openai import OpenAI
from sqlalchemy.orm import Session

from paperbatch.db import utcnow
from paperbatch.models.paper import Paper

logger = logging.getLogger(__name__)

_MAX_INPUT_CHARS = 8190
_DEFAULT_MODEL = "text-embedding-ada-002"


class EmbeddingError(Exception):
    """Raised internally when an embedding cannot be produced for a paper."""


def build_embedding_input(paper: Paper, summary: str) -> str:
    """Join the paper's descriptive fields and *summary* into one labelled text blob."""
    fields = [
        ("Title", paper.title),
        ("Abstract", paper.abstract),
        ("Summary", summary),
        ("Categories", ", ".join(paper.arxiv_categories or [])),
        ("Authors", ", ".join(paper.authors or [])),
        ("ArXiv ID", paper.arxiv_id),
    ]
    text = "\n\n".join(f"{label}: {value}" for label, value in fields if value)
    return text[:_MAX_INPUT_CHARS]


class EmbeddingService:
    """Creates and stores a vector embedding for a paper; never raises."""

    def __init__(self, client: OpenAI | None = None, model: str = _DEFAULT_MODEL) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_env(cls) -> "EmbeddingService":
        api_key = os.environ.get("OPENAI_API_KEY", "").strip()
        model = os.environ.get("EMBEDDING_MODEL", "").strip() or _DEFAULT_MODEL
        if not api_key:
            logger.warning("OPENAI_API_KEY is not set, embeddings disabled")
            return cls(client=None, model=model)
        return cls(client=OpenAI(api_key=api_key), model=model)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def create_for_paper(self, paper_id: int, summary: str, db: Session) -> list[float] | None:
        """Embed *paper_id* using its fields plus *summary* and store the vector.

        Returns the vector, or None on any failure.
        """
        if self._client is None:
            logger.info("skipping embedding for paper %s: no OpenAI client", paper_id)
            return None
        try:
            paper = db.query(Paper).filter(Paper.id == paper_id).first()
            if paper is None:
                raise EmbeddingError(f"paper {paper_id} not found")
            text = build_embedding_input(paper, summary)
            if not text.strip():
                raise EmbeddingError(f"empty embedding input for paper {paper_id}")

            response = self._client.embeddings.create(model=self._model, input=text)
            data = response.data if response is not None else None
            vector = list(data[0].embedding) if data else []
            if not vector:
                raise EmbeddingError(f"no embedding returned for paper {paper_id}")

            paper.embedding = vector
            paper.last_updated = utcnow()
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.error("embedding failed for paper %s: %s", paper_id, exc)
            return None
        logger.info("stored embedding for paper %s (%d dims)", paper_id, len(vector))
        return vector
