"""Paper ORM model.

Maps the externally owned ``arxivPapersData`` table. Only the columns the
tracker reads or writes are declared; the camelCase column names are the
table's own.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Float, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from paperbatch.db import Base, FloatArray, TextArray


class Paper(Base):
    __tablename__ = "arxivPapersData"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    arxiv_id: Mapped[str | None] = mapped_column("arxivId", Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    abstract: Mapped[str | None] = mapped_column(Text, nullable=True)
    authors: Mapped[list[str] | None] = mapped_column(TextArray, nullable=True)
    arxiv_categories: Mapped[list[str] | None] = mapped_column(
        "arxivCategories", TextArray, nullable=True
    )
    slug: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_score: Mapped[float | None] = mapped_column("totalScore", Float, nullable=True)
    indexed_date: Mapped[datetime | None] = mapped_column("indexedDate", nullable=True)

    generated_outline: Mapped[str | None] = mapped_column("generatedOutline", Text, nullable=True)
    outline_generated_at: Mapped[datetime | None] = mapped_column(
        "outlineGeneratedAt", nullable=True
    )
    generated_summary: Mapped[str | None] = mapped_column("generatedSummary", Text, nullable=True)
    summary_generated_at: Mapped[datetime | None] = mapped_column(
        "enhancedSummaryCreatedAt", nullable=True
    )
    embedding: Mapped[list[float] | None] = mapped_column(FloatArray, nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column("lastUpdated", nullable=True)
