"""SQLAlchemy ORM models for the pipeline work queues.

- QueueItemDB (wine_queue): uploaded label scans
- EnrichmentJobDB (enrichment_queue): metadata backfill requests
- EmbeddingJobDB (embedding_queue): identity and visual embedding requests

Each queue carries a partial unique index on its idempotency key that only
covers rows still in flight, so a key can be re-enqueued once its previous
job has finished.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

IN_FLIGHT_CLAUSE = "status IN ('pending', 'processing')"


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


def in_flight_where():
    """WHERE clause shared by the partial unique indexes and ON CONFLICT targets."""
    return text(IN_FLIGHT_CLAUSE)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class QueueItemDB(Base):
    """
    Database model for wine-label scans.

    One row per uploaded label photo. processed_data_json holds the
    resolved catalog ids once the scan completes.
    """

    __tablename__ = "wine_queue"
    __table_args__ = (
        Index(
            "uq_wine_queue_in_flight_key",
            "user_id",
            "idempotency_key",
            unique=True,
            sqlite_where=in_flight_where(),
            postgresql_where=in_flight_where(),
        ),
        Index("ix_wine_queue_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    ocr_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    scan_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<QueueItemDB(id={self.id}, status='{self.status}', retry={self.retry_count})>"


class EnrichmentJobDB(Base):
    """
    Database model for enrichment jobs.

    Carries a snapshot of the wine's known facts so the prompt can be built
    without re-reading the catalog.
    """

    __tablename__ = "enrichment_queue"
    __table_args__ = (
        Index(
            "uq_enrichment_queue_in_flight_key",
            "idempotency_key",
            unique=True,
            sqlite_where=in_flight_where(),
            postgresql_where=in_flight_where(),
        ),
        Index("ix_enrichment_queue_status_priority", "status", "priority", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    vintage_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    wine_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    producer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    wine_name: Mapped[str] = mapped_column(String(255), nullable=False)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    region: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    enrichment_data_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<EnrichmentJobDB(id={self.id}, wine='{self.wine_name}', status='{self.status}')>"


class EmbeddingJobDB(Base):
    """
    Database model for embedding jobs.

    job_type selects identity (input_text) or visual (input_image_url).
    """

    __tablename__ = "embedding_queue"
    __table_args__ = (
        Index(
            "uq_embedding_queue_in_flight_key",
            "idempotency_key",
            unique=True,
            sqlite_where=in_flight_where(),
            postgresql_where=in_flight_where(),
        ),
        Index("ix_embedding_queue_type_status", "job_type", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    job_type: Mapped[str] = mapped_column(String(20), nullable=False)
    wine_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    vintage_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    scan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    input_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    input_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON object
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<EmbeddingJobDB(id={self.id}, type='{self.job_type}', status='{self.status}')>"
