"""SQLAlchemy ORM models for the wine catalog and stored vectors.

- RegionDB, ProducerDB, WineDB, VintageDB (catalog entities)
- GrapeVarietalDB, VintageVarietalDB (varietal composition)
- IdentityEmbeddingDB (textual identity vectors)
- VectorEntryDB (rows backing the database vector index)

Uniqueness is enforced on normalized keys so concurrent resolvers can use
INSERT ... ON CONFLICT DO NOTHING instead of find-then-create.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vinho_pipeline.db.models import Base


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


# ============================================================================
# Catalog Entities
# ============================================================================


class RegionDB(Base):
    """Database model for wine regions, unique per (name, country)."""

    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    normalized_key: Mapped[str] = mapped_column(String(400), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<RegionDB(id={self.id}, name='{self.name}', country='{self.country}')>"


class ProducerDB(Base):
    """
    Database model for producers.

    Represents a winery, domaine, or producer of wines.
    """

    __tablename__ = "producers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    region_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("regions.id"), nullable=True, index=True
    )
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Winery location
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(255), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # Relationships
    wines: Mapped[list["WineDB"]] = relationship("WineDB", back_populates="producer")

    def __repr__(self) -> str:
        return f"<ProducerDB(id={self.id}, name='{self.name}')>"


class WineDB(Base):
    """
    Database model for wines (cuvée/product line).

    Represents a wine independent of vintage year. Enrichment columns stay
    null until filled and are never overwritten afterwards.
    """

    __tablename__ = "wines"
    __table_args__ = (
        UniqueConstraint("producer_id", "normalized_name", name="uq_wines_producer_name"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    producer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("producers.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_non_vintage: Mapped[bool] = mapped_column(Boolean, default=False)
    wine_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    color: Mapped[str | None] = mapped_column(String(50), nullable=True)
    style: Mapped[str | None] = mapped_column(String(100), nullable=True)
    food_pairings_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON array
    serving_temperature: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tasting_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # Relationships
    producer: Mapped["ProducerDB"] = relationship("ProducerDB", back_populates="wines")
    vintages: Mapped[list["VintageDB"]] = relationship("VintageDB", back_populates="wine")

    def __repr__(self) -> str:
        return f"<WineDB(id={self.id}, name='{self.name}')>"


class VintageDB(Base):
    """
    Database model for vintages.

    A null year marks a non-vintage bottling; those rows are never
    deduplicated because NULLs are distinct in unique indexes.
    """

    __tablename__ = "vintages"
    __table_args__ = (UniqueConstraint("wine_id", "year", name="uq_vintages_wine_year"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    wine_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("wines.id"), nullable=False, index=True
    )
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    abv: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    # Relationships
    wine: Mapped["WineDB"] = relationship("WineDB", back_populates="vintages")

    def __repr__(self) -> str:
        return f"<VintageDB(id={self.id}, wine_id={self.wine_id}, year={self.year})>"


class GrapeVarietalDB(Base):
    """Database model for grape varietals."""

    __tablename__ = "grape_varietals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<GrapeVarietalDB(id={self.id}, name='{self.name}')>"


class VintageVarietalDB(Base):
    """Link between a vintage and one of its grape varietals."""

    __tablename__ = "vintage_varietals"
    __table_args__ = (
        UniqueConstraint("vintage_id", "varietal_id", name="uq_vintage_varietals_pair"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    vintage_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("vintages.id"), nullable=False, index=True
    )
    varietal_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("grape_varietals.id"), nullable=False
    )
    percent: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<VintageVarietalDB(vintage_id={self.vintage_id}, varietal_id={self.varietal_id})>"


# ============================================================================
# Vectors
# ============================================================================


class IdentityEmbeddingDB(Base):
    """Textual identity embedding for a wine, one row per model/version."""

    __tablename__ = "wine_identity_embeddings"
    __table_args__ = (
        UniqueConstraint(
            "wine_id", "embedding_model", "embedding_version", name="uq_identity_model_version"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    wine_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("wines.id"), nullable=False, index=True
    )
    vector_json: Mapped[str] = mapped_column(Text, nullable=False)  # JSON array of floats
    source_text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding_model: Mapped[str] = mapped_column(String(100), nullable=False)
    embedding_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    completeness_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<IdentityEmbeddingDB(wine_id={self.wine_id}, model='{self.embedding_model}')>"


class VectorEntryDB(Base):
    """A stored vector in a named namespace, used by the database vector index."""

    __tablename__ = "vector_entries"
    __table_args__ = (
        UniqueConstraint("namespace", "key", name="uq_vector_entries_namespace_key"),
        Index("ix_vector_entries_namespace", "namespace"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    namespace: Mapped[str] = mapped_column(String(100), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    vector_json: Mapped[str] = mapped_column(Text, nullable=False)  # JSON array of floats
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<VectorEntryDB(namespace='{self.namespace}', key='{self.key}')>"
