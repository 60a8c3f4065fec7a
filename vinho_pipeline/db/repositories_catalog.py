"""Repository classes for catalog entities and identity embeddings.

Creation methods are race-safe: they insert with ON CONFLICT DO NOTHING
against the normalized unique keys and then read back whichever row won.
"""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from vinho_pipeline.core.enums import WineType
from vinho_pipeline.core.errors import ResourceVanishedError
from vinho_pipeline.core.schema import (
    EnrichmentData,
    IdentityEmbedding,
    Producer,
    Region,
    Vintage,
    Wine,
)
from vinho_pipeline.db.models_catalog import (
    GrapeVarietalDB,
    IdentityEmbeddingDB,
    ProducerDB,
    RegionDB,
    VintageDB,
    VintageVarietalDB,
    WineDB,
)
from vinho_pipeline.db.upsert import insert_or_ignore, upsert
from vinho_pipeline.ingestion.normalizer import normalize_key, region_key


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Catalog Repositories
# ============================================================================


class RegionRepository:
    """Repository for Region operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_or_create(self, name: str, country: str) -> tuple[Region, bool]:
        """Find a region by normalized (name, country), creating it if absent."""
        key = region_key(name, country)
        new_id = insert_or_ignore(
            self.session,
            RegionDB,
            values={
                "id": str(uuid4()),
                "name": name,
                "country": country,
                "normalized_key": key,
                "created_at": _utc_now(),
            },
            conflict_columns=["normalized_key"],
        )
        stmt = select(RegionDB).where(RegionDB.normalized_key == key)
        db_item = self.session.execute(stmt).scalar_one()
        return self._to_domain(db_item), new_id is not None

    def get_by_id(self, region_id: UUID | str) -> Region | None:
        """Get a region by ID."""
        db_item = self.session.get(RegionDB, str(region_id))
        return self._to_domain(db_item) if db_item else None

    def _to_domain(self, db_item: RegionDB) -> Region:
        """Convert DB model to domain model."""
        return Region(id=UUID(db_item.id), name=db_item.name, country=db_item.country)


class ProducerRepository:
    """Repository for Producer operations."""

    DETAIL_COLUMNS = (
        "region_id",
        "website",
        "address",
        "city",
        "postal_code",
        "latitude",
        "longitude",
    )

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, producer_id: UUID | str) -> Producer | None:
        """Get a producer by ID."""
        db_item = self.session.get(ProducerDB, str(producer_id))
        return self._to_domain(db_item) if db_item else None

    def list_all(self) -> list[Producer]:
        """List all producers in creation order."""
        stmt = select(ProducerDB).order_by(ProducerDB.created_at, ProducerDB.id)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(p) for p in result]

    def get_or_create(
        self, name: str, region_id: UUID | str | None = None
    ) -> tuple[Producer, bool]:
        """
        Find a producer by normalized name, creating it if absent.

        Returns:
            Tuple of (producer, created)
        """
        key = normalize_key(name)
        new_id = insert_or_ignore(
            self.session,
            ProducerDB,
            values={
                "id": str(uuid4()),
                "name": name,
                "normalized_name": key,
                "region_id": str(region_id) if region_id else None,
                "created_at": _utc_now(),
            },
            conflict_columns=["normalized_name"],
        )
        stmt = select(ProducerDB).where(ProducerDB.normalized_name == key)
        db_item = self.session.execute(stmt).scalar_one()
        return self._to_domain(db_item), new_id is not None

    def count(self) -> int:
        """Get total count of producers."""
        stmt = select(func.count()).select_from(ProducerDB)
        return self.session.execute(stmt).scalar() or 0

    def fill_missing_details(
        self, producer_id: UUID | str, details: dict[str, Any]
    ) -> list[str]:
        """
        Write website, location and region onto a producer where still null.

        Args:
            producer_id: Producer to update
            details: Values keyed by column name (see DETAIL_COLUMNS)

        Returns:
            Names of the columns that were filled

        Raises:
            ResourceVanishedError: If the producer no longer exists
        """
        if self.session.get(ProducerDB, str(producer_id)) is None:
            raise ResourceVanishedError("producer", str(producer_id))

        filled: list[str] = []
        for column_name in self.DETAIL_COLUMNS:
            value = details.get(column_name)
            if value is None:
                continue
            if column_name == "region_id":
                value = str(value)
            column = getattr(ProducerDB, column_name)
            stmt = (
                update(ProducerDB)
                .where(ProducerDB.id == str(producer_id), column.is_(None))
                .values({column_name: value})
                .execution_options(synchronize_session=False)
            )
            if self.session.execute(stmt).rowcount:
                filled.append(column_name)

        if filled:
            self.session.expire_all()
        return filled

    def _to_domain(self, db_item: ProducerDB) -> Producer:
        """Convert DB model to domain model."""
        return Producer(
            id=UUID(db_item.id),
            name=db_item.name,
            region_id=UUID(db_item.region_id) if db_item.region_id else None,
            website=db_item.website,
            address=db_item.address,
            city=db_item.city,
            postal_code=db_item.postal_code,
            latitude=db_item.latitude,
            longitude=db_item.longitude,
            created_at=db_item.created_at,
        )


class WineRepository:
    """Repository for Wine operations."""

    ENRICHABLE_FIELDS = (
        "wine_type",
        "color",
        "style",
        "serving_temperature",
        "tasting_notes",
    )

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, wine_id: UUID | str) -> Wine | None:
        """Get a wine by ID."""
        db_item = self.session.get(WineDB, str(wine_id))
        return self._to_domain(db_item) if db_item else None

    def list_by_producer(self, producer_id: UUID | str) -> list[Wine]:
        """List a producer's wines in creation order."""
        stmt = (
            select(WineDB)
            .where(WineDB.producer_id == str(producer_id))
            .order_by(WineDB.created_at, WineDB.id)
        )
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(w) for w in result]

    def get_or_create(
        self, producer_id: UUID | str, name: str, is_non_vintage: bool = False
    ) -> tuple[Wine, bool]:
        """
        Find a wine by (producer, normalized name), creating it if absent.

        Returns:
            Tuple of (wine, created)
        """
        key = normalize_key(name)
        new_id = insert_or_ignore(
            self.session,
            WineDB,
            values={
                "id": str(uuid4()),
                "producer_id": str(producer_id),
                "name": name,
                "normalized_name": key,
                "is_non_vintage": is_non_vintage,
                "created_at": _utc_now(),
            },
            conflict_columns=["producer_id", "normalized_name"],
        )
        stmt = select(WineDB).where(
            WineDB.producer_id == str(producer_id), WineDB.normalized_name == key
        )
        db_item = self.session.execute(stmt).scalar_one()
        return self._to_domain(db_item), new_id is not None

    def fill_missing_fields(self, wine_id: UUID | str, data: EnrichmentData) -> list[str]:
        """
        Copy enrichment values onto the wine, only where the column is null.

        Each column is written with its own ``UPDATE ... WHERE col IS NULL``
        so a concurrently written value is never replaced.

        Returns:
            Names of the fields that were filled

        Raises:
            ResourceVanishedError: If the wine no longer exists
        """
        if self.session.get(WineDB, str(wine_id)) is None:
            raise ResourceVanishedError("wine", str(wine_id))

        values: dict[str, str] = {}
        for name in self.ENRICHABLE_FIELDS:
            value = getattr(data, name)
            if value is not None:
                values[name] = value.value if isinstance(value, WineType) else value
        if data.food_pairings:
            values["food_pairings_json"] = json.dumps(data.food_pairings)

        filled: list[str] = []
        for column_name, value in values.items():
            column = getattr(WineDB, column_name)
            stmt = (
                update(WineDB)
                .where(WineDB.id == str(wine_id), column.is_(None))
                .values({column_name: value})
                .execution_options(synchronize_session=False)
            )
            if self.session.execute(stmt).rowcount:
                filled.append(column_name.removesuffix("_json"))

        self.session.expire_all()
        return filled

    def _to_domain(self, db_item: WineDB) -> Wine:
        """Convert DB model to domain model."""
        return Wine(
            id=UUID(db_item.id),
            producer_id=UUID(db_item.producer_id),
            name=db_item.name,
            is_non_vintage=db_item.is_non_vintage,
            wine_type=db_item.wine_type,
            color=db_item.color,
            style=db_item.style,
            food_pairings=(
                json.loads(db_item.food_pairings_json) if db_item.food_pairings_json else None
            ),
            serving_temperature=db_item.serving_temperature,
            tasting_notes=db_item.tasting_notes,
            created_at=db_item.created_at,
        )


class VintageRepository:
    """Repository for Vintage operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, vintage_id: UUID | str) -> Vintage | None:
        """Get a vintage by ID."""
        db_item = self.session.get(VintageDB, str(vintage_id))
        return self._to_domain(db_item) if db_item else None

    def get_or_create(
        self, wine_id: UUID | str, year: int | None, abv: float | None = None
    ) -> tuple[Vintage, bool]:
        """
        Find a vintage by (wine, year), creating it if absent.

        A null year always creates a new row. When an existing vintage has
        no ABV and one is supplied, it is filled in.

        Returns:
            Tuple of (vintage, created)
        """
        new_id = str(uuid4())
        values = {
            "id": new_id,
            "wine_id": str(wine_id),
            "year": year,
            "abv": abv,
            "created_at": _utc_now(),
        }

        if year is None:
            self.session.add(VintageDB(**values))
            self.session.flush()
            return self.get_by_id(new_id), True

        inserted = insert_or_ignore(
            self.session, VintageDB, values=values, conflict_columns=["wine_id", "year"]
        )
        if inserted is None and abv is not None:
            self.session.execute(
                update(VintageDB)
                .where(
                    VintageDB.wine_id == str(wine_id),
                    VintageDB.year == year,
                    VintageDB.abv.is_(None),
                )
                .values(abv=abv)
                .execution_options(synchronize_session=False)
            )

        stmt = (
            select(VintageDB)
            .where(VintageDB.wine_id == str(wine_id), VintageDB.year == year)
            .execution_options(populate_existing=True)
        )
        db_item = self.session.execute(stmt).scalar_one()
        return self._to_domain(db_item), inserted is not None

    def _to_domain(self, db_item: VintageDB) -> Vintage:
        """Convert DB model to domain model."""
        return Vintage(
            id=UUID(db_item.id),
            wine_id=UUID(db_item.wine_id),
            year=db_item.year,
            abv=db_item.abv,
            created_at=db_item.created_at,
        )


class VarietalRepository:
    """Repository for grape varietals and their links to vintages."""

    def __init__(self, session: Session):
        self.session = session

    def get_or_create(self, name: str) -> tuple[str, bool]:
        """
        Find a varietal by normalized name, creating it if absent.

        Returns:
            Tuple of (varietal id, created)
        """
        key = normalize_key(name)
        new_id = insert_or_ignore(
            self.session,
            GrapeVarietalDB,
            values={
                "id": str(uuid4()),
                "name": name,
                "normalized_name": key,
                "created_at": _utc_now(),
            },
            conflict_columns=["normalized_name"],
        )
        if new_id is not None:
            return new_id, True
        stmt = select(GrapeVarietalDB.id).where(GrapeVarietalDB.normalized_name == key)
        return self.session.execute(stmt).scalar_one(), False

    def attach(
        self, vintage_id: UUID | str, varietal_id: str, percent: float | None = None
    ) -> bool:
        """Link a varietal to a vintage. Returns False if already linked."""
        new_id = insert_or_ignore(
            self.session,
            VintageVarietalDB,
            values={
                "id": str(uuid4()),
                "vintage_id": str(vintage_id),
                "varietal_id": varietal_id,
                "percent": percent,
            },
            conflict_columns=["vintage_id", "varietal_id"],
        )
        return new_id is not None

    def attach_names(self, vintage_id: UUID | str, names: list[str]) -> list[str]:
        """
        Attach varietals by name with equal percentages.

        Returns:
            Names that were newly linked
        """
        if not names:
            return []
        percent = round(100.0 / len(names), 2)
        added: list[str] = []
        for name in names:
            varietal_id, _ = self.get_or_create(name)
            if self.attach(vintage_id, varietal_id, percent):
                added.append(name)
        return added

    def names_for_vintage(self, vintage_id: UUID | str) -> list[str]:
        """Varietal names linked to a vintage, alphabetically."""
        stmt = (
            select(GrapeVarietalDB.name)
            .join(VintageVarietalDB, VintageVarietalDB.varietal_id == GrapeVarietalDB.id)
            .where(VintageVarietalDB.vintage_id == str(vintage_id))
            .order_by(GrapeVarietalDB.name)
        )
        return list(self.session.execute(stmt).scalars().all())

    def names_for_wine(self, wine_id: UUID | str) -> list[str]:
        """Distinct varietal names across all of a wine's vintages."""
        stmt = (
            select(GrapeVarietalDB.name)
            .join(VintageVarietalDB, VintageVarietalDB.varietal_id == GrapeVarietalDB.id)
            .join(VintageDB, VintageDB.id == VintageVarietalDB.vintage_id)
            .where(VintageDB.wine_id == str(wine_id))
            .distinct()
            .order_by(GrapeVarietalDB.name)
        )
        return list(self.session.execute(stmt).scalars().all())


# ============================================================================
# Identity Embeddings
# ============================================================================


class IdentityEmbeddingRepository:
    """Repository for per-wine identity embeddings."""

    def __init__(self, session: Session):
        self.session = session

    def upsert(self, embedding: IdentityEmbedding) -> None:
        """Insert or replace the embedding for (wine, model, version)."""
        now = _utc_now()
        upsert(
            self.session,
            IdentityEmbeddingDB,
            values={
                "id": str(uuid4()),
                "wine_id": str(embedding.wine_id),
                "vector_json": json.dumps(embedding.vector),
                "source_text": embedding.source_text,
                "embedding_model": embedding.model,
                "embedding_version": embedding.version,
                "completeness_score": embedding.completeness_score,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["wine_id", "embedding_model", "embedding_version"],
            update_columns=["vector_json", "source_text", "completeness_score", "updated_at"],
        )

    def get(self, wine_id: UUID | str, model: str, version: int = 1) -> IdentityEmbedding | None:
        """Get the embedding for a wine, model and version."""
        stmt = (
            select(IdentityEmbeddingDB)
            .where(
                IdentityEmbeddingDB.wine_id == str(wine_id),
                IdentityEmbeddingDB.embedding_model == model,
                IdentityEmbeddingDB.embedding_version == version,
            )
            .execution_options(populate_existing=True)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def count(self) -> int:
        stmt = select(func.count()).select_from(IdentityEmbeddingDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: IdentityEmbeddingDB) -> IdentityEmbedding:
        """Convert DB model to domain model."""
        return IdentityEmbedding(
            wine_id=UUID(db_item.wine_id),
            vector=json.loads(db_item.vector_json),
            source_text=db_item.source_text,
            model=db_item.embedding_model,
            version=db_item.embedding_version,
            completeness_score=db_item.completeness_score,
        )
