"""Tests for catalog repositories and dialect upserts."""

import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker

from vinho_pipeline.core.errors import ResourceVanishedError
from vinho_pipeline.core.schema import EnrichmentData, IdentityEmbedding
from vinho_pipeline.db.models import Base
from vinho_pipeline.db.models_catalog import VintageDB, WineDB
from vinho_pipeline.db.repositories_catalog import (
    IdentityEmbeddingRepository,
    ProducerRepository,
    RegionRepository,
    VarietalRepository,
    VintageRepository,
    WineRepository,
)


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def session(temp_db_path):
    """Create a database session for testing."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def wine(session: Session):
    """A producer with one wine."""
    producer, _ = ProducerRepository(session).get_or_create("Villa Oliveira")
    wine, _ = WineRepository(session).get_or_create(producer.id, "Reserva")
    session.commit()
    return wine


class TestRegionRepository:
    """Tests for RegionRepository."""

    def test_get_or_create_dedupes_normalized(self, session: Session) -> None:
        """Test regions differing in case and accents are the same row."""
        repo = RegionRepository(session)
        first, created = repo.get_or_create("Dão", "Portugal")
        second, created_again = repo.get_or_create("DAO", "portugal")
        assert created
        assert not created_again
        assert second.id == first.id
        assert second.name == "Dão"

    def test_same_name_other_country(self, session: Session) -> None:
        """Test the country is part of the key."""
        repo = RegionRepository(session)
        a, _ = repo.get_or_create("Valle Central", "Chile")
        b, _ = repo.get_or_create("Valle Central", "Mexico")
        assert a.id != b.id


class TestProducerRepository:
    """Tests for ProducerRepository."""

    def test_get_or_create(self, session: Session) -> None:
        """Test creating then finding a producer by normalized name."""
        repo = ProducerRepository(session)
        producer, created = repo.get_or_create("Quinta dos Roques")
        found, created_again = repo.get_or_create("quinta dos roques")
        assert created
        assert not created_again
        assert found.id == producer.id
        assert repo.count() == 1

    def test_list_all_creation_order(self, session: Session) -> None:
        """Test producers are listed oldest first."""
        repo = ProducerRepository(session)
        repo.get_or_create("Alpha")
        repo.get_or_create("Beta")
        assert [p.name for p in repo.list_all()] == ["Alpha", "Beta"]


class TestWineRepository:
    """Tests for WineRepository."""

    def test_same_name_two_producers(self, session: Session) -> None:
        """Test wine names are unique per producer only."""
        producers = ProducerRepository(session)
        a, _ = producers.get_or_create("Casa A")
        b, _ = producers.get_or_create("Casa B")
        wines = WineRepository(session)
        wine_a, _ = wines.get_or_create(a.id, "Reserva")
        wine_b, _ = wines.get_or_create(b.id, "Reserva")
        assert wine_a.id != wine_b.id

    def test_fill_missing_fields_keeps_existing(self, session: Session, wine) -> None:
        """Test enrichment never overwrites a value already set."""
        session.execute(update(WineDB).where(WineDB.id == str(wine.id)).values(color="red"))
        session.commit()

        filled = WineRepository(session).fill_missing_fields(
            wine.id,
            EnrichmentData(
                wine_type="red",
                color="ruby",
                food_pairings=["lamb", "hard cheese"],
            ),
        )
        session.commit()

        reloaded = WineRepository(session).get_by_id(wine.id)
        assert reloaded.color == "red"
        assert reloaded.wine_type == "red"
        assert reloaded.food_pairings == ["lamb", "hard cheese"]
        assert set(filled) == {"wine_type", "food_pairings"}

    def test_fill_missing_fields_vanished(self, session: Session) -> None:
        """Test filling a missing wine raises."""
        with pytest.raises(ResourceVanishedError):
            WineRepository(session).fill_missing_fields(uuid4(), EnrichmentData(color="red"))

    def test_missing_metadata(self, session: Session, wine) -> None:
        """Test a new wine reports every enrichment field as missing."""
        assert wine.missing_metadata == ["wine_type", "color", "style", "food_pairings"]


class TestVintageRepository:
    """Tests for VintageRepository."""

    def test_same_year_reused(self, session: Session, wine) -> None:
        """Test (wine, year) is unique."""
        repo = VintageRepository(session)
        first, created = repo.get_or_create(wine.id, 2017)
        second, created_again = repo.get_or_create(wine.id, 2017)
        assert created
        assert not created_again
        assert first.id == second.id

    def test_null_year_always_creates(self, session: Session, wine) -> None:
        """Test two non-vintage resolutions give two vintage rows."""
        repo = VintageRepository(session)
        first, _ = repo.get_or_create(wine.id, None)
        second, created = repo.get_or_create(wine.id, None)
        assert created
        assert first.id != second.id
        rows = session.execute(
            select(VintageDB).where(VintageDB.wine_id == str(wine.id))
        ).scalars().all()
        assert len(rows) == 2

    def test_abv_filled_on_existing(self, session: Session, wine) -> None:
        """Test a later ABV fills an existing vintage without one."""
        repo = VintageRepository(session)
        repo.get_or_create(wine.id, 2017)
        vintage, _ = repo.get_or_create(wine.id, 2017, abv=13.5)
        assert vintage.abv == 13.5

        again, _ = repo.get_or_create(wine.id, 2017, abv=14.0)
        assert again.abv == 13.5


class TestVarietalRepository:
    """Tests for VarietalRepository."""

    def test_attach_names(self, session: Session, wine) -> None:
        """Test varietals are linked once with equal percentages."""
        vintage, _ = VintageRepository(session).get_or_create(wine.id, 2017)
        repo = VarietalRepository(session)

        added = repo.attach_names(vintage.id, ["Touriga Nacional", "Jaen"])
        again = repo.attach_names(vintage.id, ["touriga nacional"])

        assert added == ["Touriga Nacional", "Jaen"]
        assert again == []
        assert repo.names_for_vintage(vintage.id) == ["Jaen", "Touriga Nacional"]

    def test_names_for_wine_across_vintages(self, session: Session, wine) -> None:
        """Test wine varietals combine every vintage."""
        vintages = VintageRepository(session)
        v1, _ = vintages.get_or_create(wine.id, 2016)
        v2, _ = vintages.get_or_create(wine.id, 2017)
        repo = VarietalRepository(session)
        repo.attach_names(v1.id, ["Jaen"])
        repo.attach_names(v2.id, ["Jaen", "Alfrocheiro"])
        assert repo.names_for_wine(wine.id) == ["Alfrocheiro", "Jaen"]


class TestIdentityEmbeddingRepository:
    """Tests for stored identity embeddings."""

    def test_upsert_replaces(self, session: Session, wine) -> None:
        """Test re-embedding a wine replaces the row for its model and version."""
        repo = IdentityEmbeddingRepository(session)
        base = dict(wine_id=wine.id, model="gte-small", version=1)
        repo.upsert(
            IdentityEmbedding(
                vector=[1.0, 0.0], source_text="a", completeness_score=0.5, **base
            )
        )
        repo.upsert(
            IdentityEmbedding(
                vector=[0.0, 1.0], source_text="b", completeness_score=1.0, **base
            )
        )
        session.commit()

        stored = repo.get(wine.id, "gte-small", 1)
        assert repo.count() == 1
        assert stored.vector == [0.0, 1.0]
        assert stored.completeness_score == 1.0
        assert stored.source_text == "b"
