"""Tests for enrichment scheduling and the enrichment worker."""

import json
import tempfile
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy.orm import Session, sessionmaker

from vinho_pipeline.core.enums import JobStatus
from vinho_pipeline.core.errors import TransientProviderError
from vinho_pipeline.core.schema import (
    EnrichmentData,
    EnrichmentJob,
    ExtractedLabel,
    ProcessedData,
    WineDescriptor,
)
from vinho_pipeline.db.models import Base, EmbeddingJobDB, EnrichmentJobDB
from vinho_pipeline.db.models_catalog import ProducerDB, WineDB
from vinho_pipeline.db.repositories import EnrichmentJobRepository, QueueRepository
from vinho_pipeline.db.repositories_catalog import (
    ProducerRepository,
    VarietalRepository,
    VintageRepository,
    WineRepository,
)
from vinho_pipeline.enrichment.scheduler import EnrichmentScheduler
from vinho_pipeline.enrichment.worker import EnrichmentWorker
from vinho_pipeline.queue.idempotency import enrichment_key
from vinho_pipeline.services.ai.client import AIClient, AIProvider


class FakeEnrichmentClient(AIClient):
    """Returns canned enrichment data."""

    provider = AIProvider.ANTHROPIC
    model = "fake"
    enrichment_model = "fake"

    def __init__(self, data: EnrichmentData | None = None, error: Exception | None = None):
        self.data = data or EnrichmentData()
        self.error = error
        self.descriptors: list[WineDescriptor] = []

    def extract_label(self, image_url, ocr_text=None, model=None) -> ExtractedLabel:
        raise NotImplementedError

    def enrich_wine(self, wine: WineDescriptor) -> EnrichmentData:
        self.descriptors.append(wine)
        if self.error is not None:
            raise self.error
        return self.data


ENRICHMENT = EnrichmentData(
    wine_type="red",
    color="ruby",
    style="medium-bodied",
    food_pairings=["roast lamb"],
    varietals=["Touriga Nacional", "Jaen"],
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
def vintage(session: Session):
    """Villa Oliveira Reserva 2017 with one varietal."""
    producer, _ = ProducerRepository(session).get_or_create("Villa Oliveira")
    wine, _ = WineRepository(session).get_or_create(producer.id, "Reserva")
    vintage, _ = VintageRepository(session).get_or_create(wine.id, 2017)
    VarietalRepository(session).attach_names(vintage.id, ["Touriga Nacional"])
    session.commit()
    return vintage


def _job(vintage, **overrides) -> EnrichmentJob:
    data = {
        "vintage_id": vintage.id,
        "wine_id": vintage.wine_id,
        "user_id": "user1",
        "producer_name": "Villa Oliveira",
        "wine_name": "Reserva",
        "year": 2017,
        "region": "Dão",
        "country": "Portugal",
        "idempotency_key": enrichment_key("user1", "Villa Oliveira", "Reserva", 2017),
    }
    data.update(overrides)
    return EnrichmentJob(**data)


def _complete_scan(session: Session, vintage, user_id: str = "user1") -> None:
    repo = QueueRepository(session)
    item, _ = repo.enqueue(
        user_id=user_id, image_url=f"https://img/{uuid4()}.jpg", idempotency_key=str(uuid4())
    )
    wine = WineRepository(session).get_by_id(vintage.wine_id)
    repo.mark_completed(
        item.id,
        ProcessedData(
            producer_id=wine.producer_id,
            wine_id=wine.id,
            vintage_id=vintage.id,
            producer_name="Villa Oliveira",
            wine_name="Reserva",
            year=2017,
            region="Dão",
            country="Portugal",
            confidence=0.9,
        ),
    )
    session.commit()


class TestEnrichmentWorker:
    """Tests for EnrichmentWorker."""

    def test_fills_only_missing_fields(self, session: Session, vintage) -> None:
        """Test an existing color survives enrichment."""
        session.execute(update(WineDB).where(WineDB.id == str(vintage.wine_id)).values(color="red"))
        session.commit()
        EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()
        client = FakeEnrichmentClient(ENRICHMENT)

        result = EnrichmentWorker(session, client).run_batch()

        assert result.processed == 1
        session.expire_all()
        wine = session.get(WineDB, str(vintage.wine_id))
        assert wine.color == "red"
        assert wine.wine_type == "red"
        assert wine.style == "medium-bodied"
        assert json.loads(wine.food_pairings_json) == ["roast lamb"]
        assert client.descriptors[0].varietals == ["Touriga Nacional"]

    def test_new_varietals_queue_identity_refresh(self, session: Session, vintage) -> None:
        """Test added varietals are linked and the identity is re-embedded."""
        EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()

        EnrichmentWorker(session, FakeEnrichmentClient(ENRICHMENT)).run_batch()

        assert VarietalRepository(session).names_for_vintage(vintage.id) == [
            "Jaen",
            "Touriga Nacional",
        ]
        jobs = session.execute(select(EmbeddingJobDB)).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].job_type == "identity"
        assert jobs[0].input_text == (
            "Villa Oliveira | Reserva | Dão, Portugal | Jaen, Touriga Nacional"
        )

    def test_no_new_varietals_no_refresh(self, session: Session, vintage) -> None:
        """Test nothing is re-embedded when the varietals were already known."""
        EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()

        client = FakeEnrichmentClient(EnrichmentData(color="ruby", varietals=["Touriga Nacional"]))
        EnrichmentWorker(session, client).run_batch()

        assert session.execute(select(EmbeddingJobDB)).scalars().all() == []

    def test_job_stores_payload(self, session: Session, vintage) -> None:
        """Test the enrichment payload is kept on the completed job."""
        job, _ = EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()

        EnrichmentWorker(session, FakeEnrichmentClient(ENRICHMENT)).run_batch()

        stored = EnrichmentJobRepository(session).get_by_id(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.enrichment_data.color == "ruby"

    def test_vanished_wine_skipped(self, session: Session, vintage) -> None:
        """Test a job for a deleted wine fails as skipped without retrying."""
        job, _ = EnrichmentJobRepository(session).enqueue(_job(vintage, wine_id=uuid4()))
        session.commit()
        client = FakeEnrichmentClient(ENRICHMENT)

        result = EnrichmentWorker(session, client).run_batch()

        assert result.skipped == 1
        assert client.descriptors == []
        session.expire_all()
        row = session.get(EnrichmentJobDB, str(job.id))
        assert row.status == JobStatus.FAILED.value
        assert row.retry_count == 0
        assert row.error_message.startswith("skipped: ResourceVanishedError")

    def test_provider_error_retried(self, session: Session, vintage) -> None:
        """Test a provider outage sends the job back to pending."""
        job, _ = EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()
        client = FakeEnrichmentClient(error=TransientProviderError("timeout"))

        result = EnrichmentWorker(session, client).run_batch()

        assert result.retried == 1
        stored = EnrichmentJobRepository(session).get_by_id(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.retry_count == 1

    def test_producer_details_filled(self, session: Session, vintage) -> None:
        """Test the producer's website and winery location are written when empty."""
        EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()
        data = ENRICHMENT.model_copy(
            update={
                "producer_website": "https://villaoliveira.pt",
                "producer_city": "Nelas",
                "latitude": 40.53,
                "longitude": -7.85,
            }
        )

        EnrichmentWorker(session, FakeEnrichmentClient(data)).run_batch()

        session.expire_all()
        producer = session.execute(select(ProducerDB)).scalar_one()
        assert producer.website == "https://villaoliveira.pt"
        assert producer.city == "Nelas"
        assert producer.latitude == pytest.approx(40.53)
        assert producer.address is None

    def test_unknown_wine_type_not_written(self, session: Session, vintage) -> None:
        """Test a wine type outside the known set leaves the column empty."""
        EnrichmentJobRepository(session).enqueue(_job(vintage))
        session.commit()
        data = EnrichmentData.model_validate({"wine_type": "orange", "color": "amber"})

        EnrichmentWorker(session, FakeEnrichmentClient(data)).run_batch()

        wine = WineRepository(session).get_by_id(vintage.wine_id)
        assert wine.wine_type is None
        assert wine.color == "amber"


class TestEnrichmentScheduler:
    """Tests for EnrichmentScheduler."""

    def test_queues_once(self, session: Session, vintage) -> None:
        """Test a wine is queued once while its job is in flight."""
        _complete_scan(session, vintage)
        _complete_scan(session, vintage)
        scheduler = EnrichmentScheduler(session)

        result = scheduler.scan_and_enqueue()

        assert result.queued == 1
        assert result.skipped == 1
        jobs = session.execute(select(EnrichmentJobDB)).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].idempotency_key == "user1|villaoliveira|reserva|2017|enrichment"

        again = scheduler.scan_and_enqueue()
        assert again.queued == 0
        assert again.skipped == 2

    def test_keys_scoped_per_user(self, session: Session, vintage) -> None:
        """Test two users scanning the same wine get one job each."""
        _complete_scan(session, vintage, "user1")
        _complete_scan(session, vintage, "user2")

        result = EnrichmentScheduler(session).scan_and_enqueue()
        assert result.queued == 2

    def test_user_filter(self, session: Session, vintage) -> None:
        """Test scheduling can be limited to one user."""
        _complete_scan(session, vintage, "user1")
        _complete_scan(session, vintage, "user2")

        result = EnrichmentScheduler(session).scan_and_enqueue(user_id="user2")
        assert result.queued == 1
        assert session.execute(select(EnrichmentJobDB)).scalars().one().user_id == "user2"

    def test_user_filter_applies_before_limit(self, session: Session, vintage) -> None:
        """Test a user's older scans are found even when newer scans fill the limit."""
        _complete_scan(session, vintage, "user1")
        for _ in range(3):
            _complete_scan(session, vintage, "user2")

        result = EnrichmentScheduler(session).scan_and_enqueue(limit=2, user_id="user1")

        assert result.queued == 1
        assert session.execute(select(EnrichmentJobDB)).scalars().one().user_id == "user1"

    def test_complete_wine_skipped(self, session: Session, vintage) -> None:
        """Test a fully described wine with varietals is not queued."""
        session.execute(
            update(WineDB)
            .where(WineDB.id == str(vintage.wine_id))
            .values(
                wine_type="red",
                color="ruby",
                style="full-bodied",
                food_pairings_json=json.dumps(["lamb"]),
            )
        )
        session.commit()
        _complete_scan(session, vintage)

        result = EnrichmentScheduler(session).scan_and_enqueue()
        assert result.queued == 0
        assert result.skipped == 1
