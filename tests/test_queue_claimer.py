"""Tests for queue repositories and the job claimer."""

import tempfile
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session, sessionmaker

import vinho_pipeline.db.models_catalog  # noqa: F401
from vinho_pipeline.core.config import QueueConfig
from vinho_pipeline.core.enums import EmbeddingJobType, JobStatus, JobType
from vinho_pipeline.core.errors import ResourceVanishedError, TransientProviderError
from vinho_pipeline.core.schema import EmbeddingJob, EnrichmentJob
from vinho_pipeline.db.models import Base, QueueItemDB
from vinho_pipeline.db.repositories import (
    EmbeddingJobRepository,
    EnrichmentJobRepository,
    QueueRepository,
)
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.queue.idempotency import scan_idempotency_key
from vinho_pipeline.queue.retry import RetryPolicy
from vinho_pipeline.queue.stats import queue_stats


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


def _enqueue(session: Session, n: int, user_id: str = "user-1") -> list[str]:
    repo = QueueRepository(session)
    ids = []
    for i in range(n):
        url = f"https://img.example.com/{i}.jpg"
        item, _ = repo.enqueue(user_id, url, scan_idempotency_key(url))
        ids.append(str(item.id))
    session.commit()
    return ids


class TestQueueRepository:
    """Tests for wine-scan queue rows."""

    def test_enqueue_creates_pending(self, session: Session) -> None:
        """Test a new scan is pending with no retries."""
        item, created = QueueRepository(session).enqueue(
            "user-1", "https://img/1.jpg", "key-1", ocr_text="Reserva", scan_id="s1"
        )
        assert created
        assert item.status == JobStatus.PENDING
        assert item.retry_count == 0
        assert item.ocr_text == "Reserva"
        assert item.scan_id == "s1"

    def test_enqueue_in_flight_returns_existing(self, session: Session) -> None:
        """Test a duplicate key while in flight returns the same row."""
        repo = QueueRepository(session)
        first, _ = repo.enqueue("user-1", "https://img/1.jpg", "key-1")
        second, created = repo.enqueue("user-1", "https://img/1.jpg", "key-1")
        assert not created
        assert second.id == first.id

    def test_enqueue_same_key_other_user(self, session: Session) -> None:
        """Test keys are scoped per user."""
        repo = QueueRepository(session)
        first, _ = repo.enqueue("user-1", "https://img/1.jpg", "key-1")
        second, created = repo.enqueue("user-2", "https://img/1.jpg", "key-1")
        assert created
        assert second.id != first.id

    def test_enqueue_after_completion_creates_new(self, session: Session) -> None:
        """Test a key can be queued again once the earlier row is terminal."""
        repo = QueueRepository(session)
        first, _ = repo.enqueue("user-1", "https://img/1.jpg", "key-1")
        repo.apply_outcome(
            first.id, RetryPolicy().apply(3, TransientProviderError("gone"))
        )
        second, created = repo.enqueue("user-1", "https://img/1.jpg", "key-1")
        assert created
        assert second.id != first.id

    def test_apply_outcome_missing_row(self, session: Session) -> None:
        """Test recording a failure on a vanished row raises."""
        outcome = RetryPolicy().apply(0, TransientProviderError("x"))
        with pytest.raises(ResourceVanishedError):
            QueueRepository(session).apply_outcome(uuid4(), outcome)

    def test_apply_outcome_retry_clears_claim(self, session: Session) -> None:
        """Test a retry returns the row to pending and clears claimed_at."""
        _enqueue(session, 1)
        item = JobClaimer(session).claim(JobType.WINE_SCAN)[0]
        assert item.claimed_at is not None

        repo = QueueRepository(session)
        repo.apply_outcome(item.id, RetryPolicy().apply(0, TransientProviderError("x")))
        session.commit()

        reloaded = repo.get_by_id(item.id)
        assert reloaded.status == JobStatus.PENDING
        assert reloaded.retry_count == 1
        assert reloaded.claimed_at is None
        assert reloaded.error_message == "TransientProviderError: x"

    def test_count_by_status(self, session: Session) -> None:
        """Test every status is reported, including zeros."""
        _enqueue(session, 3)
        counts = QueueRepository(session).count_by_status()
        assert counts == {"pending": 3, "processing": 0, "completed": 0, "failed": 0}


class TestJobRepositories:
    """Tests for enrichment and embedding job rows."""

    def test_enrichment_in_flight_dedup(self, session: Session) -> None:
        """Test one in-flight enrichment job per key."""
        repo = EnrichmentJobRepository(session)
        job = EnrichmentJob(
            vintage_id=uuid4(),
            wine_id=uuid4(),
            user_id="user-1",
            producer_name="Casa",
            wine_name="Tinto",
            idempotency_key="user1|casa|tinto|nv|enrichment",
        )
        first, created = repo.enqueue(job)
        assert created
        second, created = repo.enqueue(job.model_copy(update={"id": uuid4()}))
        assert not created
        assert second.id == first.id

    def test_embedding_counts_by_type(self, session: Session) -> None:
        """Test embedding counts are split by job type."""
        repo = EmbeddingJobRepository(session)
        wine_id = uuid4()
        repo.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.IDENTITY,
                wine_id=wine_id,
                input_text="Casa | Tinto |  | ",
                idempotency_key=f"identity|{wine_id}|v1",
            )
        )
        repo.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.VISUAL,
                wine_id=wine_id,
                input_image_url="https://img/1.jpg",
                idempotency_key=f"visual|wine_{wine_id}",
            )
        )
        session.commit()

        stats = queue_stats(session)
        assert stats["identity_embedding"]["pending"] == 1
        assert stats["visual_embedding"]["pending"] == 1
        assert stats["wine_scan"]["pending"] == 0
        assert set(stats) == {
            "wine_scan",
            "enrichment",
            "identity_embedding",
            "visual_embedding",
        }


class TestJobClaimer:
    """Tests for atomic claiming."""

    def test_claim_marks_processing(self, session: Session) -> None:
        """Test claimed rows are processing with a claim time."""
        _enqueue(session, 2)
        claimed = JobClaimer(session).claim(JobType.WINE_SCAN, 5)

        assert len(claimed) == 2
        for item in claimed:
            assert item.status == JobStatus.PROCESSING
            assert item.claimed_at is not None

    def test_claim_oldest_first(self, session: Session) -> None:
        """Test jobs are claimed in creation order."""
        ids = _enqueue(session, 3)
        claimed = JobClaimer(session).claim(JobType.WINE_SCAN, 2)
        assert [str(item.id) for item in claimed] == ids[:2]

    def test_claim_empty_queue(self, session: Session) -> None:
        """Test claiming from an empty queue returns nothing."""
        assert JobClaimer(session).claim(JobType.WINE_SCAN) == []

    def test_sequential_claims_are_disjoint(self, session_factory) -> None:
        """Test two workers never receive the same job."""
        setup = session_factory()
        ids = _enqueue(setup, 6)
        setup.close()

        worker_a = session_factory()
        worker_b = session_factory()
        try:
            claimed_a = {str(i.id) for i in JobClaimer(worker_a).claim(JobType.WINE_SCAN, 4)}
            claimed_b = {str(i.id) for i in JobClaimer(worker_b).claim(JobType.WINE_SCAN, 4)}
        finally:
            worker_a.close()
            worker_b.close()

        assert len(claimed_a) == 4
        assert len(claimed_b) == 2
        assert claimed_a.isdisjoint(claimed_b)
        assert claimed_a | claimed_b == set(ids)

    def test_concurrent_claims_are_disjoint(self, temp_db_path) -> None:
        """Test workers claiming at the same time never share a job."""
        engine = create_engine(
            f"sqlite:///{temp_db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(engine)
        factory = sessionmaker(bind=engine)
        setup = factory()
        ids = _enqueue(setup, 40)
        setup.close()

        workers = 8
        barrier = threading.Barrier(workers)
        results: list[set[str]] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def worker() -> None:
            session = factory()
            try:
                barrier.wait()
                claimed = {str(i.id) for i in JobClaimer(session).claim(JobType.WINE_SCAN, 5)}
                with lock:
                    results.append(claimed)
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        engine.dispose()

        assert errors == []
        assert len(results) == workers
        claimed = [job_id for batch in results for job_id in batch]
        assert len(claimed) == len(set(claimed))
        assert set(claimed) <= set(ids)
        assert len(claimed) == 40

    def test_stale_session_cannot_reclaim(self, session_factory) -> None:
        """Test a session holding old pending copies does not claim them again."""
        setup = session_factory()
        ids = _enqueue(setup, 2)
        setup.close()

        worker_a = session_factory()
        worker_b = session_factory()
        try:
            # Worker B has the rows in its identity map as pending
            for job_id in ids:
                assert worker_b.get(QueueItemDB, job_id).status == "pending"

            assert len(JobClaimer(worker_a).claim(JobType.WINE_SCAN, 5)) == 2
            assert JobClaimer(worker_b).claim(JobType.WINE_SCAN, 5) == []
        finally:
            worker_a.close()
            worker_b.close()

    def test_clamp_limit(self, session: Session) -> None:
        """Test requested sizes are clamped to [1, max_claim]."""
        claimer = JobClaimer(session, QueueConfig(wine_max_claim=20, wine_batch_size=5))
        assert claimer.clamp_limit(JobType.WINE_SCAN, 100) == 20
        assert claimer.clamp_limit(JobType.WINE_SCAN, 0) == 1
        assert claimer.clamp_limit(JobType.WINE_SCAN, None) == 5

    def test_claim_respects_max(self, session: Session) -> None:
        """Test a claim never exceeds the configured maximum."""
        _enqueue(session, 4)
        claimer = JobClaimer(session, QueueConfig(wine_max_claim=3))
        assert len(claimer.claim(JobType.WINE_SCAN, 10)) == 3

    def test_enrichment_claimed_by_priority(self, session: Session) -> None:
        """Test higher-priority enrichment jobs are claimed first."""
        repo = EnrichmentJobRepository(session)
        for priority, name in [(0, "bulk"), (10, "urgent")]:
            repo.enqueue(
                EnrichmentJob(
                    vintage_id=uuid4(),
                    wine_id=uuid4(),
                    user_id="user-1",
                    producer_name="Casa",
                    wine_name=name,
                    priority=priority,
                    idempotency_key=f"user1|casa|{name}|nv|enrichment",
                )
            )
        session.commit()

        claimed = JobClaimer(session).claim(JobType.ENRICHMENT, 1)
        assert claimed[0].wine_name == "urgent"

    def test_embedding_claims_filter_by_type(self, session: Session) -> None:
        """Test identity and visual jobs are claimed separately."""
        repo = EmbeddingJobRepository(session)
        wine_id = uuid4()
        repo.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.VISUAL,
                wine_id=wine_id,
                input_image_url="https://img/1.jpg",
                idempotency_key="visual|scan_1",
            )
        )
        session.commit()

        claimer = JobClaimer(session)
        assert claimer.claim(JobType.IDENTITY_EMBEDDING) == []
        visual = claimer.claim(JobType.VISUAL_EMBEDDING)
        assert len(visual) == 1
        assert visual[0].job_type == EmbeddingJobType.VISUAL


class TestReclaimStale:
    """Tests for returning abandoned claims to the queue."""

    def _age_claims(self, session: Session, minutes: int) -> None:
        session.execute(
            update(QueueItemDB)
            .where(QueueItemDB.status == "processing")
            .values(claimed_at=datetime.now(UTC) - timedelta(minutes=minutes))
        )
        session.commit()

    def test_disabled_by_default(self, session: Session) -> None:
        """Test reclaim does nothing without a configured age."""
        _enqueue(session, 1)
        JobClaimer(session).claim(JobType.WINE_SCAN)
        self._age_claims(session, 120)
        assert JobClaimer(session).reclaim_stale(JobType.WINE_SCAN) == 0

    def test_reclaims_old_claims_without_retry(self, session: Session) -> None:
        """Test stale rows go back to pending with retry_count unchanged."""
        ids = _enqueue(session, 2)
        claimer = JobClaimer(session, QueueConfig(stale_claim_minutes=30))
        claimer.claim(JobType.WINE_SCAN)
        self._age_claims(session, 45)

        assert claimer.reclaim_stale(JobType.WINE_SCAN) == 2
        for job_id in ids:
            item = QueueRepository(session).get_by_id(job_id)
            assert item.status == JobStatus.PENDING
            assert item.retry_count == 0
            assert item.claimed_at is None

    def test_recent_claims_untouched(self, session: Session) -> None:
        """Test claims younger than the cutoff stay processing."""
        _enqueue(session, 1)
        claimer = JobClaimer(session)
        claimer.claim(JobType.WINE_SCAN)
        assert claimer.reclaim_stale(JobType.WINE_SCAN, timedelta(minutes=30)) == 0
