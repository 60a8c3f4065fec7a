"""Tests for the queue CLI commands."""

import tempfile
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from vinho_pipeline import __version__
from vinho_pipeline.cli.main import app
from vinho_pipeline.core.config import PipelineConfig
from vinho_pipeline.db.models import Base, QueueItemDB
from vinho_pipeline.ingestion.processor import enqueue_scan

runner = CliRunner()


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def test_engine(temp_db_path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine, monkeypatch):
    """Point every CLI database session at the test engine."""
    TestSessionLocal = sessionmaker(bind=test_engine)

    @contextmanager
    def mock_get_session():
        session = TestSessionLocal()
        try:
            yield session
        finally:
            session.close()

    config = PipelineConfig()
    monkeypatch.setattr("vinho_pipeline.cli.queue.get_session", mock_get_session)
    monkeypatch.setattr("vinho_pipeline.ingestion.jobs.get_session", mock_get_session)
    monkeypatch.setattr("vinho_pipeline.cli.queue.get_default_config", lambda: config)
    monkeypatch.setattr("vinho_pipeline.ingestion.jobs.get_default_config", lambda: config)
    return TestSessionLocal


class TestEnqueueCommand:
    """Tests for `queue enqueue`."""

    def test_enqueue(self, session_factory) -> None:
        """Test a scan is queued."""
        result = runner.invoke(
            app, ["queue", "enqueue", "-u", "user1", "-i", "https://img/1.jpg"]
        )
        assert result.exit_code == 0
        assert "Queued scan" in result.output

    def test_enqueue_twice(self, session_factory) -> None:
        """Test the second submission reports the row in flight."""
        args = ["queue", "enqueue", "-u", "user1", "-i", "https://img/1.jpg"]
        runner.invoke(app, args)
        result = runner.invoke(app, args)
        assert result.exit_code == 0
        assert "Already in flight" in result.output

    def test_enqueue_blank_user(self, session_factory) -> None:
        """Test a blank user exits with an error."""
        result = runner.invoke(app, ["queue", "enqueue", "-u", " ", "-i", "https://img/1.jpg"])
        assert result.exit_code == 1
        assert "user_id is required" in result.output


class TestStatusCommand:
    """Tests for `queue status`."""

    def test_status(self, session_factory) -> None:
        """Test a queued scan's status is shown."""
        session = session_factory()
        item, _ = enqueue_scan(session, "user1", "https://img/1.jpg")
        session.close()

        result = runner.invoke(app, ["queue", "status", str(item.id)])

        assert result.exit_code == 0
        assert "Status: pending" in result.output
        assert "Retries: 0" in result.output

    def test_status_not_found(self, session_factory) -> None:
        """Test an unknown scan exits with an error."""
        result = runner.invoke(app, ["queue", "status", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestStatsCommand:
    """Tests for `queue stats`."""

    def test_stats(self, session_factory) -> None:
        """Test every queue is listed."""
        result = runner.invoke(app, ["queue", "stats"])
        assert result.exit_code == 0
        assert "wine_scan" in result.output
        assert "enrichment" in result.output


class TestReclaimCommand:
    """Tests for `queue reclaim`."""

    def test_disabled_by_default(self, session_factory) -> None:
        """Test reclaim does nothing without a configured or given age."""
        result = runner.invoke(app, ["queue", "reclaim"])
        assert result.exit_code == 0
        assert "disabled" in result.output

    def test_reclaim_minutes(self, session_factory) -> None:
        """Test an explicit age reclaims old claims."""
        session = session_factory()
        item, _ = enqueue_scan(session, "user1", "https://img/1.jpg")
        session.execute(
            update(QueueItemDB)
            .where(QueueItemDB.id == str(item.id))
            .values(status="processing", claimed_at=datetime.now(UTC) - timedelta(hours=1))
        )
        session.commit()
        session.close()

        result = runner.invoke(app, ["queue", "reclaim", "--minutes", "30"])

        assert result.exit_code == 0
        assert "wine_scan: 1" in result.output


class TestProcessCommand:
    """Tests for `queue process`."""

    def test_missing_api_key(self, session_factory, monkeypatch) -> None:
        """Test a missing provider key exits cleanly."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        result = runner.invoke(app, ["queue", "process"])
        assert result.exit_code == 1
        assert "OPENAI_API_KEY" in result.output


class TestVersionCommand:
    """Tests for `version`."""

    def test_version(self) -> None:
        """Test the version is printed."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"v{__version__}" in result.output
