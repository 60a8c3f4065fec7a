"""Tests for pipeline configuration loading."""

import tempfile
from pathlib import Path

import pytest

from vinho_pipeline.core.config import (
    AIConfig,
    MatchingConfig,
    PipelineConfig,
    QueueConfig,
    VectorIndexConfig,
    get_default_config,
    reset_default_config,
)
from vinho_pipeline.core.enums import JobType, VectorBackend


@pytest.fixture
def config_file():
    """Write a small pipeline.yaml to a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "pipeline.yaml"
        path.write_text(
            "queue:\n"
            "  max_retries: 5\n"
            "  wine_batch_size: 2\n"
            "  stale_claim_minutes: 15\n"
            "ai:\n"
            "  complete_missing: false\n"
            "matching:\n"
            "  identity_auto_merge: 0.95\n"
            "vector_index:\n"
            "  backend: disabled\n"
            "  collections:\n"
            "    visual: labels_test\n"
        )
        yield path


@pytest.fixture(autouse=True)
def clean_default_config():
    """Reset the cached default config around each test."""
    reset_default_config()
    yield
    reset_default_config()


class TestDefaults:
    """Tests for built-in defaults."""

    def test_matching_thresholds(self) -> None:
        """Test default similarity thresholds."""
        config = MatchingConfig()
        assert config.identity_auto_merge == 0.90
        assert config.min_completeness == 0.5
        assert config.visual_duplicate == 0.92
        assert config.recommendation_min == 0.60

    def test_queue_defaults(self) -> None:
        """Test default retry cap and claim sizes."""
        config = QueueConfig()
        assert config.max_retries == 3
        assert config.stale_claim_minutes is None
        assert config.batch_size(JobType.WINE_SCAN) == 5
        assert config.max_claim(JobType.WINE_SCAN) == 20
        assert config.batch_size(JobType.VISUAL_EMBEDDING) == 10
        assert config.max_claim(JobType.ENRICHMENT) == 10

    def test_from_dict_none(self) -> None:
        """Test that a missing YAML document gives defaults."""
        config = PipelineConfig.from_dict(None)
        assert config == PipelineConfig()

    def test_vector_index_default_backend(self) -> None:
        """Test the database backend is the default."""
        assert VectorIndexConfig().backend == VectorBackend.DATABASE

    def test_label_completion_enabled(self) -> None:
        """Test incomplete labels are completed by default."""
        assert AIConfig().complete_missing is True


class TestLoad:
    """Tests for loading YAML files."""

    def test_load_overrides(self, config_file: Path) -> None:
        """Test values in the file override defaults and others are kept."""
        config = PipelineConfig.load(config_file)

        assert config.queue.max_retries == 5
        assert config.queue.wine_batch_size == 2
        assert config.queue.wine_max_claim == 20
        assert config.queue.stale_claim_minutes == 15
        assert config.matching.identity_auto_merge == 0.95
        assert config.matching.visual_duplicate == 0.92
        assert config.vector_index.backend == VectorBackend.DISABLED
        assert config.vector_index.visual_collection == "labels_test"
        assert config.vector_index.identity_collection == "wine_identity"
        assert config.ai.complete_missing is False
        assert config.source_path == config_file.resolve()

    def test_load_missing_file(self) -> None:
        """Test loading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            PipelineConfig.load("/nonexistent/pipeline.yaml")

    def test_unknown_backend_rejected(self) -> None:
        """Test an unknown vector backend is rejected."""
        with pytest.raises(ValueError):
            VectorIndexConfig.from_dict({"backend": "faiss"})


class TestDefaultConfig:
    """Tests for the process-wide config."""

    def test_env_path(self, config_file: Path, monkeypatch) -> None:
        """Test VINHO_CONFIG_PATH selects the file."""
        monkeypatch.setenv("VINHO_CONFIG_PATH", str(config_file))
        config = get_default_config()
        assert config.queue.max_retries == 5

    def test_cached(self, config_file: Path, monkeypatch) -> None:
        """Test the config is loaded once and reused."""
        monkeypatch.setenv("VINHO_CONFIG_PATH", str(config_file))
        assert get_default_config() is get_default_config()

    def test_missing_env_path_gives_defaults(self, monkeypatch) -> None:
        """Test a missing configured file falls back to defaults."""
        monkeypatch.setenv("VINHO_CONFIG_PATH", "/nonexistent/pipeline.yaml")
        assert get_default_config() == PipelineConfig()
