"""
Pipeline Configuration
======================

Loads pipeline settings (queue limits, matching thresholds, provider and
vector index choices) from a YAML file. Secrets are never stored here; they
come from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vinho_pipeline.core.enums import JobType, VectorBackend


@dataclass
class QueueConfig:
    """Claim sizes and retry limits for the polled queues."""

    max_retries: int = 3
    wine_batch_size: int = 5
    wine_max_claim: int = 20
    embedding_batch_size: int = 10
    embedding_max_claim: int = 50
    enrichment_batch_size: int = 5
    enrichment_max_claim: int = 10
    poll_interval_seconds: int = 30
    stale_claim_minutes: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> QueueConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        stale = data.get("stale_claim_minutes")
        return cls(
            max_retries=int(data.get("max_retries", 3)),
            wine_batch_size=int(data.get("wine_batch_size", 5)),
            wine_max_claim=int(data.get("wine_max_claim", 20)),
            embedding_batch_size=int(data.get("embedding_batch_size", 10)),
            embedding_max_claim=int(data.get("embedding_max_claim", 50)),
            enrichment_batch_size=int(data.get("enrichment_batch_size", 5)),
            enrichment_max_claim=int(data.get("enrichment_max_claim", 10)),
            poll_interval_seconds=int(data.get("poll_interval_seconds", 30)),
            stale_claim_minutes=int(stale) if stale is not None else None,
        )

    def batch_size(self, job_type: JobType) -> int:
        """Default claim size for a queue."""
        if job_type == JobType.WINE_SCAN:
            return self.wine_batch_size
        if job_type == JobType.ENRICHMENT:
            return self.enrichment_batch_size
        return self.embedding_batch_size

    def max_claim(self, job_type: JobType) -> int:
        """Upper bound on a single claim for a queue."""
        if job_type == JobType.WINE_SCAN:
            return self.wine_max_claim
        if job_type == JobType.ENRICHMENT:
            return self.enrichment_max_claim
        return self.embedding_max_claim


@dataclass
class MatchingConfig:
    """Similarity thresholds for identity and visual matching."""

    identity_auto_merge: float = 0.90
    min_completeness: float = 0.5
    visual_duplicate: float = 0.92
    recommendation_min: float = 0.60
    top_k: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MatchingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            identity_auto_merge=float(data.get("identity_auto_merge", 0.90)),
            min_completeness=float(data.get("min_completeness", 0.5)),
            visual_duplicate=float(data.get("visual_duplicate", 0.92)),
            recommendation_min=float(data.get("recommendation_min", 0.60)),
            top_k=int(data.get("top_k", 10)),
        )


@dataclass
class AIConfig:
    """Extraction and enrichment provider settings."""

    provider: str = "openai"
    model: str | None = None
    escalation_model: str | None = None
    escalation_confidence: float = 0.6
    enrichment_model: str | None = None
    temperature: float = 0.1
    max_tokens: int = 1024
    complete_missing: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AIConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            provider=data.get("provider", "openai"),
            model=data.get("model"),
            escalation_model=data.get("escalation_model"),
            escalation_confidence=float(data.get("escalation_confidence", 0.6)),
            enrichment_model=data.get("enrichment_model"),
            temperature=float(data.get("temperature", 0.1)),
            max_tokens=int(data.get("max_tokens", 1024)),
            complete_missing=bool(data.get("complete_missing", True)),
        )


@dataclass
class EmbeddingsConfig:
    """Text and image embedding provider settings."""

    text_provider: str = "sentence-transformers"
    text_model: str = "thenlper/gte-small"
    text_dimensions: int = 384
    version: int = 1
    image_model: str = "jina-clip-v1"
    image_dimensions: int = 768
    jina_api_url: str = "https://api.jina.ai/v1/embeddings"
    request_timeout: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EmbeddingsConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            text_provider=data.get("text_provider", "sentence-transformers"),
            text_model=data.get("text_model", "thenlper/gte-small"),
            text_dimensions=int(data.get("text_dimensions", 384)),
            version=int(data.get("version", 1)),
            image_model=data.get("image_model", "jina-clip-v1"),
            image_dimensions=int(data.get("image_dimensions", 768)),
            jina_api_url=data.get("jina_api_url", "https://api.jina.ai/v1/embeddings"),
            request_timeout=int(data.get("request_timeout", 30)),
        )


@dataclass
class VectorIndexConfig:
    """Where identity and label vectors are stored."""

    backend: VectorBackend = VectorBackend.DATABASE
    qdrant_url: str = "http://localhost:6333"
    identity_collection: str = "wine_identity"
    visual_collection: str = "wine_labels"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> VectorIndexConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        collections = data.get("collections", {}) or {}
        return cls(
            backend=VectorBackend(data.get("backend", "database")),
            qdrant_url=data.get("qdrant_url", "http://localhost:6333"),
            identity_collection=collections.get("identity", "wine_identity"),
            visual_collection=collections.get("visual", "wine_labels"),
        )


@dataclass
class PipelineConfig:
    """Top-level pipeline configuration."""

    queue: QueueConfig = field(default_factory=QueueConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    embeddings: EmbeddingsConfig = field(default_factory=EmbeddingsConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)
    source_path: Path | None = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from dictionary."""
        data = data or {}
        return cls(
            queue=QueueConfig.from_dict(data.get("queue")),
            matching=MatchingConfig.from_dict(data.get("matching")),
            ai=AIConfig.from_dict(data.get("ai")),
            embeddings=EmbeddingsConfig.from_dict(data.get("embeddings")),
            vector_index=VectorIndexConfig.from_dict(data.get("vector_index")),
        )

    @classmethod
    def load(cls, config_path: Path | str) -> PipelineConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the pipeline.yaml file

        Returns:
            Parsed PipelineConfig

        Raises:
            FileNotFoundError: If the file does not exist
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        config = cls.from_dict(data)
        config.source_path = config_path
        return config


# Global config instance
_default_config: PipelineConfig | None = None


def get_default_config() -> PipelineConfig:
    """
    Get the process-wide pipeline configuration.

    Loads from the path in the VINHO_CONFIG_PATH environment variable, or
    falls back to config/pipeline.yaml at the project root. Built-in defaults
    are used when neither exists.
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("VINHO_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).resolve().parents[2]
            path = project_root / "config" / "pipeline.yaml"

        if path.exists():
            _default_config = PipelineConfig.load(path)
        else:
            _default_config = PipelineConfig()

    return _default_config


def reset_default_config() -> None:
    """Reset the default config (useful for testing)."""
    global _default_config
    _default_config = None
