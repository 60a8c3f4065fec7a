"""Builds workers and their providers from a PipelineConfig."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho_pipeline.core.config import EmbeddingsConfig, PipelineConfig
from vinho_pipeline.enrichment.worker import EnrichmentWorker
from vinho_pipeline.ingestion.processor import WineQueueProcessor
from vinho_pipeline.ingestion.resolver import EntityResolver
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.queue.retry import RetryPolicy
from vinho_pipeline.services.ai.client import ai_client_from_config
from vinho_pipeline.services.ai.extraction import LabelExtractor
from vinho_pipeline.services.embeddings.generator import EmbeddingGenerator
from vinho_pipeline.services.embeddings.image import image_embedder_from_config
from vinho_pipeline.services.embeddings.text import TextEmbedder, text_embedder_from_config
from vinho_pipeline.services.embeddings.worker import EmbeddingWorker
from vinho_pipeline.vectors.index import build_vector_indexes
from vinho_pipeline.vectors.matcher import VectorMatcher

logger = logging.getLogger(__name__)

# Loading a local model is slow; keep one per (provider, model, dimensions).
_text_embedders: dict[tuple[str, str, int], TextEmbedder] = {}


def get_text_embedder(config: EmbeddingsConfig) -> TextEmbedder:
    """Return a cached text embedder for the configuration."""
    key = (config.text_provider, config.text_model, config.text_dimensions)
    if key not in _text_embedders:
        _text_embedders[key] = text_embedder_from_config(config)
    return _text_embedders[key]


def reset_text_embedders() -> None:
    """Drop cached text embedders (for testing)."""
    _text_embedders.clear()


def build_matcher(session: Session, config: PipelineConfig) -> VectorMatcher:
    """Vector matcher over the configured identity and visual indexes."""
    identity_index, visual_index = build_vector_indexes(
        config.vector_index,
        session,
        identity_dimensions=config.embeddings.text_dimensions,
        visual_dimensions=config.embeddings.image_dimensions,
    )
    return VectorMatcher(identity_index, visual_index, config.matching)


def _claimer_and_policy(session: Session, config: PipelineConfig) -> tuple[JobClaimer, RetryPolicy]:
    return JobClaimer(session, config.queue), RetryPolicy(config.queue.max_retries)


def build_wine_processor(session: Session, config: PipelineConfig) -> WineQueueProcessor:
    """
    Wine-scan processor with the configured extractor and resolver.

    Raises:
        ValueError: If the AI provider's API key is not set
    """
    client = ai_client_from_config(config.ai)
    extractor = LabelExtractor.from_config(client, config.ai)
    matcher = build_matcher(session, config)

    text_embedder = None
    if matcher.identity_available:
        text_embedder = get_text_embedder(config.embeddings)
    resolver = EntityResolver.from_config(
        session, config, matcher=matcher, text_embedder=text_embedder
    )

    claimer, policy = _claimer_and_policy(session, config)
    return WineQueueProcessor(
        session,
        extractor,
        resolver,
        claimer=claimer,
        retry_policy=policy,
        embedding_version=config.embeddings.version,
    )


def build_embedding_worker(session: Session, config: PipelineConfig) -> EmbeddingWorker:
    """Embedding worker; visual jobs are skipped when JINA_API_KEY is unset."""
    generator = EmbeddingGenerator(
        session,
        text_embedder=get_text_embedder(config.embeddings),
        matcher=build_matcher(session, config),
        image_embedder=image_embedder_from_config(config.embeddings),
        version=config.embeddings.version,
    )
    claimer, policy = _claimer_and_policy(session, config)
    return EmbeddingWorker(session, generator, claimer=claimer, retry_policy=policy)


def build_enrichment_worker(session: Session, config: PipelineConfig) -> EnrichmentWorker:
    """Enrichment worker using the configured AI provider."""
    claimer, policy = _claimer_and_policy(session, config)
    return EnrichmentWorker(
        session,
        ai_client_from_config(config.ai),
        claimer=claimer,
        retry_policy=policy,
        embedding_version=config.embeddings.version,
    )
