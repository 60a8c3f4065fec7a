"""
Embedding Generator
===================

Computes and stores identity (text) and visual (label image) vectors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from vinho_pipeline.core.schema import IdentityEmbedding, VisualEmbeddingMetadata
from vinho_pipeline.db.repositories_catalog import IdentityEmbeddingRepository
from vinho_pipeline.queue.idempotency import visual_vector_key
from vinho_pipeline.services.embeddings.identity import completeness_score
from vinho_pipeline.services.embeddings.image import ImageEmbedder
from vinho_pipeline.services.embeddings.text import TextEmbedder
from vinho_pipeline.vectors.matcher import VectorMatcher, rounded_similarity

logger = logging.getLogger(__name__)


@dataclass
class VisualEmbeddingResult:
    """What happened to one label image."""

    key: str
    stored: bool = False
    skipped_reason: str | None = None
    total_tokens: int = 0
    duplicate_keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "stored": self.stored,
            "skipped_reason": self.skipped_reason,
            "total_tokens": self.total_tokens,
            "duplicate_keys": self.duplicate_keys,
        }


class EmbeddingGenerator:
    """Generates identity and visual embeddings and writes them to the indexes."""

    def __init__(
        self,
        session: Session,
        text_embedder: TextEmbedder,
        matcher: VectorMatcher,
        image_embedder: ImageEmbedder | None = None,
        version: int = 1,
    ) -> None:
        """
        Initialize the generator.

        Args:
            session: SQLAlchemy database session
            text_embedder: Provider for 384-d identity vectors
            matcher: Matcher wrapping the identity and visual indexes
            image_embedder: Provider for 768-d label vectors (None disables visual)
            version: Embedding version stored with identity vectors
        """
        self.session = session
        self.text_embedder = text_embedder
        self.image_embedder = image_embedder
        self.matcher = matcher
        self.version = version
        self.identity_repo = IdentityEmbeddingRepository(session)

    def generate_identity(self, wine_id: UUID | str, text: str) -> IdentityEmbedding:
        """
        Embed a wine's identity text and store it.

        The row in ``wine_identity_embeddings`` is upserted on
        (wine, model, version); the identity index entry is keyed by wine id.

        Returns:
            The stored IdentityEmbedding
        """
        vector = self.text_embedder.embed(text)
        embedding = IdentityEmbedding(
            wine_id=UUID(str(wine_id)),
            vector=vector,
            source_text=text,
            model=self.text_embedder.model,
            version=self.version,
            completeness_score=completeness_score(text),
        )
        self.identity_repo.upsert(embedding)

        if self.matcher.identity_available:
            self.matcher.identity_index.put(
                str(wine_id),
                vector,
                {
                    "wine_id": str(wine_id),
                    "completeness_score": embedding.completeness_score,
                    "source_text": text,
                },
            )
        else:
            logger.info(f"Identity index unavailable; stored embedding for wine {wine_id} only")

        logger.info(
            f"Identity embedding for wine {wine_id} "
            f"(completeness {embedding.completeness_score:.2f})"
        )
        return embedding

    def generate_visual(
        self,
        wine_id: UUID | str,
        image_url: str,
        vintage_id: UUID | str | None = None,
        scan_id: str | None = None,
        producer_name: str | None = None,
        wine_name: str | None = None,
    ) -> VisualEmbeddingResult:
        """
        Embed a label image, check it for duplicates, and store it.

        The vector is stored under ``scan_<scan_id>`` when a scan id is given,
        otherwise ``wine_<wine_id>``. When the visual index or image provider
        is unavailable the image is skipped and only identity matching applies.

        Returns:
            VisualEmbeddingResult describing what was stored
        """
        key = visual_vector_key(str(wine_id), scan_id)

        if self.image_embedder is None or not self.matcher.visual_available:
            reason = "visual index unavailable" if self.image_embedder else "no image embedder"
            logger.info(f"Skipping visual embedding {key}: {reason}")
            return VisualEmbeddingResult(key=key, skipped_reason=reason)

        embedded = self.image_embedder.embed_image(image_url)
        result = VisualEmbeddingResult(key=key, total_tokens=embedded.total_tokens)

        for hit in self.matcher.find_duplicate_labels(embedded.vector, exclude_key=key):
            result.duplicate_keys.append(hit.key)
            logger.info(
                f"Label {key} duplicates {hit.key} "
                f"(similarity {rounded_similarity(hit):.3f}, wine {hit.metadata.get('wine_id')})"
            )

        metadata = VisualEmbeddingMetadata(
            wine_id=str(wine_id),
            vintage_id=str(vintage_id) if vintage_id else None,
            scan_id=scan_id,
            producer_name=producer_name,
            wine_name=wine_name,
            image_url=image_url,
        )
        self.matcher.visual_index.put(key, embedded.vector, metadata.model_dump(mode="json"))
        result.stored = True
        logger.info(f"Stored visual embedding {key} ({embedded.total_tokens} tokens)")
        return result
