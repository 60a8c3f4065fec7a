"""
Entity Resolver Module
======================

Resolves an extracted label to catalog entities (Region, Producer, Wine,
Vintage), reusing existing rows where the names match and consulting the
identity vector index before creating a new wine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.orm import Session

from vinho_pipeline.core.config import MatchingConfig, PipelineConfig
from vinho_pipeline.core.enums import IdentityDecision
from vinho_pipeline.core.errors import VectorIndexUnavailableError
from vinho_pipeline.core.schema import ExtractedLabel, Producer, Wine
from vinho_pipeline.db.repositories_catalog import (
    ProducerRepository,
    RegionRepository,
    VarietalRepository,
    VintageRepository,
    WineRepository,
)
from vinho_pipeline.ingestion.normalizer import (
    LabelNormalizer,
    NormalizedLabel,
    names_overlap,
)
from vinho_pipeline.services.embeddings.identity import (
    build_identity_text,
    completeness_score,
)
from vinho_pipeline.services.embeddings.text import TextEmbedder
from vinho_pipeline.vectors.matcher import IdentityMatch, VectorMatcher

logger = logging.getLogger(__name__)


@dataclass
class ResolutionResult:
    """Result of resolving one label to catalog entities."""

    producer_id: UUID
    wine_id: UUID
    vintage_id: UUID
    region_id: UUID | None = None

    producer_name: str = ""
    wine_name: str = ""
    region: str | None = None
    country: str | None = None
    varietals: list[str] = field(default_factory=list)

    producer_created: bool = False
    wine_created: bool = False
    vintage_created: bool = False

    identity_match: IdentityMatch | None = None
    varietals_added: list[str] = field(default_factory=list)
    producer_details_filled: list[str] = field(default_factory=list)

    # Identity text for the resolved wine, as the catalog now knows it
    identity_text: str = ""

    notes: list[str] = field(default_factory=list)

    @property
    def identity_decision(self) -> IdentityDecision | None:
        return self.identity_match.decision if self.identity_match else None


class EntityResolver:
    """
    Resolves extracted labels to canonical catalog entities.

    Producers and wines are first matched by name containment (case, accent
    and punctuation insensitive). A wine with no textual match is checked
    against the identity index; it is merged onto an existing wine only
    when the similarity and both completeness scores clear the configured
    thresholds. Everything else is created with race-safe upserts.
    """

    def __init__(
        self,
        session: Session,
        matcher: VectorMatcher | None = None,
        text_embedder: TextEmbedder | None = None,
        config: MatchingConfig | None = None,
        normalizer: LabelNormalizer | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            session: SQLAlchemy database session
            matcher: Vector matcher; None disables identity matching
            text_embedder: Embedder for candidate identity texts
            config: Matching thresholds
            normalizer: Label normalizer
        """
        self.session = session
        self.matcher = matcher
        self.text_embedder = text_embedder
        self.config = config or (matcher.config if matcher else MatchingConfig())
        self.normalizer = normalizer or LabelNormalizer()

        self.regions = RegionRepository(session)
        self.producers = ProducerRepository(session)
        self.wines = WineRepository(session)
        self.vintages = VintageRepository(session)
        self.varietals = VarietalRepository(session)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: PipelineConfig,
        matcher: VectorMatcher | None = None,
        text_embedder: TextEmbedder | None = None,
    ) -> EntityResolver:
        """Create resolver from configuration."""
        return cls(
            session=session,
            matcher=matcher,
            text_embedder=text_embedder,
            config=config.matching,
        )

    @property
    def identity_matching_enabled(self) -> bool:
        return (
            self.matcher is not None
            and self.text_embedder is not None
            and self.matcher.identity_available
        )

    def resolve(self, label: ExtractedLabel) -> ResolutionResult:
        """
        Resolve an extracted label to producer, wine and vintage rows.

        The session is flushed but not committed.

        Args:
            label: Fields read off the label

        Returns:
            ResolutionResult with ids, created flags and notes

        Raises:
            TransientProviderError: If embedding the candidate identity fails
        """
        normalized = self.normalizer.normalize_label(label)
        notes: list[str] = []

        region_id = None
        if normalized.region and normalized.country:
            region, region_created = self.regions.get_or_create(
                normalized.region, normalized.country
            )
            region_id = region.id
            if region_created:
                notes.append(f"Created region {region.name}, {region.country}")

        producer = self._match_producer(normalized.producer_name)
        wine = None
        if producer is not None:
            notes.append(f"Matched producer '{producer.name}' by name")
            wine = self._match_wine(producer.id, normalized.wine_name)
            if wine is not None:
                notes.append(f"Matched wine '{wine.name}' by name")

        identity_match = None
        if wine is None and self.identity_matching_enabled:
            identity_match, wine = self._match_identity(normalized)
            notes.extend(identity_match.notes)
            if wine is not None:
                producer = self.producers.get_by_id(wine.producer_id)

        producer_created = False
        if producer is None:
            producer, producer_created = self.producers.get_or_create(
                normalized.producer_name, region_id=region_id
            )
            if producer_created:
                notes.append(f"Created producer '{producer.name}'")

        details = label.producer_details()
        if region_id is not None:
            details["region_id"] = region_id
        details_filled = self.producers.fill_missing_details(producer.id, details)
        if details_filled:
            notes.append(f"Filled producer {', '.join(details_filled)}")

        wine_created = False
        if wine is None:
            wine, wine_created = self.wines.get_or_create(
                producer.id,
                normalized.wine_name,
                is_non_vintage=normalized.is_non_vintage,
            )
            if wine_created:
                notes.append(f"Created wine '{wine.name}'")

        vintage, vintage_created = self.vintages.get_or_create(
            wine.id, normalized.year, normalized.abv
        )
        if vintage_created:
            notes.append(f"Created vintage {normalized.year or 'NV'}")

        added = self.varietals.attach_names(vintage.id, normalized.varietals)
        self.session.flush()

        identity_text = build_identity_text(
            producer.name,
            wine.name,
            normalized.region,
            normalized.country,
            self.varietals.names_for_wine(wine.id),
        )

        result = ResolutionResult(
            producer_id=producer.id,
            wine_id=wine.id,
            vintage_id=vintage.id,
            region_id=region_id,
            producer_name=producer.name,
            wine_name=wine.name,
            region=normalized.region,
            country=normalized.country,
            varietals=normalized.varietals,
            producer_created=producer_created,
            wine_created=wine_created,
            vintage_created=vintage_created,
            identity_match=identity_match,
            varietals_added=added,
            producer_details_filled=details_filled,
            identity_text=identity_text,
            notes=notes,
        )
        logger.info(
            f"Resolved '{normalized.producer_name} / {normalized.wine_name}' "
            f"to wine {wine.id} (vintage {vintage.id})"
        )
        return result

    def _match_producer(self, name: str) -> Producer | None:
        """First producer, by creation order, whose name contains or is contained in ``name``."""
        for producer in self.producers.list_all():
            if names_overlap(name, producer.name):
                return producer
        return None

    def _match_wine(self, producer_id: UUID, name: str) -> Wine | None:
        for wine in self.wines.list_by_producer(producer_id):
            if names_overlap(name, wine.name):
                return wine
        return None

    def _match_identity(self, label: NormalizedLabel) -> tuple[IdentityMatch, Wine | None]:
        """
        Look the label's identity text up in the identity index.

        Returns:
            Tuple of (match, wine to merge onto or None)
        """
        text = build_identity_text(
            label.producer_name, label.wine_name, label.region, label.country, label.varietals
        )
        vector = self.text_embedder.embed(text)
        try:
            match = self.matcher.match_identity(vector, completeness_score(text))
        except VectorIndexUnavailableError as e:
            logger.warning(f"Identity index unavailable, falling back to name matching: {e}")
            match = IdentityMatch(
                IdentityDecision.DISTINCT, notes=[f"Identity index unavailable: {e}"]
            )
            return match, None

        if not match.should_merge:
            return match, None

        wine = self.wines.get_by_id(match.wine_id)
        if wine is None:
            # Index entry outlived its wine
            match.decision = IdentityDecision.DISTINCT
            match.notes.append(f"Candidate wine {match.wine_id} no longer exists")
            return match, None

        logger.info(f"Identity auto-merge onto wine {wine.id} at {match.similarity:.3f}")
        return match, wine

