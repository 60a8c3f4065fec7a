"""
Vector Matcher Module
=====================

Threshold logic on top of the vector indexes:

- identity auto-merge: similarity >= 0.90 and both sides at least half
  complete
- visual duplicate detection: similarity >= 0.92
- visual recommendations: similarity >= 0.60, banded strong (>= 80%) or
  good (>= 60%)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from vinho_pipeline.core.config import MatchingConfig
from vinho_pipeline.core.enums import IdentityDecision, MatchBand
from vinho_pipeline.core.schema import SimilarWine
from vinho_pipeline.queue.idempotency import visual_vector_key
from vinho_pipeline.vectors.index import VectorHit, VectorIndex

logger = logging.getLogger(__name__)

# Similarities are compared after rounding so float noise at a threshold
# (0.8999999999) does not flip a decision.
SIMILARITY_PRECISION = 6

STRONG_MATCH_PERCENT = 80
GOOD_MATCH_PERCENT = 60


def rounded_similarity(hit: VectorHit) -> float:
    return round(hit.similarity, SIMILARITY_PRECISION)


def match_band(match_percent: int) -> MatchBand | None:
    """Band for a match percentage, or None below the good threshold."""
    if match_percent >= STRONG_MATCH_PERCENT:
        return MatchBand.STRONG
    if match_percent >= GOOD_MATCH_PERCENT:
        return MatchBand.GOOD
    return None


@dataclass
class IdentityMatch:
    """Outcome of an identity-embedding lookup."""

    decision: IdentityDecision
    wine_id: str | None = None
    similarity: float | None = None
    candidate_completeness: float | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def should_merge(self) -> bool:
        return self.decision == IdentityDecision.AUTO_MERGE


class VectorMatcher:
    """Applies matching thresholds to identity and visual vector indexes."""

    def __init__(
        self,
        identity_index: VectorIndex,
        visual_index: VectorIndex,
        config: MatchingConfig | None = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            identity_index: Index of 384-d wine identity vectors
            visual_index: Index of 768-d label vectors
            config: Matching thresholds
        """
        self.identity_index = identity_index
        self.visual_index = visual_index
        self.config = config or MatchingConfig()

    @property
    def identity_available(self) -> bool:
        return self.identity_index.available

    @property
    def visual_available(self) -> bool:
        return self.visual_index.available

    def match_identity(
        self,
        vector: list[float],
        completeness: float,
        candidate_wine_ids: set[str] | None = None,
    ) -> IdentityMatch:
        """
        Decide whether a new identity vector is an existing wine.

        Args:
            vector: Identity vector of the new wine
            completeness: Completeness score of the new wine's identity text
            candidate_wine_ids: If given, only these wines may be merged onto

        Returns:
            IdentityMatch with AUTO_MERGE and the first hit that passes both
            the similarity and completeness gates, or DISTINCT describing
            the best hit
        """
        hits = self.identity_index.query(vector, top_k=self.config.top_k)
        if candidate_wine_ids is not None:
            hits = [h for h in hits if h.metadata.get("wine_id") in candidate_wine_ids]

        if not hits:
            return IdentityMatch(IdentityDecision.DISTINCT, notes=["No identity candidates"])

        hits = sorted(hits, key=rounded_similarity, reverse=True)
        match = self._identity_match(hits[0])

        if completeness < self.config.min_completeness:
            match.notes.append(
                f"New completeness {completeness:.2f} below {self.config.min_completeness}"
            )
            logger.debug(f"Identity match: {match.decision.value} {match.notes}")
            return match

        for hit in hits:
            candidate = self._identity_match(hit)
            if candidate.similarity < self.config.identity_auto_merge:
                if hit is hits[0]:
                    match.notes.append(
                        f"Best similarity {candidate.similarity:.3f} "
                        f"below {self.config.identity_auto_merge}"
                    )
                break
            if candidate.candidate_completeness < self.config.min_completeness:
                match.notes.append(
                    f"Candidate {candidate.wine_id} completeness "
                    f"{candidate.candidate_completeness:.2f} below {self.config.min_completeness}"
                )
                continue
            candidate.decision = IdentityDecision.AUTO_MERGE
            candidate.notes = match.notes
            candidate.notes.append(f"Auto-merge at similarity {candidate.similarity:.3f}")
            match = candidate
            break

        logger.debug(f"Identity match: {match.decision.value} {match.notes}")
        return match

    @staticmethod
    def _identity_match(hit: VectorHit) -> IdentityMatch:
        return IdentityMatch(
            decision=IdentityDecision.DISTINCT,
            wine_id=hit.metadata.get("wine_id"),
            similarity=rounded_similarity(hit),
            candidate_completeness=float(hit.metadata.get("completeness_score", 0.0)),
        )

    def find_duplicate_labels(
        self, vector: list[float], exclude_key: str | None = None
    ) -> list[VectorHit]:
        """Stored labels at or above the visual duplicate threshold."""
        hits = self.visual_index.query(vector, top_k=self.config.top_k)
        return [
            hit
            for hit in hits
            if hit.key != exclude_key
            and rounded_similarity(hit) >= self.config.visual_duplicate
        ]

    def recommend(
        self,
        vector: list[float],
        exclude_wine_id: str | None = None,
        limit: int = 5,
        min_similarity: float | None = None,
    ) -> list[SimilarWine]:
        """
        Visually similar wines, one entry per wine, best first.

        Args:
            vector: Query label vector
            exclude_wine_id: Wine to leave out (usually the query's own)
            limit: Maximum number of wines
            min_similarity: Floor, defaults to the recommendation threshold

        Returns:
            SimilarWine list ordered by similarity descending
        """
        floor = self.config.recommendation_min if min_similarity is None else min_similarity
        floor = max(floor, self.config.recommendation_min)
        hits = self.visual_index.query(vector, top_k=max(self.config.top_k, limit + 1))

        results: list[SimilarWine] = []
        seen: set[str] = set()
        for hit in hits:
            wine_id = hit.metadata.get("wine_id")
            if not wine_id or wine_id == exclude_wine_id or wine_id in seen:
                continue
            similarity = rounded_similarity(hit)
            if similarity < floor:
                continue
            match_percent = round(similarity * 100)
            band = match_band(match_percent)
            if band is None:
                continue
            seen.add(wine_id)
            results.append(
                SimilarWine(
                    wine_id=wine_id,
                    wine_name=hit.metadata.get("wine_name") or "Unknown Wine",
                    producer_name=hit.metadata.get("producer_name") or "Unknown Producer",
                    similarity=similarity,
                    match_percent=match_percent,
                    band=band,
                    image_url=hit.metadata.get("image_url"),
                )
            )
            if len(results) >= limit:
                break
        return results

    def similar_to_wine(
        self, wine_id: str, limit: int = 5, min_similarity: float | None = None
    ) -> list[SimilarWine]:
        """
        Recommend wines whose labels look like this wine's label.

        Uses the ``wine_<id>`` vector when present, otherwise any scan vector
        recorded for the wine. Returns an empty list when the wine has no
        stored label vector.
        """
        record = self.visual_index.get(visual_vector_key(wine_id))
        if record is None:
            record = self.visual_index.find_by_metadata("wine_id", wine_id)
        if record is None:
            return []
        return self.recommend(
            record.vector, exclude_wine_id=wine_id, limit=limit, min_similarity=min_similarity
        )
