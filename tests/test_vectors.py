"""Tests for vector indexes and matching thresholds."""

import math
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import vinho_pipeline.db.models_catalog  # noqa: F401
from vinho_pipeline.core.config import MatchingConfig, VectorIndexConfig
from vinho_pipeline.core.enums import IdentityDecision, MatchBand, VectorBackend
from vinho_pipeline.core.errors import ValidationError, VectorIndexUnavailableError
from vinho_pipeline.db.models import Base
from vinho_pipeline.vectors.index import (
    DatabaseVectorIndex,
    QdrantVectorIndex,
    UnavailableVectorIndex,
    build_vector_indexes,
)
from vinho_pipeline.vectors.matcher import VectorMatcher, match_band

IDENTITY_DIMS = 384
VISUAL_DIMS = 768


def vector_at(similarity: float, dims: int, axis: int = 1) -> list[float]:
    """Unit vector whose cosine similarity with the first basis vector is ``similarity``."""
    vector = [0.0] * dims
    vector[0] = similarity
    vector[axis] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


def base_vector(dims: int) -> list[float]:
    return vector_at(1.0, dims)


@pytest.fixture
def session():
    """Create a database session for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = create_engine(f"sqlite:///{Path(tmpdir) / 'test.db'}", echo=False)
        Base.metadata.create_all(engine)
        session = sessionmaker(bind=engine)()
        yield session
        session.close()
        engine.dispose()


@pytest.fixture
def matcher(session: Session) -> VectorMatcher:
    """Matcher over database-backed indexes with default thresholds."""
    return VectorMatcher(
        DatabaseVectorIndex(session, "identity", IDENTITY_DIMS),
        DatabaseVectorIndex(session, "visual", VISUAL_DIMS),
        MatchingConfig(),
    )


def _store_identity(matcher: VectorMatcher, wine_id: str, completeness: float = 1.0) -> None:
    matcher.identity_index.put(
        wine_id,
        base_vector(IDENTITY_DIMS),
        {"wine_id": wine_id, "completeness_score": completeness},
    )


def _store_label(
    matcher: VectorMatcher, key: str, wine_id: str, vector: list[float], name: str = "Reserva"
) -> None:
    matcher.visual_index.put(
        key,
        vector,
        {"wine_id": wine_id, "wine_name": name, "producer_name": "Casa"},
    )


class TestDatabaseVectorIndex:
    """Tests for the database-backed index."""

    def test_put_and_query(self, session: Session) -> None:
        """Test the nearest vector comes first."""
        index = DatabaseVectorIndex(session, "identity", 3)
        index.put("a", [1.0, 0.0, 0.0], {"wine_id": "a"})
        index.put("b", [0.0, 1.0, 0.0], {"wine_id": "b"})

        hits = index.query([0.9, 0.1, 0.0], top_k=2)
        assert [h.key for h in hits] == ["a", "b"]
        assert hits[0].similarity > hits[1].similarity
        assert hits[0].metadata == {"wine_id": "a"}

    def test_put_replaces(self, session: Session) -> None:
        """Test putting an existing key replaces its vector."""
        index = DatabaseVectorIndex(session, "identity", 2)
        index.put("a", [1.0, 0.0], {"v": 1})
        index.put("a", [0.0, 1.0], {"v": 2})
        assert index.count() == 1
        record = index.get("a")
        assert record.vector == [0.0, 1.0]
        assert record.metadata == {"v": 2}

    def test_namespaces_isolated(self, session: Session) -> None:
        """Test namespaces do not see each other's vectors."""
        DatabaseVectorIndex(session, "identity", 2).put("a", [1.0, 0.0], {})
        assert DatabaseVectorIndex(session, "visual", 2).count() == 0

    def test_dimension_check(self, session: Session) -> None:
        """Test vectors of the wrong size are rejected."""
        index = DatabaseVectorIndex(session, "identity", IDENTITY_DIMS)
        with pytest.raises(ValidationError):
            index.put("a", [1.0, 0.0], {})

    def test_find_by_metadata(self, session: Session) -> None:
        """Test lookup by a metadata field."""
        index = DatabaseVectorIndex(session, "visual", 2)
        index.put("scan_1", [1.0, 0.0], {"wine_id": "w1"})
        assert index.find_by_metadata("wine_id", "w1").key == "scan_1"
        assert index.find_by_metadata("wine_id", "w2") is None

    def test_empty_query(self, session: Session) -> None:
        """Test querying an empty namespace returns nothing."""
        assert DatabaseVectorIndex(session, "identity", 2).query([1.0, 0.0]) == []


class TestUnavailableIndex:
    """Tests for the explicit no-index variant."""

    def test_operations_raise(self) -> None:
        """Test every operation raises VectorIndexUnavailableError."""
        index = UnavailableVectorIndex("visual")
        assert not index.available
        with pytest.raises(VectorIndexUnavailableError):
            index.query([1.0])
        with pytest.raises(VectorIndexUnavailableError):
            index.put("a", [1.0], {})

    def test_disabled_backend(self, session: Session) -> None:
        """Test the disabled backend yields two unavailable indexes."""
        identity, visual = build_vector_indexes(
            VectorIndexConfig(backend=VectorBackend.DISABLED), session
        )
        assert not identity.available
        assert not visual.available

    def test_database_backend(self, session: Session) -> None:
        """Test the database backend uses the configured dimensions."""
        identity, visual = build_vector_indexes(VectorIndexConfig(), session)
        assert isinstance(identity, DatabaseVectorIndex)
        assert identity.dimensions == IDENTITY_DIMS
        assert visual.dimensions == VISUAL_DIMS


class TestQdrantVectorIndex:
    """Tests for the Qdrant index with a mocked client."""

    def test_query_maps_scores(self) -> None:
        """Test Qdrant scores become cosine distances and keys come from the payload."""
        client = MagicMock()
        client.get_collections.return_value.collections = []
        client.query_points.return_value.points = [
            MagicMock(id="p1", score=0.93, payload={"_key": "scan_1", "wine_id": "w1"})
        ]
        index = QdrantVectorIndex(client, "wine_labels", 2)

        hits = index.query([1.0, 0.0], top_k=3)

        client.create_collection.assert_called_once()
        assert hits[0].key == "scan_1"
        assert hits[0].similarity == pytest.approx(0.93)
        assert hits[0].metadata == {"wine_id": "w1"}

    def test_connection_failure(self) -> None:
        """Test an unreachable server raises VectorIndexUnavailableError."""
        client = MagicMock()
        client.get_collections.side_effect = ConnectionError("refused")
        index = QdrantVectorIndex(client, "wine_labels", 2)
        with pytest.raises(VectorIndexUnavailableError):
            index.query([1.0, 0.0])

    def test_point_id_stable(self) -> None:
        """Test the same key maps to the same point id."""
        assert QdrantVectorIndex.point_id("scan_1") == QdrantVectorIndex.point_id("scan_1")
        assert QdrantVectorIndex.point_id("scan_1") != QdrantVectorIndex.point_id("scan_2")


class TestIdentityMatching:
    """Tests for the identity auto-merge rule."""

    def test_merge_at_threshold(self, matcher: VectorMatcher) -> None:
        """Test similarity of exactly 0.90 merges."""
        _store_identity(matcher, "w1")
        match = matcher.match_identity(vector_at(0.90, IDENTITY_DIMS), completeness=0.75)
        assert match.decision == IdentityDecision.AUTO_MERGE
        assert match.wine_id == "w1"
        assert match.similarity == pytest.approx(0.90)

    def test_below_threshold_distinct(self, matcher: VectorMatcher) -> None:
        """Test similarity of 0.89 stays distinct."""
        _store_identity(matcher, "w1")
        match = matcher.match_identity(vector_at(0.89, IDENTITY_DIMS), completeness=1.0)
        assert match.decision == IdentityDecision.DISTINCT
        assert match.wine_id == "w1"
        assert not match.should_merge

    def test_incomplete_candidate_distinct(self, matcher: VectorMatcher) -> None:
        """Test a candidate below the completeness floor is not merged onto."""
        _store_identity(matcher, "w1", completeness=0.25)
        match = matcher.match_identity(vector_at(0.99, IDENTITY_DIMS), completeness=1.0)
        assert match.decision == IdentityDecision.DISTINCT

    def test_merge_skips_incomplete_top_hit(self, matcher: VectorMatcher) -> None:
        """Test a complete runner-up above the threshold is merged onto."""
        _store_identity(matcher, "w1", completeness=0.25)
        matcher.identity_index.put(
            "w2",
            vector_at(0.95, IDENTITY_DIMS),
            {"wine_id": "w2", "completeness_score": 1.0},
        )
        match = matcher.match_identity(base_vector(IDENTITY_DIMS), completeness=1.0)
        assert match.decision == IdentityDecision.AUTO_MERGE
        assert match.wine_id == "w2"
        assert match.similarity == pytest.approx(0.95)
        assert any("w1" in note for note in match.notes)

    def test_runner_up_below_threshold_distinct(self, matcher: VectorMatcher) -> None:
        """Test an incomplete top hit is not replaced by a weak runner-up."""
        _store_identity(matcher, "w1", completeness=0.25)
        matcher.identity_index.put(
            "w2",
            vector_at(0.85, IDENTITY_DIMS),
            {"wine_id": "w2", "completeness_score": 1.0},
        )
        match = matcher.match_identity(base_vector(IDENTITY_DIMS), completeness=1.0)
        assert match.decision == IdentityDecision.DISTINCT
        assert match.wine_id == "w1"

    def test_incomplete_query_distinct(self, matcher: VectorMatcher) -> None:
        """Test a new identity below the completeness floor is not merged."""
        _store_identity(matcher, "w1")
        match = matcher.match_identity(vector_at(0.99, IDENTITY_DIMS), completeness=0.25)
        assert match.decision == IdentityDecision.DISTINCT

    def test_no_candidates(self, matcher: VectorMatcher) -> None:
        """Test an empty index gives a distinct decision."""
        match = matcher.match_identity(base_vector(IDENTITY_DIMS), completeness=1.0)
        assert match.decision == IdentityDecision.DISTINCT
        assert match.wine_id is None

    def test_candidate_filter(self, matcher: VectorMatcher) -> None:
        """Test candidates outside the allowed set are ignored."""
        _store_identity(matcher, "w1")
        match = matcher.match_identity(
            base_vector(IDENTITY_DIMS), completeness=1.0, candidate_wine_ids={"w2"}
        )
        assert match.decision == IdentityDecision.DISTINCT


class TestVisualMatching:
    """Tests for duplicate detection and recommendations."""

    def test_self_similarity(self, matcher: VectorMatcher) -> None:
        """Test the same label stored twice is a duplicate at similarity 1.0."""
        vector = base_vector(VISUAL_DIMS)
        _store_label(matcher, "scan_1", "w1", vector)
        hits = matcher.find_duplicate_labels(vector, exclude_key="scan_2")
        assert [h.key for h in hits] == ["scan_1"]
        assert hits[0].similarity == pytest.approx(1.0)

    def test_duplicate_threshold(self, matcher: VectorMatcher) -> None:
        """Test 0.92 is a duplicate and 0.91 is not."""
        _store_label(matcher, "scan_1", "w1", vector_at(0.92, VISUAL_DIMS, axis=1))
        _store_label(matcher, "scan_2", "w2", vector_at(0.91, VISUAL_DIMS, axis=2))
        hits = matcher.find_duplicate_labels(base_vector(VISUAL_DIMS))
        assert [h.key for h in hits] == ["scan_1"]

    def test_duplicate_excludes_own_key(self, matcher: VectorMatcher) -> None:
        """Test a label is not reported as its own duplicate."""
        vector = base_vector(VISUAL_DIMS)
        _store_label(matcher, "scan_1", "w1", vector)
        assert matcher.find_duplicate_labels(vector, exclude_key="scan_1") == []

    def test_recommend_bands(self, matcher: VectorMatcher) -> None:
        """Test recommendations are ordered, banded and floored at 0.60."""
        _store_label(matcher, "scan_1", "w1", vector_at(0.85, VISUAL_DIMS, axis=1), "Strong")
        _store_label(matcher, "scan_2", "w2", vector_at(0.65, VISUAL_DIMS, axis=2), "Good")
        _store_label(matcher, "scan_3", "w3", vector_at(0.55, VISUAL_DIMS, axis=3), "Weak")

        results = matcher.recommend(base_vector(VISUAL_DIMS))

        assert [r.wine_name for r in results] == ["Strong", "Good"]
        assert results[0].band == MatchBand.STRONG
        assert results[0].match_percent == 85
        assert results[1].band == MatchBand.GOOD

    def test_recommend_one_entry_per_wine(self, matcher: VectorMatcher) -> None:
        """Test two labels of one wine give one recommendation."""
        _store_label(matcher, "scan_1", "w1", vector_at(0.85, VISUAL_DIMS, axis=1))
        _store_label(matcher, "scan_2", "w1", vector_at(0.80, VISUAL_DIMS, axis=2))
        assert len(matcher.recommend(base_vector(VISUAL_DIMS))) == 1

    def test_threshold_never_below_floor(self, matcher: VectorMatcher) -> None:
        """Test a lower requested threshold does not go under 0.60."""
        _store_label(matcher, "scan_1", "w1", vector_at(0.55, VISUAL_DIMS, axis=1))
        assert matcher.recommend(base_vector(VISUAL_DIMS), min_similarity=0.3) == []

    def test_similar_to_wine(self, matcher: VectorMatcher) -> None:
        """Test recommendations for a wine exclude the wine itself."""
        _store_label(matcher, "scan_a", "w1", base_vector(VISUAL_DIMS), "Own")
        _store_label(matcher, "scan_b", "w2", vector_at(0.81, VISUAL_DIMS, axis=2), "Other")

        results = matcher.similar_to_wine("w1")
        assert [r.wine_id for r in results] == ["w2"]

    def test_similar_to_wine_without_vector(self, matcher: VectorMatcher) -> None:
        """Test a wine with no stored label has no recommendations."""
        assert matcher.similar_to_wine("missing") == []

    def test_match_band(self) -> None:
        """Test band boundaries."""
        assert match_band(80) == MatchBand.STRONG
        assert match_band(79) == MatchBand.GOOD
        assert match_band(60) == MatchBand.GOOD
        assert match_band(59) is None
