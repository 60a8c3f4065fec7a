"""
Vector Index Module
===================

A small key/vector store with cosine-distance queries. Three backends:

- DatabaseVectorIndex: rows in ``vector_entries``, scored with NumPy
- QdrantVectorIndex: a Qdrant collection with cosine distance
- UnavailableVectorIndex: explicit "no index" variant; ``available`` is
  False and every operation raises VectorIndexUnavailableError
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import NAMESPACE_URL, uuid4, uuid5

import numpy as np
from sqlalchemy import select
from sqlalchemy.orm import Session

from vinho_pipeline.core.config import VectorIndexConfig
from vinho_pipeline.core.enums import VectorBackend
from vinho_pipeline.core.errors import ValidationError, VectorIndexUnavailableError
from vinho_pipeline.db.models_catalog import VectorEntryDB
from vinho_pipeline.db.upsert import upsert

logger = logging.getLogger(__name__)

IDENTITY_NAMESPACE = "identity"
VISUAL_NAMESPACE = "visual"

_KEY_FIELD = "_key"


@dataclass
class VectorHit:
    """One query result. ``distance`` is cosine distance (0 = identical)."""

    key: str
    distance: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


@dataclass
class VectorRecord:
    """A stored vector with its metadata."""

    key: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


def cosine_distances(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine distance between each row of ``matrix`` and ``vector``."""
    row_norms = np.linalg.norm(matrix, axis=1)
    vector_norm = np.linalg.norm(vector)
    denominator = row_norms * vector_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(denominator > 0, matrix @ vector / denominator, 0.0)
    return 1.0 - similarities


class VectorIndex(ABC):
    """Interface shared by every vector backend."""

    name: str
    available: bool = True

    @abstractmethod
    def put(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None:
        """Insert or replace the vector stored under ``key``."""
        pass

    @abstractmethod
    def query(self, vector: list[float], top_k: int = 10) -> list[VectorHit]:
        """Return up to ``top_k`` nearest vectors, closest first."""
        pass

    @abstractmethod
    def get(self, key: str) -> VectorRecord | None:
        """Fetch a stored vector by key."""
        pass

    @abstractmethod
    def find_by_metadata(self, field_name: str, value: str) -> VectorRecord | None:
        """Fetch the first stored vector whose metadata field equals ``value``."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class DatabaseVectorIndex(VectorIndex):
    """
    Vectors stored as JSON rows in the ``vector_entries`` table.

    Queries load the namespace and score it with NumPy, which is fine for
    catalogs of tens of thousands of wines.
    """

    def __init__(self, session: Session, namespace: str, dimensions: int | None = None):
        self.session = session
        self.name = namespace
        self.namespace = namespace
        self.dimensions = dimensions

    def put(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None:
        self._check_dimensions(vector)
        now = datetime.now(UTC)
        upsert(
            self.session,
            VectorEntryDB,
            values={
                "id": str(uuid4()),
                "namespace": self.namespace,
                "key": key,
                "vector_json": json.dumps([float(v) for v in vector]),
                "metadata_json": json.dumps(metadata, default=str),
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["namespace", "key"],
            update_columns=["vector_json", "metadata_json", "updated_at"],
        )

    def query(self, vector: list[float], top_k: int = 10) -> list[VectorHit]:
        self._check_dimensions(vector)
        rows = self._rows()
        if not rows or top_k <= 0:
            return []

        matrix = np.array([json.loads(row.vector_json) for row in rows], dtype=np.float64)
        distances = cosine_distances(matrix, np.asarray(vector, dtype=np.float64))
        order = np.argsort(distances, kind="stable")[:top_k]
        return [
            VectorHit(
                key=rows[i].key,
                distance=float(distances[i]),
                metadata=json.loads(rows[i].metadata_json),
            )
            for i in order
        ]

    def get(self, key: str) -> VectorRecord | None:
        stmt = (
            select(VectorEntryDB)
            .where(VectorEntryDB.namespace == self.namespace, VectorEntryDB.key == key)
            .execution_options(populate_existing=True)
        )
        row = self.session.execute(stmt).scalar_one_or_none()
        return self._to_record(row) if row else None

    def find_by_metadata(self, field_name: str, value: str) -> VectorRecord | None:
        for row in self._rows():
            metadata = json.loads(row.metadata_json)
            if metadata.get(field_name) == value:
                return self._to_record(row)
        return None

    def count(self) -> int:
        return len(self._rows())

    def _rows(self) -> list[VectorEntryDB]:
        stmt = (
            select(VectorEntryDB)
            .where(VectorEntryDB.namespace == self.namespace)
            .order_by(VectorEntryDB.created_at, VectorEntryDB.key)
            .execution_options(populate_existing=True)
        )
        return list(self.session.execute(stmt).scalars().all())

    def _check_dimensions(self, vector: list[float]) -> None:
        if not vector:
            raise ValidationError("Vector is empty")
        if self.dimensions is not None and len(vector) != self.dimensions:
            raise ValidationError(
                f"{self.namespace} vectors must have {self.dimensions} dimensions, "
                f"got {len(vector)}"
            )

    def _to_record(self, row: VectorEntryDB) -> VectorRecord:
        return VectorRecord(
            key=row.key,
            vector=json.loads(row.vector_json),
            metadata=json.loads(row.metadata_json),
        )


class QdrantVectorIndex(VectorIndex):
    """
    Vectors stored in a Qdrant collection with cosine distance.

    Point ids are UUIDv5 of the key; the key itself is kept in the payload.
    """

    def __init__(self, client: Any, collection: str, dimensions: int):
        self.client = client
        self.name = collection
        self.collection = collection
        self.dimensions = dimensions
        self._collection_ready = False

    @classmethod
    def from_url(cls, url: str, collection: str, dimensions: int) -> QdrantVectorIndex:
        try:
            from qdrant_client import QdrantClient
        except ImportError:
            raise ImportError(
                "qdrant-client package is required. Install with: pip install qdrant-client"
            )
        return cls(QdrantClient(url=url), collection, dimensions)

    @staticmethod
    def point_id(key: str) -> str:
        return str(uuid5(NAMESPACE_URL, key))

    def _ensure_collection(self) -> None:
        if self._collection_ready:
            return
        from qdrant_client.models import Distance, VectorParams

        try:
            collections = self.client.get_collections()
            names = [c.name for c in collections.collections]
            if self.collection not in names:
                self.client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
                )
                logger.info(f"Created Qdrant collection {self.collection}")
        except Exception as e:
            raise VectorIndexUnavailableError(
                f"Qdrant collection {self.collection} unavailable: {e}", cause=e
            ) from e
        self._collection_ready = True

    def put(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None:
        from qdrant_client.models import PointStruct

        self._ensure_collection()
        payload = json.loads(json.dumps(metadata, default=str))
        payload[_KEY_FIELD] = key
        try:
            self.client.upsert(
                collection_name=self.collection,
                points=[PointStruct(id=self.point_id(key), vector=vector, payload=payload)],
            )
        except Exception as e:
            raise VectorIndexUnavailableError(f"Qdrant upsert failed: {e}", cause=e) from e

    def query(self, vector: list[float], top_k: int = 10) -> list[VectorHit]:
        self._ensure_collection()
        try:
            response = self.client.query_points(
                collection_name=self.collection,
                query=vector,
                limit=top_k,
                with_payload=True,
            )
        except Exception as e:
            raise VectorIndexUnavailableError(f"Qdrant query failed: {e}", cause=e) from e

        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            key = payload.pop(_KEY_FIELD, str(point.id))
            hits.append(VectorHit(key=key, distance=1.0 - float(point.score), metadata=payload))
        return hits

    def get(self, key: str) -> VectorRecord | None:
        self._ensure_collection()
        try:
            points = self.client.retrieve(
                collection_name=self.collection,
                ids=[self.point_id(key)],
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            raise VectorIndexUnavailableError(f"Qdrant retrieve failed: {e}", cause=e) from e
        if not points:
            return None
        return self._to_record(points[0])

    def find_by_metadata(self, field_name: str, value: str) -> VectorRecord | None:
        from qdrant_client.models import FieldCondition, Filter, MatchValue

        self._ensure_collection()
        try:
            points, _ = self.client.scroll(
                collection_name=self.collection,
                scroll_filter=Filter(
                    must=[FieldCondition(key=field_name, match=MatchValue(value=value))]
                ),
                limit=1,
                with_payload=True,
                with_vectors=True,
            )
        except Exception as e:
            raise VectorIndexUnavailableError(f"Qdrant scroll failed: {e}", cause=e) from e
        return self._to_record(points[0]) if points else None

    def count(self) -> int:
        self._ensure_collection()
        return self.client.count(collection_name=self.collection).count

    def _to_record(self, point: Any) -> VectorRecord:
        payload = dict(point.payload or {})
        key = payload.pop(_KEY_FIELD, str(point.id))
        return VectorRecord(key=key, vector=list(point.vector or []), metadata=payload)


class UnavailableVectorIndex(VectorIndex):
    """Stand-in used when no vector index is configured or reachable."""

    available = False

    def __init__(self, name: str, reason: str = "vector index disabled"):
        self.name = name
        self.reason = reason

    def _fail(self) -> VectorIndexUnavailableError:
        return VectorIndexUnavailableError(f"{self.name}: {self.reason}")

    def put(self, key: str, vector: list[float], metadata: dict[str, Any]) -> None:
        raise self._fail()

    def query(self, vector: list[float], top_k: int = 10) -> list[VectorHit]:
        raise self._fail()

    def get(self, key: str) -> VectorRecord | None:
        raise self._fail()

    def find_by_metadata(self, field_name: str, value: str) -> VectorRecord | None:
        raise self._fail()

    def count(self) -> int:
        raise self._fail()


def build_vector_indexes(
    config: VectorIndexConfig,
    session: Session,
    identity_dimensions: int = 384,
    visual_dimensions: int = 768,
) -> tuple[VectorIndex, VectorIndex]:
    """
    Create the (identity, visual) index pair for the configured backend.

    Returns:
        Tuple of (identity_index, visual_index)
    """
    if config.backend == VectorBackend.DISABLED:
        return (
            UnavailableVectorIndex(IDENTITY_NAMESPACE),
            UnavailableVectorIndex(VISUAL_NAMESPACE),
        )
    if config.backend == VectorBackend.QDRANT:
        return (
            QdrantVectorIndex.from_url(
                config.qdrant_url, config.identity_collection, identity_dimensions
            ),
            QdrantVectorIndex.from_url(
                config.qdrant_url, config.visual_collection, visual_dimensions
            ),
        )
    return (
        DatabaseVectorIndex(session, IDENTITY_NAMESPACE, identity_dimensions),
        DatabaseVectorIndex(session, VISUAL_NAMESPACE, visual_dimensions),
    )
