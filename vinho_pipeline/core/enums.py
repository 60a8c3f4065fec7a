"""Enums shared across the label pipeline."""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle status of any queued job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.PROCESSING)


class JobType(str, Enum):
    """Queue a claim is made against."""

    WINE_SCAN = "wine_scan"
    ENRICHMENT = "enrichment"
    IDENTITY_EMBEDDING = "identity_embedding"
    VISUAL_EMBEDDING = "visual_embedding"


class EmbeddingJobType(str, Enum):
    """Kind of embedding an embedding job produces."""

    IDENTITY = "identity"
    VISUAL = "visual"


class IdentityDecision(str, Enum):
    """Outcome of an identity-embedding lookup."""

    AUTO_MERGE = "auto_merge"  # Same wine, reuse without review
    DISTINCT = "distinct"  # Treat as a separate entity


class MatchBand(str, Enum):
    """Graded band for visual recommendations."""

    STRONG = "strong"  # >= 80% match
    GOOD = "good"  # >= 60% match


class VectorBackend(str, Enum):
    """Configured vector index backend."""

    DATABASE = "database"
    QDRANT = "qdrant"
    DISABLED = "disabled"


class WineType(str, Enum):
    """Wine type classification returned by enrichment."""

    RED = "red"
    WHITE = "white"
    ROSE = "rosé"
    SPARKLING = "sparkling"
    FORTIFIED = "fortified"
    DESSERT = "dessert"
