"""Database initialization and persistence layer."""

from vinho_pipeline.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    reset_engine,
    run_migrations,
)
from vinho_pipeline.db.models import (
    Base,
    EmbeddingJobDB,
    EnrichmentJobDB,
    QueueItemDB,
)
from vinho_pipeline.db.models_catalog import (
    GrapeVarietalDB,
    IdentityEmbeddingDB,
    ProducerDB,
    RegionDB,
    VectorEntryDB,
    VintageDB,
    VintageVarietalDB,
    WineDB,
)
from vinho_pipeline.db.repositories import (
    EmbeddingJobRepository,
    EnrichmentJobRepository,
    QueueRepository,
)

__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
    "reset_engine",
    "run_migrations",
    # Queue models
    "Base",
    "QueueItemDB",
    "EnrichmentJobDB",
    "EmbeddingJobDB",
    # Catalog models
    "RegionDB",
    "ProducerDB",
    "WineDB",
    "VintageDB",
    "GrapeVarietalDB",
    "VintageVarietalDB",
    "IdentityEmbeddingDB",
    "VectorEntryDB",
    # Repositories
    "QueueRepository",
    "EnrichmentJobRepository",
    "EmbeddingJobRepository",
]
