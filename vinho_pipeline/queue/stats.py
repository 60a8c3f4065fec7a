"""Per-status counts across the pipeline queues."""

from sqlalchemy.orm import Session

from vinho_pipeline.db.repositories import (
    EmbeddingJobRepository,
    EnrichmentJobRepository,
    QueueRepository,
)


def queue_stats(session: Session) -> dict[str, dict[str, int]]:
    """
    Count rows per status in every queue.

    Embedding jobs are reported per type, so the keys are ``wine_scan``,
    ``enrichment``, ``identity_embedding`` and ``visual_embedding``.
    """
    embeddings = EmbeddingJobRepository(session).count_by_type_and_status()
    return {
        "wine_scan": QueueRepository(session).count_by_status(),
        "enrichment": EnrichmentJobRepository(session).count_by_status(),
        "identity_embedding": embeddings["identity"],
        "visual_embedding": embeddings["visual"],
    }
