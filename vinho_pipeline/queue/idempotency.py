"""Idempotency keys for the pipeline queues."""

import hashlib
import re

from vinho_pipeline.core.enums import EmbeddingJobType

_KEY_UNSAFE = re.compile(r"[^a-z0-9|]")


def scan_idempotency_key(image_url: str, ocr_text: str | None = None) -> str:
    """SHA-256 of ``image_url|ocr_text``; the same photo and text share a key."""
    payload = f"{image_url}|{ocr_text or ''}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def enrichment_key(
    user_id: str,
    producer_name: str,
    wine_name: str,
    year: int | None,
    purpose: str = "enrichment",
) -> str:
    """
    Key for per-user, per-vintage work.

    Segments are lowercased and stripped of anything but ``[a-z0-9]``;
    a missing year becomes ``nv``.
    """
    parts = [user_id, producer_name, wine_name, str(year) if year else "NV", purpose]
    raw = "|".join(part.replace("|", " ") for part in parts)
    return _KEY_UNSAFE.sub("", raw.lower())


def embedding_key(
    job_type: EmbeddingJobType,
    wine_id: str,
    scan_id: str | None = None,
    version: int = 1,
) -> str:
    """Key for an embedding job: one identity job per wine/version, one visual job per image."""
    if job_type == EmbeddingJobType.IDENTITY:
        return f"identity|{wine_id}|v{version}"
    return f"visual|{visual_vector_key(wine_id, scan_id)}"


def visual_vector_key(wine_id: str, scan_id: str | None = None) -> str:
    """Storage key for a label vector: scan-scoped when a scan exists."""
    if scan_id:
        return f"scan_{scan_id}"
    return f"wine_{wine_id}"
