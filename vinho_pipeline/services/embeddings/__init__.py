"""Identity (text) and visual (label image) embeddings."""

from vinho_pipeline.services.embeddings.identity import build_identity_text, completeness_score

__all__ = ["build_identity_text", "completeness_score"]
