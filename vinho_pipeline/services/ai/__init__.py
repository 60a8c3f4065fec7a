"""AI extraction and enrichment services."""

from vinho_pipeline.services.ai.client import AIClient, AIProvider, get_ai_client
from vinho_pipeline.services.ai.extraction import LabelExtractor

__all__ = [
    "AIClient",
    "AIProvider",
    "LabelExtractor",
    "get_ai_client",
]
