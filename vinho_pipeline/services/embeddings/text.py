"""Text embedding providers for wine identity vectors."""

import logging
import os
from abc import ABC, abstractmethod

import numpy as np

from vinho_pipeline.core.config import EmbeddingsConfig
from vinho_pipeline.core.errors import (
    MalformedResponseError,
    ValidationError,
    provider_error,
)

logger = logging.getLogger(__name__)

IDENTITY_DIMENSIONS = 384


def normalize_vector(vector: list[float] | np.ndarray) -> list[float]:
    """Scale a vector to unit length. Zero vectors are returned unchanged."""
    array = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(array)
    if norm == 0:
        return array.tolist()
    return (array / norm).tolist()


class TextEmbedder(ABC):
    """Turns identity text into a unit-length vector."""

    model: str
    dimensions: int = IDENTITY_DIMENSIONS

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            ValidationError: If the text is empty.
            TransientProviderError: If the provider call fails transiently.
            ProviderRejectedError: If the provider rejects the request.
            MalformedResponseError: If the vector has the wrong shape.
        """
        pass

    def _check(self, text: str) -> None:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

    def _validate_vector(self, vector: list[float]) -> list[float]:
        if len(vector) != self.dimensions:
            raise MalformedResponseError(
                f"{self.model} returned {len(vector)} dimensions, expected {self.dimensions}"
            )
        return vector


class SentenceTransformerEmbedder(TextEmbedder):
    """Local gte-small embeddings via sentence-transformers (mean pooled, normalized)."""

    def __init__(self, model: str = "thenlper/gte-small", dimensions: int = IDENTITY_DIMENSIONS):
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers package is required. "
                "Install with: pip install 'vinho-pipeline[local-embeddings]'"
            )

        self.model = model
        self.dimensions = dimensions
        self._encoder = SentenceTransformer(model)

    def embed(self, text: str) -> list[float]:
        self._check(text)
        vector = self._encoder.encode(text, normalize_embeddings=True)
        return self._validate_vector(np.asarray(vector, dtype=np.float64).tolist())


class OpenAITextEmbedder(TextEmbedder):
    """OpenAI text-embedding-3-small truncated to 384 dimensions."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = IDENTITY_DIMENSIONS,
    ):
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self._api_error = openai.APIError
        self.client = openai.OpenAI(api_key=api_key)
        self.model = model
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        self._check(text)
        try:
            response = self.client.embeddings.create(
                model=self.model, input=text, dimensions=self.dimensions
            )
        except self._api_error as e:
            logger.error(f"OpenAI embeddings error: {e}")
            raise provider_error(
                f"OpenAI embeddings error: {e}", getattr(e, "status_code", None), cause=e
            ) from e

        if not response.data:
            raise MalformedResponseError("OpenAI embeddings response has no data")
        # Shortened embeddings are not guaranteed to be unit length.
        return self._validate_vector(normalize_vector(response.data[0].embedding))


def text_embedder_from_config(config: EmbeddingsConfig) -> TextEmbedder:
    """
    Build the configured text embedder.

    Raises:
        ValueError: For an unknown provider or a missing API key.
    """
    provider = config.text_provider.lower()
    if provider == "sentence-transformers":
        return SentenceTransformerEmbedder(config.text_model, config.text_dimensions)
    if provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        model = config.text_model
        if "/" in model:
            model = "text-embedding-3-small"
        return OpenAITextEmbedder(api_key, model, config.text_dimensions)
    raise ValueError(f"Unsupported text embedding provider: {config.text_provider}")
