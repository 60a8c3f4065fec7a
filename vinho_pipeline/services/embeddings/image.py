"""Image embedding provider for label vectors (Jina CLIP over HTTPS)."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from vinho_pipeline.core.config import EmbeddingsConfig
from vinho_pipeline.core.errors import (
    MalformedResponseError,
    TransientProviderError,
    ValidationError,
    provider_error,
)

logger = logging.getLogger(__name__)

VISUAL_DIMENSIONS = 768
DEFAULT_JINA_URL = "https://api.jina.ai/v1/embeddings"


@dataclass
class ImageEmbeddingResult:
    """A label vector and the provider's token accounting."""

    vector: list[float]
    total_tokens: int = 0


class ImageEmbedder(ABC):
    """Turns a label image URL into a vector."""

    model: str
    dimensions: int = VISUAL_DIMENSIONS

    @abstractmethod
    def embed_image(self, image_url: str) -> ImageEmbeddingResult:
        """
        Embed one image.

        Raises:
            ValidationError: If the URL is empty.
            TransientProviderError: On 5xx, 429 or transport errors.
            ProviderRejectedError: On other 4xx answers.
            MalformedResponseError: On an empty or ill-shaped payload.
        """
        pass


class JinaImageEmbedder(ImageEmbedder):
    """
    Jina CLIP v1 image embeddings.

    Posts ``{"model": ..., "input": [{"image": url}]}`` and reads
    ``data[0].embedding`` and ``usage.total_tokens`` from the response.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "jina-clip-v1",
        api_url: str = DEFAULT_JINA_URL,
        dimensions: int = VISUAL_DIMENSIONS,
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        """
        Initialize the embedder.

        Args:
            api_key: Jina API key.
            model: Jina model name.
            api_url: Embeddings endpoint.
            dimensions: Expected vector length.
            timeout: Request timeout in seconds.
            http_client: Optional preconfigured client (used in tests).
        """
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.dimensions = dimensions
        self.timeout = timeout
        self._client = http_client

    def embed_image(self, image_url: str) -> ImageEmbeddingResult:
        if not image_url or not image_url.strip():
            raise ValidationError("image_url is required for a visual embedding")

        payload = {"model": self.model, "input": [{"image": image_url}]}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = self._client.post(self.api_url, json=payload, headers=headers)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning(f"Jina embeddings request timed out for {image_url}")
            raise TransientProviderError("Jina embeddings request timed out", cause=e) from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Jina embeddings returned HTTP {e.response.status_code}")
            raise provider_error(
                f"Jina embeddings returned HTTP {e.response.status_code}",
                e.response.status_code,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Jina embeddings request failed: {e}")
            raise TransientProviderError(f"Jina embeddings request failed: {e}", cause=e) from e

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Jina response is not JSON", raw_response=response.text, cause=e
            ) from e

        data = body.get("data") if isinstance(body, dict) else None
        if not data or not isinstance(data, list) or not isinstance(data[0], dict):
            raise MalformedResponseError("Jina response has no data", raw_response=response.text)

        vector = data[0].get("embedding")
        if not isinstance(vector, list) or not vector:
            raise MalformedResponseError(
                "Jina response has no embedding", raw_response=response.text
            )
        if len(vector) != self.dimensions:
            raise MalformedResponseError(
                f"Jina returned {len(vector)} dimensions, expected {self.dimensions}"
            )

        usage = body.get("usage") or {}
        return ImageEmbeddingResult(
            vector=[float(v) for v in vector],
            total_tokens=int(usage.get("total_tokens", 0)),
        )


def image_embedder_from_config(config: EmbeddingsConfig) -> ImageEmbedder | None:
    """Build the Jina embedder, or None when JINA_API_KEY is not set."""
    api_key = os.environ.get("JINA_API_KEY")
    if not api_key:
        logger.warning("JINA_API_KEY not set; visual embeddings disabled")
        return None
    return JinaImageEmbedder(
        api_key=api_key,
        model=config.image_model,
        api_url=config.jina_api_url,
        dimensions=config.image_dimensions,
        timeout=float(config.request_timeout),
    )
