"""AI client interface and provider abstraction."""

import json
import logging
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from vinho_pipeline.core.config import AIConfig
from vinho_pipeline.core.errors import MalformedResponseError
from vinho_pipeline.core.schema import EnrichmentData, ExtractedLabel, WineDescriptor

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported AI providers."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


API_KEY_ENV_VARS = {
    AIProvider.ANTHROPIC: "ANTHROPIC_API_KEY",
    AIProvider.OPENAI: "OPENAI_API_KEY",
}


def strip_code_fences(raw_response: str) -> str:
    """Remove markdown code fences that models sometimes wrap JSON in."""
    json_str = raw_response.strip()
    if json_str.startswith("```json"):
        json_str = json_str[7:]
    if json_str.startswith("```"):
        json_str = json_str[3:]
    if json_str.endswith("```"):
        json_str = json_str[:-3]
    return json_str.strip()


def parse_json_object(raw_response: str) -> dict[str, Any]:
    """
    Parse a model response into a JSON object.

    Raises:
        MalformedResponseError: If the response is not a JSON object.
    """
    json_str = strip_code_fences(raw_response)
    try:
        parsed = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(
            f"JSON parse error: {e}", raw_response=raw_response, cause=e
        ) from e
    if not isinstance(parsed, dict):
        raise MalformedResponseError(
            f"Expected a JSON object, got {type(parsed).__name__}",
            raw_response=raw_response,
        )
    return parsed


def parse_label_response(raw_response: str) -> ExtractedLabel:
    """
    Validate a label extraction response.

    Accepts ``producer`` as an alias for ``winery_name``.

    Raises:
        MalformedResponseError: On invalid JSON, missing names or a
            non-numeric confidence.
    """
    data = parse_json_object(raw_response)
    if not data.get("winery_name") and data.get("producer"):
        data["winery_name"] = data.pop("producer")
    for required in ("winery_name", "wine_name"):
        value = data.get(required)
        if not isinstance(value, str) or not value.strip():
            raise MalformedResponseError(
                f"Response is missing {required}", raw_response=raw_response
            )
    try:
        return ExtractedLabel.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponseError(
            f"Validation error: {e}", raw_response=raw_response, cause=e
        ) from e


def parse_enrichment_response(raw_response: str) -> EnrichmentData:
    """
    Validate an enrichment response.

    Raises:
        MalformedResponseError: On invalid JSON or schema mismatch.
    """
    data = parse_json_object(raw_response)
    try:
        return EnrichmentData.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedResponseError(
            f"Validation error: {e}", raw_response=raw_response, cause=e
        ) from e


class AIClient(ABC):
    """Abstract base class for AI providers."""

    provider: AIProvider
    model: str
    enrichment_model: str

    @abstractmethod
    def extract_label(
        self,
        image_url: str,
        ocr_text: str | None = None,
        model: str | None = None,
    ) -> ExtractedLabel:
        """
        Read a wine label image into structured fields.

        Args:
            image_url: Publicly reachable URL of the label photo.
            ocr_text: Optional text already recognized on the label.
            model: Optional model override for this call.

        Returns:
            The validated ExtractedLabel.

        Raises:
            TransientProviderError: On network, timeout, rate-limit or 5xx errors.
            ProviderRejectedError: On other 4xx errors (auth, bad request).
            MalformedResponseError: When the response does not match the schema.
        """
        pass

    @abstractmethod
    def enrich_wine(self, wine: WineDescriptor) -> EnrichmentData:
        """
        Ask the model for metadata about a known wine.

        Args:
            wine: Facts already known about the wine.

        Returns:
            The validated EnrichmentData.

        Raises:
            TransientProviderError: On provider errors.
            MalformedResponseError: When the response does not match the schema.
        """
        pass


def get_ai_client(
    provider: AIProvider | str,
    api_key: str,
    model: str | None = None,
    enrichment_model: str | None = None,
) -> AIClient:
    """
    Factory function to get an AI client for the specified provider.

    Args:
        provider: The AI provider to use.
        api_key: The API key for the provider.
        model: Optional extraction model override.
        enrichment_model: Optional enrichment model override.

    Returns:
        An AIClient instance for the specified provider.

    Raises:
        ValueError: If the provider is not supported.
    """
    if isinstance(provider, str):
        provider = AIProvider(provider.lower())

    if provider == AIProvider.ANTHROPIC:
        from vinho_pipeline.services.ai.providers.anthropic import AnthropicClient

        return AnthropicClient(api_key=api_key, model=model, enrichment_model=enrichment_model)
    elif provider == AIProvider.OPENAI:
        from vinho_pipeline.services.ai.providers.openai import OpenAIClient

        return OpenAIClient(api_key=api_key, model=model, enrichment_model=enrichment_model)
    else:
        raise ValueError(f"Unsupported AI provider: {provider}")


def ai_client_from_config(config: AIConfig) -> AIClient:
    """
    Build the configured AI client, reading its API key from the environment.

    Raises:
        ValueError: If the provider is unknown or its API key is not set.
    """
    provider = AIProvider(config.provider.lower())
    env_var = API_KEY_ENV_VARS[provider]
    api_key = os.environ.get(env_var)
    if not api_key:
        raise ValueError(f"{env_var} is not set")
    return get_ai_client(
        provider,
        api_key=api_key,
        model=config.model,
        enrichment_model=config.enrichment_model,
    )
