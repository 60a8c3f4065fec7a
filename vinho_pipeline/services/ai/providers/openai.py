"""OpenAI AI provider implementation."""

import logging

from vinho_pipeline.core.errors import MalformedResponseError, provider_error
from vinho_pipeline.core.schema import EnrichmentData, ExtractedLabel, WineDescriptor
from vinho_pipeline.services.ai.client import (
    AIClient,
    AIProvider,
    parse_enrichment_response,
    parse_label_response,
)
from vinho_pipeline.services.ai.prompts import (
    ENRICHMENT_SYSTEM_PROMPT,
    LABEL_SYSTEM_PROMPT,
    build_enrichment_prompt,
    build_label_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_ENRICHMENT_MODEL = "gpt-4o-mini"
MAX_TOKENS = 1024


class OpenAIClient(AIClient):
    """OpenAI GPT AI client."""

    provider = AIProvider.OPENAI

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        enrichment_model: str | None = None,
        temperature: float = 0.1,
    ):
        """
        Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key.
            model: Vision model for label extraction (defaults to gpt-4o-mini).
            enrichment_model: Model for enrichment (defaults to gpt-4o-mini).
            temperature: Sampling temperature.
        """
        try:
            import openai
        except ImportError:
            raise ImportError(
                "openai package is required. Install with: pip install openai"
            )

        self._api_error = openai.APIError
        self.client = openai.OpenAI(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.enrichment_model = enrichment_model or DEFAULT_ENRICHMENT_MODEL
        self.temperature = temperature

    def extract_label(
        self,
        image_url: str,
        ocr_text: str | None = None,
        model: str | None = None,
    ) -> ExtractedLabel:
        """Extract label fields with a GPT vision model."""
        model = model or self.model
        raw_response = self._complete(
            model=model,
            messages=[
                {"role": "system", "content": LABEL_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_label_prompt(ocr_text)},
                        {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
                    ],
                },
            ],
        )
        return parse_label_response(raw_response)

    def enrich_wine(self, wine: WineDescriptor) -> EnrichmentData:
        """Ask GPT for metadata about a known wine."""
        raw_response = self._complete(
            model=self.enrichment_model,
            messages=[
                {"role": "system", "content": ENRICHMENT_SYSTEM_PROMPT},
                {"role": "user", "content": build_enrichment_prompt(wine)},
            ],
        )
        return parse_enrichment_response(raw_response)

    def _complete(self, model: str, messages: list[dict]) -> str:
        """Run a JSON-mode chat completion and return the message text."""
        try:
            response = self.client.chat.completions.create(
                model=model,
                max_tokens=MAX_TOKENS,
                temperature=self.temperature,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except self._api_error as e:
            logger.error(f"OpenAI API error: {e}")
            raise provider_error(
                f"OpenAI API error: {e}", getattr(e, "status_code", None), cause=e
            ) from e

        raw_response = response.choices[0].message.content or ""
        logger.debug(f"Raw AI response: {raw_response[:500]}...")
        if not raw_response.strip():
            raise MalformedResponseError("Empty response from OpenAI")
        return raw_response
