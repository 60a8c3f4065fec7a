"""Anthropic (Claude) AI provider implementation."""

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

DEFAULT_MODEL = "claude-sonnet-4-20250514"
MAX_TOKENS = 1024


class AnthropicClient(AIClient):
    """Anthropic Claude AI client."""

    provider = AIProvider.ANTHROPIC

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        enrichment_model: str | None = None,
        temperature: float = 0.1,
    ):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key.
            model: Model name (defaults to claude-sonnet-4-20250514).
            enrichment_model: Model for enrichment (defaults to the extraction model).
            temperature: Sampling temperature.
        """
        try:
            import anthropic
        except ImportError:
            raise ImportError(
                "anthropic package is required. Install with: pip install anthropic"
            )

        self._api_error = anthropic.APIError
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model or DEFAULT_MODEL
        self.enrichment_model = enrichment_model or self.model
        self.temperature = temperature

    def extract_label(
        self,
        image_url: str,
        ocr_text: str | None = None,
        model: str | None = None,
    ) -> ExtractedLabel:
        """Extract label fields with Claude's vision input."""
        raw_response = self._create(
            model=model or self.model,
            system=LABEL_SYSTEM_PROMPT,
            content=[
                {"type": "image", "source": {"type": "url", "url": image_url}},
                {"type": "text", "text": build_label_prompt(ocr_text)},
            ],
        )
        return parse_label_response(raw_response)

    def enrich_wine(self, wine: WineDescriptor) -> EnrichmentData:
        """Ask Claude for metadata about a known wine."""
        raw_response = self._create(
            model=self.enrichment_model,
            system=ENRICHMENT_SYSTEM_PROMPT,
            content=build_enrichment_prompt(wine),
        )
        return parse_enrichment_response(raw_response)

    def _create(self, model: str, system: str, content: str | list[dict]) -> str:
        """Send one user message and return the concatenated text blocks."""
        try:
            response = self.client.messages.create(
                model=model,
                max_tokens=MAX_TOKENS,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": content}],
            )
        except self._api_error as e:
            logger.error(f"Anthropic API error: {e}")
            raise provider_error(
                f"Anthropic API error: {e}", getattr(e, "status_code", None), cause=e
            ) from e

        raw_response = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        logger.info(f"AI response received ({len(raw_response)} chars)")
        logger.debug(f"Raw AI response: {raw_response[:1000]}...")
        if not raw_response.strip():
            raise MalformedResponseError("Empty response from Anthropic")
        return raw_response
