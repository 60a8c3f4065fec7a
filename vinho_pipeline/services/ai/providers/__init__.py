"""AI provider implementations."""

from vinho_pipeline.services.ai.providers.anthropic import AnthropicClient
from vinho_pipeline.services.ai.providers.openai import OpenAIClient

__all__ = ["AnthropicClient", "OpenAIClient"]
