"""
Text-generation clients: stream completion text for a prompt from Anthropic or OpenAI
"""

import logging
from typing import AsyncGenerator, Dict, Optional

import anthropic
import openai

from .config import Settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ANTHROPIC = "anthropic"
OPENAI = "openai"

PROVIDER_LABELS = {
    ANTHROPIC: "Anthropic",
    OPENAI: "OpenAI",
}

PROVIDER_KEYS = {
    ANTHROPIC: "ANTHROPIC_API_KEY",
    OPENAI: "OPENAI_API_KEY",
}


def provider_for_model(model: str) -> str:
    """Claude models go to Anthropic, everything else to OpenAI."""
    if model and model.lower().startswith("claude"):
        return ANTHROPIC
    return OPENAI


class TextGenerationClient:
    """Streams text fragments for a single prompt."""

    provider = "base"

    @property
    def label(self) -> str:
        return PROVIDER_LABELS.get(self.provider, self.provider)

    def stream(self, prompt: str, model: str, max_tokens: int = 1500,
               temperature: float = 0.7) -> AsyncGenerator[str, None]:
        raise NotImplementedError


class AnthropicTextClient(TextGenerationClient):
    provider = ANTHROPIC

    def __init__(self, api_key: Optional[str] = None, client=None):
        self.client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def stream(self, prompt: str, model: str, max_tokens: int = 1500,
                     temperature: float = 0.7) -> AsyncGenerator[str, None]:
        async with self.client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        ) as response:
            async for text in response.text_stream:
                if text:
                    yield text


class OpenAITextClient(TextGenerationClient):
    provider = OPENAI

    def __init__(self, api_key: Optional[str] = None, client=None):
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    async def stream(self, prompt: str, model: str, max_tokens: int = 1500,
                     temperature: float = 0.7) -> AsyncGenerator[str, None]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
            temperature=temperature,
            max_completion_tokens=max_tokens,
        )
        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        finally:
            await response.close()


class TextGeneratorRegistry:
    """Provider clients built once at startup and looked up by model name."""

    def __init__(self, clients: Optional[Dict[str, TextGenerationClient]] = None):
        self.clients = dict(clients or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "TextGeneratorRegistry":
        clients = {}
        if settings.openai_api_key:
            clients[OPENAI] = OpenAITextClient(api_key=settings.openai_api_key)
            logger.info("OpenAI client initialized")
        else:
            logger.warning("OPENAI_API_KEY environment variable is not set; OpenAI models are disabled")

        if settings.anthropic_api_key:
            clients[ANTHROPIC] = AnthropicTextClient(api_key=settings.anthropic_api_key)
            logger.info("Anthropic client initialized")
        else:
            logger.warning("ANTHROPIC_API_KEY environment variable is not set; Claude models are disabled")

        return cls(clients)

    def resolve(self, model: str) -> TextGenerationClient:
        provider = provider_for_model(model)
        client = self.clients.get(provider)
        if client is None:
            raise ConfigurationError(PROVIDER_LABELS[provider], PROVIDER_KEYS[provider])
        return client

    @property
    def available(self):
        return sorted(self.clients)
