"""Anthropic AsyncClient wrapper (secondary provider: fallback, repair, aggregation)."""

from __future__ import annotations

import anthropic
import structlog
from anthropic import AsyncAnthropic

from row_research.config import Settings
from row_research.errors import ProviderError
from row_research.models.completion import CompletionRequest, CompletionResponse, Usage
from row_research.prompt_builder import STRICT_JSON_SYSTEM_PROMPT

logger = structlog.get_logger()

PROVIDER_NAME = "anthropic"


class AnthropicClient:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Chat completion. System messages are folded into the system prompt."""
        system_parts = [STRICT_JSON_SYSTEM_PROMPT]
        messages = []
        for message in request.messages:
            if message.role == "system":
                system_parts.append(message.content)
            else:
                messages.append({"role": message.role, "content": message.content})

        response = await self._call(
            system="\n\n".join(system_parts),
            messages=messages,
            model=request.model or self.settings.SECONDARY_MODEL,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )
        usage = getattr(response, "usage", None)
        return CompletionResponse(
            content=self._text(response),
            model=request.model or self.settings.SECONDARY_MODEL,
            usage=Usage(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens,
            )
            if isinstance(getattr(usage, "input_tokens", None), int)
            else None,
        )

    async def simple_complete(
        self,
        prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        strict_json: bool = False,
    ) -> str:
        """Single-prompt completion returning text only."""
        response = await self._call(
            system=STRICT_JSON_SYSTEM_PROMPT if strict_json else None,
            messages=[{"role": "user", "content": prompt}],
            model=self.settings.SECONDARY_MODEL,
            temperature=self.settings.DEFAULT_TEMPERATURE if temperature is None else temperature,
            max_tokens=max_tokens or self.settings.DEFAULT_MAX_TOKENS,
        )
        return self._text(response)

    async def _call(
        self,
        system: str | None,
        messages: list[dict],
        model: str,
        temperature: float,
        max_tokens: int,
    ):
        """Low-level Anthropic API call. SDK errors become ProviderError."""
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        client = AsyncAnthropic(
            api_key=self.settings.ANTHROPIC_API_KEY,
            timeout=self.settings.SECONDARY_TIMEOUT_SECONDS,
        )
        try:
            response = await client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            raise ProviderError(PROVIDER_NAME, f"HTTP {e.status_code}: {e.message}", e.status_code) from e
        except anthropic.APIError as e:
            raise ProviderError(PROVIDER_NAME, str(e)) from e

        logger.info("anthropic_call", model=model, max_tokens=max_tokens)
        return response

    @staticmethod
    def _text(response) -> str:
        if not response.content:
            raise ProviderError(PROVIDER_NAME, "Empty response content")
        return response.content[0].text
