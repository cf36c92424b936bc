"""OpenRouter chat-completions wrapper (primary provider)."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

import httpx
import structlog

from row_research.config import Settings
from row_research.errors import ProviderError
from row_research.models.completion import CompletionRequest, CompletionResponse, Usage
from row_research.prompt_builder import STRICT_JSON_SYSTEM_PROMPT

logger = structlog.get_logger()

PROVIDER_NAME = "openrouter"
STREAM_DONE = "[DONE]"


class OpenRouterClient:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Non-streaming completion. Raises ProviderError on HTTP or payload errors."""
        body = self._build_body(request, stream=False)
        try:
            async with httpx.AsyncClient() as http:
                response = await http.post(
                    self._url(),
                    headers=self._headers(),
                    json=body,
                    timeout=self.settings.PRIMARY_REQUEST_TIMEOUT_SECONDS,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(PROVIDER_NAME, f"HTTP {status}: {e.response.text[:200]}", status) from e
        except httpx.HTTPError as e:
            raise ProviderError(PROVIDER_NAME, str(e) or type(e).__name__) from e

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError(PROVIDER_NAME, "No response from OpenRouter")

        content = choices[0].get("message", {}).get("content") or ""
        usage = data.get("usage")
        logger.info("openrouter_call", model=data.get("model", body["model"]), chars=len(content))
        return CompletionResponse(
            content=content,
            model=data.get("model", body["model"]),
            usage=Usage(
                prompt_tokens=usage.get("prompt_tokens", 0),
                completion_tokens=usage.get("completion_tokens", 0),
                total_tokens=usage.get("total_tokens", 0),
            )
            if usage
            else None,
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield content fragments from the SSE stream until the [DONE] marker."""
        body = self._build_body(request, stream=True)
        try:
            async with httpx.AsyncClient() as http:
                async with http.stream(
                    "POST",
                    self._url(),
                    headers=self._headers(),
                    json=body,
                    timeout=self.settings.PRIMARY_REQUEST_TIMEOUT_SECONDS,
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise ProviderError(
                            PROVIDER_NAME,
                            f"HTTP {response.status_code}: {response.text[:200]}",
                            response.status_code,
                        )
                    async for line in response.aiter_lines():
                        fragment = self._parse_stream_line(line)
                        if fragment is STREAM_DONE:
                            return
                        if fragment:
                            yield fragment
        except httpx.HTTPError as e:
            raise ProviderError(PROVIDER_NAME, str(e) or type(e).__name__) from e

    @staticmethod
    def _parse_stream_line(line: str) -> str | None:
        """Content of one SSE line, STREAM_DONE at the end marker, None otherwise."""
        line = line.strip()
        if not line.startswith("data: "):
            return None
        payload = line[len("data: ") :]
        if payload == STREAM_DONE:
            return STREAM_DONE
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            return None
        if not isinstance(parsed, dict):
            return None
        choices = parsed.get("choices") or [{}]
        return (choices[0].get("delta") or {}).get("content")

    def _build_body(self, request: CompletionRequest, stream: bool) -> dict:
        messages = [{"role": "system", "content": STRICT_JSON_SYSTEM_PROMPT}]
        messages.extend(m.model_dump() for m in request.messages)
        return {
            "model": request.model or self.settings.PRIMARY_MODEL,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": stream,
        }

    def _url(self) -> str:
        return f"{self.settings.OPENROUTER_BASE_URL.rstrip('/')}/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.settings.OPENROUTER_API_KEY}",
            "Content-Type": "application/json",
            "X-Title": "Row Research",
        }
