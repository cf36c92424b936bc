"""Primary/secondary provider fallback with JSON extraction and repair."""

from __future__ import annotations

import asyncio
import enum
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from row_research.errors import AllProvidersFailedError, ProviderTimeoutError
from row_research.json_extractor import extract_research_result
from row_research.models.completion import CompletionRequest, CompletionResponse
from row_research.models.outcome import OrchestrationOutcome, Provider, TerminalState
from row_research.models.research import ResearchResult
from row_research.prompt_builder import PromptBuilder

if TYPE_CHECKING:
    from row_research.anthropic_client import AnthropicClient
    from row_research.config import Settings
    from row_research.openrouter_client import OpenRouterClient

logger = structlog.get_logger()

DEGRADED_SUMMARY = "Research could not be completed due to processing errors."
DEGRADED_CONFIDENCE = 0.1
MIN_SENTENCE_CHARS = 10

_SENTENCE_END = re.compile(r"[.!?]\s+")


class OrchestrationState(enum.Enum):
    TRY_PRIMARY = "try_primary"
    TRY_SECONDARY = "try_secondary"
    REPAIR = "repair"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    EXHAUSTED_FALLBACK = "exhausted_fallback"


TERMINAL_STATES = {
    OrchestrationState.SUCCEEDED,
    OrchestrationState.DEGRADED,
    OrchestrationState.EXHAUSTED_FALLBACK,
}


class StepEvent(enum.Enum):
    EXTRACTED = "extracted"
    EXTRACTION_FAILED = "extraction_failed"
    PROVIDER_ERROR = "provider_error"


class Step(BaseModel):
    state: OrchestrationState = OrchestrationState.TRY_PRIMARY
    repairs: int = 0

    model_config = {"frozen": True}


def next_step(step: Step, event: StepEvent, max_repairs: int) -> Step:
    """Pure transition: TRY_PRIMARY -> TRY_SECONDARY -> REPAIR(n) -> DEGRADED."""
    if step.state in TERMINAL_STATES:
        raise ValueError(f"No transition out of terminal state {step.state.value}")

    if event == StepEvent.EXTRACTED:
        return Step(state=OrchestrationState.SUCCEEDED, repairs=step.repairs)

    if step.state == OrchestrationState.TRY_PRIMARY:
        return Step(state=OrchestrationState.TRY_SECONDARY)

    if step.state == OrchestrationState.TRY_SECONDARY and event == StepEvent.PROVIDER_ERROR:
        return Step(state=OrchestrationState.EXHAUSTED_FALLBACK)

    # Secondary answered badly, or a repair attempt failed either way
    if step.repairs < max_repairs:
        return Step(state=OrchestrationState.REPAIR, repairs=step.repairs + 1)
    return Step(state=OrchestrationState.DEGRADED, repairs=step.repairs)


def degraded_result() -> ResearchResult:
    return ResearchResult(summary=DEGRADED_SUMMARY, details={}, confidence=DEGRADED_CONFIDENCE)


class LLMOrchestrator:
    def __init__(
        self,
        settings: Settings,
        primary: OpenRouterClient,
        secondary: AnthropicClient,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.settings = settings
        self.primary = primary
        self.secondary = secondary
        self.prompt_builder = prompt_builder or PromptBuilder()

    async def research(self, query: str, row_data: dict[str, str]) -> OrchestrationOutcome:
        """Resolve one validated ResearchResult for a row.

        Raises AllProvidersFailedError only when both providers raise. Malformed
        output always ends in SUCCEEDED (possibly salvaged) or DEGRADED.
        """
        request = CompletionRequest(
            messages=self.prompt_builder.build_research_messages(query, row_data),
            temperature=self.settings.DEFAULT_TEMPERATURE,
            max_tokens=self.settings.DEFAULT_MAX_TOKENS,
        )
        max_repairs = self.settings.MAX_REPAIR_ATTEMPTS

        step = Step()
        provider = Provider.PRIMARY
        last_response = ""
        result: ResearchResult | None = None
        primary_error = ""
        secondary_error = ""
        errors: list[str] = []

        while step.state not in TERMINAL_STATES:
            current = step.state
            try:
                if current == OrchestrationState.TRY_PRIMARY:
                    last_response = await self._call_primary(request)
                    provider = Provider.PRIMARY
                elif current == OrchestrationState.TRY_SECONDARY:
                    last_response = (await self.secondary.complete(request)).content
                    provider = Provider.SECONDARY
                else:
                    logger.info("repair_attempt", attempt=step.repairs)
                    prompt = self.prompt_builder.build_repair_prompt(query, last_response)
                    last_response = await self.secondary.simple_complete(prompt, strict_json=True)
                    provider = Provider.SECONDARY
            except Exception as e:
                message = str(e) or type(e).__name__
                errors.append(message)
                if current == OrchestrationState.TRY_PRIMARY:
                    primary_error = message
                    logger.warning("primary_failed", error=message)
                elif current == OrchestrationState.TRY_SECONDARY:
                    secondary_error = message
                    logger.error("secondary_failed", error=message)
                else:
                    logger.warning("repair_failed", attempt=step.repairs, error=message)
                step = next_step(step, StepEvent.PROVIDER_ERROR, max_repairs)
                continue

            result = extract_research_result(last_response)
            if result is None:
                if current == OrchestrationState.TRY_PRIMARY:
                    primary_error = "invalid JSON response"
                    errors.append(primary_error)
                logger.warning("invalid_json", state=current.value)
                step = next_step(step, StepEvent.EXTRACTION_FAILED, max_repairs)
            else:
                step = next_step(step, StepEvent.EXTRACTED, max_repairs)

        if step.state == OrchestrationState.EXHAUSTED_FALLBACK:
            logger.error("all_providers_failed", primary=primary_error, secondary=secondary_error)
            raise AllProvidersFailedError(primary_error, secondary_error)

        attempts = 1 + step.repairs
        fallback_used = provider == Provider.SECONDARY
        if step.state == OrchestrationState.DEGRADED:
            logger.error("extraction_exhausted", attempts=attempts)
            return OrchestrationOutcome(
                provider=provider,
                fallback_used=fallback_used,
                attempts=attempts,
                state=TerminalState.DEGRADED,
                result=degraded_result(),
                errors=errors,
            )

        logger.info("research_extracted", provider=provider.value, attempts=attempts)
        return OrchestrationOutcome(
            provider=provider,
            fallback_used=fallback_used,
            attempts=attempts,
            state=TerminalState.SUCCEEDED,
            result=result,
            errors=errors,
        )

    async def complete(
        self, request: CompletionRequest
    ) -> tuple[CompletionResponse, Provider, bool]:
        """Primary under its short timeout, secondary on any primary failure."""
        try:
            response = await asyncio.wait_for(
                self.primary.complete(request), timeout=self.settings.PRIMARY_TIMEOUT_SECONDS
            )
            return response, Provider.PRIMARY, False
        except Exception as e:
            primary_error = str(e) or type(e).__name__
            logger.warning("primary_failed_falling_back", error=primary_error)

        try:
            response = await self.secondary.complete(request)
        except Exception as e:
            secondary_error = str(e) or type(e).__name__
            logger.error("all_providers_failed", primary=primary_error, secondary=secondary_error)
            raise AllProvidersFailedError(primary_error, secondary_error) from e
        return response, Provider.SECONDARY, True

    async def stream_completion(
        self,
        request: CompletionRequest,
        on_chunk: Callable[[str], None] | None = None,
        on_sentence: Callable[[str], None] | None = None,
    ) -> str:
        """Stream from primary, emitting whole sentences; non-streaming secondary on failure."""
        buffer = ""
        full_content = ""
        try:
            async for chunk in self.primary.stream(request):
                full_content += chunk
                if on_chunk:
                    on_chunk(chunk)

                buffer += chunk
                last_index = 0
                for match in _SENTENCE_END.finditer(buffer):
                    sentence = buffer[last_index : match.start() + 1].strip()
                    if len(sentence) > MIN_SENTENCE_CHARS and on_sentence:
                        on_sentence(sentence)
                    last_index = match.end()
                if last_index > 0:
                    buffer = buffer[last_index:]
        except Exception as e:
            logger.warning("stream_failed_falling_back", error=str(e))
            response = await self.secondary.complete(request)
            return response.content

        if buffer.strip() and on_sentence:
            on_sentence(buffer.strip())
        return full_content

    async def _call_primary(self, request: CompletionRequest) -> str:
        timeout = self.settings.PRIMARY_TIMEOUT_SECONDS
        try:
            response = await asyncio.wait_for(self.primary.complete(request), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(Provider.PRIMARY.value, timeout) from e
        return response.content
