"""End-to-end tests for ResearchPipeline with stubbed provider clients."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from row_research.config import Settings
from row_research.errors import ProviderError
from row_research.llm_orchestrator import LLMOrchestrator
from row_research.map_reduce import MapReduceAggregator
from row_research.models.completion import CompletionResponse
from row_research.models.research import Row
from row_research.models.run import RunEventType
from row_research.pipeline import NO_RESULTS_SUMMARY, ResearchPipeline
from row_research.rate_limiter import RateLimiter

VALID_JSON = json.dumps({"summary": "A solid company.", "confidence": 0.9})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


async def _no_sleep(seconds: float) -> None:
    return None


async def _hang(*args, **kwargs):
    await asyncio.sleep(10)


@pytest.fixture
def settings():
    return Settings(PRIMARY_TIMEOUT_SECONDS=0.05, RATE_LIMIT_MAX_RETRIES=3)


@pytest.fixture
def primary():
    client = MagicMock()
    client.complete = AsyncMock(return_value=CompletionResponse(content=VALID_JSON))
    return client


@pytest.fixture
def secondary():
    client = MagicMock()
    client.complete = AsyncMock(return_value=CompletionResponse(content=VALID_JSON))
    client.simple_complete = AsyncMock(return_value="Narrative across all rows.")
    return client


@pytest.fixture
def events():
    return []


@pytest.fixture
def pipeline(settings, primary, secondary, events):
    return ResearchPipeline(
        settings=settings,
        send_event=events.append,
        orchestrator=LLMOrchestrator(settings=settings, primary=primary, secondary=secondary),
        aggregator=MapReduceAggregator(secondary, settings),
        rate_limiter=RateLimiter(concurrency=2, max_retries=3, sleep=_no_sleep),
    )


def _rows(n: int) -> list[Row]:
    return [Row(id=f"r{i}", data={"company": f"Co {i}"}) for i in range(n)]


def _updates(events, status=None):
    return [
        e.payload
        for e in events
        if e.type == RunEventType.RESEARCH_UPDATE and (status is None or e.payload["status"] == status)
    ]


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------


class TestRun:
    async def test_all_rows_succeed(self, pipeline, events):
        summary = await pipeline.run("What do they sell?", _rows(3))

        assert summary.succeeded == 3
        assert summary.total == 3
        assert summary.narrative == "Narrative across all rows."
        assert len(summary.individual_summaries) == 3
        assert _updates(events, "error") == []
        assert len(_updates(events, "completed")) == 3

        assert events[0].type == RunEventType.STATUS
        assert events[0].payload == {"status": "processing", "message": "Starting research..."}
        complete = events[-1]
        assert complete.type == RunEventType.RESEARCH_COMPLETE
        assert complete.payload["totalProcessed"] == 3
        assert complete.payload["totalRows"] == 3
        assert complete.payload["narrative"] == "Narrative across all rows."

    async def test_primary_timeout_uses_secondary(self, pipeline, primary, events):
        primary.complete = AsyncMock(side_effect=_hang)

        summary = await pipeline.run("q", _rows(2))

        assert summary.succeeded == 2
        completed = _updates(events, "completed")
        assert len(completed) == 2
        for payload in completed:
            assert payload["provider"] == "secondary"
            assert payload["fallback_used"] is True
            assert payload["attempts"] == 1
            assert payload["result"]["summary"] == "A solid company."

    async def test_total_outage(self, pipeline, primary, secondary, events):
        primary.complete = AsyncMock(side_effect=ProviderError("openrouter", "HTTP 502"))
        secondary.complete = AsyncMock(side_effect=ProviderError("anthropic", "HTTP 503"))

        summary = await pipeline.run("q", _rows(1))

        assert summary.succeeded == 0
        assert summary.total == 1
        assert summary.voice_summary == NO_RESULTS_SUMMARY
        assert summary.narrative == ""
        errors = _updates(events, "error")
        assert len(errors) == 1
        assert "All LLM providers failed" in errors[0]["error"]
        assert len(_updates(events, "processing")) == 1
        assert secondary.complete.await_count == 3
        secondary.simple_complete.assert_not_awaited()
        assert events[-1].payload["summary"] == NO_RESULTS_SUMMARY

    async def test_unexpected_error_emits_error_event(self, settings, events, primary, secondary):
        aggregator = MagicMock()
        aggregator.map_reduce_research = AsyncMock(side_effect=RuntimeError("reduce exploded"))
        pipeline = ResearchPipeline(
            settings=settings,
            send_event=events.append,
            orchestrator=LLMOrchestrator(settings=settings, primary=primary, secondary=secondary),
            aggregator=aggregator,
            rate_limiter=RateLimiter(sleep=_no_sleep),
        )

        summary = await pipeline.run("q", _rows(2))

        assert summary is None
        assert events[-1].type == RunEventType.ERROR
        assert events[-1].payload == {"message": "reduce exploded", "code": "ORCHESTRATION_ERROR"}

    async def test_send_event_failure_is_contained(self, settings, primary, secondary):
        def broken(event):
            raise ConnectionError("client gone")

        pipeline = ResearchPipeline(
            settings=settings,
            send_event=broken,
            orchestrator=LLMOrchestrator(settings=settings, primary=primary, secondary=secondary),
            aggregator=MapReduceAggregator(secondary, settings),
            rate_limiter=RateLimiter(sleep=_no_sleep),
        )

        summary = await pipeline.run("q", _rows(2))

        assert summary.succeeded == 2


# ---------------------------------------------------------------------------
# stop()
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_mid_run(self, settings, primary, secondary, events):
        pipeline = ResearchPipeline(
            settings=settings,
            send_event=events.append,
            orchestrator=LLMOrchestrator(settings=settings, primary=primary, secondary=secondary),
            aggregator=MapReduceAggregator(secondary, settings),
            rate_limiter=RateLimiter(concurrency=1, sleep=_no_sleep),
        )

        async def complete_then_stop(request):
            pipeline.stop()
            return CompletionResponse(content=VALID_JSON)

        primary.complete = AsyncMock(side_effect=complete_then_stop)

        summary = await pipeline.run("q", _rows(3))

        assert summary.succeeded == 1
        assert summary.total == 3
        assert len(_updates(events, "processing")) == 1
        errors = _updates(events, "error")
        assert [p["row_id"] for p in errors] == ["r1", "r2"]
        assert all("abandoned" in p["error"] for p in errors)
        assert events[-1].type == RunEventType.RESEARCH_COMPLETE
        assert events[-1].payload["totalProcessed"] == 1

    async def test_stop_before_run(self, pipeline, primary, events):
        pipeline.stop()

        summary = await pipeline.run("q", _rows(2))

        assert summary.succeeded == 0
        assert summary.voice_summary == NO_RESULTS_SUMMARY
        assert _updates(events, "processing") == []
        assert len(_updates(events, "error")) == 2
        primary.complete.assert_not_awaited()


# ---------------------------------------------------------------------------
# process_single_row()
# ---------------------------------------------------------------------------


class TestProcessSingleRow:
    async def test_success(self, pipeline, events):
        result = await pipeline.process_single_row("q", "solo", {"company": "Acme"})

        assert result.summary == "A solid company."
        statuses = [p["status"] for p in _updates(events)]
        assert statuses == ["processing", "completed"]
        assert all(p["row_id"] == "solo" for p in _updates(events))

    async def test_outage_returns_none(self, pipeline, primary, secondary, events):
        primary.complete = AsyncMock(side_effect=ProviderError("openrouter", "HTTP 500"))
        secondary.complete = AsyncMock(side_effect=ProviderError("anthropic", "HTTP 500"))

        result = await pipeline.process_single_row("q", "solo", {})

        assert result is None
        assert [p["status"] for p in _updates(events)] == ["processing", "error"]
