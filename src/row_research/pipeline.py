"""Research run: rows -> worker -> map-reduce -> voice summary, with run events."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from row_research.anthropic_client import AnthropicClient
from row_research.config import Settings
from row_research.llm_orchestrator import LLMOrchestrator
from row_research.map_reduce import MapReduceAggregator
from row_research.models.research import ResearchResult, Row, RowProgress
from row_research.models.run import RunEvent, RunEventType, RunSummary
from row_research.openrouter_client import OpenRouterClient
from row_research.rate_limiter import RateLimiter
from row_research.research_worker import ResearchWorker

logger = structlog.get_logger()

NO_RESULTS_SUMMARY = "Research complete."


class ResearchPipeline:
    def __init__(
        self,
        settings: Settings,
        send_event: Callable[[RunEvent], None],
        orchestrator: LLMOrchestrator | None = None,
        aggregator: MapReduceAggregator | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.settings = settings
        self.send_event = send_event
        secondary = AnthropicClient(settings)
        self.orchestrator = orchestrator or LLMOrchestrator(
            settings=settings, primary=OpenRouterClient(settings), secondary=secondary
        )
        self.aggregator = aggregator or MapReduceAggregator(secondary, settings)
        self.worker = ResearchWorker(
            orchestrator=self.orchestrator,
            on_progress=self._forward_progress,
            rate_limiter=rate_limiter,
            settings=settings,
        )

    def stop(self) -> None:
        """Stop scheduling rows that have not started yet."""
        self.worker.stop()

    async def run(self, query: str, rows: list[Row]) -> RunSummary | None:
        """
        1. status: announce the run
        2. research_update: one per row progress change
        3. map-reduce + voice summary over the rows that succeeded
        4. research_complete: voice summary plus counts
        Unexpected failures become an error event and return None.
        """
        logger.info("research_run_started", query=query[:100], rows=len(rows))
        self._send(
            RunEventType.STATUS,
            {"status": "processing", "message": "Starting research..."},
        )

        try:
            batch = await self.worker.process_rows(query, rows)
            results = list(batch.results.values())

            summary = RunSummary(
                voice_summary=NO_RESULTS_SUMMARY,
                succeeded=batch.succeeded,
                total=batch.total,
            )
            if results:
                narrative, individual = await self.aggregator.map_reduce_research(results, query)
                summary.narrative = narrative
                summary.individual_summaries = individual
                summary.voice_summary = await self.aggregator.generate_voice_summary(
                    narrative, len(results)
                )

            self._send(
                RunEventType.RESEARCH_COMPLETE,
                {
                    "summary": summary.voice_summary,
                    "narrative": summary.narrative,
                    "totalProcessed": summary.succeeded,
                    "totalRows": summary.total,
                },
            )
            logger.info("research_run_complete", succeeded=summary.succeeded, total=summary.total)
            return summary
        except Exception as e:
            logger.exception("research_run_error")
            self._send(
                RunEventType.ERROR,
                {"message": str(e), "code": "ORCHESTRATION_ERROR"},
            )
            return None

    async def process_single_row(
        self, query: str, row_id: str, row_data: dict[str, str]
    ) -> ResearchResult | None:
        return await self.worker.process_single_row(query, Row(id=row_id, data=row_data))

    def _forward_progress(self, progress: RowProgress) -> None:
        self._send(RunEventType.RESEARCH_UPDATE, progress.model_dump(mode="json", exclude_none=True))

    def _send(self, event_type: RunEventType, payload: dict) -> None:
        try:
            self.send_event(RunEvent(type=event_type, payload=payload))
        except Exception:
            logger.exception("send_event_error", event_type=event_type.value)
