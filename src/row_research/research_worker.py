"""Research worker: rate-limited orchestration over spreadsheet rows."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from row_research.models.outcome import BatchOutcome, OrchestrationOutcome
from row_research.models.research import ResearchResult, Row, RowProgress, RowStatus
from row_research.rate_limiter import RateLimiter

if TYPE_CHECKING:
    from row_research.config import Settings
    from row_research.llm_orchestrator import LLMOrchestrator

logger = structlog.get_logger()

ProgressHandler = Callable[[RowProgress], None]


class ResearchWorker:
    def __init__(
        self,
        orchestrator: LLMOrchestrator,
        on_progress: ProgressHandler,
        rate_limiter: RateLimiter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.on_progress = on_progress
        if rate_limiter is None:
            rate_limiter = (
                RateLimiter(
                    concurrency=settings.RATE_LIMIT_CONCURRENCY,
                    max_retries=settings.RATE_LIMIT_MAX_RETRIES,
                    initial_backoff=settings.RATE_LIMIT_INITIAL_BACKOFF_SECONDS,
                )
                if settings
                else RateLimiter()
            )
        self.rate_limiter = rate_limiter

    def stop(self) -> None:
        self.rate_limiter.stop()

    async def process_rows(self, query: str, rows: list[Row]) -> BatchOutcome:
        """Research every row. Failed rows are reported through progress only."""
        results: dict[str, ResearchResult] = {}
        started: set[str] = set()

        logger.info("research_batch_started", rows=len(rows), query=query[:100])

        async def process(row: Row, index: int) -> OrchestrationOutcome:
            if row.id not in started:
                started.add(row.id)
                row.status = RowStatus.PROCESSING
                self._emit(RowProgress(row_id=row.id, status=RowStatus.PROCESSING))

            outcome = await self.orchestrator.research(query, row.data)
            logger.info(
                "row_researched",
                row_id=row.id,
                provider=outcome.provider.value,
                fallback_used=outcome.fallback_used,
                attempts=outcome.attempts,
            )
            return outcome

        def settle(
            completed: int,
            total: int,
            row: Row,
            outcome: OrchestrationOutcome | None,
            error: BaseException | None,
        ) -> None:
            if error is not None or outcome is None or outcome.result is None:
                row.status = RowStatus.ERROR
                self._emit(
                    RowProgress(
                        row_id=row.id,
                        status=RowStatus.ERROR,
                        error=str(error) if error else "Unknown error",
                    )
                )
            else:
                result = outcome.result.stamped()
                row.status = RowStatus.COMPLETED
                row.research = result
                results[row.id] = result
                self._emit(
                    RowProgress(
                        row_id=row.id,
                        status=RowStatus.COMPLETED,
                        result=result,
                        provider=outcome.provider.value,
                        fallback_used=outcome.fallback_used,
                        attempts=outcome.attempts,
                    )
                )
            logger.info("research_progress", completed=completed, total=total)

        await self.rate_limiter.process_with_retry(rows, process, settle)

        logger.info("research_batch_complete", succeeded=len(results), total=len(rows))
        return BatchOutcome(results=results, succeeded=len(results), total=len(rows))

    async def process_single_row(self, query: str, row: Row) -> ResearchResult | None:
        """Ad-hoc single row, no rate limiter. None on total provider outage."""
        row.status = RowStatus.PROCESSING
        self._emit(RowProgress(row_id=row.id, status=RowStatus.PROCESSING))

        try:
            outcome = await self.orchestrator.research(query, row.data)
        except Exception as e:
            logger.warning("single_row_failed", row_id=row.id, error=str(e))
            row.status = RowStatus.ERROR
            self._emit(RowProgress(row_id=row.id, status=RowStatus.ERROR, error=str(e)))
            return None

        result = outcome.result.stamped()
        row.status = RowStatus.COMPLETED
        row.research = result
        self._emit(
            RowProgress(
                row_id=row.id,
                status=RowStatus.COMPLETED,
                result=result,
                provider=outcome.provider.value,
                fallback_used=outcome.fallback_used,
                attempts=outcome.attempts,
            )
        )
        return result

    def _emit(self, progress: RowProgress) -> None:
        try:
            self.on_progress(progress)
        except Exception:
            logger.exception("progress_handler_error", row_id=progress.row_id)
