"""Map-reduce aggregation of per-row research into one narrative."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from row_research.models.research import ResearchResult
from row_research.prompt_builder import PromptBuilder
from row_research.rate_limiter import chunk_list

if TYPE_CHECKING:
    from row_research.anthropic_client import AnthropicClient
    from row_research.config import Settings

logger = structlog.get_logger()

MAX_SUMMARY_WORDS = 200
AGGREGATION_CHUNK_SIZE = 5
MAX_KEY_FINDINGS = 3
FALLBACK_SUMMARY_COUNT = 3
ELLIPSIS = "..."


def truncate_to_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words]) + ELLIPSIS


def map_summarize(results: list[ResearchResult], max_words: int = MAX_SUMMARY_WORDS) -> list[str]:
    """Summary plus up to three key findings per result, capped at max_words."""
    summaries = []
    for result in results:
        summary = result.summary
        findings = result.details.get("key_findings") if isinstance(result.details, dict) else None
        if isinstance(findings, list) and findings:
            summary += " Key findings: " + "; ".join(str(f) for f in findings[:MAX_KEY_FINDINGS])
        summaries.append(truncate_to_words(summary, max_words))
    return summaries


class MapReduceAggregator:
    """
    Reduce is hierarchical but capped at two levels: with more than
    chunk_size summaries, each chunk is aggregated concurrently and the chunk
    results are aggregated once more, however many chunks there are.
    """

    def __init__(
        self,
        secondary: AnthropicClient,
        settings: Settings | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        self.secondary = secondary
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_summary_words = settings.MAX_SUMMARY_WORDS if settings else MAX_SUMMARY_WORDS
        self.chunk_size = settings.AGGREGATION_CHUNK_SIZE if settings else AGGREGATION_CHUNK_SIZE

    def map_summarize(self, results: list[ResearchResult]) -> list[str]:
        return map_summarize(results, self.max_summary_words)

    async def reduce_aggregate(self, summaries: list[str], original_query: str) -> str:
        if len(summaries) <= self.chunk_size:
            return await self.aggregate_summaries(summaries, original_query)

        chunks = chunk_list(summaries, self.chunk_size)
        logger.info("reduce_hierarchical", summaries=len(summaries), chunks=len(chunks))
        first_level = await asyncio.gather(
            *(self.aggregate_summaries(chunk, original_query) for chunk in chunks)
        )
        return await self.aggregate_summaries(list(first_level), original_query)

    async def aggregate_summaries(self, summaries: list[str], original_query: str) -> str:
        """One aggregation call; first three summaries concatenated on failure."""
        prompt = self.prompt_builder.build_aggregation_prompt(summaries, original_query)
        try:
            return await self.secondary.simple_complete(prompt, temperature=0.5, max_tokens=500)
        except Exception as e:
            logger.warning("aggregation_failed", error=str(e), summaries=len(summaries))
            return " ".join(summaries[:FALLBACK_SUMMARY_COUNT])

    async def map_reduce_research(
        self, results: list[ResearchResult], original_query: str
    ) -> tuple[str, list[str]]:
        logger.info("map_reduce_started", results=len(results))
        individual = self.map_summarize(results)
        summary = await self.reduce_aggregate(individual, original_query)
        logger.info("map_reduce_complete", summaries=len(individual))
        return summary, individual

    async def generate_voice_summary(self, aggregated_summary: str, entity_count: int) -> str:
        """Short conversational rephrasing for TTS. Never raises."""
        prompt = self.prompt_builder.build_voice_prompt(aggregated_summary, entity_count)
        try:
            return await self.secondary.simple_complete(prompt, temperature=0.7, max_tokens=200)
        except Exception as e:
            logger.warning("voice_summary_failed", error=str(e))
            return f"I've completed research on {entity_count} items. {aggregated_summary}"
