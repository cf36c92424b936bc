"""Entry point: research a JSON file of rows and print the narrative."""

import argparse
import asyncio
import json
from pathlib import Path

import structlog

from row_research.config import Settings
from row_research.models.research import Row
from row_research.models.run import RunEvent, RunEventType
from row_research.pipeline import ResearchPipeline

logger = structlog.get_logger()


def _load_rows(path: Path) -> list[Row]:
    """Rows file: a JSON list of {"id": ..., "data": {...}} objects."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    return [Row.model_validate(item) for item in raw]


def _log_event(event: RunEvent) -> None:
    if event.type == RunEventType.RESEARCH_UPDATE:
        logger.info("row_update", **event.payload)
    else:
        logger.info(event.type.value, **event.payload)


async def main(rows_path: Path, query: str) -> int:
    settings = Settings()
    pipeline = ResearchPipeline(settings=settings, send_event=_log_event)
    summary = await pipeline.run(query, _load_rows(rows_path))
    if summary is None:
        return 1

    print(summary.narrative or summary.voice_summary)
    return 0


def run() -> None:
    parser = argparse.ArgumentParser(description="Research spreadsheet rows with an LLM")
    parser.add_argument("rows", type=Path, help="JSON file with a list of rows")
    parser.add_argument("query", help="research query applied to every row")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.rows, args.query)))


if __name__ == "__main__":
    run()
