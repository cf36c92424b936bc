"""OrchestrationOutcome, BatchOutcome, ItemOutcome models."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel

from row_research.models.research import ResearchResult


class Provider(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class TerminalState(str, enum.Enum):
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    EXHAUSTED_FALLBACK = "exhausted_fallback"


class OrchestrationOutcome(BaseModel):
    provider: Provider
    fallback_used: bool = False
    attempts: int = 0
    state: TerminalState = TerminalState.SUCCEEDED
    result: ResearchResult | None = None
    errors: list[str] = []


class BatchOutcome(BaseModel):
    results: dict[str, ResearchResult] = {}
    succeeded: int = 0
    total: int = 0


class ItemOutcome(BaseModel):
    index: int
    item: Any = None
    result: Any = None
    error: Exception | None = None
    attempts: int = 0

    model_config = {"arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        return self.error is None
