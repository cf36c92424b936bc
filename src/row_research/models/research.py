"""Row, ResearchResult, RowProgress Pydantic models."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class RowStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ResearchResult(BaseModel):
    summary: str = Field(min_length=1)
    details: dict[str, Any] = {}
    sources: list[str] | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp: datetime | None = None

    def stamped(self) -> ResearchResult:
        """Copy with the attach time set, as stored on a row."""
        return self.model_copy(update={"timestamp": datetime.now(timezone.utc)})


class Row(BaseModel):
    id: str
    data: dict[str, str] = {}
    status: RowStatus = RowStatus.PENDING
    research: ResearchResult | None = None


class RowProgress(BaseModel):
    row_id: str
    status: RowStatus
    result: ResearchResult | None = None
    error: str | None = None
    provider: str | None = None
    fallback_used: bool | None = None
    attempts: int | None = None
