"""RunEvent, RunSummary Pydantic models."""

from __future__ import annotations

import enum
import time
from typing import Any

from pydantic import BaseModel, Field


class RunEventType(str, enum.Enum):
    STATUS = "status"
    RESEARCH_UPDATE = "research_update"
    RESEARCH_COMPLETE = "research_complete"
    ERROR = "error"


class RunEvent(BaseModel):
    type: RunEventType
    payload: dict[str, Any] = {}
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))


class RunSummary(BaseModel):
    narrative: str = ""
    voice_summary: str = ""
    individual_summaries: list[str] = []
    succeeded: int = 0
    total: int = 0
