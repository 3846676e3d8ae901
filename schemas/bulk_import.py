"""Tool Ledger — Historical Import Schemas.

Input for replaying a tool's maintenance history and the per-item
import report.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from schemas.common import ValidatedModel
from schemas.tool import ToolBase


class LifecycleEventKind(str, Enum):
    INITIAL = "initial"
    REGRINDING = "regrinding"
    RESEGMENTATION = "resegmentation"


class LifecycleEventSpec(ValidatedModel):
    """One historical lifecycle event.

    life_value is the cumulative tool life at the event, not a delta.
    """

    event_type: LifecycleEventKind
    life_value: float = Field(..., ge=0)
    date: dt.date
    sequence: Optional[int] = Field(None, ge=1, description="Ignored; sequences are renumbered per type")

    @field_validator("event_type", mode="before")
    @classmethod
    def normalize_event_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class ToolImportSpec(ToolBase):
    """A tool to register together with its historical events."""

    lifecycle_events: list[LifecycleEventSpec] = Field(default_factory=list)


class ImportSuccess(BaseModel):
    row: int
    tool: str
    tool_id: int
    events_imported: int


class ImportFailure(BaseModel):
    row: int
    tool: Optional[str] = None
    error_type: str
    error: str


class ImportResult(BaseModel):
    successes: list[ImportSuccess] = Field(default_factory=list)
    failures: list[ImportFailure] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)
