"""Tool Ledger — Maintenance Ledger Schemas.

Snapshots of ledger entries and the results of projection operations.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from core.enums import EventSource, MaintenanceEventType
from schemas.common import ReadModel
from schemas.tool import ToolRead


class MaintenanceEventRead(ReadModel):
    event_id: int
    tool_id: int
    event_type: MaintenanceEventType
    tool_life_at_event: float
    life_consumed: float
    event_sequence: int
    hlp_count_at_event: int
    source: EventSource
    timestamp: datetime
    is_deleted: bool
    display_label: str


class MaintenanceResult(BaseModel):
    """Projection and ledger entry after applying a maintenance event."""

    tool: ToolRead
    event: MaintenanceEventRead


class ReversalResult(BaseModel):
    """Outcome of reversing a maintenance event.

    status_reverted is True when the tool left its maintenance status
    because no event of that type remains.
    """

    tool: ToolRead
    deleted_event: MaintenanceEventRead
    status_reverted: bool


class ReconciliationReport(BaseModel):
    """Drift between the projection and a full ledger scan."""

    tool_id: int
    counters_before: dict[str, int]
    counters_expected: dict[str, int]
    life_before: float
    life_floor: float = Field(..., description="life recorded at the latest ledger entry")
    life_after: float
    drift_detected: bool
    repaired: bool
    notes: list[str] = Field(default_factory=list)


class LastMaintenanceEvent(BaseModel):
    event: Optional[MaintenanceEventRead] = None
