"""Tool Ledger — History Schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class HistoryEntry(BaseModel):
    """One row of a tool's unified history.

    entry_type "change" rows come from the field audit trail; "maintenance"
    rows are ledger entries no audit row was correlated with (imports).
    """

    entry_type: Literal["change", "maintenance"]
    timestamp: datetime
    tool_id: int

    # Audit trail fields
    log_id: Optional[int] = None
    change_type: Optional[str] = None
    field_changed: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[str] = None

    # Ledger fields
    maintenance_history_id: Optional[int] = None
    event_type: Optional[str] = None
    event_sequence: Optional[int] = None
    display_label: Optional[str] = None
    tool_life_at_event: Optional[float] = None
    life_consumed: Optional[float] = None
