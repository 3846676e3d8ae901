"""Tool Ledger — Audit Trail Writer.

Records field-level changes to tools in tool_change_log. The actor is an
explicit argument of every call; nothing is read from connection state.
Entries are added to the caller's session and written with the rest of
the transaction.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import ChangeType
from db.models import Tool, ToolChangeLog
from logger import get_logger

logger = get_logger(__name__)

# Fields whose changes are audited, in the order they are written
AUDITED_FIELDS: tuple[str, ...] = (
    "tool_name",
    "format",
    "current_factory_id",
    "status",
    "lifecycle_state",
    "current_tool_life",
    "number_of_regrinding",
    "number_of_resegmentation",
)

Changes = dict[str, tuple[Any, Any]]


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def snapshot(tool: Tool) -> dict[str, Any]:
    """Current values of the audited fields."""
    return {field: getattr(tool, field) for field in AUDITED_FIELDS}


def diff(before: dict[str, Any], tool: Tool) -> Changes:
    """Audited fields whose value differs from a previous snapshot."""
    changes: Changes = {}
    for field in AUDITED_FIELDS:
        old, new = before.get(field), getattr(tool, field)
        if to_text(old) != to_text(new):
            changes[field] = (old, new)
    return changes


class AuditTrail:
    """Writes tool_change_log entries attributed to an actor."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.logger = logger.bind(service="AuditTrail")

    def record_insert(self, tool: Tool, *, actor_id: str, timestamp: datetime) -> ToolChangeLog:
        entry = ToolChangeLog(
            tool_id=tool.tool_id,
            change_type=ChangeType.INSERT,
            field_changed=None,
            old_value=None,
            new_value=tool.label,
            changed_by=actor_id,
            change_timestamp=timestamp,
        )
        self.db.add(entry)
        return entry

    def record_changes(
        self,
        tool_id: int,
        changes: Changes,
        *,
        actor_id: str,
        timestamp: datetime,
        change_type: ChangeType = ChangeType.UPDATE,
    ) -> list[ToolChangeLog]:
        """Add one UPDATE entry per changed field.

        All entries share the timestamp, so a status change can be matched
        with the ledger entry written in the same operation.
        """
        entries = [
            ToolChangeLog(
                tool_id=tool_id,
                change_type=change_type,
                field_changed=field,
                old_value=to_text(old),
                new_value=to_text(new),
                changed_by=actor_id,
                change_timestamp=timestamp,
            )
            for field, (old, new) in changes.items()
        ]
        self.db.add_all(entries)
        if entries:
            self.logger.debug(
                "audit_entries_recorded",
                tool_id=tool_id,
                fields=list(changes),
                actor_id=actor_id,
            )
        return entries
