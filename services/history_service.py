"""Tool Ledger — History Reconstruction.

Builds a tool's chronological history from two sources:

    - tool_change_log: one entry per changed field (who, when, old, new)
    - maintenance_events: the ledger

A status change and the ledger entry it produced are written with the
same timestamp, so an audit entry on "status" is matched to the ledger
entry of the same tool at the same millisecond, of the event type its new
status stands for, and annotated with its id.
Ledger entries nothing matched (imported history) appear as standalone
"maintenance" entries.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import MaintenanceEventType
from db.models import Factory, MaintenanceEvent, Tool, ToolChangeLog
from schemas.history import HistoryEntry
from schemas.ledger import MaintenanceEventRead
from services.base import BaseService, as_utc
from services.projection_service import parse_event_type

FACTORY_FIELD = "current_factory_id"
STATUS_FIELD = "status"


def millisecond_key(tool_id: int, timestamp: datetime) -> tuple[int, datetime]:
    ts = as_utc(timestamp)
    return tool_id, ts.replace(microsecond=ts.microsecond // 1000 * 1000)


InstantKey = tuple[int, datetime, MaintenanceEventType]


class HistoryService(BaseService[Tool]):
    """Read-only history views of a tool."""

    def __init__(self, db: AsyncSession):
        super().__init__(Tool, db)

    async def _ledger(self, tool_id: int, *, include_deleted: bool = True) -> list[MaintenanceEvent]:
        query = select(MaintenanceEvent).where(MaintenanceEvent.tool_id == tool_id)
        if not include_deleted:
            query = query.where(MaintenanceEvent.is_deleted.is_(False))
        query = query.order_by(MaintenanceEvent.timestamp, MaintenanceEvent.event_id)
        return list((await self.db.execute(query)).scalars().all())

    async def _factory_names(self) -> dict[str, str]:
        result = await self.db.execute(select(Factory.factory_id, Factory.name))
        return {str(factory_id): name for factory_id, name in result.all()}

    @staticmethod
    def _factory_label(value: str | None, names: dict[str, str]) -> str | None:
        if value is None:
            return None
        return names.get(value, f"ID: {value}")

    async def get_unified_history(self, tool_id: int) -> list[HistoryEntry]:
        """Audit trail and ledger of a tool merged into one chronological list.

        Raises:
            NotFoundError: Unknown tool.
        """
        await self.get_or_raise(tool_id)

        changes = (
            await self.db.execute(
                select(ToolChangeLog)
                .where(ToolChangeLog.tool_id == tool_id)
                .order_by(ToolChangeLog.change_timestamp, ToolChangeLog.log_id)
            )
        ).scalars().all()
        ledger = await self._ledger(tool_id)
        factory_names = await self._factory_names()

        # Several events of one type at the same instant pair up in write order
        events_by_instant: dict[InstantKey, list[MaintenanceEvent]] = defaultdict(list)
        for event in ledger:
            key = (*millisecond_key(event.tool_id, event.timestamp), MaintenanceEventType(event.event_type))
            events_by_instant[key].append(event)

        matched: set[int] = set()
        entries: list[HistoryEntry] = []

        for change in changes:
            event = None
            kind = MaintenanceEventType.from_status(change.new_value)
            if change.field_changed == STATUS_FIELD and kind is not None:
                candidates = events_by_instant.get(
                    (*millisecond_key(change.tool_id, change.change_timestamp), kind)
                )
                if candidates:
                    event = candidates.pop(0)
                    matched.add(event.event_id)

            old_value, new_value = change.old_value, change.new_value
            if change.field_changed == FACTORY_FIELD:
                old_value = self._factory_label(old_value, factory_names)
                new_value = self._factory_label(new_value, factory_names)

            entries.append(
                HistoryEntry(
                    entry_type="change",
                    timestamp=as_utc(change.change_timestamp),
                    tool_id=change.tool_id,
                    log_id=change.log_id,
                    change_type=change.change_type.value,
                    field_changed=change.field_changed,
                    old_value=old_value,
                    new_value=new_value,
                    changed_by=change.changed_by,
                    maintenance_history_id=event.event_id if event else None,
                    event_type=event.event_type.value if event else None,
                    event_sequence=event.event_sequence if event else None,
                    display_label=event.display_label if event else None,
                    tool_life_at_event=event.tool_life_at_event if event else None,
                    life_consumed=event.life_consumed if event else None,
                )
            )

        for event in ledger:
            if event.event_id in matched:
                continue
            entries.append(
                HistoryEntry(
                    entry_type="maintenance",
                    timestamp=as_utc(event.timestamp),
                    tool_id=event.tool_id,
                    maintenance_history_id=event.event_id,
                    event_type=event.event_type.value,
                    event_sequence=event.event_sequence,
                    display_label=event.display_label,
                    tool_life_at_event=event.tool_life_at_event,
                    life_consumed=event.life_consumed,
                )
            )

        # Stable: audit entries keep their write order within an instant
        entries.sort(key=lambda entry: entry.timestamp)
        return entries

    async def get_maintenance_history(
        self,
        tool_id: int,
        *,
        include_deleted: bool = False,
    ) -> list[MaintenanceEventRead]:
        """Ledger entries of a tool, oldest first, labelled e.g. "Regrinding 2"."""
        await self.get_or_raise(tool_id)
        return [
            MaintenanceEventRead.model_validate(event)
            for event in await self._ledger(tool_id, include_deleted=include_deleted)
        ]

    async def get_last_maintenance_event(
        self,
        tool_id: int,
        event_type: MaintenanceEventType | str | None = None,
    ) -> MaintenanceEventRead | None:
        """Most recent non-deleted ledger entry, optionally of one type."""
        await self.get_or_raise(tool_id)

        query = select(MaintenanceEvent).where(
            MaintenanceEvent.tool_id == tool_id,
            MaintenanceEvent.is_deleted.is_(False),
        )
        if event_type is not None:
            query = query.where(MaintenanceEvent.event_type == parse_event_type(event_type))
        query = query.order_by(MaintenanceEvent.timestamp.desc(), MaintenanceEvent.event_id.desc()).limit(1)

        event = (await self.db.execute(query)).scalar_one_or_none()
        return MaintenanceEventRead.model_validate(event) if event else None
