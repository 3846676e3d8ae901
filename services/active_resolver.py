"""Tool Ledger — Active Tool Resolution.

Which tool is currently mounted where is never stored; it is derived from
the append-only drive_status stream at read time:

    1. Reduce the stream to the latest record per group (tool, or tool on
       one machine). The latest record is the one with the greatest
       timestamp; among equal timestamps the later-written record wins.
    2. Only then filter (status == "in_drive", tool type, factory).

Filtering before the reduction would resurrect a tool whose last record
is "removed", so the order matters.

The reduction itself is resolve_active(), a pure function usable on any
iterable of records (ORM rows, dicts, pydantic models).
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping
from datetime import datetime
from typing import Any, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import DriveStatus
from db.models import Factory, Machine, StatusRecord, Tool
from schemas.usage import ActiveMachine, ActiveTool, StatusRecordRead
from services.base import BaseService, as_utc, utcnow

R = TypeVar("R")

GroupBy = Union[str, tuple[str, ...], Callable[[Any], Hashable]]


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record[name]
    return getattr(record, name)


def _key_func(group_by: GroupBy) -> Callable[[Any], Hashable]:
    if callable(group_by):
        return group_by
    if isinstance(group_by, str):
        return lambda record: _field(record, group_by)
    return lambda record: tuple(_field(record, name) for name in group_by)


def resolve_active(
    records: Iterable[R],
    group_by: GroupBy,
    required_status: str | None = None,
    predicate: Callable[[R], bool] | None = None,
) -> dict[Hashable, R]:
    """Reduce a status stream to the latest record per group.

    Args:
        records: Status records in write order, each with timestamp and
            status fields.
        group_by: Attribute name, tuple of attribute names (composite key)
            or a key function.
        required_status: Keep only groups whose latest record has this
            status.
        predicate: Keep only groups whose latest record satisfies it.

    Returns:
        Mapping of group key to that group's latest record. Groups with no
        records, or whose latest record is filtered out, are absent.
    """
    key_of = _key_func(group_by)
    latest: dict[Hashable, R] = {}

    for record in records:
        key = key_of(record)
        current = latest.get(key)
        # >= so the later-written record wins a timestamp tie
        if current is None or _field(record, "timestamp") >= _field(current, "timestamp"):
            latest[key] = record

    if required_status is None and predicate is None:
        return latest

    return {
        key: record
        for key, record in latest.items()
        if (required_status is None or _field(record, "status") == required_status)
        and (predicate is None or predicate(record))
    }


class ActiveToolService(BaseService[StatusRecord]):
    """Read service over the drive status stream.

    Every call reads the stream afresh; nothing is cached.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(StatusRecord, db)

    async def _stream(
        self,
        *,
        machine_id: int | None = None,
        tool_id: int | None = None,
    ) -> list[StatusRecord]:
        query = select(StatusRecord).order_by(StatusRecord.status_id)
        if machine_id is not None:
            query = query.where(StatusRecord.machine_id == machine_id)
        if tool_id is not None:
            query = query.where(StatusRecord.tool_id == tool_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _tools_by_id(self, tool_ids: Iterable[int]) -> dict[int, Tool]:
        ids = set(tool_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(Tool).where(Tool.tool_id.in_(ids)))
        return {tool.tool_id: tool for tool in result.scalars().all()}

    async def latest_status_by_tool(self) -> dict[int, StatusRecordRead]:
        """Latest status of every tool across all machines."""
        latest = resolve_active(await self._stream(), "tool_id")
        return {tool_id: StatusRecordRead.model_validate(record) for tool_id, record in latest.items()}

    async def get_active_tool(self, machine_id: int, tool_type: str) -> ActiveTool | None:
        """Tool of the given type currently in the drive of one machine.

        Only this machine's records are considered, so a tool later moved
        to another machine does not hide or duplicate it here.
        """
        wanted = tool_type.strip().lower()
        in_drive = resolve_active(
            await self._stream(machine_id=machine_id),
            "tool_id",
            required_status=DriveStatus.IN_DRIVE.value,
        )
        tools = await self._tools_by_id(in_drive)

        candidates = [
            (record, tools[tool_id])
            for tool_id, record in in_drive.items()
            if tool_id in tools and tools[tool_id].type.value == wanted
        ]
        if not candidates:
            return None

        record, tool = max(candidates, key=lambda pair: (pair[0].timestamp, pair[0].status_id))
        return ActiveTool(
            tool_id=tool.tool_id,
            tool_name=tool.tool_name,
            type=tool.type.value,
            machine_id=machine_id,
            since=record.timestamp,
        )

    async def get_active_machines(
        self,
        tool_type: str,
        factory_id: int | None = None,
    ) -> list[ActiveMachine]:
        """Machines currently holding an in-drive tool of the given type.

        Sorted by factory name, then machine name.
        """
        wanted = tool_type.strip().lower()
        in_drive = resolve_active(
            await self._stream(),
            "tool_id",
            required_status=DriveStatus.IN_DRIVE.value,
        )
        tools = await self._tools_by_id(in_drive)

        machine_query = select(Machine, Factory.name).outerjoin(
            Factory, Machine.factory_id == Factory.factory_id
        )
        if factory_id is not None:
            machine_query = machine_query.where(Machine.factory_id == factory_id)
        machines = {
            machine.machine_id: (machine, factory_name)
            for machine, factory_name in (await self.db.execute(machine_query)).all()
        }

        by_machine: dict[int, tuple[StatusRecord, Tool]] = {}
        for tool_id, record in in_drive.items():
            tool = tools.get(tool_id)
            if tool is None or tool.type.value != wanted or record.machine_id not in machines:
                continue
            held = by_machine.get(record.machine_id)
            if held is None or record.timestamp >= held[0].timestamp:
                by_machine[record.machine_id] = (record, tool)

        active = []
        for machine_id, (record, tool) in by_machine.items():
            machine, factory_name = machines[machine_id]
            active.append(
                ActiveMachine(
                    machine_id=machine.machine_id,
                    machine_name=machine.machine_name,
                    factory_id=machine.factory_id,
                    factory_name=factory_name,
                    tool_id=tool.tool_id,
                    tool_name=tool.tool_name,
                )
            )
        active.sort(key=lambda m: (m.factory_name or "", m.machine_name))
        return active

    async def is_tool_in_use(self, tool_id: int) -> bool:
        latest = resolve_active(await self._stream(tool_id=tool_id), "tool_id")
        record = latest.get(tool_id)
        return record is not None and record.status == DriveStatus.IN_DRIVE.value

    async def record_status(
        self,
        tool_id: int,
        machine_id: int,
        status: str,
        timestamp: datetime | None = None,
    ) -> StatusRecordRead:
        """Append a record to the drive status stream."""
        record = StatusRecord(
            tool_id=tool_id,
            machine_id=machine_id,
            status=status,
            timestamp=as_utc(timestamp) if timestamp else utcnow(),
        )
        self.db.add(record)
        await self.db.flush()
        self.logger.debug(
            "drive_status_recorded",
            tool_id=tool_id,
            machine_id=machine_id,
            status=status,
        )
        return StatusRecordRead.model_validate(record)
