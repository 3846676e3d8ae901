"""Tool Ledger — Usage Rollup Service.

Aggregates raw usage telemetry into the daily_tool_summary rollup and
serves the daily, cumulative and intraday read models built on it.

The rollup is a plain accumulator: merging the same delta twice counts it
twice. Each merge is a single INSERT ... ON CONFLICT DO UPDATE statement,
so concurrent merges into the same (tool, machine, date) key add up
without locking.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from core.exceptions import NotFoundError, UnsupportedDialectError, ValidationError
from db.models import DailyToolSummary, Tool, UsageSample
from schemas.usage import (
    ChartData,
    ChartPoint,
    DailySummary,
    HourlyUsage,
    IntradayUsage,
    MachineUsage,
)
from services.active_resolver import ActiveToolService
from services.base import BaseService, as_utc

UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

ROLLUP_KEY = ("tool_id", "machine_id", "summary_date")


def parse_bucket_date(value: date | datetime | str) -> date:
    """Normalize a rollup date key.

    The value is taken at face value: a datetime contributes its own
    calendar date, never shifted through a timezone.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise ValidationError("date", f"'{value}' is not a YYYY-MM-DD date") from exc
    raise ValidationError("date", f"unsupported date value {value!r}")


class RollupService(BaseService[DailyToolSummary]):
    """Daily usage rollup: writes and read models."""

    def __init__(self, db: AsyncSession):
        super().__init__(DailyToolSummary, db)
        self.settings = get_settings().ledger

    # =========================================================================
    # Writes
    # =========================================================================

    async def merge_rollup(
        self,
        tool_id: int,
        machine_id: int,
        summary_date: date | datetime | str,
        revolutions_delta: float,
        hlp_delta: int,
    ) -> None:
        """Add deltas to the (tool, machine, date) accumulator, creating it if needed."""
        bucket = parse_bucket_date(summary_date)
        if revolutions_delta < 0 or hlp_delta < 0:
            raise ValidationError("delta", "rollup deltas must be non-negative")

        dialect = self.db.get_bind().dialect.name
        build_insert = UPSERT_BUILDERS.get(dialect)
        if build_insert is None:
            raise UnsupportedDialectError(dialect, "rollup upsert")

        table = DailyToolSummary.__table__
        stmt = build_insert(table).values(
            tool_id=tool_id,
            machine_id=machine_id,
            summary_date=bucket,
            total_ts_revolutions=revolutions_delta,
            total_hlp_run=hlp_delta,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c[name] for name in ROLLUP_KEY],
            set_={
                "total_ts_revolutions": table.c.total_ts_revolutions + stmt.excluded.total_ts_revolutions,
                "total_hlp_run": table.c.total_hlp_run + stmt.excluded.total_hlp_run,
            },
        )
        await self.db.execute(stmt)

        self.logger.debug(
            "rollup_merged",
            tool_id=tool_id,
            machine_id=machine_id,
            summary_date=bucket.isoformat(),
            revolutions_delta=revolutions_delta,
            hlp_delta=hlp_delta,
        )

    async def record_usage(
        self,
        tool_id: int,
        machine_id: int,
        timestamp: datetime,
        hlp_count: int,
        ts_revolutions: float,
    ) -> None:
        """Ingest one telemetry sample.

        Stores the raw sample, merges it into the rollup bucket of its
        calendar date in the operating timezone, and accrues total_hlp and
        current_tool_life (measured in TS revolutions) on the tool.
        """
        if hlp_count < 0 or ts_revolutions < 0:
            raise ValidationError("usage", "hlp_count and ts_revolutions must be non-negative")
        timestamp = as_utc(timestamp)
        bucket = timestamp.astimezone(self.settings.tz).date()

        async def _record() -> None:
            tool = await self.get_for_update(tool_id, model=Tool)
            if tool.is_retired:
                raise ValidationError("tool_id", f"tool {tool_id} is retired")

            self.db.add(
                UsageSample(
                    tool_id=tool_id,
                    machine_id=machine_id,
                    timestamp=timestamp,
                    hlp_count=hlp_count,
                    ts_revolutions=ts_revolutions,
                )
            )
            await self.merge_rollup(tool_id, machine_id, bucket, ts_revolutions, hlp_count)

            tool.total_hlp = tool.total_hlp + hlp_count
            tool.current_tool_life = tool.current_tool_life + ts_revolutions
            await self.db.flush()

        await self.run_in_transaction("record_usage", _record, tool_id=tool_id)

    # =========================================================================
    # Read models
    # =========================================================================

    async def _require_tool(self, tool_id: int) -> Tool:
        tool = await self.db.get(Tool, tool_id)
        if tool is None:
            raise NotFoundError("Tool", tool_id)
        return tool

    async def get_daily_summary(
        self,
        tool_id: int,
        start: date | str | None = None,
        end: date | str | None = None,
        machine_id: int | None = None,
    ) -> list[DailySummary]:
        """Daily totals for a tool with a per-machine breakdown, oldest first."""
        await self._require_tool(tool_id)

        query = select(
            DailyToolSummary.summary_date,
            DailyToolSummary.machine_id,
            DailyToolSummary.total_ts_revolutions,
            DailyToolSummary.total_hlp_run,
        ).where(DailyToolSummary.tool_id == tool_id)
        if start is not None:
            query = query.where(DailyToolSummary.summary_date >= parse_bucket_date(start))
        if end is not None:
            query = query.where(DailyToolSummary.summary_date <= parse_bucket_date(end))
        if machine_id is not None:
            query = query.where(DailyToolSummary.machine_id == machine_id)
        query = query.order_by(DailyToolSummary.summary_date, DailyToolSummary.machine_id)

        days: dict[date, list[MachineUsage]] = defaultdict(list)
        for row in (await self.db.execute(query)).all():
            days[row.summary_date].append(
                MachineUsage(
                    machine_id=row.machine_id,
                    total_ts_revolutions=float(row.total_ts_revolutions),
                    total_hlp_run=int(row.total_hlp_run),
                )
            )

        return [
            DailySummary(
                summary_date=day,
                total_ts_revolutions=sum(m.total_ts_revolutions for m in machines),
                total_hlp_run=sum(m.total_hlp_run for m in machines),
                machines=machines,
            )
            for day, machines in days.items()
        ]

    async def get_chart_data(self, tool_id: int) -> ChartData:
        """Daily and running-total series with HLP per revolution."""
        summaries = await self.get_daily_summary(tool_id)

        points: list[ChartPoint] = []
        cumulative_revolutions = 0.0
        cumulative_hlp = 0
        for day in summaries:
            cumulative_revolutions += day.total_ts_revolutions
            cumulative_hlp += day.total_hlp_run
            average = (
                round(day.total_hlp_run / day.total_ts_revolutions, 4)
                if day.total_ts_revolutions
                else 0.0
            )
            points.append(
                ChartPoint(
                    summary_date=day.summary_date,
                    daily_revolutions=day.total_ts_revolutions,
                    daily_hlp=day.total_hlp_run,
                    cumulative_revolutions=cumulative_revolutions,
                    cumulative_hlp=cumulative_hlp,
                    average_hlp_per_revolution=average,
                )
            )

        return ChartData(
            tool_id=tool_id,
            points=points,
            total_revolutions=cumulative_revolutions,
            total_hlp=cumulative_hlp,
            total_days=len(points),
            average_daily=cumulative_revolutions / len(points) if points else 0.0,
        )

    async def get_intraday_usage(
        self,
        machine_id: int,
        tool_type: str,
        day: date | str,
    ) -> IntradayUsage:
        """Hourly usage of the tool active on a machine over one shift day.

        The window starts at the configured shift start on the given day
        (operating timezone) and spans 24 hours. Hours without samples are
        omitted.
        """
        tz = self.settings.tz
        window_start = datetime.combine(parse_bucket_date(day), self.settings.shift_start, tzinfo=tz)
        window_end = window_start + timedelta(hours=24)

        active = await ActiveToolService(self.db).get_active_tool(machine_id, tool_type)
        usage = IntradayUsage(
            machine_id=machine_id,
            tool_id=active.tool_id if active else None,
            tool_name=active.tool_name if active else "Unknown Tool",
            window_start=window_start,
            window_end=window_end,
        )
        if active is None:
            return usage

        result = await self.db.execute(
            select(UsageSample.timestamp, UsageSample.hlp_count, UsageSample.ts_revolutions).where(
                and_(
                    UsageSample.tool_id == active.tool_id,
                    UsageSample.timestamp >= window_start.astimezone(timezone.utc),
                    UsageSample.timestamp < window_end.astimezone(timezone.utc),
                )
            )
        )

        hourly: dict[int, dict[str, Any]] = {}
        for sample_ts, hlp, revolutions in result.all():
            hour = as_utc(sample_ts).astimezone(tz).hour
            bucket = hourly.setdefault(hour, {"hlp_count": 0, "ts_revolutions": 0.0})
            bucket["hlp_count"] += int(hlp)
            bucket["ts_revolutions"] += float(revolutions)

        usage.hours = [HourlyUsage(hour=hour, **totals) for hour, totals in sorted(hourly.items())]
        return usage

    async def total_usage(self, tool_id: int) -> tuple[float, int]:
        """Lifetime rollup totals for a tool (revolutions, HLP)."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(DailyToolSummary.total_ts_revolutions), 0.0),
                func.coalesce(func.sum(DailyToolSummary.total_hlp_run), 0),
            ).where(DailyToolSummary.tool_id == tool_id)
        )
        revolutions, hlp = result.one()
        return float(revolutions), int(hlp)
