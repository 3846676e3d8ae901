"""
Usage Rollup Tests

1. Additive merge: the same delta merged twice counts twice
2. Date keys accepted as date, datetime or ISO string
3. Live telemetry path: sample, rollup bucket and projection accrual
4. Daily summary, chart series and intraday read models
"""

from datetime import date, datetime

import pytest
from sqlalchemy import func, select

from conftest import ACTOR, utc
from core.exceptions import NotFoundError, UnsupportedDialectError, ValidationError
from db.models import DailyToolSummary, Tool, UsageSample
from services import ActiveToolService, RollupService, ToolService
from services.rollup_service import UPSERT_BUILDERS, parse_bucket_date


async def bucket(db_session, tool_id: int, machine_id: int, day: date) -> DailyToolSummary:
    result = await db_session.execute(
        select(DailyToolSummary)
        .where(
            DailyToolSummary.tool_id == tool_id,
            DailyToolSummary.machine_id == machine_id,
            DailyToolSummary.summary_date == day,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# =============================================================================
# Date keys
# =============================================================================

class TestParseBucketDate:

    @pytest.mark.parametrize(
        "value",
        [
            date(2024, 3, 1),
            datetime(2024, 3, 1, 23, 59),
            "2024-03-01",
            " 2024-03-01T05:00:00+02:00 ",
        ],
    )
    def test_accepted_forms(self, value):
        assert parse_bucket_date(value) == date(2024, 3, 1)

    @pytest.mark.parametrize("value", ["03/01/2024", "yesterday", 20240301])
    def test_rejected_forms(self, value):
        with pytest.raises(ValidationError):
            parse_bucket_date(value)


# =============================================================================
# Merge
# =============================================================================

class TestMergeRollup:
    """merge_rollup() is a non-deduplicating accumulator."""

    async def test_double_merge_accumulates(self, db_session, make_tool):
        tool = await make_tool()
        service = RollupService(db_session)

        await service.merge_rollup(tool.tool_id, 1, "2024-03-01", 5, 3)
        await service.merge_rollup(tool.tool_id, 1, date(2024, 3, 1), 5, 3)

        row = await bucket(db_session, tool.tool_id, 1, date(2024, 3, 1))
        assert row.total_ts_revolutions == pytest.approx(10.0)
        assert row.total_hlp_run == 6

    async def test_keys_are_independent(self, db_session, make_tool):
        tool = await make_tool()
        service = RollupService(db_session)

        await service.merge_rollup(tool.tool_id, 1, "2024-03-01", 5, 1)
        await service.merge_rollup(tool.tool_id, 2, "2024-03-01", 7, 2)
        await service.merge_rollup(tool.tool_id, 1, "2024-03-02", 11, 3)

        count = (
            await db_session.execute(
                select(func.count()).select_from(DailyToolSummary).where(
                    DailyToolSummary.tool_id == tool.tool_id
                )
            )
        ).scalar_one()
        assert count == 3
        assert await service.total_usage(tool.tool_id) == (pytest.approx(23.0), 6)

    async def test_negative_delta_rejected(self, db_session, make_tool):
        tool = await make_tool()

        with pytest.raises(ValidationError):
            await RollupService(db_session).merge_rollup(tool.tool_id, 1, "2024-03-01", -1, 0)

    async def test_dialect_without_upsert(self, db_session, make_tool, monkeypatch):
        tool = await make_tool()
        monkeypatch.delitem(UPSERT_BUILDERS, "sqlite")

        with pytest.raises(UnsupportedDialectError) as exc_info:
            await RollupService(db_session).merge_rollup(tool.tool_id, 1, "2024-03-01", 5, 3)

        assert exc_info.value.dialect == "sqlite"
        assert exc_info.value.to_dict()["details"]["operation"] == "rollup upsert"


# =============================================================================
# Live telemetry
# =============================================================================

class TestRecordUsage:
    """record_usage() feeds sample, rollup and projection together."""

    async def test_sample_rollup_and_accrual(self, db_session, make_tool):
        tool = await make_tool()
        service = RollupService(db_session)

        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 8, 0), 4, 12.5)
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 9, 0), 6, 7.5)

        projected = await db_session.get(Tool, tool.tool_id, populate_existing=True)
        assert projected.total_hlp == 10
        assert projected.current_tool_life == pytest.approx(20.0)

        row = await bucket(db_session, tool.tool_id, 1, date(2024, 3, 1))
        assert row.total_hlp_run == 10
        assert row.total_ts_revolutions == pytest.approx(20.0)

        samples = (
            await db_session.execute(
                select(func.count()).select_from(UsageSample).where(UsageSample.tool_id == tool.tool_id)
            )
        ).scalar_one()
        assert samples == 2

    async def test_bucketed_by_operating_timezone(self, db_session, make_tool, monkeypatch):
        tool = await make_tool()
        service = RollupService(db_session)
        monkeypatch.setattr(service.settings, "operating_timezone", "Europe/Amsterdam")

        # 23:30 UTC on 1 March is already 2 March in Amsterdam
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 23, 30), 1, 1.0)

        row = await bucket(db_session, tool.tool_id, 1, date(2024, 3, 2))
        assert row.total_hlp_run == 1

    async def test_negative_sample_rejected(self, db_session, make_tool):
        tool = await make_tool()

        with pytest.raises(ValidationError):
            await RollupService(db_session).record_usage(tool.tool_id, 1, utc(2024, 3, 1, 8), -1, 1.0)

    async def test_unknown_tool(self, db_session):
        with pytest.raises(NotFoundError):
            await RollupService(db_session).record_usage(404, 1, utc(2024, 3, 1, 8), 1, 1.0)

    async def test_retired_tool_rejected(self, db_session, make_tool):
        tool = await make_tool()
        await ToolService(db_session).retire_tool(tool.tool_id, actor_id=ACTOR)

        with pytest.raises(ValidationError):
            await RollupService(db_session).record_usage(tool.tool_id, 1, utc(2024, 3, 1, 8), 1, 1.0)


# =============================================================================
# Read models
# =============================================================================

class TestReadModels:

    async def test_daily_summary_groups_machines(self, db_session, make_tool):
        tool = await make_tool()
        service = RollupService(db_session)
        await service.merge_rollup(tool.tool_id, 1, "2024-03-01", 10, 2)
        await service.merge_rollup(tool.tool_id, 2, "2024-03-01", 5, 1)
        await service.merge_rollup(tool.tool_id, 1, "2024-03-03", 4, 4)

        days = await service.get_daily_summary(tool.tool_id)

        assert [d.summary_date for d in days] == [date(2024, 3, 1), date(2024, 3, 3)]
        assert days[0].total_ts_revolutions == pytest.approx(15.0)
        assert days[0].total_hlp_run == 3
        assert [m.machine_id for m in days[0].machines] == [1, 2]

        filtered = await service.get_daily_summary(tool.tool_id, start="2024-03-02", machine_id=1)
        assert [d.summary_date for d in filtered] == [date(2024, 3, 3)]

    async def test_chart_data(self, db_session, make_tool):
        tool = await make_tool()
        service = RollupService(db_session)
        await service.merge_rollup(tool.tool_id, 1, "2024-03-01", 8, 2)
        await service.merge_rollup(tool.tool_id, 1, "2024-03-02", 12, 3)

        chart = await service.get_chart_data(tool.tool_id)

        assert chart.total_days == 2
        assert chart.total_revolutions == pytest.approx(20.0)
        assert chart.total_hlp == 5
        assert chart.average_daily == pytest.approx(10.0)
        assert [p.cumulative_revolutions for p in chart.points] == [pytest.approx(8.0), pytest.approx(20.0)]
        assert chart.points[0].average_hlp_per_revolution == pytest.approx(0.25)

    async def test_chart_data_empty(self, db_session, make_tool):
        tool = await make_tool()

        chart = await RollupService(db_session).get_chart_data(tool.tool_id)

        assert chart.points == []
        assert chart.average_daily == 0.0

    async def test_summary_of_unknown_tool(self, db_session):
        with pytest.raises(NotFoundError):
            await RollupService(db_session).get_daily_summary(404)

    async def test_intraday_usage_of_active_tool(self, db_session, make_tool):
        tool = await make_tool(tool_name="Die 42")
        await ActiveToolService(db_session).record_status(tool.tool_id, 1, "in_drive", utc(2024, 3, 1, 6, 0))
        service = RollupService(db_session)

        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 6, 0), 9, 9.0)    # before shift start
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 7, 10), 2, 3.0)
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 1, 7, 50), 1, 1.5)
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 2, 5, 0), 4, 2.0)
        await service.record_usage(tool.tool_id, 1, utc(2024, 3, 2, 6, 30), 9, 9.0)   # next window

        usage = await service.get_intraday_usage(1, "cutting", "2024-03-01")

        assert usage.tool_id == tool.tool_id
        assert usage.tool_name == "Die 42"
        assert usage.window_start == utc(2024, 3, 1, 6, 25)
        assert usage.window_end == utc(2024, 3, 2, 6, 25)
        hours = {h.hour: h for h in usage.hours}
        assert set(hours) == {5, 7}
        assert hours[7].hlp_count == 3
        assert hours[7].ts_revolutions == pytest.approx(4.5)
        assert hours[5].hlp_count == 4

    async def test_intraday_usage_without_active_tool(self, db_session):
        usage = await RollupService(db_session).get_intraday_usage(2, "creasing", date(2024, 3, 1))

        assert usage.tool_id is None
        assert usage.tool_name == "Unknown Tool"
        assert usage.hours == []
