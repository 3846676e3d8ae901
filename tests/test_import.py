"""
Historical Import Tests

1. Replay of initial/regrinding/resegmentation history into ledger,
   projection and rollup
2. Partial success: invalid tools are reported, valid ones persist
3. Chronological ordering, decreasing life and duplicates
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from conftest import ACTOR
from core.enums import EventSource, MaintenanceEventType
from core.exceptions import ValidationError
from db.models import MaintenanceEvent, Tool
from schemas.bulk_import import LifecycleEventSpec
from services import HistoryService, ImportService, ProjectionService, RollupService
from services.import_service import chronological


def tool_spec(material_id: str, events=None, **overrides) -> dict:
    spec = {
        "material_id": material_id,
        "batch_id": "H1",
        "tool_name": f"Legacy {material_id}",
        "type": "creasing",
        "current_factory_id": 2,
        "format": "b2",
        "status": "running",
        "lifecycle_events": events or [],
    }
    spec.update(overrides)
    return spec


THREE_EVENTS = [
    {"event_type": "initial", "life_value": 0, "date": "2023-01-05"},
    {"event_type": "regrinding", "life_value": 100, "date": "2023-03-01"},
    {"event_type": "resegmentation", "life_value": 150, "date": "2023-06-01"},
]


async def ledger(db_session, tool_id: int) -> list[MaintenanceEvent]:
    result = await db_session.execute(
        select(MaintenanceEvent)
        .where(MaintenanceEvent.tool_id == tool_id)
        .order_by(MaintenanceEvent.timestamp)
    )
    return list(result.scalars().all())


# =============================================================================
# Chronological ordering
# =============================================================================

class TestChronological:

    def test_sorts_by_date_and_keeps_same_day_order(self):
        events = [
            LifecycleEventSpec(event_type="resegmentation", life_value=50, date="2023-02-01"),
            LifecycleEventSpec(event_type="regrinding", life_value=10, date="2023-01-01"),
            LifecycleEventSpec(event_type="regrinding", life_value=50, date="2023-02-01"),
        ]

        ordered = chronological(events)

        assert [e.event_type.value for e in ordered] == ["regrinding", "resegmentation", "regrinding"]

    def test_decreasing_life_rejected(self):
        events = [
            LifecycleEventSpec(event_type="regrinding", life_value=100, date="2023-01-01"),
            LifecycleEventSpec(event_type="regrinding", life_value=90, date="2023-02-01"),
        ]

        with pytest.raises(ValidationError):
            chronological(events)


# =============================================================================
# Import
# =============================================================================

class TestImportTools:

    async def test_three_event_history(self, db_session):
        result = await ImportService(db_session).import_tools(
            [tool_spec("500001", THREE_EVENTS)], actor_id=ACTOR
        )

        assert result.failures == []
        success = result.successes[0]
        assert success.row == 1
        assert success.tool == "500001-H1-Legacy 500001"
        assert success.events_imported == 2

        tool = await db_session.get(Tool, success.tool_id, populate_existing=True)
        assert tool.current_tool_life == pytest.approx(150.0)
        assert tool.baseline_tool_life == pytest.approx(150.0)
        assert tool.number_of_regrinding == 1
        assert tool.number_of_resegmentation == 1
        assert tool.format == "B2"
        assert tool.status == "running"

        entries = await ledger(db_session, tool.tool_id)
        assert [e.life_consumed for e in entries] == [pytest.approx(100.0), pytest.approx(50.0)]
        assert [e.tool_life_at_event for e in entries] == [pytest.approx(100.0), pytest.approx(150.0)]
        assert [e.event_sequence for e in entries] == [1, 1]
        assert all(e.source is EventSource.IMPORT for e in entries)
        assert all(e.hlp_count_at_event == 0 for e in entries)
        assert entries[0].timestamp == datetime(2023, 3, 1, tzinfo=timezone.utc)

        await ProjectionService(db_session).check_invariants(tool)

    async def test_history_attributed_to_placeholder_machine(self, db_session):
        result = await ImportService(db_session).import_tools(
            [tool_spec("500002", THREE_EVENTS)], actor_id=ACTOR
        )
        tool_id = result.successes[0].tool_id

        days = await RollupService(db_session).get_daily_summary(tool_id)

        assert [d.summary_date for d in days] == [date(2023, 3, 1), date(2023, 6, 1)]
        assert [d.machines[0].machine_id for d in days] == [1, 1]
        assert [d.total_ts_revolutions for d in days] == [pytest.approx(100.0), pytest.approx(50.0)]
        assert all(d.total_hlp_run == 0 for d in days)

    async def test_partial_success(self, db_session):
        specs = [
            tool_spec("600001", THREE_EVENTS),
            tool_spec("600002", tool_name=""),
            tool_spec("600003"),
            tool_spec("600004", type="folding"),
            tool_spec("600005", [{"event_type": "regrinding", "life_value": 20, "date": "2023-01-01"}]),
        ]

        result = await ImportService(db_session).import_tools(specs, actor_id=ACTOR)

        assert result.total == 5
        assert [s.row for s in result.successes] == [1, 3, 5]
        assert [f.row for f in result.failures] == [2, 4]
        assert all(f.error_type == "ValidationError" for f in result.failures)

        persisted = (
            await db_session.execute(select(Tool.material_id).order_by(Tool.material_id))
        ).scalars().all()
        assert persisted == ["600001", "600003", "600005"]

    async def test_tool_without_events(self, db_session):
        result = await ImportService(db_session).import_tools([tool_spec("700001")], actor_id=ACTOR)

        tool = await db_session.get(Tool, result.successes[0].tool_id)
        assert tool.current_tool_life == 0.0
        assert tool.number_of_regrinding == 0
        assert result.successes[0].events_imported == 0

    async def test_events_replayed_in_date_order(self, db_session):
        events = [
            {"event_type": "regrinding", "life_value": 300, "date": "2023-09-01", "sequence": 7},
            {"event_type": "regrinding", "life_value": 100, "date": "2023-01-01", "sequence": 3},
            {"event_type": "regrinding", "life_value": 180, "date": "2023-05-01"},
        ]

        result = await ImportService(db_session).import_tools(
            [tool_spec("700002", events)], actor_id=ACTOR
        )
        tool_id = result.successes[0].tool_id

        entries = await ledger(db_session, tool_id)
        assert [e.event_sequence for e in entries] == [1, 2, 3]
        assert [e.life_consumed for e in entries] == [
            pytest.approx(100.0),
            pytest.approx(80.0),
            pytest.approx(120.0),
        ]

    async def test_decreasing_life_is_a_row_failure(self, db_session):
        events = [
            {"event_type": "regrinding", "life_value": 100, "date": "2023-01-01"},
            {"event_type": "resegmentation", "life_value": 90, "date": "2023-02-01"},
        ]

        result = await ImportService(db_session).import_tools(
            [tool_spec("700003", events)], actor_id=ACTOR
        )

        assert result.successes == []
        assert result.failures[0].error_type == "ValidationError"
        assert "decreases" in result.failures[0].error

    async def test_duplicate_is_reported_not_raised(self, db_session, make_tool):
        await make_tool(material_id="700004", batch_id="H1")

        result = await ImportService(db_session).import_tools(
            [tool_spec("700004"), tool_spec("700005"), tool_spec("700005")],
            actor_id=ACTOR,
        )

        assert [s.row for s in result.successes] == [2]
        assert [(f.row, f.error_type) for f in result.failures] == [
            (1, "ConflictError"),
            (3, "ConflictError"),
        ]

    async def test_unknown_factory_is_reported(self, db_session):
        result = await ImportService(db_session).import_tools(
            [tool_spec("700006", current_factory_id=99)], actor_id=ACTOR
        )

        assert result.failures[0].error_type == "NotFoundError"

    async def test_imported_history_appears_in_unified_history(self, db_session):
        result = await ImportService(db_session).import_tools(
            [tool_spec("700007", THREE_EVENTS)], actor_id=ACTOR
        )
        tool_id = result.successes[0].tool_id

        history = await HistoryService(db_session).get_unified_history(tool_id)

        maintenance = [h for h in history if h.entry_type == "maintenance"]
        assert [h.display_label for h in maintenance] == ["Regrinding 1", "Resegmentation 1"]
        # Imported events predate the registration entry
        assert history[-1].change_type == "INSERT"

    async def test_live_event_after_import_continues_sequence(self, db_session):
        result = await ImportService(db_session).import_tools(
            [tool_spec("700008", THREE_EVENTS)], actor_id=ACTOR
        )
        tool_id = result.successes[0].tool_id

        applied = await ProjectionService(db_session).apply_maintenance_event(
            tool_id, MaintenanceEventType.REGRINDING, 25.0, actor_id=ACTOR
        )

        assert applied.event.event_sequence == 2
        assert applied.event.life_consumed == pytest.approx(25.0)
        assert applied.tool.current_tool_life == pytest.approx(175.0)
        assert applied.tool.number_of_regrinding == 2
