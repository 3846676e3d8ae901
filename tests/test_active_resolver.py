"""
Active-Entity Resolution Tests

Covers the pure "latest wins" reduction and the drive status read service:
1. Max-timestamp selection per group
2. Timestamp ties resolved in favour of the later-written record
3. Filtering applied after resolution (no resurrection of removed tools)
4. Composite and callable group keys
5. Active tool per machine, active machines per type, in-use checks
"""

from datetime import datetime, timedelta

import pytest

from conftest import utc
from services import ActiveToolService, resolve_active

T0 = datetime(2024, 3, 1, 8, 0)


def rec(tool_id, machine_id, status, minutes, **extra):
    return {
        "tool_id": tool_id,
        "machine_id": machine_id,
        "status": status,
        "timestamp": T0 + timedelta(minutes=minutes),
        **extra,
    }


# =============================================================================
# Pure reduction
# =============================================================================

class TestResolveActive:
    """resolve_active() on in-memory records."""

    def test_latest_timestamp_wins_regardless_of_input_order(self):
        records = [
            rec(1, 1, "in_drive", 30, marker="latest"),
            rec(1, 1, "removed", 10),
            rec(1, 1, "in_drive", 0),
        ]

        latest = resolve_active(records, "tool_id")

        assert latest[1]["marker"] == "latest"

    def test_timestamp_tie_goes_to_later_record(self):
        records = [
            rec(1, 1, "in_drive", 5, marker="first"),
            rec(1, 1, "removed", 5, marker="second"),
        ]

        latest = resolve_active(records, "tool_id")

        assert latest[1]["marker"] == "second"

    def test_filter_applies_after_resolution(self):
        """A tool whose latest record is 'removed' must not come back
        through an older 'in_drive' record."""
        records = [
            rec(1, 1, "in_drive", 0),
            rec(1, 1, "removed", 10),
            rec(2, 1, "in_drive", 5),
        ]

        active = resolve_active(records, "tool_id", required_status="in_drive")

        assert set(active) == {2}

    def test_composite_key(self):
        records = [
            rec(1, 1, "in_drive", 0),
            rec(1, 2, "in_drive", 5),
            rec(1, 1, "removed", 10),
        ]

        latest = resolve_active(records, ("tool_id", "machine_id"))

        assert latest[(1, 1)]["status"] == "removed"
        assert latest[(1, 2)]["status"] == "in_drive"

    def test_callable_key_and_predicate(self):
        records = [
            rec(1, 1, "in_drive", 0),
            rec(2, 2, "in_drive", 1),
            rec(3, 3, "in_drive", 2),
        ]

        active = resolve_active(
            records,
            lambda r: r["machine_id"],
            predicate=lambda r: r["tool_id"] != 2,
        )

        assert sorted(active) == [1, 3]

    def test_unknown_key_is_absent_not_an_error(self):
        assert resolve_active([], "tool_id") == {}
        assert 42 not in resolve_active([rec(1, 1, "in_drive", 0)], "tool_id")


# =============================================================================
# Drive status read service
# =============================================================================

class TestActiveToolService:
    """ActiveToolService over the drive_status stream."""

    async def test_active_tool_on_machine(self, db_session, make_tool):
        first = await make_tool()
        second = await make_tool()
        service = ActiveToolService(db_session)

        await service.record_status(first.tool_id, 1, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(first.tool_id, 1, "removed", utc(2024, 3, 1, 9, 0))
        await service.record_status(second.tool_id, 1, "in_drive", utc(2024, 3, 1, 9, 5))

        active = await service.get_active_tool(1, "Cutting")

        assert active is not None
        assert active.tool_id == second.tool_id
        assert active.machine_id == 1

    async def test_no_active_tool(self, db_session, make_tool):
        tool = await make_tool()
        service = ActiveToolService(db_session)
        await service.record_status(tool.tool_id, 2, "in_drive", utc(2024, 3, 1, 8, 0))

        assert await service.get_active_tool(1, "cutting") is None
        assert await service.get_active_tool(2, "creasing") is None

    async def test_tool_moved_to_another_machine(self, db_session, make_tool):
        tool = await make_tool()
        service = ActiveToolService(db_session)
        await service.record_status(tool.tool_id, 1, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(tool.tool_id, 1, "removed", utc(2024, 3, 1, 9, 0))
        await service.record_status(tool.tool_id, 3, "in_drive", utc(2024, 3, 1, 10, 0))

        assert await service.get_active_tool(1, "cutting") is None
        assert (await service.get_active_tool(3, "cutting")).tool_id == tool.tool_id
        assert await service.is_tool_in_use(tool.tool_id)

        latest = await service.latest_status_by_tool()
        assert latest[tool.tool_id].machine_id == 3

    async def test_active_machines_sorted_and_scoped(self, db_session, make_tool):
        a = await make_tool()
        b = await make_tool()
        c = await make_tool()
        embossing = await make_tool(type="embossing")
        service = ActiveToolService(db_session)

        await service.record_status(a.tool_id, 3, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(b.tool_id, 2, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(c.tool_id, 1, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(c.tool_id, 1, "removed", utc(2024, 3, 1, 9, 0))
        await service.record_status(embossing.tool_id, 1, "in_drive", utc(2024, 3, 1, 9, 0))

        machines = await service.get_active_machines("cutting")
        assert [(m.factory_name, m.machine_name) for m in machines] == [
            ("Plant A", "Press 2"),
            ("Plant B", "Line 1"),
        ]

        scoped = await service.get_active_machines("cutting", factory_id=2)
        assert [m.tool_id for m in scoped] == [a.tool_id]

    async def test_tool_never_seen_is_not_in_use(self, db_session, make_tool):
        tool = await make_tool()

        assert not await ActiveToolService(db_session).is_tool_in_use(tool.tool_id)

    @pytest.mark.parametrize("status", ["removed", "maintenance"])
    async def test_latest_non_drive_status_means_not_in_use(self, db_session, make_tool, status):
        tool = await make_tool()
        service = ActiveToolService(db_session)
        await service.record_status(tool.tool_id, 1, "in_drive", utc(2024, 3, 1, 8, 0))
        await service.record_status(tool.tool_id, 1, status, utc(2024, 3, 1, 8, 30))

        assert not await service.is_tool_in_use(tool.tool_id)
