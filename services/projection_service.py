"""Tool Ledger — Projection Maintainer.

Keeps the tools projection in step with the maintenance_events ledger.
Every operation writes the ledger and the projection in one savepoint,
with the tool row locked for the duration.

Life accounting:
    The ledger anchor is the tool_life_at_event of the most recent
    non-deleted ledger entry (life is non-decreasing, so the maximum),
    or baseline_tool_life when there is none. Immediately after every
    apply, current_tool_life equals the anchor.

    Telemetry accrues life between events; the next event records the
    life accrued since the anchor as its life_consumed.

Counters:
    number_of_<type> == COUNT of non-deleted ledger entries of that type
    (live and imported), for tools that are not retired.

Reversal deletes the ledger entry and decrements the counter but never
rolls life back. Later entries keep their recorded life, so the anchor
only moves back when the newest entry is the one reversed.
"""

from __future__ import annotations

import math
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import EventSource, MaintenanceEventType, ToolStatus
from core.exceptions import ConsistencyViolation, InvalidEventType, NotFoundError, ValidationError
from db.models import MaintenanceEvent, Tool
from schemas.ledger import (
    MaintenanceEventRead,
    MaintenanceResult,
    ReconciliationReport,
    ReversalResult,
)
from schemas.tool import ToolRead
from services.audit_service import AuditTrail, diff, snapshot
from services.base import BaseService, require_actor, utcnow

LIFE_TOLERANCE = 1e-6


def parse_event_type(event_type: Any) -> MaintenanceEventType:
    """Coerce an event type, raising InvalidEventType outside the closed set."""
    if isinstance(event_type, MaintenanceEventType):
        return event_type
    allowed = [member.value for member in MaintenanceEventType]
    if isinstance(event_type, str):
        normalized = event_type.strip().lower()
        if normalized in allowed:
            return MaintenanceEventType(normalized)
    raise InvalidEventType(event_type, allowed)


def _life_matches(actual: float, expected: float) -> bool:
    return math.isclose(actual, expected, rel_tol=LIFE_TOLERANCE, abs_tol=LIFE_TOLERANCE)


class ProjectionService(BaseService[Tool]):
    """Applies, reverses and reconciles maintenance events."""

    def __init__(self, db: AsyncSession):
        super().__init__(Tool, db)
        self.audit = AuditTrail(db)

    # =========================================================================
    # Ledger reads
    # =========================================================================

    async def ledger_counts(self, tool_id: int) -> dict[MaintenanceEventType, int]:
        """Count non-deleted entries per type."""
        result = await self.db.execute(
            select(MaintenanceEvent.event_type, func.count(MaintenanceEvent.event_id))
            .where(
                MaintenanceEvent.tool_id == tool_id,
                MaintenanceEvent.is_deleted.is_(False),
            )
            .group_by(MaintenanceEvent.event_type)
        )

        counts = {event_type: 0 for event_type in MaintenanceEventType}
        for event_type, count in result.all():
            counts[MaintenanceEventType(event_type)] = count
        return counts

    async def ledger_anchor(self, tool: Tool) -> float:
        """Life recorded at the most recent non-deleted ledger entry.

        Falls back to baseline_tool_life when the tool has no entries.
        """
        result = await self.db.execute(
            select(func.max(MaintenanceEvent.tool_life_at_event)).where(
                MaintenanceEvent.tool_id == tool.tool_id,
                MaintenanceEvent.is_deleted.is_(False),
            )
        )
        latest = result.scalar_one()
        if latest is None:
            return tool.baseline_tool_life
        return max(float(latest), tool.baseline_tool_life)

    async def next_sequence(self, tool_id: int, event_type: MaintenanceEventType) -> int:
        """Next 1-based sequence number for (tool, type).

        Soft-deleted entries still hold their sequence numbers.
        """
        result = await self.db.execute(
            select(func.coalesce(func.max(MaintenanceEvent.event_sequence), 0)).where(
                MaintenanceEvent.tool_id == tool_id,
                MaintenanceEvent.event_type == event_type,
            )
        )
        return int(result.scalar_one()) + 1

    async def check_invariants(self, tool: Tool, *, check_life: bool = True) -> None:
        """Raise ConsistencyViolation if the projection disagrees with the ledger.

        The life check holds right after an apply, before telemetry accrues
        more life on top of the anchor.
        """
        if tool.is_retired:
            return

        counts = await self.ledger_counts(tool.tool_id)
        for event_type, expected in counts.items():
            actual = getattr(tool, event_type.counter_field)
            if actual != expected:
                raise ConsistencyViolation(
                    "counter_matches_ledger",
                    {
                        "tool_id": tool.tool_id,
                        "counter": event_type.counter_field,
                        "projection": actual,
                        "ledger": expected,
                    },
                )

        if check_life:
            expected_life = await self.ledger_anchor(tool)
            if not _life_matches(tool.current_tool_life, expected_life):
                raise ConsistencyViolation(
                    "life_matches_ledger",
                    {
                        "tool_id": tool.tool_id,
                        "projection": tool.current_tool_life,
                        "ledger": expected_life,
                    },
                )

    # =========================================================================
    # Apply
    # =========================================================================

    async def apply_maintenance_event(
        self,
        tool_id: int,
        event_type: MaintenanceEventType | str,
        explicit_life_consumed: float | None = None,
        *,
        actor_id: str,
    ) -> MaintenanceResult:
        """Record a regrinding/resegmentation and update the projection.

        Args:
            tool_id: Tool the maintenance was performed on.
            event_type: "regrinding" or "resegmentation".
            explicit_life_consumed: Life used up by this event. When omitted
                the life accrued since the previous event is recorded and
                current_tool_life is left as is.
            actor_id: Who performed the change (audit trail).

        Raises:
            InvalidEventType: Unknown event type.
            ValidationError: Negative amount or retired tool.
            NotFoundError: Unknown tool.
            ConflictError: Concurrent update persisted after retrying.
        """
        kind = parse_event_type(event_type)
        actor_id = require_actor(actor_id)
        if explicit_life_consumed is not None and explicit_life_consumed < 0:
            raise ValidationError("explicit_life_consumed", "must be non-negative")

        async def _apply() -> MaintenanceResult:
            tool = await self.get_for_update(tool_id)
            return await self.apply_to_locked_tool(
                tool, kind, explicit_life_consumed, actor_id=actor_id
            )

        result = await self.run_in_transaction(
            "apply_maintenance_event", _apply, tool_id=tool_id, event_type=kind.value
        )
        self.logger.info(
            "maintenance_event_applied",
            tool_id=tool_id,
            event_type=kind.value,
            event_sequence=result.event.event_sequence,
            life_consumed=result.event.life_consumed,
            actor_id=actor_id,
        )
        return result

    async def apply_to_locked_tool(
        self,
        tool: Tool,
        kind: MaintenanceEventType,
        explicit_life_consumed: float | None,
        *,
        actor_id: str,
    ) -> MaintenanceResult:
        """Apply an event to a tool already locked by the caller's savepoint."""
        if tool.is_retired:
            raise ValidationError("tool_id", f"tool {tool.tool_id} is retired")

        now = utcnow()
        before = snapshot(tool)
        # Anything above the anchor was accrued since the previous event
        anchor = await self.ledger_anchor(tool)
        if explicit_life_consumed is not None:
            tool.current_tool_life = tool.current_tool_life + explicit_life_consumed
        life_consumed = tool.current_tool_life - anchor

        if life_consumed < -LIFE_TOLERANCE:
            raise ConsistencyViolation(
                "life_not_below_ledger",
                {
                    "tool_id": tool.tool_id,
                    "projection": tool.current_tool_life,
                    "ledger": anchor,
                },
            )

        counter = kind.counter_field
        setattr(tool, counter, getattr(tool, counter) + 1)
        tool.status = kind.pending_status.value

        event = MaintenanceEvent(
            tool_id=tool.tool_id,
            event_type=kind,
            tool_life_at_event=tool.current_tool_life,
            life_consumed=max(life_consumed, 0.0),
            event_sequence=await self.next_sequence(tool.tool_id, kind),
            hlp_count_at_event=tool.total_hlp,
            source=EventSource.LIVE,
            timestamp=now,
            is_deleted=False,
        )
        self.db.add(event)
        self.audit.record_changes(tool.tool_id, diff(before, tool), actor_id=actor_id, timestamp=now)

        await self.db.flush()
        await self.check_invariants(tool)

        return MaintenanceResult(
            tool=ToolRead.model_validate(tool),
            event=MaintenanceEventRead.model_validate(event),
        )

    # =========================================================================
    # Reverse
    # =========================================================================

    async def reverse_maintenance_event(self, event_id: int, *, actor_id: str) -> ReversalResult:
        """Delete a ledger entry and step its counter back.

        When the counter reaches zero while the tool still carries that
        type's maintenance status, the status returns to "running".
        current_tool_life is never changed.

        Raises:
            NotFoundError: Unknown event, or its tool no longer exists.
            ConflictError: Concurrent update persisted after retrying.
        """
        actor_id = require_actor(actor_id)

        async def _reverse() -> ReversalResult:
            event = await self.db.get(MaintenanceEvent, event_id, populate_existing=True)
            if event is None:
                raise NotFoundError("MaintenanceEvent", event_id)
            tool = await self.get_for_update(event.tool_id)

            kind = MaintenanceEventType(event.event_type)
            deleted = MaintenanceEventRead.model_validate(event)
            now = utcnow()
            before = snapshot(tool)

            counter = kind.counter_field
            remaining = max(0, getattr(tool, counter) - 1)
            setattr(tool, counter, remaining)

            status_reverted = remaining == 0 and tool.status == kind.pending_status.value
            if status_reverted:
                tool.status = ToolStatus.RUNNING.value

            await self.db.delete(event)
            self.audit.record_changes(tool.tool_id, diff(before, tool), actor_id=actor_id, timestamp=now)

            await self.db.flush()
            await self.check_invariants(tool, check_life=False)

            return ReversalResult(
                tool=ToolRead.model_validate(tool),
                deleted_event=deleted,
                status_reverted=status_reverted,
            )

        result = await self.run_in_transaction(
            "reverse_maintenance_event", _reverse, event_id=event_id
        )
        self.logger.info(
            "maintenance_event_reversed",
            event_id=event_id,
            tool_id=result.tool.tool_id,
            event_type=result.deleted_event.event_type.value,
            status_reverted=result.status_reverted,
            actor_id=actor_id,
        )
        return result

    # =========================================================================
    # Reconcile
    # =========================================================================

    async def reconcile_projection(
        self,
        tool_id: int,
        *,
        actor_id: str,
        repair: bool = True,
    ) -> ReconciliationReport:
        """Compare the projection with a full ledger scan and repair drift.

        Counters are reset to the ledger counts. Life is raised to the
        ledger anchor when it has fallen below; it is never lowered, since
        telemetry legitimately accrues life above it.
        Retired tools keep their counters.
        """
        actor_id = require_actor(actor_id)

        async def _reconcile() -> ReconciliationReport:
            tool = await self.get_for_update(tool_id)
            counts = await self.ledger_counts(tool_id)
            notes: list[str] = []

            counters_before = {k.counter_field: getattr(tool, k.counter_field) for k in MaintenanceEventType}
            if tool.is_retired:
                counters_expected = dict(counters_before)
                notes.append("retired tool: counters kept for audit")
            else:
                counters_expected = {k.counter_field: counts[k] for k in MaintenanceEventType}

            life_before = tool.current_tool_life
            life_floor = await self.ledger_anchor(tool)
            life_low = life_before < life_floor and not _life_matches(life_before, life_floor)

            for field, expected in counters_expected.items():
                if counters_before[field] != expected:
                    notes.append(f"{field}: projection {counters_before[field]}, ledger {expected}")
            if life_low:
                notes.append(f"current_tool_life {life_before} below ledger {life_floor}")

            drift = life_low or counters_before != counters_expected
            repaired = False
            if drift and repair:
                before = snapshot(tool)
                for field, expected in counters_expected.items():
                    setattr(tool, field, expected)
                if life_low:
                    tool.current_tool_life = life_floor
                self.audit.record_changes(
                    tool.tool_id, diff(before, tool), actor_id=actor_id, timestamp=utcnow()
                )
                await self.db.flush()
                repaired = True

            return ReconciliationReport(
                tool_id=tool_id,
                counters_before=counters_before,
                counters_expected=counters_expected,
                life_before=life_before,
                life_floor=life_floor,
                life_after=tool.current_tool_life,
                drift_detected=drift,
                repaired=repaired,
                notes=notes,
            )

        report = await self.run_in_transaction("reconcile_projection", _reconcile, tool_id=tool_id)
        if report.drift_detected:
            self.logger.warning(
                "projection_drift_detected",
                tool_id=tool_id,
                notes=report.notes,
                repaired=report.repaired,
                actor_id=actor_id,
            )
        else:
            self.logger.info("projection_consistent", tool_id=tool_id)
        return report
