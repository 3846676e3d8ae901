"""Tool Ledger — Historical Import Service.

Registers tools together with their pre-existing maintenance history.

Each tool is validated before any write, then imported in its own
savepoint: a failing tool is rolled back and reported without affecting
the tools before or after it.

For every imported tool:
    - current_tool_life = baseline_tool_life = final cumulative life
    - counters = number of supplied events per type ("initial" excluded)
    - one ledger entry per event, replayed oldest first, with
      life_consumed = life_value - previous life_value (starting at 0)
    - one rollup merge per event on the historical placeholder machine
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, time, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from core.enums import EventSource, LifecycleState, MaintenanceEventType
from core.exceptions import ConflictError, ToolLedgerError, ValidationError
from db.models import MaintenanceEvent, Tool
from schemas.bulk_import import (
    ImportFailure,
    ImportResult,
    ImportSuccess,
    LifecycleEventKind,
    LifecycleEventSpec,
    ToolImportSpec,
)
from services.audit_service import AuditTrail
from services.base import BaseService, require_actor, utcnow, validate_payload
from services.projection_service import ProjectionService
from services.rollup_service import RollupService
from services.tool_service import ToolService


def _raw_label(raw: Any) -> str | None:
    if isinstance(raw, ToolImportSpec):
        return raw.label
    if isinstance(raw, dict):
        parts = [raw.get("material_id"), raw.get("batch_id"), raw.get("tool_name")]
        if all(part is not None for part in parts):
            return "-".join(str(part).strip() for part in parts)
    return None


def chronological(events: list[LifecycleEventSpec]) -> list[LifecycleEventSpec]:
    """Sort events oldest first and reject decreasing cumulative life.

    The sort is stable, so same-day events keep their supplied order.
    """
    ordered = sorted(events, key=lambda event: event.date)
    previous: LifecycleEventSpec | None = None
    for event in ordered:
        if previous is not None and event.life_value < previous.life_value:
            raise ValidationError(
                "lifecycle_events",
                f"life_value decreases from {previous.life_value} ({previous.date}) "
                f"to {event.life_value} ({event.date})",
            )
        previous = event
    return ordered


class ImportService(BaseService[Tool]):
    """Bulk import of historical tools."""

    def __init__(self, db: AsyncSession):
        super().__init__(Tool, db)
        self.audit = AuditTrail(db)
        self.tools = ToolService(db)
        self.rollup = RollupService(db)
        self.projection = ProjectionService(db)
        self.historical_machine_id = get_settings().ledger.historical_machine_id

    async def import_tools(
        self,
        specs: Iterable[ToolImportSpec | dict[str, Any]],
        *,
        actor_id: str,
    ) -> ImportResult:
        """Import tools one by one, collecting per-row outcomes.

        Rows are numbered from 1 in input order.
        """
        actor_id = require_actor(actor_id)
        result = ImportResult()

        for row, raw in enumerate(specs, start=1):
            label = _raw_label(raw)
            try:
                spec = validate_payload(ToolImportSpec, raw)
                label = spec.label
                events = chronological(spec.lifecycle_events)
                tool_id, imported = await self._import_one(spec, events, actor_id)
            except ToolLedgerError as exc:
                self.logger.warning(
                    "tool_import_failed",
                    row=row,
                    tool=label,
                    error_type=type(exc).__name__,
                    error=exc.message,
                )
                result.failures.append(
                    ImportFailure(row=row, tool=label, error_type=type(exc).__name__, error=exc.message)
                )
                continue

            result.successes.append(
                ImportSuccess(row=row, tool=label, tool_id=tool_id, events_imported=imported)
            )

        self.logger.info(
            "tool_import_completed",
            total=result.total,
            succeeded=len(result.successes),
            failed=len(result.failures),
            actor_id=actor_id,
        )
        return result

    async def _import_one(
        self,
        spec: ToolImportSpec,
        events: list[LifecycleEventSpec],
        actor_id: str,
    ) -> tuple[int, int]:
        maintenance = [event for event in events if event.event_type is not LifecycleEventKind.INITIAL]
        final_life = events[-1].life_value if events else 0.0

        async def _import() -> tuple[int, int]:
            await self.tools.ensure_factory(spec.current_factory_id)
            await self.tools.ensure_unique(spec.material_id, spec.batch_id)

            tool = Tool(
                material_id=spec.material_id,
                batch_id=spec.batch_id,
                tool_name=spec.tool_name,
                type=spec.type,
                format=spec.format,
                current_factory_id=spec.current_factory_id,
                status=spec.status,
                lifecycle_state=LifecycleState.ACTIVE,
                current_tool_life=final_life,
                baseline_tool_life=final_life,
                total_hlp=0,
                number_of_regrinding=sum(
                    1 for e in maintenance if e.event_type is LifecycleEventKind.REGRINDING
                ),
                number_of_resegmentation=sum(
                    1 for e in maintenance if e.event_type is LifecycleEventKind.RESEGMENTATION
                ),
            )
            self.db.add(tool)
            await self.db.flush()
            self.audit.record_insert(tool, actor_id=actor_id, timestamp=utcnow())

            sequences = {event_type: 0 for event_type in MaintenanceEventType}
            previous_life = 0.0
            for event in maintenance:
                kind = MaintenanceEventType(event.event_type.value)
                sequences[kind] += 1
                life_consumed = event.life_value - previous_life

                self.db.add(
                    MaintenanceEvent(
                        tool_id=tool.tool_id,
                        event_type=kind,
                        tool_life_at_event=event.life_value,
                        life_consumed=life_consumed,
                        event_sequence=sequences[kind],
                        hlp_count_at_event=0,
                        source=EventSource.IMPORT,
                        timestamp=datetime.combine(event.date, time.min, tzinfo=timezone.utc),
                        is_deleted=False,
                    )
                )
                await self.rollup.merge_rollup(
                    tool.tool_id,
                    self.historical_machine_id,
                    event.date,
                    life_consumed,
                    0,
                )
                previous_life = event.life_value

            await self.db.flush()
            await self.projection.check_invariants(tool)
            return tool.tool_id, len(maintenance)

        try:
            tool_id, imported = await self.run_in_transaction(
                "import_tool", _import, material_id=spec.material_id, batch_id=spec.batch_id
            )
        except IntegrityError as exc:
            raise ConflictError(
                f"Tool {spec.label} could not be imported: {exc.orig}",
                transient=False,
            ) from exc

        self.logger.info("tool_imported", tool_id=tool_id, tool=spec.label, events_imported=imported)
        return tool_id, imported
