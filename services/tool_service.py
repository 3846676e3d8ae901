"""Tool Ledger — Tool Service.

Registration, field updates and retirement of tools. A status update to a
maintenance status ("sent to madern for regrinding" / "... resegmentation")
records the maintenance event through the projection maintainer, in the
same savepoint as the other field changes.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.enums import ChangeType, LifecycleState, MaintenanceEventType, ToolStatus
from core.exceptions import ConflictError, NotFoundError, ValidationError
from db.models import Factory, MaintenanceEvent, Tool
from schemas.tool import ToolCreate, ToolRead, ToolUpdate
from services.audit_service import AuditTrail, diff, snapshot
from services.base import BaseService, require_actor, utcnow, validate_payload
from services.projection_service import ProjectionService


class ToolService(BaseService[Tool]):
    """Lifecycle of tool records outside of maintenance events."""

    def __init__(self, db: AsyncSession):
        super().__init__(Tool, db)
        self.audit = AuditTrail(db)
        self.projection = ProjectionService(db)

    async def get_tool(self, tool_id: int) -> ToolRead:
        """Current projection of a tool, retired ones included."""
        return ToolRead.model_validate(await self.get_or_raise(tool_id))

    async def find_tool(self, material_id: str, batch_id: str) -> ToolRead | None:
        result = await self.db.execute(
            select(Tool).where(Tool.material_id == material_id, Tool.batch_id == batch_id)
        )
        tool = result.scalar_one_or_none()
        return ToolRead.model_validate(tool) if tool else None

    async def list_tools(
        self,
        *,
        factory_id: int | None = None,
        search: str | None = None,
        include_retired: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ToolRead]:
        """Inventory listing, filtered by factory and a free-text search.

        search matches material id, batch id, tool name or format
        (case-insensitive substring).
        """
        query = select(Tool)
        if factory_id is not None:
            query = query.where(Tool.current_factory_id == factory_id)
        if not include_retired:
            query = query.where(Tool.lifecycle_state == LifecycleState.ACTIVE)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.where(
                or_(
                    func.lower(Tool.material_id).like(pattern),
                    func.lower(Tool.batch_id).like(pattern),
                    func.lower(Tool.tool_name).like(pattern),
                    func.lower(Tool.format).like(pattern),
                )
            )
        query = query.order_by(Tool.material_id, Tool.batch_id).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return [ToolRead.model_validate(tool) for tool in result.scalars().all()]

    async def ensure_factory(self, factory_id: int | None) -> None:
        if factory_id is None:
            return
        if await self.db.get(Factory, factory_id) is None:
            raise NotFoundError("Factory", factory_id)

    async def ensure_unique(self, material_id: str, batch_id: str) -> None:
        result = await self.db.execute(
            select(Tool.tool_id).where(Tool.material_id == material_id, Tool.batch_id == batch_id)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            raise ConflictError(
                f"Tool {material_id}/{batch_id} already exists",
                transient=False,
                details={"tool_id": existing},
            )

    async def register_tool(self, data: ToolCreate | dict[str, Any], *, actor_id: str) -> ToolRead:
        """Register a new tool with zero life and no maintenance history.

        Raises:
            ValidationError: Invalid payload.
            NotFoundError: Unknown factory.
            ConflictError: A tool with this material and batch exists.
        """
        payload = validate_payload(ToolCreate, data)
        actor_id = require_actor(actor_id)

        async def _register() -> Tool:
            await self.ensure_factory(payload.current_factory_id)
            await self.ensure_unique(payload.material_id, payload.batch_id)

            tool = Tool(
                material_id=payload.material_id,
                batch_id=payload.batch_id,
                tool_name=payload.tool_name,
                type=payload.type,
                format=payload.format,
                current_factory_id=payload.current_factory_id,
                status=payload.status,
                lifecycle_state=LifecycleState.ACTIVE,
                current_tool_life=0.0,
                baseline_tool_life=0.0,
                total_hlp=0,
                number_of_regrinding=0,
                number_of_resegmentation=0,
            )
            self.db.add(tool)
            await self.db.flush()
            self.audit.record_insert(tool, actor_id=actor_id, timestamp=utcnow())
            await self.db.flush()
            return tool

        tool = await self.run_in_transaction("register_tool", _register, material_id=payload.material_id)
        self.logger.info("tool_registered", tool_id=tool.tool_id, tool=tool.label, actor_id=actor_id)
        return ToolRead.model_validate(tool)

    async def update_tool(
        self,
        tool_id: int,
        data: ToolUpdate | dict[str, Any],
        *,
        actor_id: str,
    ) -> ToolRead:
        """Update mutable fields of an active tool.

        Changing the status to a maintenance status records a maintenance
        event of that type (life_consumed, when given, is its explicit
        amount). Re-sending the status the tool already has records
        nothing.
        """
        payload = validate_payload(ToolUpdate, data)
        actor_id = require_actor(actor_id)
        changes = payload.model_dump(exclude_unset=True)
        life_consumed = changes.pop("life_consumed", None)

        async def _update() -> Tool:
            tool = await self.get_for_update(tool_id)
            if tool.is_retired:
                raise ValidationError("tool_id", f"tool {tool_id} is retired")
            fields = dict(changes)
            if "current_factory_id" in fields:
                await self.ensure_factory(fields["current_factory_id"])

            new_status = fields.pop("status", None)
            before = snapshot(tool)
            for field, value in fields.items():
                setattr(tool, field, value)
            self.audit.record_changes(tool.tool_id, diff(before, tool), actor_id=actor_id, timestamp=utcnow())

            if new_status is not None and new_status != tool.status:
                kind = MaintenanceEventType.from_status(new_status)
                if kind is not None:
                    await self.projection.apply_to_locked_tool(tool, kind, life_consumed, actor_id=actor_id)
                else:
                    status_before = snapshot(tool)
                    tool.status = new_status
                    self.audit.record_changes(
                        tool.tool_id, diff(status_before, tool), actor_id=actor_id, timestamp=utcnow()
                    )

            await self.db.flush()
            return tool

        tool = await self.run_in_transaction("update_tool", _update, tool_id=tool_id)
        self.logger.info("tool_updated", tool_id=tool_id, fields=sorted(payload.model_fields_set), actor_id=actor_id)
        return ToolRead.model_validate(tool)

    async def retire_tool(self, tool_id: int, *, actor_id: str) -> ToolRead:
        """Soft delete: tag the tool retired and soft-delete its ledger entries.

        The tool and its history stay queryable. Retiring a retired tool is
        a no-op.
        """
        actor_id = require_actor(actor_id)

        async def _retire() -> Tool:
            tool = await self.get_for_update(tool_id)
            if tool.is_retired:
                return tool

            before = snapshot(tool)
            tool.lifecycle_state = LifecycleState.RETIRED
            tool.status = ToolStatus.DELETED.value
            await self.db.execute(
                update(MaintenanceEvent)
                .where(MaintenanceEvent.tool_id == tool_id)
                .values(is_deleted=True)
                .execution_options(synchronize_session="fetch")
            )
            self.audit.record_changes(
                tool.tool_id,
                diff(before, tool),
                actor_id=actor_id,
                timestamp=utcnow(),
                change_type=ChangeType.DELETE,
            )
            await self.db.flush()
            return tool

        tool = await self.run_in_transaction("retire_tool", _retire, tool_id=tool_id)
        self.logger.info("tool_retired", tool_id=tool_id, actor_id=actor_id)
        return ToolRead.model_validate(tool)
