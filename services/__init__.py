"""Tool Ledger — Service Layer.

Business logic for the tool lifecycle ledger. Every service takes the
caller's AsyncSession; mutations run in savepoints and never commit.

Services:
    - ProjectionService: apply/reverse/reconcile maintenance events
    - ImportService: historical bulk import
    - RollupService: daily usage rollup and telemetry ingestion
    - ActiveToolService: which tool is in which drive right now
    - HistoryService: unified audit + ledger history
    - ToolService: registration, updates, retirement

Usage:
    from services import ProjectionService

    async with get_db_context() as db:
        result = await ProjectionService(db).apply_maintenance_event(
            tool_id, "regrinding", actor_id="operator-7",
        )
"""

from services.base import BaseService
from services.audit_service import AuditTrail
from services.active_resolver import ActiveToolService, resolve_active
from services.projection_service import ProjectionService, parse_event_type
from services.rollup_service import RollupService
from services.tool_service import ToolService
from services.import_service import ImportService
from services.history_service import HistoryService

__all__ = [
    "BaseService",
    "AuditTrail",
    "ActiveToolService",
    "resolve_active",
    "ProjectionService",
    "parse_event_type",
    "RollupService",
    "ToolService",
    "ImportService",
    "HistoryService",
]
