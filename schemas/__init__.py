"""Tool Ledger — Pydantic Schemas.

Inbound payloads are validated before any transaction starts; outbound
snapshots are built from ORM rows with from_attributes.
"""

from schemas.common import ReadModel, ValidatedModel
from schemas.tool import ToolBase, ToolCreate, ToolRead, ToolUpdate
from schemas.ledger import (
    MaintenanceEventRead,
    MaintenanceResult,
    ReconciliationReport,
    ReversalResult,
)
from schemas.bulk_import import (
    ImportFailure,
    ImportResult,
    ImportSuccess,
    LifecycleEventKind,
    LifecycleEventSpec,
    ToolImportSpec,
)
from schemas.history import HistoryEntry
from schemas.usage import (
    ActiveMachine,
    ActiveTool,
    ChartData,
    ChartPoint,
    DailySummary,
    HourlyUsage,
    IntradayUsage,
    MachineUsage,
    StatusRecordRead,
)

__all__ = [
    # Base
    "ReadModel",
    "ValidatedModel",

    # Tools
    "ToolBase",
    "ToolCreate",
    "ToolRead",
    "ToolUpdate",

    # Ledger
    "MaintenanceEventRead",
    "MaintenanceResult",
    "ReconciliationReport",
    "ReversalResult",

    # Import
    "ImportFailure",
    "ImportResult",
    "ImportSuccess",
    "LifecycleEventKind",
    "LifecycleEventSpec",
    "ToolImportSpec",

    # History
    "HistoryEntry",

    # Usage
    "ActiveMachine",
    "ActiveTool",
    "ChartData",
    "ChartPoint",
    "DailySummary",
    "HourlyUsage",
    "IntradayUsage",
    "MachineUsage",
    "StatusRecordRead",
]
