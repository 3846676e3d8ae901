"""Tool Ledger — ORM Models.

Importing this package registers every table on Base.metadata.
"""

from db.models.machine import Factory, Machine
from db.models.tool import Tool
from db.models.maintenance_event import MaintenanceEvent
from db.models.usage import DailyToolSummary, UsageSample
from db.models.status_record import StatusRecord
from db.models.change_log import ToolChangeLog

__all__ = [
    "Factory",
    "Machine",
    "Tool",
    "MaintenanceEvent",
    "DailyToolSummary",
    "UsageSample",
    "StatusRecord",
    "ToolChangeLog",
]
