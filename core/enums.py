"""Tool Ledger — Domain Enumerations.

Closed vocabularies shared by the ORM models, schemas and services.
"""

from __future__ import annotations

from enum import Enum


class ToolType(str, Enum):
    CUTTING = "cutting"
    CREASING = "creasing"
    EMBOSSING = "embossing"


class ToolStatus(str, Enum):
    """Well-known operational statuses.

    The status column is free text; these are the values the ledger itself
    reads or writes.
    """

    NOT_IN_USE = "not in use"
    RUNNING = "running"
    SENT_FOR_REGRINDING = "sent to madern for regrinding"
    SENT_FOR_RESEGMENTATION = "sent to madern for resegmentation"
    DELETED = "deleted"


class LifecycleState(str, Enum):
    """Soft-delete tag. Retired tools stay queryable for audit."""

    ACTIVE = "active"
    RETIRED = "retired"


class MaintenanceEventType(str, Enum):
    REGRINDING = "regrinding"
    RESEGMENTATION = "resegmentation"

    @property
    def counter_field(self) -> str:
        """Name of the Tool column counting events of this type."""
        return f"number_of_{self.value}"

    @property
    def pending_status(self) -> ToolStatus:
        """Status a tool carries while this maintenance is in progress."""
        if self is MaintenanceEventType.REGRINDING:
            return ToolStatus.SENT_FOR_REGRINDING
        return ToolStatus.SENT_FOR_RESEGMENTATION

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @classmethod
    def from_status(cls, status: str | None) -> "MaintenanceEventType | None":
        """Return the event type a status sentinel stands for, if any."""
        for event_type in cls:
            if status == event_type.pending_status.value:
                return event_type
        return None


class EventSource(str, Enum):
    """Where a ledger entry came from."""

    LIVE = "live"
    IMPORT = "import"


class DriveStatus(str, Enum):
    IN_DRIVE = "in_drive"
    REMOVED = "removed"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
