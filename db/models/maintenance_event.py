"""Tool Ledger — Maintenance Event ORM Model.

Ledger entries: one row per regrinding/resegmentation of a tool.
Rows are immutable once written. Soft-deleted rows (is_deleted) are kept
for audit; physical deletes happen only when an event is reversed.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
)

from core.enums import EventSource, MaintenanceEventType
from db.base import Base, UTCDateTime
from db.models.tool import enum_column


class MaintenanceEvent(Base):
    """A single entry of a tool's maintenance ledger."""
    __tablename__ = "maintenance_events"
    __table_args__ = (
        UniqueConstraint("tool_id", "event_type", "event_sequence", name="uq_maintenance_events_sequence"),
        Index("idx_maintenance_events_tool_time", "tool_id", "timestamp"),
    )

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    tool_id = Column(Integer, ForeignKey("tools.tool_id"), nullable=False)
    event_type = Column(enum_column(MaintenanceEventType), nullable=False)

    tool_life_at_event = Column(Float, nullable=False)  # running total, not a delta
    life_consumed = Column(Float, nullable=False, default=0.0)
    event_sequence = Column(Integer, nullable=False)
    hlp_count_at_event = Column(BigInteger, nullable=False, default=0)

    source = Column(enum_column(EventSource), nullable=False, default=EventSource.LIVE)
    timestamp = Column(UTCDateTime, nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)

    @property
    def display_label(self) -> str:
        return f"{MaintenanceEventType(self.event_type).label} {self.event_sequence}"

    def __repr__(self) -> str:
        return (
            f"<MaintenanceEvent {self.event_id} tool={self.tool_id} "
            f"{self.event_type} #{self.event_sequence}>"
        )
