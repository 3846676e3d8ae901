"""Tool Ledger — Field Change Audit Trail ORM Model.

One row per changed field of a tool, attributed to an explicit actor.
"""

from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from core.enums import ChangeType
from db.base import Base, UTCDateTime
from db.models.tool import enum_column


class ToolChangeLog(Base):
    __tablename__ = "tool_change_log"
    __table_args__ = (
        Index("idx_tool_change_log_tool_time", "tool_id", "change_timestamp"),
    )

    log_id = Column(Integer, primary_key=True, autoincrement=True)
    tool_id = Column(Integer, ForeignKey("tools.tool_id"), nullable=False)
    change_type = Column(enum_column(ChangeType, length=10), nullable=False)
    field_changed = Column(String(64), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    changed_by = Column(String(64), nullable=True)
    change_timestamp = Column(UTCDateTime, nullable=False)
