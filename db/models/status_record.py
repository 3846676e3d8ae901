"""Tool Ledger — Drive Status ORM Model.

Append-only stream of tool-in-drive / tool-removed observations written by
machine integrations. status_id preserves insertion order.
"""

from __future__ import annotations

from sqlalchemy import Column, Index, Integer, String

from db.base import Base, UTCDateTime


class StatusRecord(Base):
    __tablename__ = "drive_status"
    __table_args__ = (
        Index("idx_drive_status_machine_tool", "machine_id", "tool_id"),
        Index("idx_drive_status_tool_time", "tool_id", "timestamp"),
    )

    status_id = Column(Integer, primary_key=True, autoincrement=True)
    tool_id = Column(Integer, nullable=False)
    machine_id = Column(Integer, nullable=False)
    status = Column(String(32), nullable=False)
    timestamp = Column(UTCDateTime, nullable=False)
