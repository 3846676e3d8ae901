"""Tool Ledger — Usage ORM Models.

Raw telemetry samples and their per-tool, per-machine, per-day rollup.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Date, Float, ForeignKey, Index, Integer

from db.base import Base, UTCDateTime


class UsageSample(Base):
    """One raw telemetry reading (HLP count and TS revolutions)."""
    __tablename__ = "usage_samples"
    __table_args__ = (
        Index("idx_usage_samples_tool_time", "tool_id", "timestamp"),
    )

    sample_id = Column(Integer, primary_key=True, autoincrement=True)
    tool_id = Column(Integer, ForeignKey("tools.tool_id"), nullable=False)
    machine_id = Column(Integer, nullable=False)
    timestamp = Column(UTCDateTime, nullable=False)
    hlp_count = Column(BigInteger, nullable=False, default=0)
    ts_revolutions = Column(Float, nullable=False, default=0.0)


class DailyToolSummary(Base):
    """Additive daily accumulator keyed by (tool, machine, date).

    machine_id carries no foreign key: historical imports are attributed
    to a placeholder machine.
    """
    __tablename__ = "daily_tool_summary"

    tool_id = Column(Integer, ForeignKey("tools.tool_id"), primary_key=True)
    machine_id = Column(Integer, primary_key=True)
    summary_date = Column(Date, primary_key=True)
    total_ts_revolutions = Column(Float, nullable=False, default=0.0)
    total_hlp_run = Column(BigInteger, nullable=False, default=0)
