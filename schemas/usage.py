"""Tool Ledger — Usage & Status Schemas.

Read-side shapes for the drive status stream, daily rollups and
intraday charts.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from schemas.common import ReadModel


class StatusRecordRead(ReadModel):
    status_id: int
    tool_id: int
    machine_id: int
    status: str
    timestamp: datetime


class ActiveTool(BaseModel):
    tool_id: int
    tool_name: str
    type: str
    machine_id: int
    since: datetime


class ActiveMachine(BaseModel):
    machine_id: int
    machine_name: str
    factory_id: Optional[int] = None
    factory_name: Optional[str] = None
    tool_id: int
    tool_name: str


class MachineUsage(BaseModel):
    machine_id: int
    total_ts_revolutions: float
    total_hlp_run: int


class DailySummary(BaseModel):
    """Rollup of one calendar day across machines."""

    summary_date: date
    total_ts_revolutions: float
    total_hlp_run: int
    machines: list[MachineUsage] = Field(default_factory=list)


class ChartPoint(BaseModel):
    summary_date: date
    daily_revolutions: float
    daily_hlp: int
    cumulative_revolutions: float
    cumulative_hlp: int
    average_hlp_per_revolution: float


class ChartData(BaseModel):
    tool_id: int
    points: list[ChartPoint] = Field(default_factory=list)
    total_revolutions: float = 0.0
    total_hlp: int = 0
    total_days: int = 0
    average_daily: float = 0.0


class HourlyUsage(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    hlp_count: int
    ts_revolutions: float


class IntradayUsage(BaseModel):
    machine_id: int
    tool_id: Optional[int] = None
    tool_name: str
    window_start: datetime
    window_end: datetime
    hours: list[HourlyUsage] = Field(default_factory=list)
