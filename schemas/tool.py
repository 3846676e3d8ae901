"""Tool Ledger — Tool Schemas.

Pydantic models for tool registration, updates and projection snapshots.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from core.enums import LifecycleState, ToolStatus, ToolType
from schemas.common import ReadModel, ValidatedModel


class ToolBase(ValidatedModel):
    """Identity and placement shared by registration and import."""

    material_id: str = Field(..., min_length=1, max_length=64)
    batch_id: str = Field(..., min_length=1, max_length=64)
    tool_name: str = Field(..., min_length=1, max_length=255)
    type: ToolType
    current_factory_id: Optional[int] = Field(None, ge=1)
    format: Optional[str] = Field(None, max_length=64)
    status: str = Field(ToolStatus.NOT_IN_USE.value, min_length=1, max_length=100)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("format")
    @classmethod
    def upper_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        return v.upper()

    @property
    def label(self) -> str:
        return f"{self.material_id}-{self.batch_id}-{self.tool_name}"


class ToolCreate(ToolBase):
    """Payload for registering a new tool."""
    pass


class ToolUpdate(ValidatedModel):
    """Payload for updating mutable tool fields.

    A status change to a maintenance sentinel (e.g. "sent to madern for
    regrinding") records a maintenance event.
    """

    tool_name: Optional[str] = Field(None, min_length=1, max_length=255)
    format: Optional[str] = Field(None, max_length=64)
    current_factory_id: Optional[int] = Field(None, ge=1)
    status: Optional[str] = Field(None, min_length=1, max_length=100)
    life_consumed: Optional[float] = Field(
        None,
        ge=0,
        description="Explicit life consumed by the maintenance event a status change triggers",
    )

    @field_validator("format")
    @classmethod
    def upper_format(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class ToolRead(ReadModel):
    """Snapshot of the tool projection."""

    tool_id: int
    material_id: str
    batch_id: str
    tool_name: str
    type: ToolType
    format: Optional[str] = None
    current_factory_id: Optional[int] = None
    status: str
    lifecycle_state: LifecycleState
    current_tool_life: float
    baseline_tool_life: float
    total_hlp: int
    number_of_regrinding: int
    number_of_resegmentation: int
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
