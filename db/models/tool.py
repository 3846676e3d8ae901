"""Tool Ledger — Tool ORM Model.

The tool projection: current-state summary kept in step with the
maintenance event ledger inside the same transaction.
"""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)

from core.enums import LifecycleState, ToolStatus, ToolType
from db.base import Base, UTCDateTime, utcnow


def enum_column(enum_cls: type, length: int = 32) -> SAEnum:
    """Store enum values (not names) as VARCHAR, portable across dialects."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


class Tool(Base):
    """Current-state projection of a single physical tool."""
    __tablename__ = "tools"
    __table_args__ = (
        UniqueConstraint("material_id", "batch_id", name="uq_tools_material_batch"),
        CheckConstraint("current_tool_life >= 0", name="ck_tools_life_non_negative"),
        CheckConstraint("number_of_regrinding >= 0", name="ck_tools_regrinding_non_negative"),
        CheckConstraint("number_of_resegmentation >= 0", name="ck_tools_resegmentation_non_negative"),
    )

    tool_id = Column(Integer, primary_key=True, autoincrement=True)
    material_id = Column(String(64), nullable=False, index=True)
    batch_id = Column(String(64), nullable=False)
    tool_name = Column(String(255), nullable=False)
    type = Column(enum_column(ToolType), nullable=False)
    format = Column(String(64), nullable=True)  # upper-cased on write
    current_factory_id = Column(Integer, ForeignKey("factories.factory_id"), nullable=True)

    status = Column(String(100), nullable=False, default=ToolStatus.NOT_IN_USE.value)
    lifecycle_state = Column(enum_column(LifecycleState), nullable=False, default=LifecycleState.ACTIVE)

    # Cumulative counters
    current_tool_life = Column(Float, nullable=False, default=0.0)
    baseline_tool_life = Column(Float, nullable=False, default=0.0)
    total_hlp = Column(BigInteger, nullable=False, default=0)
    number_of_regrinding = Column(Integer, nullable=False, default=0)
    number_of_resegmentation = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_retired(self) -> bool:
        return self.lifecycle_state == LifecycleState.RETIRED

    @property
    def label(self) -> str:
        return f"{self.material_id}-{self.batch_id}-{self.tool_name}"

    def __repr__(self) -> str:
        return f"<Tool {self.tool_id} {self.label} status={self.status!r}>"
