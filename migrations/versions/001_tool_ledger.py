"""Create the tool lifecycle ledger schema.

Reference data (factories, machines), the tools projection, the
maintenance event ledger, the daily usage rollup, raw usage samples, the
drive status stream and the field change audit trail.

Revision ID: 001_tool_ledger
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_tool_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "factories",
        sa.Column("factory_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint("factory_id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "machines",
        sa.Column("machine_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("machine_name", sa.String(255), nullable=False),
        sa.Column("factory_id", sa.Integer(), sa.ForeignKey("factories.factory_id"), nullable=True),
        sa.PrimaryKeyConstraint("machine_id"),
    )
    op.create_index("ix_machines_machine_name", "machines", ["machine_name"], unique=False)

    op.create_table(
        "tools",
        sa.Column("tool_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("material_id", sa.String(64), nullable=False),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("tool_name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("format", sa.String(64), nullable=True),
        sa.Column("current_factory_id", sa.Integer(), sa.ForeignKey("factories.factory_id"), nullable=True),
        sa.Column("status", sa.String(100), nullable=False, server_default="not in use"),
        sa.Column("lifecycle_state", sa.String(32), nullable=False, server_default="active"),
        sa.Column("current_tool_life", sa.Float(), nullable=False, server_default="0"),
        sa.Column("baseline_tool_life", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_hlp", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("number_of_regrinding", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("number_of_resegmentation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("tool_id"),
        sa.UniqueConstraint("material_id", "batch_id", name="uq_tools_material_batch"),
        sa.CheckConstraint("current_tool_life >= 0", name="ck_tools_life_non_negative"),
        sa.CheckConstraint("number_of_regrinding >= 0", name="ck_tools_regrinding_non_negative"),
        sa.CheckConstraint("number_of_resegmentation >= 0", name="ck_tools_resegmentation_non_negative"),
    )
    op.create_index("ix_tools_material_id", "tools", ["material_id"], unique=False)

    op.create_table(
        "maintenance_events",
        sa.Column("event_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tool_id", sa.Integer(), sa.ForeignKey("tools.tool_id"), nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("tool_life_at_event", sa.Float(), nullable=False),
        sa.Column("life_consumed", sa.Float(), nullable=False, server_default="0"),
        sa.Column("event_sequence", sa.Integer(), nullable=False),
        sa.Column("hlp_count_at_event", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("source", sa.String(32), nullable=False, server_default="live"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("event_id"),
        sa.UniqueConstraint(
            "tool_id", "event_type", "event_sequence", name="uq_maintenance_events_sequence"
        ),
    )
    op.create_index(
        "idx_maintenance_events_tool_time",
        "maintenance_events",
        ["tool_id", "timestamp"],
        unique=False,
    )

    op.create_table(
        "daily_tool_summary",
        sa.Column("tool_id", sa.Integer(), sa.ForeignKey("tools.tool_id"), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("summary_date", sa.Date(), nullable=False),
        sa.Column("total_ts_revolutions", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_hlp_run", sa.BigInteger(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("tool_id", "machine_id", "summary_date"),
    )

    op.create_table(
        "usage_samples",
        sa.Column("sample_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tool_id", sa.Integer(), sa.ForeignKey("tools.tool_id"), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hlp_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("ts_revolutions", sa.Float(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("sample_id"),
    )
    op.create_index("idx_usage_samples_tool_time", "usage_samples", ["tool_id", "timestamp"], unique=False)

    op.create_table(
        "drive_status",
        sa.Column("status_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tool_id", sa.Integer(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("status_id"),
    )
    op.create_index("idx_drive_status_machine_tool", "drive_status", ["machine_id", "tool_id"], unique=False)
    op.create_index("idx_drive_status_tool_time", "drive_status", ["tool_id", "timestamp"], unique=False)

    op.create_table(
        "tool_change_log",
        sa.Column("log_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tool_id", sa.Integer(), sa.ForeignKey("tools.tool_id"), nullable=False),
        sa.Column("change_type", sa.String(10), nullable=False),
        sa.Column("field_changed", sa.String(64), nullable=True),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("changed_by", sa.String(64), nullable=True),
        sa.Column("change_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("log_id"),
    )
    op.create_index(
        "idx_tool_change_log_tool_time",
        "tool_change_log",
        ["tool_id", "change_timestamp"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_tool_change_log_tool_time", table_name="tool_change_log")
    op.drop_table("tool_change_log")
    op.drop_index("idx_drive_status_tool_time", table_name="drive_status")
    op.drop_index("idx_drive_status_machine_tool", table_name="drive_status")
    op.drop_table("drive_status")
    op.drop_index("idx_usage_samples_tool_time", table_name="usage_samples")
    op.drop_table("usage_samples")
    op.drop_table("daily_tool_summary")
    op.drop_index("idx_maintenance_events_tool_time", table_name="maintenance_events")
    op.drop_table("maintenance_events")
    op.drop_index("ix_tools_material_id", table_name="tools")
    op.drop_table("tools")
    op.drop_index("ix_machines_machine_name", table_name="machines")
    op.drop_table("machines")
    op.drop_table("factories")
