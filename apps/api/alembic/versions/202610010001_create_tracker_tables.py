"""create tracker tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "tracker_user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="others"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )

    op.create_table(
        "tracker_user_admin_link",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("admin_id", sa.Uuid(), nullable=False),
        sa.Column("established_by_id", sa.Uuid(), nullable=True),
        sa.Column("established_by_role", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["tracker_user.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["admin_id"], ["tracker_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "admin_id", name="uq_tracker_user_admin_link_pair"),
    )
    op.create_index("ix_tracker_user_admin_link_admin_id", "tracker_user_admin_link", ["admin_id"], unique=False)

    op.create_table(
        "tracker_entry",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_name", sa.Text(), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("mobile_number", sa.String(length=10), nullable=True),
        sa.Column("contact_person", sa.Text(), nullable=True),
        sa.Column("organization", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("type", sa.String(length=128), nullable=True),
        sa.Column("state", sa.String(length=128), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("estimated_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("close_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("close_type", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Not Found"),
        sa.Column("next_action", sa.Text(), nullable=True),
        sa.Column("follow_up_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expected_closing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_person_meet", sa.Text(), nullable=True),
        sa.Column("second_person_meet", sa.Text(), nullable=True),
        sa.Column("third_person_meet", sa.Text(), nullable=True),
        sa.Column("fourth_person_meet", sa.Text(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("attachment_path", sa.Text(), nullable=True),
        sa.Column("live_location", sa.Text(), nullable=True),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["created_by_id"], ["tracker_user.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tracker_entry_created_by_id", "tracker_entry", ["created_by_id"], unique=False)
    op.create_index("ix_tracker_entry_status", "tracker_entry", ["status"], unique=False)
    op.create_index("ix_tracker_entry_follow_up_date", "tracker_entry", ["follow_up_date"], unique=False)
    op.create_index(
        "ix_tracker_entry_expected_closing_date",
        "tracker_entry",
        ["expected_closing_date"],
        unique=False,
    )

    op.create_table(
        "tracker_entry_assignee",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["tracker_entry.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["tracker_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entry_id", "user_id", name="uq_tracker_entry_assignee_pair"),
    )
    op.create_index("ix_tracker_entry_assignee_user_id", "tracker_entry_assignee", ["user_id"], unique=False)

    op.create_table(
        "tracker_entry_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("live_location", sa.Text(), nullable=True),
        sa.Column("next_action", sa.Text(), nullable=True),
        sa.Column("estimated_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("products", sa.JSON(), nullable=False),
        sa.Column("assigned_to", sa.JSON(), nullable=False),
        sa.Column("follow_up_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_person_meet", sa.Text(), nullable=True),
        sa.Column("second_person_meet", sa.Text(), nullable=True),
        sa.Column("third_person_meet", sa.Text(), nullable=True),
        sa.Column("fourth_person_meet", sa.Text(), nullable=True),
        sa.Column("attachment_path", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["tracker_entry.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tracker_entry_history_entry_id", "tracker_entry_history", ["entry_id"], unique=False)

    op.create_table(
        "tracker_notification",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["tracker_user.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_tracker_notification_user_id_created_at",
        "tracker_notification",
        ["user_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_tracker_notification_user_id_created_at", table_name="tracker_notification")
    op.drop_table("tracker_notification")

    op.drop_index("ix_tracker_entry_history_entry_id", table_name="tracker_entry_history")
    op.drop_table("tracker_entry_history")

    op.drop_index("ix_tracker_entry_assignee_user_id", table_name="tracker_entry_assignee")
    op.drop_table("tracker_entry_assignee")

    op.drop_index("ix_tracker_entry_expected_closing_date", table_name="tracker_entry")
    op.drop_index("ix_tracker_entry_follow_up_date", table_name="tracker_entry")
    op.drop_index("ix_tracker_entry_status", table_name="tracker_entry")
    op.drop_index("ix_tracker_entry_created_by_id", table_name="tracker_entry")
    op.drop_table("tracker_entry")

    op.drop_index("ix_tracker_user_admin_link_admin_id", table_name="tracker_user_admin_link")
    op.drop_table("tracker_user_admin_link")

    op.drop_table("tracker_user")
