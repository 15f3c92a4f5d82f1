"""initial schema

Revision ID: 0001
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), unique=True),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("created_by", sa.BigInteger(), sa.ForeignKey("users.id")),
        sa.Column("total_settled_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="member"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("role in ('admin','member')", name="group_members_role_check"),
    )

    op.create_table(
        "split_expenses",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("paid_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="SET NULL")),
        sa.Column("split_type", sa.Text(), nullable=False, server_default="equal"),
        sa.Column("notes", sa.String(length=500)),
        sa.Column("is_settled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("settled_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_cents > 0", name="split_expenses_total_positive"),
        sa.CheckConstraint(
            "split_type in ('equal','exact','percentage','shares')",
            name="split_expenses_split_type_check",
        ),
    )

    op.create_table(
        "expense_splits",
        sa.Column(
            "expense_id",
            sa.BigInteger(),
            sa.ForeignKey("split_expenses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("participant_id", sa.BigInteger(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("percentage", sa.Numeric(9, 4)),
        sa.Column("shares", sa.Numeric(12, 4)),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "settlements",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("paid_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("paid_to", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("group_id", sa.BigInteger(), sa.ForeignKey("groups.id", ondelete="SET NULL")),
        sa.Column("method", sa.Text(), nullable=False, server_default="cash"),
        sa.Column("notes", sa.Text()),
        sa.Column("status", sa.Text(), nullable=False, server_default="verified"),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("verified_by", sa.BigInteger(), sa.ForeignKey("users.id")),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("applied_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("is_applied", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("paid_by <> paid_to", name="settlements_no_self_settlement"),
        sa.CheckConstraint("amount_cents > 0", name="settlements_amount_positive"),
        sa.CheckConstraint("applied_cents BETWEEN 0 AND amount_cents", name="settlements_applied_within_amount"),
        sa.CheckConstraint("status in ('pending','verified','disputed')", name="settlements_status_check"),
        sa.CheckConstraint(
            "method in ('cash','bank_transfer','upi','credit_card','paypal','venmo','other')",
            name="settlements_method_check",
        ),
    )

    op.create_table(
        "settlement_expenses",
        sa.Column(
            "settlement_id",
            sa.BigInteger(),
            sa.ForeignKey("settlements.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "expense_id",
            sa.BigInteger(),
            sa.ForeignKey("split_expenses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("applied_cents", sa.BigInteger(), nullable=False, server_default="0"),
    )

    op.create_index("idx_group_members_user", "group_members", ["user_id"])
    op.create_index("idx_split_expenses_group", "split_expenses", ["group_id", "created_at"])
    op.create_index("idx_split_expenses_paid_by", "split_expenses", ["paid_by"])
    op.create_index("idx_split_expenses_unsettled", "split_expenses", ["is_settled"])
    op.create_index("idx_expense_splits_participant", "expense_splits", ["participant_id"])
    op.create_index("idx_settlements_paid_by", "settlements", ["paid_by", "settled_at"])
    op.create_index("idx_settlements_paid_to", "settlements", ["paid_to", "settled_at"])
    op.create_index("idx_settlements_group", "settlements", ["group_id", "settled_at"])


def downgrade() -> None:
    op.drop_index("idx_settlements_group", table_name="settlements")
    op.drop_index("idx_settlements_paid_to", table_name="settlements")
    op.drop_index("idx_settlements_paid_by", table_name="settlements")
    op.drop_index("idx_expense_splits_participant", table_name="expense_splits")
    op.drop_index("idx_split_expenses_unsettled", table_name="split_expenses")
    op.drop_index("idx_split_expenses_paid_by", table_name="split_expenses")
    op.drop_index("idx_split_expenses_group", table_name="split_expenses")
    op.drop_index("idx_group_members_user", table_name="group_members")

    op.drop_table("settlement_expenses")
    op.drop_table("settlements")
    op.drop_table("expense_splits")
    op.drop_table("split_expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
