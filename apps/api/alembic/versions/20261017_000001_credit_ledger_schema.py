"""create credit ledger schema

Revision ID: 20261017_000001
Revises:
Create Date: 2026-10-17 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_accounts_external_id"), "accounts", ["external_id"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("plan_id", sa.String(), nullable=False),
        sa.Column("monthly_credit_limit", sa.Integer(), nullable=False),
        sa.Column("cycle_start", sa.DateTime(), nullable=False),
        sa.Column("cycle_end", sa.DateTime(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "cycle_start", name="uq_subscriptions_account_cycle"),
    )
    op.create_index(op.f("ix_subscriptions_account_id"), "subscriptions", ["account_id"], unique=False)
    op.create_index(op.f("ix_subscriptions_active"), "subscriptions", ["active"], unique=False)

    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("cycle_start", sa.DateTime(), nullable=False),
        sa.Column("credits_remaining", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.CheckConstraint("credits_remaining >= 0", name="ck_credit_balances_non_negative"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "cycle_start", name="uq_credit_balances_account_cycle"),
    )
    op.create_index(op.f("ix_credit_balances_account_id"), "credit_balances", ["account_id"], unique=False)

    op.create_table(
        "usage_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("feature_type", sa.String(), nullable=False),
        sa.Column("credits_spent", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_usage_logs_account_id"), "usage_logs", ["account_id"], unique=False)
    op.create_index(op.f("ix_usage_logs_feature_type"), "usage_logs", ["feature_type"], unique=False)
    op.create_index(op.f("ix_usage_logs_timestamp"), "usage_logs", ["timestamp"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_usage_logs_timestamp"), table_name="usage_logs")
    op.drop_index(op.f("ix_usage_logs_feature_type"), table_name="usage_logs")
    op.drop_index(op.f("ix_usage_logs_account_id"), table_name="usage_logs")
    op.drop_table("usage_logs")
    op.drop_index(op.f("ix_credit_balances_account_id"), table_name="credit_balances")
    op.drop_table("credit_balances")
    op.drop_index(op.f("ix_subscriptions_active"), table_name="subscriptions")
    op.drop_index(op.f("ix_subscriptions_account_id"), table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index(op.f("ix_accounts_external_id"), table_name="accounts")
    op.drop_table("accounts")
