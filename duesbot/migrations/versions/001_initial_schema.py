"""Initial schema: groups, policies, subscribers, ledger, markers, wallets, audit.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "dues_groups",
        *_timestamps(),
        sa.Column("group_id", sa.String(length=64), nullable=False, comment="Chat/group identifier"),
        sa.Column("title", sa.String(length=255), nullable=True, comment="Chat title at setup time"),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("disabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_dues_group_id", "dues_groups", ["group_id"], unique=True)
    op.create_index("idx_dues_group_active", "dues_groups", ["active"])

    op.create_table(
        "billing_policies",
        *_timestamps(),
        sa.Column(
            "group_id",
            sa.String(length=64),
            nullable=False,
            comment="Chat/group identifier the policy belongs to",
        ),
        sa.Column(
            "cycle_kind",
            sa.String(length=16),
            nullable=False,
            comment="Billing cadence: 'monthly' or 'weekly'",
        ),
        sa.Column(
            "due_day_of_month", sa.Integer(), nullable=False, comment="Due day for monthly cadence (1-28)"
        ),
        sa.Column(
            "due_weekday",
            sa.Integer(),
            nullable=False,
            comment="ISO weekday for weekly cadence (1=Monday .. 7=Sunday)",
        ),
        sa.Column(
            "fee_amount",
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment="Amount owed per billing period",
        ),
        sa.Column(
            "grace_period_days",
            sa.Integer(),
            nullable=False,
            comment="Days after the due date before eviction applies",
        ),
        sa.Column(
            "reminder_offsets_days",
            sa.JSON(),
            nullable=False,
            comment="Days before the due date on which reminders are sent",
        ),
        sa.Column("auto_collect", sa.Boolean(), nullable=False),
        sa.Column("auto_evict", sa.Boolean(), nullable=False),
        sa.Column(
            "admin_only",
            sa.Boolean(),
            nullable=False,
            comment="Restrict admin sub-commands to chat administrators",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_billing_policy_group", "billing_policies", ["group_id"], unique=True)

    op.create_table(
        "subscribers",
        *_timestamps(),
        sa.Column(
            "subscriber_id",
            sa.String(length=64),
            nullable=False,
            comment="Member identifier (Telegram user id)",
        ),
        sa.Column(
            "group_id", sa.String(length=64), nullable=False, comment="Group the member is enrolled in"
        ),
        sa.Column(
            "dedicated_balance",
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment="Collected funds reserved for dues",
        ),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_paid_period_key",
            sa.String(length=32),
            nullable=True,
            comment="Key (period start date) of the last period paid",
        ),
        sa.Column("total_paid", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column("payment_count", sa.Integer(), nullable=False),
        sa.CheckConstraint("dedicated_balance >= 0", name="ck_subscriber_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_subscriber_member_group", "subscribers", ["subscriber_id", "group_id"], unique=True
    )
    op.create_index("idx_subscriber_group", "subscribers", ["group_id"])

    op.create_table(
        "payment_events",
        *_timestamps(),
        sa.Column("subscriber_id", sa.String(length=64), nullable=False),
        sa.Column("group_id", sa.String(length=64), nullable=False),
        sa.Column(
            "amount",
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment="Amount moved (0 for eviction entries)",
        ),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("days_late", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_payment_event_member",
        "payment_events",
        ["group_id", "subscriber_id", "occurred_at"],
    )
    op.create_index("idx_payment_event_group_time", "payment_events", ["group_id", "occurred_at"])

    op.create_table(
        "reminder_markers",
        *_timestamps(),
        sa.Column("subscriber_id", sa.String(length=64), nullable=False),
        sa.Column("group_id", sa.String(length=64), nullable=False),
        sa.Column("period_key", sa.String(length=32), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column(
            "offset_days",
            sa.Integer(),
            nullable=False,
            comment="Days before due (reminder) or days overdue (overdue notice)",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_reminder_marker_unique",
        "reminder_markers",
        ["group_id", "subscriber_id", "period_key", "kind", "offset_days"],
        unique=True,
    )

    op.create_table(
        "wallet_accounts",
        *_timestamps(),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("balance", sa.Numeric(precision=14, scale=2), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_wallet_owner", "wallet_accounts", ["owner_id"], unique=True)

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("idx_wallet_owner", table_name="wallet_accounts")
    op.drop_table("wallet_accounts")
    op.drop_index("idx_reminder_marker_unique", table_name="reminder_markers")
    op.drop_table("reminder_markers")
    op.drop_index("idx_payment_event_group_time", table_name="payment_events")
    op.drop_index("idx_payment_event_member", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_index("idx_subscriber_group", table_name="subscribers")
    op.drop_index("idx_subscriber_member_group", table_name="subscribers")
    op.drop_table("subscribers")
    op.drop_index("idx_billing_policy_group", table_name="billing_policies")
    op.drop_table("billing_policies")
    op.drop_index("idx_dues_group_active", table_name="dues_groups")
    op.drop_index("idx_dues_group_id", table_name="dues_groups")
    op.drop_table("dues_groups")
