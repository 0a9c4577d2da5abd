"""Create entitlement schema.

Revision ID: 0001_entitlement_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_entitlement_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    uuid_type = postgresql.UUID(as_uuid=True) if is_postgres else sa.String(length=36)

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("tier", sa.String(length=20), nullable=False, server_default="FREE"),
        sa.Column("tier_expires_at", sa.DateTime(timezone=True)),
        sa.Column("coupon_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("coupon_balance >= 0", name="ck_accounts_coupon_balance_nonneg"),
    )

    op.create_table(
        "usage_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("resource_kind", sa.String(length=50), nullable=False),
        sa.Column("payload", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_usage_records_account_kind",
        "usage_records",
        ["account_id", "resource_kind"],
    )

    op.create_table(
        "daily_usage_markers",
        sa.Column(
            "account_id",
            sa.String(length=64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("feature", sa.String(length=50), primary_key=True),
        sa.Column("last_used_day", sa.String(length=10)),
        sa.Column("uses_on_day", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "completion_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("milestone_type", sa.String(length=50), nullable=False),
        sa.Column("subject_key", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "account_id", "milestone_type", "subject_key",
            name="uq_completion_records_subject",
        ),
    )
    op.create_index(
        "ix_completion_records_account_type",
        "completion_records",
        ["account_id", "milestone_type"],
    )

    op.create_table(
        "milestone_rewards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=64),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("milestone_type", sa.String(length=50), nullable=False),
        sa.Column("milestone_index", sa.Integer(), nullable=False),
        sa.Column("reward_amount", sa.Integer(), nullable=False),
        sa.Column("balance_field", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "account_id", "milestone_type", "milestone_index",
            name="uq_milestone_rewards_index",
        ),
    )

    op.create_table(
        "audit_events",
        sa.Column("event_id", uuid_type, primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("event_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=255)),
        sa.Column("account_id", sa.String(length=64)),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_ids", json_type, nullable=False),
        sa.Column("count_affected", sa.Integer()),
        sa.Column("reason", sa.Text()),
        sa.Column("request_id", sa.String(length=255)),
        sa.Column("metadata", json_type),
    )
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_account_id", "audit_events", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_account_id", table_name="audit_events")
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_created_at", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("milestone_rewards")
    op.drop_index("ix_completion_records_account_type", table_name="completion_records")
    op.drop_table("completion_records")
    op.drop_table("daily_usage_markers")
    op.drop_index("ix_usage_records_account_kind", table_name="usage_records")
    op.drop_table("usage_records")
    op.drop_table("accounts")
