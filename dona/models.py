"""
DoNa Entitlement Database Models
PostgreSQL (production) / SQLite (dev, tests) schema
"""

from datetime import datetime
import uuid
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, CheckConstraint,
    Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base

import dona.config as config

DB_BACKEND = config.DB_BACKEND

JSON_TYPE = JSONB if DB_BACKEND == "postgres" else JSON
UUID_TYPE = UUID(as_uuid=True) if DB_BACKEND == "postgres" else String(36)


def _uuid_default() -> str | uuid.UUID:
    value = uuid.uuid4()
    return value if DB_BACKEND == "postgres" else str(value)


Base = declarative_base()


# =============================================================================
# Accounts (owned by the identity subsystem; read for tier, written for balance)
# =============================================================================

class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)
    tier = Column(String(20), nullable=False, default="FREE", server_default="FREE")
    tier_expires_at = Column(DateTime(timezone=True))  # None: not on a timed tier
    coupon_balance = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("coupon_balance >= 0", name="ck_accounts_coupon_balance_nonneg"),
    )


# =============================================================================
# Usage Records (one row per stored collage / personal memory)
# =============================================================================

class UsageRecord(Base):
    __tablename__ = "usage_records"

    id = Column(Integer, primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    resource_kind = Column(String(50), nullable=False)
    payload = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_usage_records_account_kind", "account_id", "resource_kind"),
    )


# =============================================================================
# Daily Usage Markers (rate-limited features)
# =============================================================================

class DailyUsageMarker(Base):
    __tablename__ = "daily_usage_markers"

    account_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    feature = Column(String(50), primary_key=True)
    last_used_day = Column(String(10))  # YYYY-MM-DD in the reference timezone
    uses_on_day = Column(Integer, nullable=False, default=0, server_default="0")
    last_used_at = Column(DateTime(timezone=True))


# =============================================================================
# Completions and Milestone Rewards
# =============================================================================

class CompletionRecord(Base):
    __tablename__ = "completion_records"

    id = Column(Integer, primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    milestone_type = Column(String(50), nullable=False)
    subject_key = Column(String(200), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "account_id", "milestone_type", "subject_key",
            name="uq_completion_records_subject",
        ),
        Index("ix_completion_records_account_type", "account_id", "milestone_type"),
    )


class MilestoneReward(Base):
    __tablename__ = "milestone_rewards"

    id = Column(Integer, primary_key=True)
    account_id = Column(String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    milestone_type = Column(String(50), nullable=False)
    milestone_index = Column(Integer, nullable=False)
    reward_amount = Column(Integer, nullable=False)
    balance_field = Column(String(50), nullable=False, default="coupon_balance")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "account_id", "milestone_type", "milestone_index",
            name="uq_milestone_rewards_index",
        ),
    )


# =============================================================================
# Audit Events
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(UUID_TYPE, primary_key=True, default=_uuid_default)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    account_id = Column(String(64))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
        Index("ix_audit_events_account_id", "account_id"),
    )


BALANCE_FIELDS = {
    "coupon_balance": Account.coupon_balance,
}

__all__ = [
    "Base",
    "Account",
    "UsageRecord",
    "DailyUsageMarker",
    "CompletionRecord",
    "MilestoneReward",
    "AuditEvent",
    "BALANCE_FIELDS",
]
