"""
Milestone reward engine.

A milestone fires when a running count lands on an exact multiple of the
rule's step. Each (account, milestone type, index) is rewarded at most
once; the unique constraint on ``milestone_rewards`` is the dedup key,
so replays and retries are no-ops.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

import dona.config as config
from dona.errors import ValidationIssue
from dona.models import CompletionRecord, MilestoneReward
from dona.services.results import MilestoneGrant
from dona.services.tier_policy import ResourceKind
from dona.services.usage_store import DEFAULT_BALANCE_FIELD, credit, get_balance

logger = config.logger


COURSE_COMPLETION = "course_completion_milestone"
PERSONAL_MEMORY = "personal_memory_milestone"


@dataclass(frozen=True)
class MilestoneRule:
    milestone_type: str
    step: int
    reward_amount: int
    max_index: Optional[int] = None  # None: every multiple of step, forever
    balance_field: str = DEFAULT_BALANCE_FIELD


MILESTONE_RULES = {
    COURSE_COMPLETION: MilestoneRule(
        milestone_type=COURSE_COMPLETION,
        step=config.COURSE_MILESTONE_STEP,
        reward_amount=config.COURSE_MILESTONE_REWARD,
    ),
    PERSONAL_MEMORY: MilestoneRule(
        milestone_type=PERSONAL_MEMORY,
        step=config.MEMORY_MILESTONE_STEP,
        reward_amount=config.MEMORY_MILESTONE_REWARD,
        max_index=config.MEMORY_MILESTONE_MAX_INDEX or None,
    ),
}

# Stored-resource kinds whose count feeds a milestone
MILESTONE_BY_KIND = {
    ResourceKind.STORED_PERSONAL_MEMORY: PERSONAL_MEMORY,
}


def get_rule(milestone_type: str) -> MilestoneRule:
    rule = MILESTONE_RULES.get(milestone_type)
    if rule is None:
        raise ValidationIssue(
            f"Unknown milestone type: {milestone_type}",
            field="milestone_type",
            error_type="unknown_milestone_type",
        )
    return rule


def milestone_index(count: int, step: int) -> Optional[int]:
    """Index reached by ``count``, or None when ``count`` is not an exact multiple."""
    if count <= 0 or step <= 0 or count % step:
        return None
    return count // step


def _existing_reward(db, account_id: str, milestone_type: str, index: int) -> Optional[MilestoneReward]:
    return (
        db.query(MilestoneReward)
        .filter(MilestoneReward.account_id == account_id)
        .filter(MilestoneReward.milestone_type == milestone_type)
        .filter(MilestoneReward.milestone_index == index)
        .first()
    )


def check_and_grant(
    db,
    account_id: str,
    rule: MilestoneRule,
    count: int,
    ceiling: Optional[int] = None,
) -> Optional[MilestoneGrant]:
    """
    Grant the milestone reached by ``count`` if it has not been granted yet.

    Runs inside the triggering event's transaction so the reward record,
    the balance change and the event commit or roll back together.
    Returns None when ``count`` is not on a milestone.
    """
    index = milestone_index(count, rule.step)
    if index is None:
        return None
    if rule.max_index is not None and index > rule.max_index:
        return None

    existing = _existing_reward(db, account_id, rule.milestone_type, index)
    if existing is not None:
        return _replayed_grant(db, account_id, rule, existing)

    reward = MilestoneReward(
        account_id=account_id,
        milestone_type=rule.milestone_type,
        milestone_index=index,
        reward_amount=0,
        balance_field=rule.balance_field,
    )
    try:
        with db.begin_nested():
            db.add(reward)
    except IntegrityError:
        logger.info(
            "milestone_already_rewarded",
            extra={"account_id": account_id, "milestone_type": rule.milestone_type, "index": index},
        )
        existing = _existing_reward(db, account_id, rule.milestone_type, index)
        return _replayed_grant(db, account_id, rule, existing)

    balance_after = get_balance(db, account_id, rule.balance_field)
    applied = 0
    if rule.reward_amount > 0:
        result = credit(db, account_id, rule.reward_amount, ceiling=ceiling, balance_field=rule.balance_field)
        balance_after = result.balance
        applied = result.applied
    # The record holds what was credited, which the coupon ceiling may have cut
    reward.reward_amount = applied
    db.flush()
    logger.info(
        "milestone_rewarded",
        extra={
            "account_id": account_id,
            "milestone_type": rule.milestone_type,
            "index": index,
            "reward_amount": applied,
            "rule_amount": rule.reward_amount,
        },
    )
    return MilestoneGrant(
        milestone_type=rule.milestone_type,
        milestone_index=index,
        reward_amount=applied,
        granted=True,
        balance_after=balance_after,
    )


def _replayed_grant(db, account_id: str, rule: MilestoneRule, existing: MilestoneReward) -> MilestoneGrant:
    return MilestoneGrant(
        milestone_type=rule.milestone_type,
        milestone_index=existing.milestone_index,
        reward_amount=existing.reward_amount,
        granted=False,
        balance_after=get_balance(db, account_id, rule.balance_field),
    )


def count_completions(db, account_id: str, milestone_type: str) -> int:
    count = (
        db.query(func.count(CompletionRecord.id))
        .filter(CompletionRecord.account_id == account_id)
        .filter(CompletionRecord.milestone_type == milestone_type)
        .scalar()
    )
    return int(count or 0)


def record_completion(
    db,
    account_id: str,
    milestone_type: str,
    subject_key: Optional[str] = None,
) -> tuple[Optional[CompletionRecord], bool]:
    """
    Insert a completion for ``subject_key`` (a fresh key when omitted).

    Returns ``(record, replayed)``; a subject already recorded is a replay
    and leaves the count unchanged.
    """
    key = subject_key if subject_key is not None else uuid.uuid4().hex
    existing = (
        db.query(CompletionRecord)
        .filter(CompletionRecord.account_id == account_id)
        .filter(CompletionRecord.milestone_type == milestone_type)
        .filter(CompletionRecord.subject_key == key)
        .first()
    )
    if existing is not None:
        return existing, True
    try:
        with db.begin_nested():
            record = CompletionRecord(
                account_id=account_id,
                milestone_type=milestone_type,
                subject_key=key,
            )
            db.add(record)
    except IntegrityError:
        return None, True
    return record, False


def list_rewards(db, account_id: str, limit: int = 100) -> list[dict]:
    rows = (
        db.query(MilestoneReward)
        .filter(MilestoneReward.account_id == account_id)
        .order_by(MilestoneReward.created_at.desc(), MilestoneReward.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "milestone_type": row.milestone_type,
            "milestone_index": row.milestone_index,
            "reward_amount": row.reward_amount,
            "balance_field": row.balance_field,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]


__all__ = [
    "COURSE_COMPLETION",
    "PERSONAL_MEMORY",
    "MilestoneRule",
    "MILESTONE_RULES",
    "MILESTONE_BY_KIND",
    "get_rule",
    "milestone_index",
    "check_and_grant",
    "count_completions",
    "record_completion",
    "list_rewards",
]
