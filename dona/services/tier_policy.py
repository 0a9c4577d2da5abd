"""
Tier policy table: subscription tier -> limit per resource kind.

Pure lookups, no I/O. ``None`` is the "unbounded" limit.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional, Union

import dona.config as config
from dona.errors import UnknownResourceKind
from dona.time_utils import to_utc_aware, utcnow


UNBOUNDED = None


class Tier(str, PyEnum):
    FREE = "FREE"
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


class ResourceKind(str, PyEnum):
    STORED_COLLAGE = "stored_collage"
    STORED_PERSONAL_MEMORY = "stored_personal_memory"
    DAILY_AI_RECOMMENDATION = "daily_ai_recommendation"
    SPENDABLE_COUPON = "spendable_coupon"


class PolicyKind(str, PyEnum):
    capacity = "capacity"  # max persisted rows, checked before insert
    rate = "rate"          # uses per reference-timezone calendar day
    balance = "balance"    # spendable non-negative integer (limit is the ceiling)


POLICY_BY_KIND = {
    ResourceKind.STORED_COLLAGE: PolicyKind.capacity,
    ResourceKind.STORED_PERSONAL_MEMORY: PolicyKind.capacity,
    ResourceKind.DAILY_AI_RECOMMENDATION: PolicyKind.rate,
    ResourceKind.SPENDABLE_COUPON: PolicyKind.balance,
}

DEFAULT_TIER_LIMITS = {
    Tier.FREE: {
        ResourceKind.STORED_COLLAGE: 5,
        ResourceKind.STORED_PERSONAL_MEMORY: 10,
        ResourceKind.DAILY_AI_RECOMMENDATION: 1,
        ResourceKind.SPENDABLE_COUPON: UNBOUNDED,
    },
    Tier.BASIC: {
        ResourceKind.STORED_COLLAGE: 10,
        ResourceKind.STORED_PERSONAL_MEMORY: 30,
        ResourceKind.DAILY_AI_RECOMMENDATION: 1,
        ResourceKind.SPENDABLE_COUPON: UNBOUNDED,
    },
    Tier.PREMIUM: {
        ResourceKind.STORED_COLLAGE: UNBOUNDED,
        ResourceKind.STORED_PERSONAL_MEMORY: UNBOUNDED,
        ResourceKind.DAILY_AI_RECOMMENDATION: 1,
        ResourceKind.SPENDABLE_COUPON: UNBOUNDED,
    },
}


def _build_table(overrides: Optional[dict]) -> dict:
    table = {tier: dict(limits) for tier, limits in DEFAULT_TIER_LIMITS.items()}
    if not isinstance(overrides, dict):
        return table
    # Malformed entries are skipped here and reported by validate_and_prepare_config()
    for tier_name, limits in overrides.items():
        try:
            tier = Tier(str(tier_name).upper())
        except ValueError:
            continue
        if not isinstance(limits, dict):
            continue
        for kind_name, value in limits.items():
            try:
                kind = ResourceKind(kind_name)
            except ValueError:
                continue
            if value is None or (isinstance(value, int) and not isinstance(value, bool) and value >= 0):
                table[tier][kind] = value
    return table


TIER_LIMITS = _build_table(config.TIER_LIMIT_OVERRIDES)


def resolve_tier(tier: Union[str, Tier, None]) -> Tier:
    """Unknown or missing tiers resolve to FREE, never to an unbounded tier."""
    if isinstance(tier, Tier):
        return tier
    if not tier:
        return Tier.FREE
    try:
        return Tier(str(tier).strip().upper())
    except ValueError:
        return Tier.FREE


def resolve_kind(kind: Union[str, ResourceKind]) -> ResourceKind:
    if isinstance(kind, ResourceKind):
        return kind
    try:
        return ResourceKind(kind)
    except ValueError:
        raise UnknownResourceKind(kind) from None


def policy_for(kind: Union[str, ResourceKind]) -> PolicyKind:
    return POLICY_BY_KIND[resolve_kind(kind)]


def limit_for(tier: Union[str, Tier, None], kind: Union[str, ResourceKind]) -> Optional[int]:
    resource_kind = resolve_kind(kind)
    return TIER_LIMITS[resolve_tier(tier)][resource_kind]


def is_unbounded(limit: Optional[int]) -> bool:
    return limit is UNBOUNDED


def effective_tier(account, now: Optional[datetime] = None) -> Tier:
    """
    Tier an account is entitled to right now.

    A timed tier past its expiry falls back to FREE. When a promotion is
    configured, FREE accounts created before the sign-up cutoff get the
    promo tier until the promotion ends.
    """
    now = to_utc_aware(now) if now is not None else utcnow()
    tier = resolve_tier(account.tier)
    expires_at = to_utc_aware(account.tier_expires_at)
    if tier != Tier.FREE and expires_at is not None and expires_at <= now:
        tier = Tier.FREE

    if tier == Tier.FREE and config.promo_enabled():
        created_at = to_utc_aware(account.created_at)
        if created_at is not None and created_at < config.PROMO_SIGNUP_CUTOFF and now < config.PROMO_END:
            return resolve_tier(config.PROMO_TIER)
    return tier


__all__ = [
    "UNBOUNDED",
    "Tier",
    "ResourceKind",
    "PolicyKind",
    "POLICY_BY_KIND",
    "DEFAULT_TIER_LIMITS",
    "TIER_LIMITS",
    "resolve_tier",
    "resolve_kind",
    "policy_for",
    "limit_for",
    "is_unbounded",
    "effective_tier",
]
