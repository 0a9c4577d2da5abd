import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

import dona.config as config
from dona.errors import UnknownResourceKind, ValidationIssue
from dona.services.tier_policy import (
    DEFAULT_TIER_LIMITS,
    PolicyKind,
    ResourceKind,
    Tier,
    _build_table,
    effective_tier,
    is_unbounded,
    limit_for,
    policy_for,
    resolve_tier,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _account(tier="FREE", expires_at=None, created_at=None):
    return SimpleNamespace(
        tier=tier,
        tier_expires_at=expires_at,
        created_at=created_at or datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("tier", list(Tier))
@pytest.mark.parametrize("kind", list(ResourceKind))
def test_limit_grid_is_non_negative_or_unbounded(tier, kind):
    limit = limit_for(tier, kind)
    assert is_unbounded(limit) or (isinstance(limit, int) and limit >= 0)


def test_known_limits():
    assert limit_for(Tier.FREE, ResourceKind.STORED_COLLAGE) == 5
    assert limit_for(Tier.BASIC, ResourceKind.STORED_COLLAGE) == 10
    assert limit_for(Tier.PREMIUM, ResourceKind.STORED_COLLAGE) is None
    assert limit_for("FREE", "daily_ai_recommendation") == 1


@pytest.mark.parametrize("raw", ["GOLD", "", None, "free ", "premium"])
def test_unknown_tier_uses_free_limits_unless_it_normalizes(raw):
    resolved = resolve_tier(raw)
    if raw and raw.strip().upper() in {"FREE", "PREMIUM"}:
        assert resolved == Tier(raw.strip().upper())
    else:
        assert resolved == Tier.FREE
        assert limit_for(raw, ResourceKind.STORED_COLLAGE) == limit_for(Tier.FREE, ResourceKind.STORED_COLLAGE)


def test_unknown_kind_fails_fast():
    with pytest.raises(UnknownResourceKind) as excinfo:
        limit_for(Tier.FREE, "stored_video")
    assert isinstance(excinfo.value, ValidationIssue)
    assert excinfo.value.kind == "stored_video"


def test_policy_kinds():
    assert policy_for(ResourceKind.STORED_COLLAGE) == PolicyKind.capacity
    assert policy_for("daily_ai_recommendation") == PolicyKind.rate
    assert policy_for(ResourceKind.SPENDABLE_COUPON) == PolicyKind.balance


def test_overrides_replace_only_valid_entries():
    table = _build_table(
        {
            "basic": {"stored_collage": 20, "stored_personal_memory": -1},
            "PREMIUM": {"daily_ai_recommendation": None},
            "GOLD": {"stored_collage": 1},
            "FREE": {"unknown_kind": 3},
        }
    )
    assert table[Tier.BASIC][ResourceKind.STORED_COLLAGE] == 20
    assert table[Tier.BASIC][ResourceKind.STORED_PERSONAL_MEMORY] == 30
    assert table[Tier.PREMIUM][ResourceKind.DAILY_AI_RECOMMENDATION] is None
    assert table[Tier.FREE] == DEFAULT_TIER_LIMITS[Tier.FREE]


def test_expired_tier_falls_back_to_free():
    account = _account("PREMIUM", expires_at=NOW - timedelta(seconds=1))
    assert effective_tier(account, NOW) == Tier.FREE


def test_active_tier_with_naive_expiry_is_kept():
    # SQLite hands back naive UTC values
    account = _account("BASIC", expires_at=(NOW + timedelta(days=3)).replace(tzinfo=None))
    assert effective_tier(account, NOW) == Tier.BASIC


def test_promo_applies_to_early_free_accounts(monkeypatch):
    monkeypatch.setattr(config, "PROMO_TIER", "BASIC")
    monkeypatch.setattr(config, "PROMO_SIGNUP_CUTOFF", datetime(2026, 2, 1, tzinfo=timezone.utc))
    monkeypatch.setattr(config, "PROMO_END", datetime(2026, 6, 1, tzinfo=timezone.utc))

    early = _account("FREE", created_at=datetime(2026, 1, 15, tzinfo=timezone.utc))
    late = _account("FREE", created_at=datetime(2026, 2, 15, tzinfo=timezone.utc))
    premium = _account("PREMIUM", created_at=datetime(2026, 1, 15, tzinfo=timezone.utc))

    assert effective_tier(early, NOW) == Tier.BASIC
    assert effective_tier(late, NOW) == Tier.FREE
    assert effective_tier(premium, NOW) == Tier.PREMIUM
    assert effective_tier(early, datetime(2026, 6, 2, tzinfo=timezone.utc)) == Tier.FREE


def test_promo_disabled_without_all_settings(monkeypatch):
    monkeypatch.setattr(config, "PROMO_TIER", "BASIC")
    monkeypatch.setattr(config, "PROMO_SIGNUP_CUTOFF", None)
    monkeypatch.setattr(config, "PROMO_END", datetime(2026, 6, 1, tzinfo=timezone.utc))
    assert effective_tier(_account("FREE"), NOW) == Tier.FREE
