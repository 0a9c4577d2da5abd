import os
from datetime import datetime, timezone

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from dona.errors import ValidationIssue
from dona.services import daily_gate
from dona.services.results import DAILY_ALLOWED, DAILY_ALREADY_USED, DAILY_NOT_ENTITLED
from dona.time_utils import calendar_day

FEATURE = "daily_ai_recommendation"


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_calendar_day_uses_reference_offset():
    # 2026-01-01 15:00 UTC is already 2026-01-02 00:00 in KST
    now = _utc(2026, 1, 1, 15, 0, 0)
    assert now.date().isoformat() == "2026-01-01"
    assert calendar_day(now) == "2026-01-02"
    assert calendar_day(now, offset_hours=0) == "2026-01-01"


def test_calendar_day_treats_naive_as_utc():
    assert calendar_day(datetime(2026, 1, 1, 14, 59, 59)) == "2026-01-01"


def test_second_use_same_day_denied(db_session, make_account):
    account_id = make_account("daily")
    now = _utc(2026, 1, 1, 3, 0, 0)

    first = daily_gate.try_consume_daily(db_session, account_id, FEATURE, now)
    second = daily_gate.try_consume_daily(db_session, account_id, FEATURE, now)
    db_session.commit()

    assert first.status == DAILY_ALLOWED
    assert first.allowed and not first.already_used_today
    assert second.status == DAILY_ALREADY_USED
    assert second.already_used_today
    assert second.used_today == 1
    assert second.limit == 1


def test_midnight_boundary_in_reference_timezone(db_session, make_account):
    account_id = make_account("midnight")
    before_midnight = _utc(2026, 1, 1, 14, 59, 59)  # 23:59:59 KST
    after_midnight = _utc(2026, 1, 1, 15, 0, 1)  # 00:00:01 KST next day

    first = daily_gate.try_consume_daily(db_session, account_id, FEATURE, before_midnight)
    replay = daily_gate.try_consume_daily(db_session, account_id, FEATURE, before_midnight)
    next_day = daily_gate.try_consume_daily(db_session, account_id, FEATURE, after_midnight)

    assert first.allowed and first.day == "2026-01-01"
    assert replay.already_used_today
    assert next_day.allowed and next_day.day == "2026-01-02"


def test_same_utc_day_different_reference_day(db_session, make_account):
    account_id = make_account("utc-vs-kst")
    morning_utc = _utc(2026, 1, 1, 1, 0, 0)  # 10:00 KST on Jan 1
    evening_utc = _utc(2026, 1, 1, 16, 0, 0)  # 01:00 KST on Jan 2, same UTC day

    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, morning_utc).allowed
    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, evening_utc).allowed


def test_different_utc_day_same_reference_day(db_session, make_account):
    account_id = make_account("kst-same-day")
    late_utc = _utc(2026, 1, 1, 16, 0, 0)  # 2026-01-02 01:00 KST
    next_utc = _utc(2026, 1, 2, 10, 0, 0)  # 2026-01-02 19:00 KST

    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, late_utc).allowed
    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, next_utc).already_used_today


def test_limit_allows_multiple_uses(db_session, make_account):
    account_id = make_account("multi")
    now = _utc(2026, 5, 5, 5, 0, 0)
    results = [daily_gate.try_consume_daily(db_session, account_id, FEATURE, now, limit=2) for _ in range(3)]
    assert [r.status for r in results] == [DAILY_ALLOWED, DAILY_ALLOWED, DAILY_ALREADY_USED]
    assert results[1].used_today == 2


def test_zero_limit_is_not_entitled(db_session, make_account):
    account_id = make_account("zero")
    result = daily_gate.try_consume_daily(db_session, account_id, FEATURE, _utc(2026, 5, 5), limit=0)
    assert result.status == DAILY_NOT_ENTITLED
    assert not result.allowed
    assert daily_gate._get_marker(db_session, account_id, FEATURE) is None


def test_peek_does_not_consume(db_session, make_account):
    account_id = make_account("peek")
    now = _utc(2026, 5, 5, 5, 0, 0)
    assert daily_gate.peek_daily(db_session, account_id, FEATURE, now, 1).allowed
    assert daily_gate.peek_daily(db_session, account_id, FEATURE, now, 1).allowed
    daily_gate.try_consume_daily(db_session, account_id, FEATURE, now)
    assert daily_gate.peek_daily(db_session, account_id, FEATURE, now, 1).already_used_today


def test_non_rate_feature_rejected(db_session, make_account):
    account_id = make_account("wrong-feature")
    with pytest.raises(ValidationIssue):
        daily_gate.try_consume_daily(db_session, account_id, "stored_collage", _utc(2026, 5, 5))


def test_late_request_from_previous_day_cannot_rewind_marker(db_session, make_account):
    account_id = make_account("skewed-clocks")
    jan1_late = _utc(2026, 1, 1, 14, 59, 59)  # 23:59:59 KST Jan 1
    jan2_early = _utc(2026, 1, 1, 15, 0, 1)  # 00:00:01 KST Jan 2

    first = daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan1_late)
    second = daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan2_early)
    stale = daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan1_late)
    again = daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan2_early)

    assert [r.status for r in (first, second, stale, again)] == [
        DAILY_ALLOWED,
        DAILY_ALLOWED,
        DAILY_ALREADY_USED,
        DAILY_ALREADY_USED,
    ]
    marker = daily_gate._get_marker(db_session, account_id, FEATURE)
    assert marker.last_used_day == "2026-01-02"
    assert marker.uses_on_day == 1
    assert daily_gate.peek_daily(db_session, account_id, FEATURE, jan1_late, 1).already_used_today


def test_stale_request_denied_even_with_unbounded_limit(db_session, make_account):
    account_id = make_account("skewed-unbounded")
    jan2 = _utc(2026, 1, 2, 3, 0, 0)
    jan1 = _utc(2026, 1, 1, 3, 0, 0)

    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan2, limit=None).allowed
    assert daily_gate.try_consume_daily(db_session, account_id, FEATURE, jan1, limit=None).already_used_today
    assert daily_gate._get_marker(db_session, account_id, FEATURE).last_used_day == "2026-01-02"
