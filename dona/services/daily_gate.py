"""
Daily-use gate for rate-limited features.

"Today" is the calendar day in the fixed reference timezone (KST by
default). The marker row is updated with a single conditional UPDATE so
two near-simultaneous requests cannot both be admitted.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from sqlalchemy import and_, case, or_
from sqlalchemy.exc import IntegrityError

from dona.errors import ValidationIssue
from dona.models import DailyUsageMarker
from dona.services.results import (
    DAILY_ALLOWED,
    DAILY_ALREADY_USED,
    DAILY_NOT_ENTITLED,
    DailyResult,
)
from dona.services.tier_policy import PolicyKind, ResourceKind, policy_for, resolve_kind
from dona.time_utils import calendar_day, to_utc_aware


def resolve_daily_feature(feature: Union[str, ResourceKind]) -> ResourceKind:
    kind = resolve_kind(feature)
    if policy_for(kind) != PolicyKind.rate:
        raise ValidationIssue(
            f"{kind.value} is not a daily-gated feature",
            field="feature",
            error_type="not_daily_feature",
        )
    return kind


def _get_marker(db, account_id: str, feature: str) -> Optional[DailyUsageMarker]:
    return (
        db.query(DailyUsageMarker)
        .filter(DailyUsageMarker.account_id == account_id)
        .filter(DailyUsageMarker.feature == feature)
        .populate_existing()
        .first()
    )


def _uses_on(marker: Optional[DailyUsageMarker], day: str) -> int:
    if marker is None or not marker.last_used_day or marker.last_used_day < day:
        return 0
    return int(marker.uses_on_day or 0)


def _is_stale(marker: Optional[DailyUsageMarker], day: str) -> bool:
    """True when the marker already sits on a later day than ``day``."""
    return marker is not None and bool(marker.last_used_day) and marker.last_used_day > day


def _conditional_consume(db, account_id: str, feature: str, today: str, now_utc: datetime, limit: Optional[int]) -> int:
    query = (
        db.query(DailyUsageMarker)
        .filter(DailyUsageMarker.account_id == account_id)
        .filter(DailyUsageMarker.feature == feature)
    )
    # YYYY-MM-DD strings order lexically; the marker never moves back to an earlier day
    if limit is not None:
        query = query.filter(
            or_(
                DailyUsageMarker.last_used_day.is_(None),
                DailyUsageMarker.last_used_day < today,
                and_(
                    DailyUsageMarker.last_used_day == today,
                    DailyUsageMarker.uses_on_day < limit,
                ),
            )
        )
    else:
        query = query.filter(
            or_(
                DailyUsageMarker.last_used_day.is_(None),
                DailyUsageMarker.last_used_day <= today,
            )
        )
    # SET expressions see the pre-update row on both PostgreSQL and SQLite
    return query.update(
        {
            DailyUsageMarker.uses_on_day: case(
                (DailyUsageMarker.last_used_day == today, DailyUsageMarker.uses_on_day + 1),
                else_=1,
            ),
            DailyUsageMarker.last_used_day: today,
            DailyUsageMarker.last_used_at: now_utc.replace(tzinfo=None),
        },
        synchronize_session=False,
    )


def peek_daily(
    db,
    account_id: str,
    feature: Union[str, ResourceKind],
    now_utc: datetime,
    limit: Optional[int],
    offset_hours: Optional[int] = None,
) -> DailyResult:
    """Report whether a use would be admitted right now, without recording one."""
    kind = resolve_daily_feature(feature)
    today = calendar_day(now_utc, offset_hours)
    marker = _get_marker(db, account_id, kind.value)
    used = _uses_on(marker, today)
    if limit == 0:
        status = DAILY_NOT_ENTITLED
    elif _is_stale(marker, today) or (limit is not None and used >= limit):
        status = DAILY_ALREADY_USED
    else:
        status = DAILY_ALLOWED
    return DailyResult(status=status, feature=kind.value, day=today, used_today=used, limit=limit)


def try_consume_daily(
    db,
    account_id: str,
    feature: Union[str, ResourceKind],
    now_utc: datetime,
    limit: Optional[int] = 1,
    offset_hours: Optional[int] = None,
) -> DailyResult:
    """
    Compare-and-set today's marker; admits at most ``limit`` uses per reference day.

    Runs in the caller's transaction and does not commit.
    """
    kind = resolve_daily_feature(feature)
    now_utc = to_utc_aware(now_utc)
    today = calendar_day(now_utc, offset_hours)

    if limit == 0:
        used = _uses_on(_get_marker(db, account_id, kind.value), today)
        return DailyResult(status=DAILY_NOT_ENTITLED, feature=kind.value, day=today, used_today=used, limit=limit)

    for _ in range(2):
        if _conditional_consume(db, account_id, kind.value, today, now_utc, limit):
            marker = _get_marker(db, account_id, kind.value)
            return DailyResult(
                status=DAILY_ALLOWED,
                feature=kind.value,
                day=today,
                used_today=_uses_on(marker, today),
                limit=limit,
            )

        marker = _get_marker(db, account_id, kind.value)
        if marker is not None:
            return DailyResult(
                status=DAILY_ALREADY_USED,
                feature=kind.value,
                day=today,
                used_today=_uses_on(marker, today),
                limit=limit,
            )

        try:
            with db.begin_nested():
                db.add(
                    DailyUsageMarker(
                        account_id=account_id,
                        feature=kind.value,
                        last_used_day=today,
                        uses_on_day=1,
                        last_used_at=now_utc.replace(tzinfo=None),
                    )
                )
            return DailyResult(status=DAILY_ALLOWED, feature=kind.value, day=today, used_today=1, limit=limit)
        except IntegrityError:
            # Lost the first-insert race; the row exists now, so retry the conditional update
            continue

    raise RuntimeError(f"daily marker for {account_id}/{kind.value} could not be settled")


__all__ = [
    "resolve_daily_feature",
    "peek_daily",
    "try_consume_daily",
]
