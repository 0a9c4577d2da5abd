"""
Entitlement facade.

Single entry point answering "can this account do X now, and what
happens if it does". Each action runs as one transaction on a session
taken from the injected factory; there is no process-wide cache of
balances or counts.

Typical wiring::

    service = EntitlementService(DB.SessionLocal)
    result = service.try_store(context, ResourceKind.STORED_COLLAGE, {"collage_id": 42})
    if not result.allowed:
        ...  # render "5 of 5 used" upgrade prompt
"""

from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Callable, Optional, Union

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

import dona.config as config
from dona.audit import list_audit_events, log_event
from dona.audit_constants import (
    EVENT_BALANCE_CREDITED,
    EVENT_BALANCE_SPENT,
    EVENT_DAILY_CONSUMED,
    EVENT_MILESTONE_REWARDED,
    EVENT_USAGE_STORED,
)
from dona.context import RequestContext, require_account_id
from dona.db import DB
from dona.errors import StorageUnavailable, ValidationIssue
from dona.models import Account
from dona.services import daily_gate, milestones, usage_store
from dona.services.results import (
    STORE_CAPACITY_EXCEEDED,
    STORE_STORED,
    CompletionResult,
    CreditResult,
    DailyResult,
    MilestoneGrant,
    SpendResult,
    StoreResult,
)
from dona.services.tier_policy import (
    PolicyKind,
    ResourceKind,
    Tier,
    effective_tier,
    limit_for,
    policy_for,
    resolve_kind,
    resolve_tier,
)
from dona.time_utils import to_utc_aware, utcnow
from dona.validators import (
    validate_amount,
    validate_limit,
    validate_optional_text,
    validate_payload,
    validate_required_text,
)

logger = config.logger


def _storage_guard(fn: Callable) -> Callable:
    """Surface connectivity failures as StorageUnavailable, never as a denial."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning(
                "entitlement_storage_unavailable",
                extra={"operation": fn.__name__, "error": type(exc).__name__},
            )
            raise StorageUnavailable(f"{fn.__name__}: storage unavailable") from exc
    return wrapper


def _actor(context: Optional[RequestContext]) -> tuple[str, Optional[str], Optional[str]]:
    if context is None or context.auth is None:
        return "user", None, None
    return "user", context.auth.actor, context.request_id


def _grant_event(db, account_id: str, grant: Optional[MilestoneGrant], context: Optional[RequestContext]) -> None:
    if grant is None or not grant.granted:
        return
    actor_type, actor_id, request_id = _actor(context)
    log_event(
        db,
        event_type=EVENT_MILESTONE_REWARDED,
        actor_type=actor_type,
        actor_id=actor_id,
        account_id=account_id,
        target_type="milestone",
        target_ids=[grant.milestone_type, grant.milestone_index],
        count_affected=grant.reward_amount,
        request_id=request_id,
        metadata={"balance_after": grant.balance_after},
    )


class EntitlementService:
    """Facade over the tier policy, usage store, daily gate and milestone engine."""

    def __init__(self, session_factory=None, clock: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._clock = clock or utcnow

    def _session(self):
        factory = self._session_factory
        if factory is None:
            if DB.SessionLocal is None:
                raise RuntimeError("Database not initialized - SessionLocal is None")
            factory = DB.SessionLocal
        return factory()

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_utc_aware(now) if now is not None else to_utc_aware(self._clock())

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @_storage_guard
    def open_account(
        self,
        account_id: str,
        tier: Union[str, Tier] = Tier.FREE,
        coupon_balance: int = 0,
        tier_expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> dict:
        """Insert an account row; identity itself lives outside this library."""
        validate_required_text(account_id, "account_id", 64)
        if coupon_balance < 0:
            raise ValidationIssue("coupon_balance must be >= 0", field="coupon_balance", error_type="out_of_range")
        db = self._session()
        try:
            account = Account(
                id=account_id,
                tier=resolve_tier(tier).value,
                coupon_balance=coupon_balance,
                tier_expires_at=tier_expires_at,
            )
            if created_at is not None:
                account.created_at = created_at
            db.add(account)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ValidationIssue(
                    f"Account already exists: {account_id}",
                    field="account_id",
                    error_type="duplicate",
                ) from exc
            return {"status": "created", "account_id": account_id, "tier": account.tier}
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Capacity-gated store
    # ------------------------------------------------------------------

    @_storage_guard
    def try_store(
        self,
        context: Optional[RequestContext],
        kind: Union[str, ResourceKind],
        payload: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> StoreResult:
        account_id = require_account_id(context)
        resource_kind = resolve_kind(kind)
        if policy_for(resource_kind) != PolicyKind.capacity:
            raise ValidationIssue(
                f"{resource_kind.value} is not a capacity-limited resource",
                field="resource_kind",
                error_type="not_capacity_resource",
            )
        validate_payload(payload)
        now = self._now(now)

        db = self._session()
        try:
            # The row lock makes count-check-then-insert one unit per account
            account = usage_store.lock_account(db, account_id)
            tier = effective_tier(account, now)
            limit = limit_for(tier, resource_kind)
            count = usage_store.count_stored(db, account_id, resource_kind)

            if limit is not None and count >= limit:
                db.rollback()
                logger.info(
                    "capacity_exceeded",
                    extra={
                        "account_id": account_id,
                        "resource_kind": resource_kind.value,
                        "count": count,
                        "limit": limit,
                        "tier": tier.value,
                    },
                )
                return StoreResult(
                    status=STORE_CAPACITY_EXCEEDED,
                    resource_kind=resource_kind.value,
                    count=count,
                    limit=limit,
                )

            record = usage_store.record_stored(db, account_id, resource_kind, payload)
            count += 1

            grant = None
            milestone_type = milestones.MILESTONE_BY_KIND.get(resource_kind)
            if milestone_type is not None:
                grant = milestones.check_and_grant(
                    db,
                    account_id,
                    milestones.get_rule(milestone_type),
                    count,
                    ceiling=limit_for(tier, ResourceKind.SPENDABLE_COUPON),
                )

            actor_type, actor_id, request_id = _actor(context)
            log_event(
                db,
                event_type=EVENT_USAGE_STORED,
                actor_type=actor_type,
                actor_id=actor_id,
                account_id=account_id,
                target_type="usage_record",
                target_ids=[record.id],
                request_id=request_id,
                metadata={"resource_kind": resource_kind.value, "count": count, "limit": limit},
            )
            _grant_event(db, account_id, grant, context)
            record_id = record.id
            db.commit()
            return StoreResult(
                status=STORE_STORED,
                resource_kind=resource_kind.value,
                count=count,
                limit=limit,
                record_id=record_id,
                reward=grant,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    @_storage_guard
    def try_spend(
        self,
        context: Optional[RequestContext],
        amount: int = 1,
        reason: Optional[str] = None,
        balance_field: str = usage_store.DEFAULT_BALANCE_FIELD,
    ) -> SpendResult:
        account_id = require_account_id(context)
        validate_amount(amount)
        validate_optional_text(reason, "reason", config.MAX_SHORT_TEXT_LENGTH)

        db = self._session()
        try:
            result = usage_store.spend(db, account_id, amount, balance_field)
            if not result.success:
                db.rollback()
                logger.info(
                    "balance_insufficient",
                    extra={"account_id": account_id, "amount": amount, "remaining": result.remaining},
                )
                return result
            actor_type, actor_id, request_id = _actor(context)
            log_event(
                db,
                event_type=EVENT_BALANCE_SPENT,
                actor_type=actor_type,
                actor_id=actor_id,
                account_id=account_id,
                target_type="account",
                target_ids=[account_id],
                count_affected=amount,
                reason=reason,
                request_id=request_id,
                metadata={"balance_field": balance_field, "remaining": result.remaining},
            )
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @_storage_guard
    def grant(
        self,
        context: Optional[RequestContext],
        amount: int,
        reason: str,
        actor_type: str = "system",
        now: Optional[datetime] = None,
    ) -> CreditResult:
        """Credit coupons (purchase, sign-up bonus), clamped to the tier's ceiling."""
        account_id = require_account_id(context)
        validate_amount(amount)
        validate_required_text(reason, "reason", config.MAX_SHORT_TEXT_LENGTH)
        now = self._now(now)

        db = self._session()
        try:
            account = usage_store.lock_account(db, account_id)
            ceiling = limit_for(effective_tier(account, now), ResourceKind.SPENDABLE_COUPON)
            result = usage_store.credit(db, account_id, amount, ceiling=ceiling)
            log_event(
                db,
                event_type=EVENT_BALANCE_CREDITED,
                actor_type=actor_type,
                actor_id=context.auth.actor if context and context.auth else None,
                account_id=account_id,
                target_type="account",
                target_ids=[account_id],
                count_affected=result.applied,
                reason=reason,
                request_id=context.request_id if context else None,
                metadata={"requested": amount, "balance": result.balance},
            )
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Daily-gated actions
    # ------------------------------------------------------------------

    @_storage_guard
    def try_daily(
        self,
        context: Optional[RequestContext],
        feature: Union[str, ResourceKind],
        now: Optional[datetime] = None,
        offset_hours: Optional[int] = None,
    ) -> DailyResult:
        """
        Consume one of today's uses. The gate only governs eligibility; the
        caller performs the gated work after an allowed result.
        """
        account_id = require_account_id(context)
        kind = daily_gate.resolve_daily_feature(feature)
        now = self._now(now)

        db = self._session()
        try:
            account = usage_store.lock_account(db, account_id)
            limit = limit_for(effective_tier(account, now), kind)
            result = daily_gate.try_consume_daily(db, account_id, kind, now, limit, offset_hours)
            if not result.allowed:
                db.rollback()
                logger.info(
                    "daily_gate_denied",
                    extra={
                        "account_id": account_id,
                        "feature": kind.value,
                        "day": result.day,
                        "status": result.status,
                    },
                )
                return result
            actor_type, actor_id, request_id = _actor(context)
            log_event(
                db,
                event_type=EVENT_DAILY_CONSUMED,
                actor_type=actor_type,
                actor_id=actor_id,
                account_id=account_id,
                target_type="daily_marker",
                target_ids=[kind.value],
                request_id=request_id,
                metadata={"day": result.day, "used_today": result.used_today},
            )
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @_storage_guard
    def check_daily(
        self,
        context: Optional[RequestContext],
        feature: Union[str, ResourceKind],
        now: Optional[datetime] = None,
        offset_hours: Optional[int] = None,
    ) -> DailyResult:
        account_id = require_account_id(context)
        kind = daily_gate.resolve_daily_feature(feature)
        now = self._now(now)

        db = self._session()
        try:
            account = usage_store.get_account(db, account_id)
            limit = limit_for(effective_tier(account, now), kind)
            return daily_gate.peek_daily(db, account_id, kind, now, limit, offset_hours)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Count-triggered rewards
    # ------------------------------------------------------------------

    @_storage_guard
    def record_completion(
        self,
        context: Optional[RequestContext],
        milestone_type: str = milestones.COURSE_COMPLETION,
        subject_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CompletionResult:
        account_id = require_account_id(context)
        rule = milestones.get_rule(milestone_type)
        validate_optional_text(subject_key, "subject_key", config.MAX_SHORT_TEXT_LENGTH)
        now = self._now(now)

        db = self._session()
        try:
            account = usage_store.lock_account(db, account_id)
            record, replayed = milestones.record_completion(db, account_id, rule.milestone_type, subject_key)
            count = milestones.count_completions(db, account_id, rule.milestone_type)
            grant = milestones.check_and_grant(
                db,
                account_id,
                rule,
                count,
                ceiling=limit_for(effective_tier(account, now), ResourceKind.SPENDABLE_COUPON),
            )
            _grant_event(db, account_id, grant, context)
            record_id = record.id if record is not None else None
            db.commit()
            return CompletionResult(
                milestone_type=rule.milestone_type,
                count=count,
                replayed=replayed,
                record_id=record_id,
                reward=grant,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @_storage_guard
    def usage_summary(
        self,
        context: Optional[RequestContext],
        now: Optional[datetime] = None,
        offset_hours: Optional[int] = None,
    ) -> dict:
        """Per-kind usage and limits for upgrade prompts."""
        account_id = require_account_id(context)
        now = self._now(now)

        db = self._session()
        try:
            account = usage_store.get_account(db, account_id)
            tier = effective_tier(account, now)
            resources = {}
            for kind in ResourceKind:
                limit = limit_for(tier, kind)
                policy = policy_for(kind)
                if policy == PolicyKind.capacity:
                    resources[kind.value] = {
                        "policy": policy.value,
                        "count": usage_store.count_stored(db, account_id, kind),
                        "limit": limit,
                    }
                elif policy == PolicyKind.rate:
                    daily = daily_gate.peek_daily(db, account_id, kind, now, limit, offset_hours)
                    resources[kind.value] = {
                        "policy": policy.value,
                        "used_today": daily.used_today,
                        "limit": limit,
                        "day": daily.day,
                    }
                else:
                    resources[kind.value] = {
                        "policy": policy.value,
                        "balance": usage_store.get_balance(db, account_id),
                        "limit": limit,
                    }
            expires_at = to_utc_aware(account.tier_expires_at)
            return {
                "status": "ok",
                "account_id": account_id,
                "tier": tier.value,
                "stored_tier": resolve_tier(account.tier).value,
                "tier_expires_at": expires_at.isoformat() if expires_at else None,
                "resources": resources,
            }
        finally:
            db.close()

    @_storage_guard
    def list_rewards(self, context: Optional[RequestContext], limit: int = 100) -> dict:
        account_id = require_account_id(context)
        validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)

        db = self._session()
        try:
            usage_store.get_account(db, account_id)
            rewards = milestones.list_rewards(db, account_id, limit=limit)
            return {"status": "ok", "count": len(rewards), "rewards": rewards}
        finally:
            db.close()

    @_storage_guard
    def audit_history(
        self,
        context: Optional[RequestContext],
        event_type: Optional[str] = None,
        limit: int = 100,
        cursor: Optional[str] = None,
    ) -> dict:
        """The account's own audit events, newest first, with cursor pagination."""
        account_id = require_account_id(context)
        validate_optional_text(event_type, "event_type", config.MAX_SHORT_TEXT_LENGTH)
        validate_optional_text(cursor, "cursor", config.MAX_SHORT_TEXT_LENGTH)
        validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)

        db = self._session()
        try:
            usage_store.get_account(db, account_id)
            return list_audit_events(
                db,
                account_id=account_id,
                event_type=event_type,
                limit=limit,
                cursor=cursor,
            )
        finally:
            db.close()


__all__ = ["EntitlementService"]
