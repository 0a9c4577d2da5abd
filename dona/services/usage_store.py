"""
Usage counter store: stored-record counts and account balances.

Every helper here runs inside the caller's session and never commits;
the entitlement facade owns the transaction boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func

from dona.errors import AccountNotFound, ValidationIssue
from dona.models import Account, UsageRecord, BALANCE_FIELDS
from dona.services.results import CreditResult, SpendResult
from dona.services.tier_policy import ResourceKind, resolve_kind


DEFAULT_BALANCE_FIELD = "coupon_balance"


def _balance_column(balance_field: str):
    column = BALANCE_FIELDS.get(balance_field)
    if column is None:
        raise ValidationIssue(
            f"Unknown balance field: {balance_field}",
            field="balance_field",
            error_type="unknown_balance_field",
        )
    return column


def lock_account(db, account_id: str) -> Account:
    """
    Take the account's row lock for the rest of the transaction.

    A write is used instead of SELECT ... FOR UPDATE so the same call
    serializes writers on SQLite as well as PostgreSQL.
    """
    touched = (
        db.query(Account)
        .filter(Account.id == account_id)
        .update({Account.updated_at: datetime.utcnow()}, synchronize_session=False)
    )
    if not touched:
        raise AccountNotFound(account_id)
    return (
        db.query(Account)
        .filter(Account.id == account_id)
        .populate_existing()
        .one()
    )


def get_account(db, account_id: str) -> Account:
    account = db.query(Account).filter(Account.id == account_id).first()
    if account is None:
        raise AccountNotFound(account_id)
    return account


def count_stored(db, account_id: str, kind: Union[str, ResourceKind]) -> int:
    """Exact number of live usage records; always counted fresh."""
    resource_kind = resolve_kind(kind)
    count = (
        db.query(func.count(UsageRecord.id))
        .filter(UsageRecord.account_id == account_id)
        .filter(UsageRecord.resource_kind == resource_kind.value)
        .scalar()
    )
    return int(count or 0)


def record_stored(
    db,
    account_id: str,
    kind: Union[str, ResourceKind],
    payload: Optional[dict] = None,
) -> UsageRecord:
    """Insert unconditionally; capacity must already have been checked under the account lock."""
    resource_kind = resolve_kind(kind)
    record = UsageRecord(
        account_id=account_id,
        resource_kind=resource_kind.value,
        payload=payload or {},
        created_at=datetime.utcnow(),
    )
    db.add(record)
    db.flush()
    return record


def get_balance(db, account_id: str, balance_field: str = DEFAULT_BALANCE_FIELD) -> int:
    column = _balance_column(balance_field)
    value = db.query(column).filter(Account.id == account_id).scalar()
    if value is None:
        raise AccountNotFound(account_id)
    return int(value)


def spend(
    db,
    account_id: str,
    amount: int,
    balance_field: str = DEFAULT_BALANCE_FIELD,
) -> SpendResult:
    """
    Conditional decrement in one UPDATE: succeeds only while balance >= amount.

    ``remaining`` is the post-operation balance whether or not the spend
    succeeded.
    """
    column = _balance_column(balance_field)
    updated = (
        db.query(Account)
        .filter(Account.id == account_id)
        .filter(column >= amount)
        .update({column: column - amount}, synchronize_session=False)
    )
    remaining = get_balance(db, account_id, balance_field)
    return SpendResult(success=bool(updated), remaining=remaining, amount=amount)


def credit(
    db,
    account_id: str,
    amount: int,
    ceiling: Optional[int] = None,
    balance_field: str = DEFAULT_BALANCE_FIELD,
) -> CreditResult:
    """Add to a balance, clamped to ``ceiling`` (None: no ceiling). Never lowers a balance."""
    _balance_column(balance_field)
    account = lock_account(db, account_id)
    current = int(getattr(account, balance_field) or 0)
    target = current + amount
    if ceiling is not None:
        target = max(current, min(target, ceiling))
    setattr(account, balance_field, target)
    db.flush()
    return CreditResult(balance=target, applied=target - current, requested=amount)


__all__ = [
    "DEFAULT_BALANCE_FIELD",
    "lock_account",
    "get_account",
    "count_stored",
    "record_stored",
    "get_balance",
    "spend",
    "credit",
]
