import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest

from dona.errors import AccountNotFound, UnknownResourceKind, ValidationIssue
from dona.models import UsageRecord
from dona.services import usage_store
from dona.services.tier_policy import ResourceKind


def test_count_stored_is_exact_per_kind(db_session, make_account):
    account_id = make_account("counts")
    for _ in range(3):
        usage_store.record_stored(db_session, account_id, ResourceKind.STORED_COLLAGE, {"n": 1})
    usage_store.record_stored(db_session, account_id, "stored_personal_memory")
    db_session.commit()

    assert usage_store.count_stored(db_session, account_id, "stored_collage") == 3
    assert usage_store.count_stored(db_session, account_id, ResourceKind.STORED_PERSONAL_MEMORY) == 1
    assert usage_store.count_stored(db_session, "someone-else", "stored_collage") == 0


def test_record_stored_rejects_unknown_kind(db_session, make_account):
    account_id = make_account("unknown-kind")
    with pytest.raises(UnknownResourceKind):
        usage_store.record_stored(db_session, account_id, "stored_video")
    assert db_session.query(UsageRecord).count() == 0


def test_spend_reports_remaining_on_success_and_failure(db_session, make_account):
    account_id = make_account("spender", coupon_balance=3)

    ok = usage_store.spend(db_session, account_id, 2)
    assert ok.success is True
    assert ok.remaining == 1

    denied = usage_store.spend(db_session, account_id, 2)
    assert denied.success is False
    assert denied.remaining == 1
    db_session.commit()

    assert usage_store.get_balance(db_session, account_id) == 1


def test_spend_exact_balance_reaches_zero(db_session, make_account):
    account_id = make_account("exact", coupon_balance=1)
    result = usage_store.spend(db_session, account_id, 1)
    assert result.success is True
    assert result.remaining == 0


def test_spend_unknown_account(db_session):
    with pytest.raises(AccountNotFound):
        usage_store.spend(db_session, "ghost", 1)


def test_unknown_balance_field(db_session, make_account):
    account_id = make_account("fields", coupon_balance=1)
    with pytest.raises(ValidationIssue):
        usage_store.spend(db_session, account_id, 1, balance_field="album_balance")
    with pytest.raises(ValidationIssue):
        usage_store.credit(db_session, account_id, 1, balance_field="album_balance")


def test_credit_respects_ceiling(db_session, make_account):
    account_id = make_account("credit", coupon_balance=4)

    result = usage_store.credit(db_session, account_id, 3, ceiling=5)
    assert result.balance == 5
    assert result.applied == 1
    assert result.requested == 3

    unbounded = usage_store.credit(db_session, account_id, 10)
    assert unbounded.balance == 15
    assert unbounded.applied == 10


def test_credit_never_lowers_balance_above_ceiling(db_session, make_account):
    account_id = make_account("over", coupon_balance=8)
    result = usage_store.credit(db_session, account_id, 1, ceiling=5)
    assert result.balance == 8
    assert result.applied == 0


def test_lock_account_unknown(db_session):
    with pytest.raises(AccountNotFound):
        usage_store.lock_account(db_session, "ghost")
