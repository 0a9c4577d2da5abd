import os
from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

os.environ.setdefault("DB_BACKEND", "sqlite")

from dona.context import RequestContext
from dona.services import usage_store


def _run_concurrently(fn, n):
    barrier = Barrier(n)

    def _call(_):
        barrier.wait()
        return fn()

    with ThreadPoolExecutor(max_workers=n) as executor:
        return list(executor.map(_call, range(n)))


def test_concurrent_spends_against_single_coupon(service, make_account, db_session):
    ctx = RequestContext.for_account(make_account("race-spend", coupon_balance=1))

    results = _run_concurrently(lambda: service.try_spend(ctx, 1), 2)

    assert sorted(r.success for r in results) == [False, True]
    assert all(r.remaining == 0 for r in results)
    assert usage_store.get_balance(db_session, "race-spend") == 0


def test_concurrent_daily_use_admits_one(service, make_account):
    ctx = RequestContext.for_account(make_account("race-daily"))

    results = _run_concurrently(lambda: service.try_daily(ctx, "daily_ai_recommendation"), 4)

    assert sum(1 for r in results if r.allowed) == 1
    assert sum(1 for r in results if r.already_used_today) == 3


def test_concurrent_stores_with_one_slot_left(service, make_account, db_session):
    account_id = make_account("race-store")
    ctx = RequestContext.for_account(account_id)
    for i in range(4):
        assert service.try_store(ctx, "stored_collage", {"i": i}).allowed

    results = _run_concurrently(lambda: service.try_store(ctx, "stored_collage"), 3)

    assert sum(1 for r in results if r.allowed) == 1
    assert all(r.count == 5 for r in results)
    assert usage_store.count_stored(db_session, account_id, "stored_collage") == 5
