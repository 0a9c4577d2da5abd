import os

os.environ.setdefault("DB_BACKEND", "sqlite")


def test_core_imports():
    import dona.context  # noqa: F401
    import dona.models  # noqa: F401
    import dona.services.entitlements  # noqa: F401
    import app.main  # noqa: F401


def test_core_smoke_lifecycle(service, make_account):
    from dona.context import RequestContext

    account_id = make_account("smoke", tier="FREE", coupon_balance=2)
    ctx = RequestContext.for_account(account_id)

    stored = service.try_store(ctx, "stored_collage", {"collage_id": 1})
    assert stored.allowed
    assert stored.count == 1

    spent = service.try_spend(ctx, 1)
    assert spent.success
    assert spent.remaining == 1

    summary = service.usage_summary(ctx)
    assert summary["tier"] == "FREE"
    assert summary["resources"]["stored_collage"] == {"policy": "capacity", "count": 1, "limit": 5}
    assert summary["resources"]["spendable_coupon"]["balance"] == 1
