import os

os.environ.setdefault("DB_BACKEND", "sqlite")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dona.db import DB
from dona.models import Base
from dona.services.entitlements import EntitlementService


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "entitlements.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = server_db()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def service(server_db):
    return EntitlementService(server_db)


@pytest.fixture
def make_account(service):
    def _make(account_id="couple-1", tier="FREE", coupon_balance=0, **kwargs):
        service.open_account(account_id, tier=tier, coupon_balance=coupon_balance, **kwargs)
        return account_id

    return _make
