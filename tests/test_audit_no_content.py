import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")

from dona.audit import list_audit_events, log_event
from dona.audit_constants import EVENT_BALANCE_SPENT, EVENT_USAGE_STORED
from dona.models import AuditEvent


def test_audit_rejects_payload_metadata(db_session):
    before = db_session.query(AuditEvent).count()
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_USAGE_STORED,
            actor_type="user",
            account_id="couple-1",
            target_type="usage_record",
            target_ids=[1],
            metadata={"payload": {"collage_url": "https://cdn.example/1.png"}},
        )
    db_session.rollback()
    after = db_session.query(AuditEvent).count()
    assert after == before


def test_audit_rejects_nested_forbidden_keys(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_USAGE_STORED,
            actor_type="user",
            target_type="usage_record",
            target_ids=[1],
            metadata={"extra": {"user_email": "a@b.c"}},
        )


def test_audit_rejects_long_strings(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_BALANCE_SPENT,
            actor_type="system",
            target_type="account",
            target_ids=["couple-1"],
            metadata={"note": "x" * 600},
        )


def test_audit_rejects_unknown_actor(db_session):
    with pytest.raises(ValueError):
        log_event(
            db_session,
            event_type=EVENT_BALANCE_SPENT,
            actor_type="robot",
            target_type="account",
            target_ids=["couple-1"],
        )


def test_list_audit_events_paginates(db_session):
    for i in range(3):
        log_event(
            db_session,
            event_type=EVENT_BALANCE_SPENT,
            actor_type="user",
            account_id="couple-1",
            target_type="account",
            target_ids=["couple-1"],
            count_affected=1,
            metadata={"remaining": i},
        )
    log_event(
        db_session,
        event_type=EVENT_BALANCE_SPENT,
        actor_type="user",
        account_id="couple-2",
        target_type="account",
        target_ids=["couple-2"],
    )
    db_session.commit()

    first = list_audit_events(db_session, account_id="couple-1", limit=2)
    assert first["count"] == 2
    second = list_audit_events(db_session, account_id="couple-1", limit=2, cursor=first["next_cursor"])
    assert second["count"] == 1
    seen = {e["event_id"] for e in first["events"]} | {e["event_id"] for e in second["events"]}
    assert len(seen) == 3
