import json

from searchpulse.events import emit_event
from searchpulse.models.audit_log import AuditLog


def test_emitted_event_follows_contract(db_session):
    emit_event(db_session, "sc-domain:example.com", "search.sync.completed", {"query_rows": 12})
    db_session.commit()

    row = db_session.query(AuditLog).filter(AuditLog.event_type == "search.sync.completed").one()
    assert row.site_url == "sc-domain:example.com"
    payload = json.loads(row.payload_json)
    for field in ("event_id", "site_url", "event_type", "timestamp", "payload"):
        assert field in payload
    assert payload["payload"] == {"query_rows": 12}


def test_event_is_discarded_with_rolled_back_transaction(db_session):
    emit_event(db_session, "sc-domain:example.com", "search.sync.failed", {"error": "boom"})
    db_session.rollback()

    assert db_session.query(AuditLog).count() == 0
