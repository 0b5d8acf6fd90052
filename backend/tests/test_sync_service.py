from __future__ import annotations

import json
import threading
from datetime import UTC, date, datetime, timedelta

import pytest

from searchpulse.core.config import get_settings
from searchpulse.models.audit_log import AuditLog
from searchpulse.models.opportunity import Opportunity
from searchpulse.models.search_metrics import PageMetric, QueryMetric
from searchpulse.models.sync_state import SyncState
from searchpulse.providers.content_resolver import MappingContentResolver
from searchpulse.providers.errors import ProviderAuthError
from searchpulse.providers.search_analytics import SearchAnalyticsRow
from searchpulse.schemas.search_metrics import QueryMetricIn
from searchpulse.services import metric_store, sync_service

SITE = "sc-domain:example.com"
AS_OF = date(2026, 10, 19)
NOW = datetime(2026, 10, 19, 3, 0, tzinfo=UTC)


class _FakeSearchClient:
    def __init__(self, responses: dict[str, list[SearchAnalyticsRow] | Exception]) -> None:
        self._responses = responses
        self.calls: list[dict] = []

    def fetch_rows(self, dimensions, date_from, date_to, *, cancel_event=None):
        self.calls.append({"dimensions": list(dimensions), "date_from": date_from, "date_to": date_to})
        response = self._responses[dimensions[0]]
        if isinstance(response, Exception):
            raise response
        return response


class _CountingResolver(MappingContentResolver):
    def __init__(self, mapping) -> None:
        super().__init__(mapping)
        self.lookups: list[str] = []

    def url_to_content_id(self, url: str) -> str | None:
        self.lookups.append(url)
        return super().url_to_content_id(url)


def _query_rows(keyword: str = "x", *, position: float = 15.0, impressions: float = 50.0, days: int = 10):
    return [
        SearchAnalyticsRow(
            keys=[keyword, (AS_OF - timedelta(days=offset)).isoformat()],
            clicks=1.0,
            impressions=impressions,
            ctr=1.0 / impressions,
            position=position,
        )
        for offset in range(1, days + 1)
    ]


def _page_rows(url: str = "https://example.com/guide/", days: int = 3):
    return [
        SearchAnalyticsRow(
            keys=[url, (AS_OF - timedelta(days=offset)).isoformat()],
            clicks=2.0,
            impressions=40.0,
            ctr=0.05,
            position=6.2,
        )
        for offset in range(1, days + 1)
    ]


def _run(db_session, client, **kwargs):
    kwargs.setdefault("resolver", MappingContentResolver({}))
    return sync_service.run_sync(
        db_session,
        SITE,
        client=client,
        settings=get_settings(),
        as_of=AS_OF,
        now=NOW,
        **kwargs,
    )


def _event_types(db_session) -> list[str]:
    return [row.event_type for row in db_session.query(AuditLog).order_by(AuditLog.created_at).all()]


def test_sync_stores_metrics_detects_and_records_success(db_session) -> None:
    client = _FakeSearchClient({"query": _query_rows(), "page": _page_rows()})
    resolver = _CountingResolver({"https://example.com/guide": "101"})

    result = _run(db_session, client, resolver=resolver)

    assert result["status"] == "success"
    assert result["query_rows"] == 10
    assert result["page_rows"] == 3
    assert result["opportunities"]["quick_win"] == 1
    assert [call["dimensions"] for call in client.calls] == [["query", "date"], ["page", "date"]]
    assert client.calls[0]["date_from"] == AS_OF - timedelta(days=28)
    assert client.calls[0]["date_to"] == AS_OF - timedelta(days=1)

    assert db_session.query(QueryMetric).count() == 10
    assert {row.content_id for row in db_session.query(PageMetric).all()} == {"101"}
    assert resolver.lookups == ["https://example.com/guide/"]
    assert db_session.query(Opportunity).one().keyword == "x"

    status = sync_service.get_sync_status(db_session, SITE, now=NOW)
    assert status["last_status"] == "success"
    assert status["last_synced_at"] == NOW
    assert status["locked"] is False
    assert _event_types(db_session) == ["search.sync.completed"]


def test_unresolved_urls_store_null_content_id(db_session) -> None:
    client = _FakeSearchClient({"query": [], "page": _page_rows("https://example.com/unknown")})

    _run(db_session, client)

    assert {row.content_id for row in db_session.query(PageMetric).all()} == {None}


def test_page_fetch_failure_keeps_query_stage_and_skips_detection(db_session) -> None:
    client = _FakeSearchClient({"query": _query_rows(), "page": ProviderAuthError("token revoked")})

    with pytest.raises(ProviderAuthError):
        _run(db_session, client)

    assert db_session.query(QueryMetric).count() == 10
    assert db_session.query(Opportunity).count() == 0
    status = sync_service.get_sync_status(db_session, SITE, now=NOW)
    assert status["last_status"] == "failed"
    assert "token revoked" in status["last_error"]
    assert status["locked"] is False
    assert status["last_synced_at"] is None
    failed = db_session.query(AuditLog).filter(AuditLog.event_type == "search.sync.failed").one()
    assert json.loads(failed.payload_json)["payload"]["error_type"] == "ProviderAuthError"


def test_failed_sync_leaves_previous_opportunities_untouched(db_session) -> None:
    _run(db_session, _FakeSearchClient({"query": _query_rows(), "page": []}))
    before = [(row.id, row.status, row.updated_at) for row in db_session.query(Opportunity).all()]

    with pytest.raises(ProviderAuthError):
        sync_service.run_sync(
            db_session,
            SITE,
            client=_FakeSearchClient({"query": ProviderAuthError(), "page": []}),
            resolver=MappingContentResolver({}),
            settings=get_settings(),
            as_of=AS_OF + timedelta(days=1),
            now=NOW + timedelta(days=1),
        )

    after = [(row.id, row.status, row.updated_at) for row in db_session.query(Opportunity).all()]
    assert after == before
    assert sync_service.get_sync_status(db_session, SITE)["last_synced_at"] == NOW


def test_busy_lock_rejects_second_run(db_session) -> None:
    sync_service.acquire_sync_lock(db_session, SITE, owner="other-worker", ttl_seconds=600, now=NOW)
    client = _FakeSearchClient({"query": _query_rows(), "page": []})

    with pytest.raises(sync_service.SyncAlreadyRunningError) as exc:
        _run(db_session, client)

    assert client.calls == []
    assert exc.value.locked_until == NOW + timedelta(seconds=600)
    status = sync_service.get_sync_status(db_session, SITE, now=NOW)
    assert status["locked"] is True
    assert status["last_status"] == "running"


def test_expired_lock_is_taken_over(db_session) -> None:
    sync_service.acquire_sync_lock(
        db_session, SITE, owner="crashed-worker", ttl_seconds=60, now=NOW - timedelta(hours=2)
    )

    result = _run(db_session, _FakeSearchClient({"query": [], "page": []}))

    assert result["status"] == "success"
    state = db_session.get(SyncState, SITE)
    assert state.lock_owner is None


def test_cancellation_between_stages_aborts_before_detection(db_session) -> None:
    cancel_event = threading.Event()

    class _CancellingClient(_FakeSearchClient):
        def fetch_rows(self, dimensions, date_from, date_to, *, cancel_event=None):
            rows = super().fetch_rows(dimensions, date_from, date_to, cancel_event=cancel_event)
            cancel_event.set()
            return rows

    client = _CancellingClient({"query": _query_rows(), "page": _page_rows()})

    with pytest.raises(sync_service.SyncCancelledError):
        _run(db_session, client, cancel_event=cancel_event)

    assert len(client.calls) == 1
    assert db_session.query(Opportunity).count() == 0
    assert sync_service.get_sync_status(db_session, SITE)["last_status"] == "failed"


def test_unexpected_resolver_error_releases_lock(db_session) -> None:
    class _BrokenResolver:
        def url_to_content_id(self, url: str) -> str | None:
            raise RuntimeError("content index unavailable")

    client = _FakeSearchClient({"query": _query_rows(), "page": _page_rows()})

    with pytest.raises(RuntimeError):
        _run(db_session, client, resolver=_BrokenResolver())

    state = db_session.get(SyncState, SITE)
    assert state.lock_owner is None
    assert state.last_status == "failed"
    assert "RuntimeError: content index unavailable" in state.last_error

    result = _run(db_session, _FakeSearchClient({"query": _query_rows(), "page": _page_rows()}))
    assert result["status"] == "success"


def test_client_construction_error_releases_lock(db_session) -> None:
    settings = get_settings().model_copy(update={"gsc_rate_limit_per_minute": 0})

    with pytest.raises(ValueError):
        sync_service.run_sync(
            db_session,
            SITE,
            resolver=MappingContentResolver({}),
            settings=settings,
            as_of=AS_OF,
            now=NOW,
        )

    state = db_session.get(SyncState, SITE)
    assert state.lock_owner is None
    assert state.last_status == "failed"
    assert sync_service.get_sync_status(db_session, SITE, now=NOW)["locked"] is False


def test_malformed_rows_are_skipped(db_session, caplog) -> None:
    rows = _query_rows(days=2) + [
        SearchAnalyticsRow(keys=["   ", AS_OF.isoformat()], clicks=1, impressions=1, ctr=1, position=1),
        SearchAnalyticsRow(keys=["no date"], clicks=1, impressions=1, ctr=1, position=1),
        SearchAnalyticsRow(keys=["bad date", "yesterday"], clicks=1, impressions=1, ctr=1, position=1),
    ]

    with caplog.at_level("WARNING", logger="searchpulse.sync"):
        result = _run(db_session, _FakeSearchClient({"query": rows, "page": []}))

    assert result["query_rows"] == 2
    assert "Skipped 3 malformed query rows" in caplog.text


def test_sync_runs_retention_sweep(db_session) -> None:
    old_date = AS_OF - timedelta(days=200)
    metric_store.upsert_query_metrics(
        db_session, [QueryMetricIn(keyword="ancient", date=old_date, clicks=0, impressions=5, ctr=0, position=30)]
    )
    db_session.commit()

    result = _run(db_session, _FakeSearchClient({"query": [], "page": []}))

    assert result["swept"]["query_metrics"] == 1
    assert db_session.query(QueryMetric).filter(QueryMetric.keyword == "ancient").count() == 0


def test_explicit_range_is_passed_through(db_session) -> None:
    client = _FakeSearchClient({"query": [], "page": []})

    result = _run(db_session, client, date_from=date(2026, 10, 1), date_to=date(2026, 10, 5))

    assert result["date_from"] == "2026-10-01"
    assert client.calls[1]["date_to"] == date(2026, 10, 5)


def test_half_open_range_is_rejected_before_locking(db_session) -> None:
    with pytest.raises(ValueError):
        _run(db_session, _FakeSearchClient({}), date_from=date(2026, 10, 1))

    assert db_session.get(SyncState, SITE) is None


def test_default_sync_range() -> None:
    assert sync_service.default_sync_range(AS_OF) == (date(2026, 9, 21), date(2026, 10, 18))


def test_status_for_unknown_site(db_session) -> None:
    status = sync_service.get_sync_status(db_session, "sc-domain:never-synced.com")

    assert status["last_synced_at"] is None
    assert status["last_status"] is None
    assert status["locked"] is False
