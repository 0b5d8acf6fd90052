from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from searchpulse.core.config import Settings, get_settings
from searchpulse.core.logging_config import log_event
from searchpulse.core.metrics import (
    search_metric_rows_upserted_total,
    search_sync_duration_seconds,
    search_sync_runs_total,
)
from searchpulse.events import emit_event
from searchpulse.models.sync_state import SyncState
from searchpulse.providers.content_resolver import ContentResolver, MemoizingContentResolver, build_content_resolver
from searchpulse.providers.search_analytics import FetchCancelledError, SearchAnalyticsClient, SearchAnalyticsRow
from searchpulse.schemas.search_metrics import PageMetricIn, QueryMetricIn
from searchpulse.services import metric_store, retention_service
from searchpulse.services.detection import detect_opportunities

logger = logging.getLogger("searchpulse.sync")

SYNC_STATUS_RUNNING = "running"
SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_FAILED = "failed"
QUERY_DIMENSIONS = ["query", "date"]
PAGE_DIMENSIONS = ["page", "date"]


class SyncAlreadyRunningError(Exception):
    def __init__(self, site_url: str, locked_until: datetime | None = None) -> None:
        super().__init__(f"A sync for {site_url} is already running.")
        self.site_url = site_url
        self.locked_until = locked_until


class SyncCancelledError(FetchCancelledError):
    pass


def default_sync_range(as_of: date, lookback_days: int = 28) -> tuple[date, date]:
    return as_of - timedelta(days=lookback_days), as_of - timedelta(days=1)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _get_or_create_state(db: Session, site_url: str, *, now: datetime) -> SyncState:
    state = db.get(SyncState, site_url)
    if state is not None:
        return state
    db.add(SyncState(site_url=site_url, updated_at=now))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
    return db.get(SyncState, site_url)


def acquire_sync_lock(db: Session, site_url: str, *, owner: str, ttl_seconds: int, now: datetime) -> SyncState:
    """Claim the site's run-lock with a conditional update; an expired lock may be taken over."""
    _get_or_create_state(db, site_url, now=now)
    claimed = (
        db.query(SyncState)
        .filter(
            SyncState.site_url == site_url,
            or_(SyncState.lock_owner.is_(None), SyncState.locked_until.is_(None), SyncState.locked_until < now),
        )
        .update(
            {
                SyncState.lock_owner: owner,
                SyncState.locked_until: now + timedelta(seconds=ttl_seconds),
                SyncState.last_started_at: now,
                SyncState.last_status: SYNC_STATUS_RUNNING,
                SyncState.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if claimed != 1:
        db.rollback()
        state = db.get(SyncState, site_url)
        raise SyncAlreadyRunningError(site_url, _as_utc(state.locked_until) if state is not None else None)
    db.commit()
    state = db.get(SyncState, site_url)
    db.refresh(state)
    return state


def release_sync_lock(db: Session, site_url: str, *, owner: str) -> None:
    """Clear the lock if ``owner`` still holds it. Caller commits."""
    state = db.get(SyncState, site_url)
    if state is None or state.lock_owner != owner:
        return
    state.lock_owner = None
    state.locked_until = None


def _to_query_metrics(rows: Iterable[SearchAnalyticsRow]) -> list[QueryMetricIn]:
    metrics: list[QueryMetricIn] = []
    skipped = 0
    for row in rows:
        if len(row.keys) < 2 or not row.keys[0].strip():
            skipped += 1
            continue
        try:
            metrics.append(
                QueryMetricIn(
                    keyword=row.keys[0].strip(),
                    date=row.keys[1],
                    clicks=round(row.clicks),
                    impressions=round(row.impressions),
                    ctr=row.ctr,
                    position=row.position,
                )
            )
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning("Skipped %d malformed query rows", skipped)
    return metrics


def _to_page_metrics(rows: Iterable[SearchAnalyticsRow], resolver: ContentResolver) -> list[PageMetricIn]:
    metrics: list[PageMetricIn] = []
    skipped = 0
    for row in rows:
        if len(row.keys) < 2 or not row.keys[0].strip():
            skipped += 1
            continue
        url = row.keys[0].strip()
        try:
            metric = PageMetricIn(
                url=url,
                date=row.keys[1],
                clicks=round(row.clicks),
                impressions=round(row.impressions),
                ctr=row.ctr,
                position=row.position,
            )
        except ValidationError:
            skipped += 1
            continue
        metric.content_id = resolver.url_to_content_id(url)
        metrics.append(metric)
    if skipped:
        logger.warning("Skipped %d malformed page rows", skipped)
    return metrics


def _raise_if_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise SyncCancelledError(f"Sync cancelled before {stage}.")


def _record_failure(db: Session, site_url: str, *, owner: str, error: Exception, now: datetime) -> None:
    try:
        state = db.get(SyncState, site_url)
        if state is not None:
            state.last_status = SYNC_STATUS_FAILED
            state.last_error = f"{type(error).__name__}: {error}"[:2000]
            state.updated_at = now
        release_sync_lock(db, site_url, owner=owner)
        emit_event(db, site_url, "search.sync.failed", {"error": str(error), "error_type": type(error).__name__})
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record sync failure for %s", site_url)


def run_sync(
    db: Session,
    site_url: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    *,
    client: SearchAnalyticsClient | None = None,
    resolver: ContentResolver | None = None,
    settings: Settings | None = None,
    as_of: date | None = None,
    now: datetime | None = None,
    cancel_event: threading.Event | None = None,
    owner: str | None = None,
) -> dict:
    """Fetch, store, detect and sweep for one site.

    Each stage commits on its own. Any failure after the lock is taken rolls back the open stage,
    records the failure and releases the lock before re-raising. Detection and the sweep only
    run when both fetches succeeded.
    """
    settings = settings or get_settings()
    site_url = (site_url or settings.gsc_site_url).strip()
    if not site_url:
        raise ValueError("site_url is required for a sync run.")
    now = now or datetime.now(UTC)
    as_of = as_of or now.date()
    if (date_from is None) != (date_to is None):
        raise ValueError("date_from and date_to must be provided together.")
    if date_from is None or date_to is None:
        date_from, date_to = default_sync_range(as_of, settings.sync_lookback_days)
    if date_from > date_to:
        raise ValueError("date_from must not be after date_to.")
    owner = owner or str(uuid.uuid4())

    acquire_sync_lock(db, site_url, owner=owner, ttl_seconds=settings.sync_lock_ttl_seconds, now=now)
    log_event(
        logger, "search.sync.started", site_url=site_url, date_from=date_from.isoformat(), date_to=date_to.isoformat()
    )
    started = time.perf_counter()

    try:
        client = client or SearchAnalyticsClient.from_settings(settings, site_url=site_url)
        memo = MemoizingContentResolver(resolver or build_content_resolver(settings))

        query_rows = client.fetch_rows(QUERY_DIMENSIONS, date_from, date_to, cancel_event=cancel_event)
        query_count = metric_store.upsert_query_metrics(db, _to_query_metrics(query_rows), now=now)
        db.commit()
        search_metric_rows_upserted_total.labels(series="query_metrics").inc(query_count)

        _raise_if_cancelled(cancel_event, "page fetch")
        page_rows = client.fetch_rows(PAGE_DIMENSIONS, date_from, date_to, cancel_event=cancel_event)
        page_count = metric_store.upsert_page_metrics(db, _to_page_metrics(page_rows, memo), now=now)
        db.commit()
        search_metric_rows_upserted_total.labels(series="page_metrics").inc(page_count)

        _raise_if_cancelled(cancel_event, "detection")
        detection = detect_opportunities(db, as_of=as_of, settings=settings, now=now)
        db.commit()

        swept = retention_service.sweep(db, settings.retention_days, today=as_of)
        db.commit()

        result = {
            "status": SYNC_STATUS_SUCCESS,
            "site_url": site_url,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "query_rows": query_count,
            "page_rows": page_count,
            "opportunities": detection["counts"],
            "dismissed": detection["dismissed"],
            "swept": swept,
        }
        state = db.get(SyncState, site_url)
        state.last_synced_at = now
        state.last_status = SYNC_STATUS_SUCCESS
        state.last_error = None
        state.updated_at = now
        release_sync_lock(db, site_url, owner=owner)
        emit_event(db, site_url, "search.sync.completed", result)
        db.commit()
    except Exception as exc:
        db.rollback()
        _record_failure(db, site_url, owner=owner, error=exc, now=now)
        search_sync_runs_total.labels(status=SYNC_STATUS_FAILED).inc()
        search_sync_duration_seconds.observe(time.perf_counter() - started)
        log_event(
            logger,
            "search.sync.failed",
            level=logging.ERROR,
            site_url=site_url,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise

    search_sync_runs_total.labels(status=SYNC_STATUS_SUCCESS).inc()
    search_sync_duration_seconds.observe(time.perf_counter() - started)
    log_event(logger, "search.sync.completed", **result)
    return result


def get_sync_status(db: Session, site_url: str, *, now: datetime | None = None) -> dict:
    now = now or datetime.now(UTC)
    state = db.get(SyncState, site_url)
    if state is None:
        return {
            "site_url": site_url,
            "last_synced_at": None,
            "last_started_at": None,
            "last_status": None,
            "last_error": None,
            "locked": False,
            "locked_until": None,
        }
    locked_until = _as_utc(state.locked_until)
    return {
        "site_url": site_url,
        "last_synced_at": _as_utc(state.last_synced_at),
        "last_started_at": _as_utc(state.last_started_at),
        "last_status": state.last_status,
        "last_error": state.last_error,
        "locked": state.lock_owner is not None and locked_until is not None and locked_until > now,
        "locked_until": locked_until,
    }
