from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.orm import Session

from searchpulse.core.logging_config import log_event
from searchpulse.core.metrics import search_metric_rows_swept_total
from searchpulse.services import metric_store

logger = logging.getLogger("searchpulse.retention")

DEFAULT_RETENTION_DAYS = 180


def retention_cutoff(today: date, horizon_days: int) -> date:
    """First date that survives the sweep; everything dated on or before today - horizon goes."""
    return today - timedelta(days=horizon_days) + timedelta(days=1)


def sweep(db: Session, horizon_days: int = DEFAULT_RETENTION_DAYS, *, today: date | None = None) -> dict[str, int]:
    if horizon_days <= 0:
        raise ValueError("horizon_days must be greater than 0")
    today = today or datetime.now(UTC).date()
    cutoff = retention_cutoff(today, horizon_days)
    deleted = metric_store.delete_older_than(db, cutoff)
    for series, count in deleted.items():
        if count:
            search_metric_rows_swept_total.labels(series=series).inc(count)
    log_event(logger, "search.retention.swept", cutoff=cutoff.isoformat(), horizon_days=horizon_days, **deleted)
    return deleted
