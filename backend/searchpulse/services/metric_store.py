from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from searchpulse.models.search_metrics import PageMetric, QueryMetric
from searchpulse.schemas.search_metrics import PageMetricIn, QueryMetricIn

# SQLite caps bound parameters per statement; keep IN lists well below it.
_LOOKUP_CHUNK_SIZE = 400


@dataclass(frozen=True)
class KeywordAggregate:
    keyword: str
    avg_position: float
    avg_ctr: float
    sum_impressions: int
    sum_clicks: int


@dataclass(frozen=True)
class PageAggregate:
    url: str
    content_id: str | None
    avg_position: float
    avg_ctr: float
    sum_impressions: int
    sum_clicks: int


def _chunks(values: list[str]) -> Iterable[list[str]]:
    for index in range(0, len(values), _LOOKUP_CHUNK_SIZE):
        yield values[index : index + _LOOKUP_CHUNK_SIZE]


def upsert_query_metrics(db: Session, rows: Iterable[QueryMetricIn], *, now: datetime | None = None) -> int:
    """Insert or overwrite (keyword, date) rows; the last duplicate in a batch wins. Caller commits."""
    latest: dict[tuple[str, date], QueryMetricIn] = {}
    for row in rows:
        latest[(row.keyword, row.date)] = row
    if not latest:
        return 0
    now = now or datetime.now(UTC)

    by_date: dict[date, dict[str, QueryMetricIn]] = {}
    for (keyword, metric_date), row in latest.items():
        by_date.setdefault(metric_date, {})[keyword] = row

    for metric_date, keyed_rows in by_date.items():
        existing: dict[str, QueryMetric] = {}
        for chunk in _chunks(list(keyed_rows)):
            for record in (
                db.query(QueryMetric).filter(QueryMetric.date == metric_date, QueryMetric.keyword.in_(chunk)).all()
            ):
                existing[record.keyword] = record
        for keyword, row in keyed_rows.items():
            record = existing.get(keyword)
            if record is None:
                db.add(
                    QueryMetric(
                        keyword=keyword,
                        date=metric_date,
                        clicks=row.clicks,
                        impressions=row.impressions,
                        ctr=row.ctr,
                        position=row.position,
                        created_at=now,
                        updated_at=now,
                    )
                )
                continue
            record.clicks = row.clicks
            record.impressions = row.impressions
            record.ctr = row.ctr
            record.position = row.position
            record.updated_at = now
    db.flush()
    return len(latest)


def upsert_page_metrics(db: Session, rows: Iterable[PageMetricIn], *, now: datetime | None = None) -> int:
    latest: dict[tuple[str, date], PageMetricIn] = {}
    for row in rows:
        latest[(row.url, row.date)] = row
    if not latest:
        return 0
    now = now or datetime.now(UTC)

    by_date: dict[date, dict[str, PageMetricIn]] = {}
    for (url, metric_date), row in latest.items():
        by_date.setdefault(metric_date, {})[url] = row

    for metric_date, keyed_rows in by_date.items():
        existing: dict[str, PageMetric] = {}
        for chunk in _chunks(list(keyed_rows)):
            for record in db.query(PageMetric).filter(PageMetric.date == metric_date, PageMetric.url.in_(chunk)).all():
                existing[record.url] = record
        for url, row in keyed_rows.items():
            record = existing.get(url)
            if record is None:
                db.add(
                    PageMetric(
                        url=url,
                        content_id=row.content_id,
                        date=metric_date,
                        clicks=row.clicks,
                        impressions=row.impressions,
                        ctr=row.ctr,
                        position=row.position,
                        created_at=now,
                        updated_at=now,
                    )
                )
                continue
            record.content_id = row.content_id
            record.clicks = row.clicks
            record.impressions = row.impressions
            record.ctr = row.ctr
            record.position = row.position
            record.updated_at = now
    db.flush()
    return len(latest)


def avg_position_expr():
    return func.avg(QueryMetric.position)


def avg_ctr_expr():
    return func.avg(QueryMetric.ctr)


def sum_impressions_expr():
    return func.coalesce(func.sum(QueryMetric.impressions), 0)


def sum_clicks_expr():
    return func.coalesce(func.sum(QueryMetric.clicks), 0)


def keyword_aggregate_query(db: Session, date_from: date, date_to: date) -> Query:
    """Per-keyword aggregates over [date_from, date_to]; detectors add HAVING/ORDER BY/LIMIT."""
    return (
        db.query(
            QueryMetric.keyword.label("keyword"),
            avg_position_expr().label("avg_position"),
            avg_ctr_expr().label("avg_ctr"),
            sum_impressions_expr().label("sum_impressions"),
            sum_clicks_expr().label("sum_clicks"),
        )
        .filter(QueryMetric.date >= date_from, QueryMetric.date <= date_to)
        .group_by(QueryMetric.keyword)
    )


def to_keyword_aggregate(row) -> KeywordAggregate:
    return KeywordAggregate(
        keyword=row.keyword,
        avg_position=float(row.avg_position),
        avg_ctr=float(row.avg_ctr),
        sum_impressions=int(row.sum_impressions),
        sum_clicks=int(row.sum_clicks),
    )


def aggregate_queries_by_keyword(db: Session, date_from: date, date_to: date) -> list[KeywordAggregate]:
    rows = keyword_aggregate_query(db, date_from, date_to).order_by(QueryMetric.keyword.asc()).all()
    return [to_keyword_aggregate(row) for row in rows]


def page_aggregate_query(db: Session, date_from: date, date_to: date) -> Query:
    return (
        db.query(
            PageMetric.url.label("url"),
            func.max(PageMetric.content_id).label("content_id"),
            func.avg(PageMetric.position).label("avg_position"),
            func.avg(PageMetric.ctr).label("avg_ctr"),
            func.coalesce(func.sum(PageMetric.impressions), 0).label("sum_impressions"),
            func.coalesce(func.sum(PageMetric.clicks), 0).label("sum_clicks"),
        )
        .filter(PageMetric.date >= date_from, PageMetric.date <= date_to)
        .group_by(PageMetric.url)
    )


def to_page_aggregate(row) -> PageAggregate:
    return PageAggregate(
        url=row.url,
        content_id=row.content_id,
        avg_position=float(row.avg_position),
        avg_ctr=float(row.avg_ctr),
        sum_impressions=int(row.sum_impressions),
        sum_clicks=int(row.sum_clicks),
    )


def aggregate_pages_by_url(db: Session, date_from: date, date_to: date) -> list[PageAggregate]:
    rows = page_aggregate_query(db, date_from, date_to).order_by(PageMetric.url.asc()).all()
    return [to_page_aggregate(row) for row in rows]


def delete_older_than(db: Session, cutoff: date) -> dict[str, int]:
    """Delete rows dated strictly before ``cutoff`` from both series. Caller commits."""
    query_deleted = db.query(QueryMetric).filter(QueryMetric.date < cutoff).delete(synchronize_session=False)
    page_deleted = db.query(PageMetric).filter(PageMetric.date < cutoff).delete(synchronize_session=False)
    return {"query_metrics": int(query_deleted or 0), "page_metrics": int(page_deleted or 0)}


def keyword_series(db: Session, keyword: str, date_from: date, date_to: date) -> list[QueryMetric]:
    return (
        db.query(QueryMetric)
        .filter(QueryMetric.keyword == keyword, QueryMetric.date >= date_from, QueryMetric.date <= date_to)
        .order_by(QueryMetric.date.asc())
        .all()
    )


def content_series(db: Session, content_id: str, date_from: date, date_to: date) -> list[PageMetric]:
    return (
        db.query(PageMetric)
        .filter(PageMetric.content_id == content_id, PageMetric.date >= date_from, PageMetric.date <= date_to)
        .order_by(PageMetric.date.asc(), PageMetric.url.asc())
        .all()
    )


def content_average_position(db: Session, content_id: str, date_from: date, date_to: date) -> float | None:
    value = (
        db.query(func.avg(PageMetric.position))
        .filter(PageMetric.content_id == content_id, PageMetric.date >= date_from, PageMetric.date <= date_to)
        .scalar()
    )
    return float(value) if value is not None else None


def content_page_summary(db: Session, content_id: str, date_from: date, date_to: date) -> PageAggregate | None:
    """Best-performing URL (by impressions) mapped to the content over the range."""
    row = (
        page_aggregate_query(db, date_from, date_to)
        .filter(PageMetric.content_id == content_id)
        .order_by(func.sum(PageMetric.impressions).desc(), PageMetric.url.asc())
        .first()
    )
    if row is None:
        return None
    return to_page_aggregate(row)
