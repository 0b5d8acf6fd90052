from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime, timedelta

from redis.exceptions import RedisError
from sqlalchemy import func
from sqlalchemy.orm import Session

from searchpulse.core.config import get_settings
from searchpulse.db.redis_client import get_redis_client
from searchpulse.models.opportunity import OPPORTUNITY_STATUS_ACTIVE, OPPORTUNITY_TYPES, Opportunity
from searchpulse.models.search_metrics import PageMetric, QueryMetric
from searchpulse.schemas.search_metrics import OpportunityOut
from searchpulse.services import metric_store
from searchpulse.services.detection import thresholds
from searchpulse.services.sync_service import get_sync_status

logger = logging.getLogger("searchpulse.query")

TREND_RISING = "rising"
TREND_DECLINING = "declining"
TREND_STABLE = "stable"
TREND_MATERIAL_CHANGE = 2.0
CONTENT_RANKING_DAYS = 30


def _today(today: date | None) -> date:
    return today or datetime.now(UTC).date()


def _since(days: int, today: date | None) -> date:
    if days <= 0:
        raise ValueError("days must be greater than 0")
    return _today(today) - timedelta(days=days)


def get_dashboard_totals(db: Session, days: int = 28, *, today: date | None = None) -> dict:
    row = (
        db.query(
            func.coalesce(func.sum(QueryMetric.clicks), 0).label("total_clicks"),
            func.coalesce(func.sum(QueryMetric.impressions), 0).label("total_impressions"),
            func.avg(QueryMetric.ctr).label("avg_ctr"),
            func.avg(QueryMetric.position).label("avg_position"),
        )
        .filter(QueryMetric.date >= _since(days, today))
        .one()
    )
    return {
        "total_clicks": int(row.total_clicks),
        "total_impressions": int(row.total_impressions),
        "avg_ctr": float(row.avg_ctr) if row.avg_ctr is not None else None,
        "avg_position": float(row.avg_position) if row.avg_position is not None else None,
    }


def get_top_queries(db: Session, days: int = 28, limit: int = 10, *, today: date | None = None) -> list[dict]:
    rows = (
        metric_store.keyword_aggregate_query(db, _since(days, today), _today(today))
        .order_by(metric_store.sum_clicks_expr().desc(), QueryMetric.keyword.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "keyword": row.keyword,
            "clicks": int(row.sum_clicks),
            "impressions": int(row.sum_impressions),
            "ctr": float(row.avg_ctr),
            "position": float(row.avg_position),
        }
        for row in rows
    ]


def get_top_pages(db: Session, days: int = 28, limit: int = 10, *, today: date | None = None) -> list[dict]:
    rows = (
        metric_store.page_aggregate_query(db, _since(days, today), _today(today))
        .order_by(func.sum(PageMetric.clicks).desc(), PageMetric.url.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "url": row.url,
            "content_id": row.content_id,
            "clicks": int(row.sum_clicks),
            "impressions": int(row.sum_impressions),
            "ctr": float(row.avg_ctr),
            "position": float(row.avg_position),
        }
        for row in rows
    ]


def get_opportunity_counts(db: Session) -> dict[str, int]:
    counts = {opportunity_type: 0 for opportunity_type in OPPORTUNITY_TYPES}
    rows = (
        db.query(Opportunity.opportunity_type, func.count(Opportunity.id))
        .filter(Opportunity.status == OPPORTUNITY_STATUS_ACTIVE)
        .group_by(Opportunity.opportunity_type)
        .all()
    )
    for opportunity_type, count in rows:
        counts[opportunity_type] = int(count)
    return counts


def get_opportunities(
    db: Session, opportunity_type: str | None = None, limit: int = 20, offset: int = 0
) -> list[Opportunity]:
    if opportunity_type is not None and opportunity_type not in OPPORTUNITY_TYPES:
        raise ValueError(f"Unknown opportunity type: {opportunity_type}")
    query = db.query(Opportunity).filter(Opportunity.status == OPPORTUNITY_STATUS_ACTIVE)
    if opportunity_type:
        query = query.filter(Opportunity.opportunity_type == opportunity_type)
    return query.order_by(Opportunity.score.desc(), Opportunity.keyword.asc()).offset(offset).limit(limit).all()


def classify_trend(recent_position: float | None, older_position: float | None) -> str:
    """Lower positions are better, so a falling average position is a rising trend."""
    if recent_position is None or older_position is None:
        return TREND_STABLE
    diff = older_position - recent_position
    if diff > TREND_MATERIAL_CHANGE:
        return TREND_RISING
    if diff < -TREND_MATERIAL_CHANGE:
        return TREND_DECLINING
    return TREND_STABLE


def get_content_trend(db: Session, content_id: str, days: int = 28, *, today: date | None = None) -> dict | None:
    current = _today(today)
    summary = metric_store.content_page_summary(db, content_id, _since(days, today), current)
    if summary is None:
        return None
    recent = metric_store.content_average_position(
        db, content_id, current - timedelta(days=thresholds.RECENT_WINDOW_DAYS), current
    )
    older = metric_store.content_average_position(
        db,
        content_id,
        current - timedelta(days=thresholds.OLDER_WINDOW_START_DAYS),
        current - timedelta(days=thresholds.OLDER_WINDOW_END_DAYS),
    )
    return {
        "content_id": content_id,
        "page": {
            "url": summary.url,
            "clicks": summary.sum_clicks,
            "impressions": summary.sum_impressions,
            "ctr": summary.avg_ctr,
            "position": summary.avg_position,
        },
        "recent_position": recent,
        "older_position": older,
        "trend": classify_trend(recent, older),
    }


def get_content_rankings(db: Session, *, today: date | None = None, limit: int | None = None) -> list[dict]:
    """Average position per content item over the last 30 days."""
    current = _today(today)
    query = (
        db.query(
            PageMetric.content_id,
            func.avg(PageMetric.position).label("avg_position"),
            func.coalesce(func.sum(PageMetric.clicks), 0).label("clicks"),
            func.coalesce(func.sum(PageMetric.impressions), 0).label("impressions"),
        )
        .filter(
            PageMetric.content_id.is_not(None),
            PageMetric.date >= current - timedelta(days=CONTENT_RANKING_DAYS),
            PageMetric.date <= current,
        )
        .group_by(PageMetric.content_id)
        .order_by(func.avg(PageMetric.position).asc(), PageMetric.content_id.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    return [
        {
            "content_id": row.content_id,
            "avg_position": round(float(row.avg_position), 2),
            "clicks": int(row.clicks),
            "impressions": int(row.impressions),
        }
        for row in query.all()
    ]


def _dashboard_cache_key(site_url: str, days: int, last_synced_at: datetime | None) -> str:
    marker = last_synced_at.isoformat() if last_synced_at is not None else "never"
    return f"searchpulse:dashboard:{site_url}:{days}:{marker}"


def build_dashboard(db: Session, days: int = 28, site_url: str | None = None, *, today: date | None = None) -> dict:
    settings = get_settings()
    site_url = site_url or settings.gsc_site_url
    sync_status = get_sync_status(db, site_url)
    last_synced_at = sync_status["last_synced_at"]

    redis_client = get_redis_client()
    cache_key = _dashboard_cache_key(site_url, days, last_synced_at)
    if redis_client is not None:
        try:
            cached = redis_client.get(cache_key)
        except RedisError as exc:
            logger.warning("Dashboard cache read failed: %s", exc)
            cached = None
        if cached:
            return json.loads(cached)

    payload = {
        "totals": get_dashboard_totals(db, days, today=today),
        "top_queries": get_top_queries(db, days, today=today),
        "top_pages": get_top_pages(db, days, today=today),
        "opportunity_counts": get_opportunity_counts(db),
        "last_sync": last_synced_at.isoformat() if last_synced_at is not None else None,
        "last_status": sync_status["last_status"],
    }
    if redis_client is not None:
        try:
            redis_client.setex(cache_key, settings.dashboard_cache_ttl_seconds, json.dumps(payload))
        except RedisError as exc:
            logger.warning("Dashboard cache write failed: %s", exc)
    return payload


def serialize_opportunities(rows: list[Opportunity]) -> list[dict]:
    return [OpportunityOut.model_validate(row).model_dump(mode="json") for row in rows]


def run_sync_now(site_url: str | None = None, *, date_from: date | None = None, date_to: date | None = None) -> dict:
    from searchpulse.tasks.tasks import search_sync_site

    settings = get_settings()
    site_url = site_url or settings.gsc_site_url
    result = search_sync_site.delay(
        site_url=site_url,
        date_from=date_from.isoformat() if date_from else None,
        date_to=date_to.isoformat() if date_to else None,
        trigger="manual",
    )
    return {"task_id": result.id, "site_url": site_url, "status": "queued"}
