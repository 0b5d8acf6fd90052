from __future__ import annotations

from sqlalchemy.orm import Session

from searchpulse.models.opportunity import OPPORTUNITY_TYPE_QUICK_WIN
from searchpulse.models.search_metrics import QueryMetric
from searchpulse.services import metric_store
from searchpulse.services.detection import thresholds
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate
from searchpulse.services.metric_store import KeywordAggregate


def quick_win_score(avg_position: float, sum_impressions: int) -> float:
    position_score = (21 - avg_position) / 10
    impression_score = min(sum_impressions / thresholds.QUICK_WIN_IMPRESSION_SATURATION, 1)
    return (
        position_score * thresholds.QUICK_WIN_POSITION_WEIGHT + impression_score * thresholds.QUICK_WIN_IMPRESSION_WEIGHT
    ) * 100


def build_quick_win(aggregate: KeywordAggregate) -> OpportunityCandidate:
    return OpportunityCandidate(
        keyword=aggregate.keyword,
        opportunity_type=OPPORTUNITY_TYPE_QUICK_WIN,
        score=quick_win_score(aggregate.avg_position, aggregate.sum_impressions),
        current_position=aggregate.avg_position,
        current_ctr=aggregate.avg_ctr,
        impressions=aggregate.sum_impressions,
        clicks=aggregate.sum_clicks,
        suggested_action=(
            f'"{aggregate.keyword}" sits at position {round(aggregate.avg_position)} on page two. '
            "Optimize the content to push it onto page one."
        ),
    )


def detect_quick_wins(db: Session, window: AnalysisWindow) -> list[OpportunityCandidate]:
    """Keywords averaging positions 11-20 with enough impressions to be worth pushing to page one."""
    rows = (
        metric_store.keyword_aggregate_query(db, window.date_from, window.date_to)
        .having(
            metric_store.avg_position_expr() >= thresholds.QUICK_WIN_MIN_POSITION,
            metric_store.avg_position_expr() <= thresholds.QUICK_WIN_MAX_POSITION,
            metric_store.sum_impressions_expr() >= thresholds.QUICK_WIN_MIN_IMPRESSIONS,
        )
        .order_by(metric_store.sum_impressions_expr().desc(), QueryMetric.keyword.asc())
        .limit(thresholds.DETECTION_CANDIDATE_LIMIT)
        .all()
    )
    return [build_quick_win(metric_store.to_keyword_aggregate(row)) for row in rows]
