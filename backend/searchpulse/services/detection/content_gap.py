from __future__ import annotations

from sqlalchemy.orm import Session

from searchpulse.models.opportunity import OPPORTUNITY_TYPE_CONTENT_GAP
from searchpulse.models.search_metrics import QueryMetric
from searchpulse.services import metric_store
from searchpulse.services.detection import thresholds
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate


def content_gap_score(sum_impressions: int) -> float:
    return min(sum_impressions / thresholds.CONTENT_GAP_IMPRESSIONS_PER_POINT, thresholds.MAX_SCORE)


def detect_content_gaps(db: Session, window: AnalysisWindow) -> list[OpportunityCandidate]:
    rows = (
        metric_store.keyword_aggregate_query(db, window.date_from, window.date_to)
        .having(
            metric_store.avg_position_expr() > thresholds.CONTENT_GAP_MIN_POSITION,
            metric_store.sum_impressions_expr() >= thresholds.CONTENT_GAP_MIN_IMPRESSIONS,
        )
        .order_by(metric_store.sum_impressions_expr().desc(), QueryMetric.keyword.asc())
        .limit(thresholds.DETECTION_CANDIDATE_LIMIT)
        .all()
    )
    candidates: list[OpportunityCandidate] = []
    for row in rows:
        aggregate = metric_store.to_keyword_aggregate(row)
        candidates.append(
            OpportunityCandidate(
                keyword=aggregate.keyword,
                opportunity_type=OPPORTUNITY_TYPE_CONTENT_GAP,
                score=content_gap_score(aggregate.sum_impressions),
                current_position=aggregate.avg_position,
                current_ctr=aggregate.avg_ctr,
                impressions=aggregate.sum_impressions,
                clicks=aggregate.sum_clicks,
                suggested_action=(
                    f"{aggregate.sum_impressions} impressions but not on page one yet. "
                    "Create dedicated content for this keyword."
                ),
            )
        )
    return candidates
