from __future__ import annotations

from sqlalchemy.orm import Session

from searchpulse.models.opportunity import OPPORTUNITY_TYPE_DECLINING
from searchpulse.services import metric_store
from searchpulse.services.detection import thresholds
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate


def declining_score(position_change: float) -> float:
    return min(position_change * thresholds.DECLINING_SCORE_MULTIPLIER, thresholds.MAX_SCORE)


def detect_declining(db: Session, window: AnalysisWindow) -> list[OpportunityCandidate]:
    """Keywords whose last-7-day average position is at least 3 worse than days 8-28.

    Keywords missing from either window are not compared.
    """
    recent = metric_store.keyword_aggregate_query(db, window.recent_from, window.recent_to).subquery("recent")
    older = metric_store.keyword_aggregate_query(db, window.older_from, window.older_to).subquery("older")
    position_change = (recent.c.avg_position - older.c.avg_position).label("position_change")

    rows = (
        db.query(
            recent.c.keyword,
            recent.c.avg_position.label("recent_position"),
            older.c.avg_position.label("older_position"),
            recent.c.sum_impressions,
            recent.c.sum_clicks,
            position_change,
        )
        .join(older, older.c.keyword == recent.c.keyword)
        .filter(recent.c.avg_position - older.c.avg_position >= thresholds.DECLINING_MIN_POSITION_DROP)
        .order_by((recent.c.avg_position - older.c.avg_position).desc(), recent.c.keyword.asc())
        .limit(thresholds.DETECTION_CANDIDATE_LIMIT)
        .all()
    )
    candidates: list[OpportunityCandidate] = []
    for row in rows:
        change = float(row.position_change)
        recent_position = float(row.recent_position)
        older_position = float(row.older_position)
        candidates.append(
            OpportunityCandidate(
                keyword=row.keyword,
                opportunity_type=OPPORTUNITY_TYPE_DECLINING,
                score=declining_score(change),
                current_position=recent_position,
                current_ctr=None,
                impressions=int(row.sum_impressions),
                clicks=int(row.sum_clicks),
                position_change=change,
                suggested_action=(
                    f"Position dropped {change:.1f} places (from {older_position:.1f} to {recent_position:.1f}). "
                    "Update the content."
                ),
            )
        )
    return candidates
