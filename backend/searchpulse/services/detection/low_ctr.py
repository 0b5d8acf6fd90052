from __future__ import annotations

from sqlalchemy.orm import Session

from searchpulse.models.opportunity import OPPORTUNITY_TYPE_LOW_CTR
from searchpulse.models.search_metrics import QueryMetric
from searchpulse.services import metric_store
from searchpulse.services.ctr_benchmark import CtrBenchmark
from searchpulse.services.detection import thresholds
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate
from searchpulse.services.metric_store import KeywordAggregate


def low_ctr_score(sum_impressions: int, avg_ctr: float, expected_ctr: float) -> float:
    return min(sum_impressions * (expected_ctr - avg_ctr), thresholds.MAX_SCORE)


def build_low_ctr(aggregate: KeywordAggregate, expected_ctr: float) -> OpportunityCandidate:
    return OpportunityCandidate(
        keyword=aggregate.keyword,
        opportunity_type=OPPORTUNITY_TYPE_LOW_CTR,
        score=low_ctr_score(aggregate.sum_impressions, aggregate.avg_ctr, expected_ctr),
        current_position=aggregate.avg_position,
        current_ctr=aggregate.avg_ctr,
        impressions=aggregate.sum_impressions,
        clicks=aggregate.sum_clicks,
        suggested_action=(
            f"CTR is {aggregate.avg_ctr * 100:.1f}% while the benchmark for this position is "
            f"{expected_ctr * 100:.1f}%. Improve the meta title and description."
        ),
    )


def detect_low_ctr(db: Session, window: AnalysisWindow, ctr_benchmark: CtrBenchmark) -> list[OpportunityCandidate]:
    # The top-50 cut by impressions happens before the benchmark filter.
    rows = (
        metric_store.keyword_aggregate_query(db, window.date_from, window.date_to)
        .having(
            metric_store.avg_position_expr() <= thresholds.LOW_CTR_MAX_POSITION,
            metric_store.sum_impressions_expr() >= thresholds.LOW_CTR_MIN_IMPRESSIONS,
        )
        .order_by(metric_store.sum_impressions_expr().desc(), QueryMetric.keyword.asc())
        .limit(thresholds.DETECTION_CANDIDATE_LIMIT)
        .all()
    )
    candidates: list[OpportunityCandidate] = []
    for row in rows:
        aggregate = metric_store.to_keyword_aggregate(row)
        expected_ctr = ctr_benchmark.benchmark(aggregate.avg_position)
        if aggregate.avg_ctr < expected_ctr * thresholds.LOW_CTR_BENCHMARK_RATIO:
            candidates.append(build_low_ctr(aggregate, expected_ctr))
    return candidates
