from __future__ import annotations

import logging
from datetime import UTC, date, datetime

from sqlalchemy.orm import Session

from searchpulse.core.config import Settings, get_settings
from searchpulse.core.logging_config import log_event
from searchpulse.core.metrics import search_opportunities_detected_total
from searchpulse.models.opportunity import (
    OPPORTUNITY_STATUS_ACTIVE,
    OPPORTUNITY_STATUS_DISMISSED,
    OPPORTUNITY_TYPES,
    Opportunity,
)
from searchpulse.services.ctr_benchmark import CtrBenchmark
from searchpulse.services.detection.content_gap import detect_content_gaps
from searchpulse.services.detection.declining import detect_declining
from searchpulse.services.detection.low_ctr import detect_low_ctr
from searchpulse.services.detection.quick_win import detect_quick_wins
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate

logger = logging.getLogger("searchpulse.detection")


def run_detectors(db: Session, window: AnalysisWindow, ctr_benchmark: CtrBenchmark) -> list[OpportunityCandidate]:
    candidates: list[OpportunityCandidate] = []
    candidates.extend(detect_quick_wins(db, window))
    candidates.extend(detect_low_ctr(db, window, ctr_benchmark))
    candidates.extend(detect_declining(db, window))
    candidates.extend(detect_content_gaps(db, window))
    return candidates


def upsert_opportunities(db: Session, candidates: list[OpportunityCandidate], *, now: datetime) -> int:
    if not candidates:
        return 0
    keywords = sorted({candidate.keyword for candidate in candidates})
    existing = {
        (row.keyword, row.opportunity_type): row
        for row in db.query(Opportunity).filter(Opportunity.keyword.in_(keywords)).all()
    }
    for candidate in candidates:
        values = candidate.model_dump()
        record = existing.get((candidate.keyword, candidate.opportunity_type))
        if record is None:
            record = Opportunity(**values, status=OPPORTUNITY_STATUS_ACTIVE, created_at=now, updated_at=now)
            db.add(record)
            existing[(candidate.keyword, candidate.opportunity_type)] = record
            continue
        for field, value in values.items():
            setattr(record, field, value)
        record.status = OPPORTUNITY_STATUS_ACTIVE
        record.updated_at = now
    db.flush()
    return len(candidates)


def dismiss_stale_opportunities(db: Session, candidates: list[OpportunityCandidate], *, now: datetime) -> int:
    flagged = {(candidate.keyword, candidate.opportunity_type) for candidate in candidates}
    dismissed = 0
    for record in db.query(Opportunity).filter(Opportunity.status == OPPORTUNITY_STATUS_ACTIVE).all():
        if (record.keyword, record.opportunity_type) in flagged:
            continue
        record.status = OPPORTUNITY_STATUS_DISMISSED
        record.updated_at = now
        dismissed += 1
    db.flush()
    return dismissed


def detect_opportunities(
    db: Session,
    *,
    as_of: date,
    settings: Settings | None = None,
    ctr_benchmark: CtrBenchmark | None = None,
    now: datetime | None = None,
) -> dict:
    """Run all four classifiers over the window ending at ``as_of`` and persist the result.

    Opportunities are keyed on (keyword, type). Re-flagged rows are refreshed in place and
    reactivated. When stale dismissal is enabled, active rows that were not re-flagged are
    marked dismissed. The caller owns the transaction.
    """
    settings = settings or get_settings()
    ctr_benchmark = ctr_benchmark or CtrBenchmark.from_json(settings.ctr_benchmark_curve_json)
    now = now or datetime.now(UTC)
    window = AnalysisWindow(as_of=as_of, window_days=settings.analysis_window_days)

    candidates = run_detectors(db, window, ctr_benchmark)
    upsert_opportunities(db, candidates, now=now)
    dismissed = dismiss_stale_opportunities(db, candidates, now=now) if settings.dismiss_stale_opportunities else 0

    counts = {opportunity_type: 0 for opportunity_type in OPPORTUNITY_TYPES}
    for candidate in candidates:
        counts[candidate.opportunity_type] += 1
    for opportunity_type, count in counts.items():
        if count:
            search_opportunities_detected_total.labels(opportunity_type=opportunity_type).inc(count)

    log_event(
        logger,
        "search.detection.completed",
        as_of=as_of.isoformat(),
        window_from=window.date_from.isoformat(),
        window_to=window.date_to.isoformat(),
        counts=counts,
        dismissed=dismissed,
    )
    return {"counts": counts, "detected": len(candidates), "dismissed": dismissed}
