from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from searchpulse.api.response import envelope
from searchpulse.db.session import get_db
from searchpulse.services import query_facade

router = APIRouter(tags=["search"])


@router.get("/search/dashboard")
def get_dashboard(
    request: Request,
    days: int = Query(default=28, ge=1, le=365),
    site_url: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    return envelope(request, query_facade.build_dashboard(db, days, site_url))


@router.get("/search/totals")
def get_totals(request: Request, days: int = Query(default=28, ge=1, le=365), db: Session = Depends(get_db)) -> dict:
    return envelope(request, query_facade.get_dashboard_totals(db, days), days=days)


@router.get("/search/top-queries")
def get_top_queries(
    request: Request,
    days: int = Query(default=28, ge=1, le=365),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> dict:
    return envelope(request, query_facade.get_top_queries(db, days, limit), days=days, limit=limit)


@router.get("/search/top-pages")
def get_top_pages(
    request: Request,
    days: int = Query(default=28, ge=1, le=365),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> dict:
    return envelope(request, query_facade.get_top_pages(db, days, limit), days=days, limit=limit)


@router.get("/content/rankings")
def get_content_rankings(
    request: Request, limit: int = Query(default=50, ge=1, le=500), db: Session = Depends(get_db)
) -> dict:
    return envelope(request, query_facade.get_content_rankings(db, limit=limit))


@router.get("/content/{content_id}/trend")
def get_content_trend(
    request: Request,
    content_id: str,
    days: int = Query(default=28, ge=1, le=365),
    db: Session = Depends(get_db),
) -> dict:
    trend = query_facade.get_content_trend(db, content_id, days)
    if trend is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No search data for content")
    return envelope(request, trend)
