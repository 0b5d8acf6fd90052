from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from searchpulse.api.response import envelope
from searchpulse.db.session import get_db
from searchpulse.models.opportunity import OPPORTUNITY_TYPES
from searchpulse.services import query_facade

router = APIRouter(tags=["opportunities"])


@router.get("/opportunities")
def list_opportunities(
    request: Request,
    type: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> dict:
    if type is not None and type not in OPPORTUNITY_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": f"Unknown opportunity type: {type}", "allowed": list(OPPORTUNITY_TYPES)},
        )
    rows = query_facade.get_opportunities(db, type, limit, offset)
    return envelope(request, query_facade.serialize_opportunities(rows), limit=limit, offset=offset, type=type)


@router.get("/opportunities/counts")
def opportunity_counts(request: Request, db: Session = Depends(get_db)) -> dict:
    return envelope(request, query_facade.get_opportunity_counts(db))
