from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from searchpulse.api.response import envelope
from searchpulse.core.config import get_settings
from searchpulse.db.session import get_db
from searchpulse.schemas.search_metrics import SyncTriggerIn
from searchpulse.services import query_facade, sync_service

router = APIRouter(tags=["sync"])


@router.get("/sync/status")
def sync_status(request: Request, site_url: str | None = Query(default=None), db: Session = Depends(get_db)) -> dict:
    return envelope(request, sync_service.get_sync_status(db, site_url or get_settings().gsc_site_url))


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED)
def trigger_sync(request: Request, body: SyncTriggerIn | None = None) -> dict:
    body = body or SyncTriggerIn()
    return envelope(request, query_facade.run_sync_now(date_from=body.date_from, date_to=body.date_to))
