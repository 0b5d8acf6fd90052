from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from searchpulse.api.response import envelope
from searchpulse.db.redis_client import get_redis_client
from searchpulse.db.session import SessionLocal

router = APIRouter(tags=["ops"])


def _db_connected() -> bool:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False
    finally:
        db.close()


@router.get("/health")
def health(request: Request) -> dict:
    db_ok = _db_connected()
    return envelope(
        request,
        {
            "status": "ok" if db_ok else "degraded",
            "database": "connected" if db_ok else "not connected",
            "cache": "connected" if get_redis_client() is not None else "disabled",
        },
    )
