from fastapi import APIRouter

from searchpulse.api.v1 import health, opportunities, search, sync


def build_api_router() -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(search.router)
    api_router.include_router(opportunities.router)
    api_router.include_router(sync.router)
    return api_router


api_router = build_api_router()
