from fastapi import APIRouter

from curator.api.routes import health, queue, scans

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(queue.router, prefix="/queue", tags=["queue"])
api_router.include_router(scans.router, prefix="/scans", tags=["scans"])
