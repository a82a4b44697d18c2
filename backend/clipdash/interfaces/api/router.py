from fastapi import APIRouter

from clipdash.interfaces.api.health import router as health_router
from clipdash.interfaces.api.worker import router as worker_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(worker_router)
