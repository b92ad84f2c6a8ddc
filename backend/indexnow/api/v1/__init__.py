from fastapi import APIRouter

# Aggregate all v1 routers here
from .routers import jobs, notifications, quota

api_router = APIRouter()
api_router.include_router(jobs.router)
api_router.include_router(quota.router)
api_router.include_router(notifications.router)

__all__ = ["api_router"]
