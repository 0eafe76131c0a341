"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from app.api.admin import router as admin_router
from app.api.geo import router as geo_router
from app.api.health import router as health_router
from app.api.jobs import router as jobs_router
from app.api.pipeline import router as pipeline_router
from app.api.webhooks import router as webhooks_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(webhooks_router)
api_router.include_router(admin_router)
api_router.include_router(pipeline_router)
api_router.include_router(geo_router)
api_router.include_router(jobs_router)
