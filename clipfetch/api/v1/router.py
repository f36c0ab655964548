"""API v1 router aggregation."""
from fastapi import APIRouter

from clipfetch.api.v1.endpoints import videos

api_router = APIRouter()

# Fetch-by-URL and fetch-by-search both live under /videos
api_router.include_router(videos.router, prefix="/videos", tags=["videos"])
