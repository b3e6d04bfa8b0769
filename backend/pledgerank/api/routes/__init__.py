from fastapi import APIRouter

from pledgerank.api.routes import commitments, events, health, preferences, rankings, updates

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(commitments.router, prefix="/commitments", tags=["commitments"])
api_router.include_router(rankings.router, prefix="/rankings", tags=["rankings"])
api_router.include_router(preferences.router, prefix="/preferences", tags=["preferences"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(updates.router, prefix="/updates", tags=["updates"])
