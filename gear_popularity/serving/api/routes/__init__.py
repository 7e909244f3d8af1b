"""
API Routes Module
"""
from .health import router as health_router
from .events import router as events_router
from .trending import router as trending_router
from .rollups import router as rollups_router

__all__ = [
    "health_router",
    "events_router",
    "trending_router",
    "rollups_router",
]
