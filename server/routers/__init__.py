"""
API Routers
===========

FastAPI routers for different API endpoints.
"""

from .auto_mode import router as auto_mode_router
from .features import router as features_router
from .running_agents import router as running_agents_router
from .setup import router as setup_router

__all__ = [
    "auto_mode_router",
    "features_router",
    "running_agents_router",
    "setup_router",
]
