"""API routers package.

This package contains all FastAPI routers for the application.
Each router handles a specific domain of the API.
"""

from .notifications import router as notifications_router

__all__ = [
    "notifications_router",
]
