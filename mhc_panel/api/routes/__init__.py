"""API routers, one module per area."""

from .auth import router as auth_router
from .broadcasts import router as broadcasts_router
from .followers import router as followers_router
from .lookup import dashboard_router, room_router
from .lookup import router as lookup_router
from .media import router as media_router
from .persons import router as persons_router
from .sessions import events_router
from .sessions import router as sessions_router
from .settings import router as settings_router

__all__ = [
    "auth_router",
    "broadcasts_router",
    "dashboard_router",
    "events_router",
    "followers_router",
    "lookup_router",
    "media_router",
    "persons_router",
    "room_router",
    "sessions_router",
    "settings_router",
]
