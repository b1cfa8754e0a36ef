from __future__ import annotations

from tasktracker.api.routes.health import router as health_router
from tasktracker.api.routes.resilience import router as resilience_router

__all__ = ["health_router", "resilience_router"]
