from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.payments import router as payments_router

__all__ = ["health_router", "payments_router"]
