from __future__ import annotations

from erp_gateway.api.routes.admin import router as admin_router
from erp_gateway.api.routes.health import router as health_router

__all__ = ["admin_router", "health_router"]
