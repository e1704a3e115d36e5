# System routers
from rbac_sync.system.routers import api_router, menu_router, rbac_router

__all__ = ["api_router", "menu_router", "rbac_router"]
