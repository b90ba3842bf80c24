from .admin import admin_router
from .auth import auth_router
from .records import records_router

__all__ = ["admin_router", "auth_router", "records_router"]
