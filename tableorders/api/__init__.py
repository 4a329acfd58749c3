"""HTTP routers for tableorders."""

from .orders_router import router as orders_router
from .tables_router import router as tables_router

__all__ = ["orders_router", "tables_router"]
