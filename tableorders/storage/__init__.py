"""Storage abstraction layer for tableorders."""

from .base import ActiveOrderExists, OrderAlreadyPaid, OrderNotActive, Storage
from .inmemory import InMemoryStorage
from .sqlalchemy_adapter import SQLAlchemyStorage

__all__ = ["ActiveOrderExists", "OrderAlreadyPaid", "OrderNotActive", "Storage", "InMemoryStorage", "SQLAlchemyStorage"]
