"""
In-memory storage implementation for tableorders.

Keeps tables and orders in dictionaries guarded by a single mutex.
Records are copied on the way in and out so callers never hold live state.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from tableorders.domain import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Table,
    TableStatus,
)
from .base import ActiveOrderExists, OrderAlreadyPaid, OrderNotActive, Storage


class InMemoryStorage(Storage):
    """In-memory storage using dictionaries."""

    def __init__(self):
        """Initialize with empty storage."""
        super().__init__()
        self._mutex = threading.RLock()
        self._tables: Dict[str, Table] = {}
        # Insertion order doubles as creation order
        self._orders: Dict[str, Order] = {}

    def get_table(self, table_id: str) -> Optional[Table]:
        with self._mutex:
            table = self._tables.get(table_id)
            return table.model_copy(deep=True) if table else None

    def list_tables(self) -> List[Table]:
        with self._mutex:
            tables = [t.model_copy(deep=True) for t in self._tables.values()]
        return sorted(tables, key=lambda t: t.number)

    def save_table(self, table: Table) -> Table:
        with self._mutex:
            self._tables[table.id] = table.model_copy(deep=True)
            return table.model_copy(deep=True)

    def get_order(self, order_id: str) -> Optional[Order]:
        with self._mutex:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def get_orders(self, table_id: str, active_only: bool = False) -> List[Order]:
        with self._mutex:
            return [
                o.model_copy(deep=True)
                for o in self._orders.values()
                if o.table_id == table_id and (o.is_active or not active_only)
            ]

    def _has_active_order(self, table_id: str, exclude: Optional[str] = None) -> bool:
        return any(
            o.table_id == table_id and o.is_active and o.id != exclude
            for o in self._orders.values()
        )

    def create_order(self, order: Order) -> Order:
        with self._mutex:
            if order.table_id is not None:
                if self._has_active_order(order.table_id):
                    raise ActiveOrderExists(order.table_id)
                table = self._tables.get(order.table_id)
                if table is None:
                    raise LookupError(f"table {order.table_id} not found")
                table.status = TableStatus.OCUPADA
                if table.assigned_user_id is None:
                    table.assigned_user_id = order.staff_user_id
            stored = order.model_copy(deep=True)
            stored.total = stored.compute_total()
            self._orders[stored.id] = stored
            return stored.model_copy(deep=True)

    def append_items(
        self, order_id: str, items: List[OrderItem], updated_at: datetime
    ) -> Optional[Order]:
        with self._mutex:
            order = self._orders.get(order_id)
            if order is None:
                return None
            if not order.is_active:
                raise OrderNotActive(order.id, order.status)
            order.items.extend(item.model_copy(deep=True) for item in items)
            order.total = order.compute_total()
            order.updated_at = updated_at
            return order.model_copy(deep=True)

    def mark_paid(
        self, order_id: str, method: PaymentMethod, paid_at: datetime
    ) -> Optional[Order]:
        with self._mutex:
            order = self._orders.get(order_id)
            if order is None:
                return None
            if order.is_paid:
                raise OrderAlreadyPaid(order.id)
            if order.status == OrderStatus.CANCELADO:
                raise OrderNotActive(order.id, order.status)
            order.is_paid = True
            order.payment_method = method
            order.paid_at = paid_at
            order.updated_at = paid_at
            return order.model_copy(deep=True)

    def set_order_status(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Optional[Order]:
        with self._mutex:
            order = self._orders.get(order_id)
            if order is None:
                return None
            if not order.is_active:
                raise OrderNotActive(order.id, order.status)
            order.status = status
            order.updated_at = updated_at
            return order.model_copy(deep=True)

    def close_order(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Tuple[Optional[Order], Optional[Table]]:
        with self._mutex:
            order = self._orders.get(order_id)
            if order is None:
                return None, None
            if not order.is_active:
                raise OrderNotActive(order.id, order.status)
            order.status = status
            order.updated_at = updated_at

            table = self._tables.get(order.table_id) if order.table_id else None
            if table is not None:
                still_active = self._has_active_order(table.id, exclude=order.id)
                if not still_active and table.status == TableStatus.OCUPADA:
                    table.status = TableStatus.LIVRE
                    table.assigned_user_id = None
            return (
                order.model_copy(deep=True),
                table.model_copy(deep=True) if table else None,
            )

    def clear(self) -> None:
        """Clear all state."""
        with self._mutex:
            self._tables.clear()
            self._orders.clear()
