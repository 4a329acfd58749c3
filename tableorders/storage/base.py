"""
Abstract Storage interface for tableorders.

Defines the persistence contract for tables, orders and order items.
Implementations can be in-memory, database-backed, or other backends.
Each method is atomic on its own. Within one process, multi-step
check-then-act sequences are serialized by the caller through `table_lock`;
order writes also re-check the order state themselves and raise
OrderNotActive / OrderAlreadyPaid, which holds across processes.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from tableorders.domain import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Table,
)


class ActiveOrderExists(Exception):
    """Raised when a second non-terminal order would be stored for a table."""

    def __init__(self, table_id: str):
        super().__init__(f"table {table_id} already has an active order")
        self.table_id = table_id


class OrderNotActive(Exception):
    """Raised when an order was already delivered or cancelled."""

    def __init__(self, order_id: str, status: OrderStatus):
        super().__init__(f"order {order_id} is already {status.value}")
        self.order_id = order_id
        self.status = status


class OrderAlreadyPaid(Exception):
    """Raised when payment is recorded twice for the same order."""

    def __init__(self, order_id: str):
        super().__init__(f"order {order_id} is already paid")
        self.order_id = order_id


class Storage(ABC):
    """Abstract base class for storage implementations."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._lock_users: Dict[str, int] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def table_lock(self, key: str) -> Iterator[None]:
        """
        Serialize work on one table (or one table-less order) in this process.

        Locks are per key, so different tables proceed in parallel.
        Re-entrant for the owning thread. A key's lock is dropped once no
        thread holds or waits for it. Storage backends shared between
        processes must re-check state inside their own transactions.
        """
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                self._lock_users[key] -= 1
                if self._lock_users[key] == 0:
                    del self._lock_users[key]
                    del self._locks[key]

    # ---------- Tables ----------
    @abstractmethod
    def get_table(self, table_id: str) -> Optional[Table]:
        """Get a table by id. Returns None if it does not exist."""
        ...

    @abstractmethod
    def list_tables(self) -> List[Table]:
        """List all tables sorted by display number."""
        ...

    @abstractmethod
    def save_table(self, table: Table) -> Table:
        """Insert or replace a table record."""
        ...

    # ---------- Orders ----------
    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        """Get a single order with its items. Returns None if not found."""
        ...

    @abstractmethod
    def get_orders(self, table_id: str, active_only: bool = False) -> List[Order]:
        """
        Get orders referencing a table, oldest first.

        With active_only=True only non-terminal orders are returned.
        """
        ...

    @abstractmethod
    def create_order(self, order: Order) -> Order:
        """
        Store a new order with its items and occupy its table, atomically.

        The table becomes OCUPADA and keeps its assigned_user_id, or takes the
        order's staff_user_id when it has none.
        Raises ActiveOrderExists if the table already has a non-terminal order.
        """
        ...

    @abstractmethod
    def append_items(
        self, order_id: str, items: List[OrderItem], updated_at: datetime
    ) -> Optional[Order]:
        """
        Append items to an order and recompute its total. None if not found.

        Raises OrderNotActive if the order is already ENTREGUE or CANCELADO.
        """
        ...

    @abstractmethod
    def mark_paid(
        self, order_id: str, method: PaymentMethod, paid_at: datetime
    ) -> Optional[Order]:
        """
        Flag an order as paid with the given method. None if not found.

        Raises OrderAlreadyPaid if it is paid, OrderNotActive if it is CANCELADO.
        """
        ...

    @abstractmethod
    def set_order_status(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Optional[Order]:
        """
        Change the status of an order without touching its table.

        Raises OrderNotActive if the order is already terminal.
        """
        ...

    @abstractmethod
    def close_order(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Tuple[Optional[Order], Optional[Table]]:
        """
        Move an order to a terminal status and re-evaluate its table.

        If no other non-terminal order references the table and the table is
        OCUPADA, it becomes LIVRE and its assigned_user_id is cleared.
        Returns (order, table); table is None for table-less orders.
        Raises OrderNotActive if the order is already terminal.
        """
        ...

    @abstractmethod
    def clear(self) -> None:
        """Clear all state (tables, orders and items)."""
        ...
