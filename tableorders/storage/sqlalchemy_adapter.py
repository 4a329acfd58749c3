"""
SQLAlchemy storage implementation for tableorders.

Persists tables, orders and order items through the models in
tableorders.db.models. Every write runs in an explicit transaction; the
table row is selected FOR UPDATE (BEGIN IMMEDIATE on SQLite) and order
writes re-read the order under that lock before changing it. The partial
unique index on orders.table_id backs the single-active-order rule across
processes.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import create_engine, delete, event, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from tableorders.db import init_db
from tableorders.db.models import (
    ACTIVE_ORDER_INDEX,
    Base,
    OrderItemModel,
    OrderModel,
    TableModel,
    from_cents,
    to_cents,
)
from tableorders.domain import (
    TERMINAL_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    Table,
    TableStatus,
)
from tableorders.storage.base import ActiveOrderExists, OrderAlreadyPaid, OrderNotActive, Storage

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = [s.value for s in TERMINAL_ORDER_STATUSES]


def _begin_immediate(engine) -> None:
    """
    Make every SQLite transaction take the write lock up front.

    SQLite ignores FOR UPDATE; BEGIN IMMEDIATE serializes transactions across
    connections and processes so order writes can re-check state safely.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _table_to_domain(row: TableModel) -> Table:
    return Table(
        id=row.id,
        number=row.number,
        capacity=row.capacity,
        status=TableStatus(row.status),
        assigned_user_id=row.assigned_user_id,
    )


def _item_to_domain(row: OrderItemModel) -> OrderItem:
    return OrderItem(
        id=row.id,
        order_id=row.order_id,
        product_id=row.product_id,
        quantity=row.quantity,
        price=from_cents(row.unit_price),
        notes=row.notes,
        customizations=row.customizations,
    )


def _order_to_domain(row: OrderModel) -> Order:
    return Order(
        id=row.id,
        table_id=row.table_id,
        staff_user_id=row.staff_user_id,
        status=OrderStatus(row.status),
        items=[_item_to_domain(item) for item in row.items],
        total=from_cents(row.total),
        is_paid=row.is_paid,
        payment_method=PaymentMethod(row.payment_method) if row.payment_method else None,
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
        paid_at=row.paid_at,
    )


def _item_to_row(item: OrderItem, position: int) -> OrderItemModel:
    return OrderItemModel(
        id=item.id,
        order_id=item.order_id,
        position=position,
        product_id=item.product_id,
        quantity=item.quantity,
        unit_price=to_cents(item.price),
        notes=item.notes,
        customizations=item.customizations,
    )


class SQLAlchemyStorage(Storage):
    """SQLAlchemy-backed storage (SQLite by default, any SQLAlchemy URL works)."""

    def __init__(self, database_url: str = "sqlite:///tableorders.db", use_alembic: Optional[bool] = None):
        """
        Initialize SQLAlchemy storage.

        Args:
            database_url: SQLAlchemy database URL
            use_alembic: Run Alembic migrations instead of create_all.
                         Defaults to the USE_ALEMBIC env var.
        """
        super().__init__()
        self.database_url = database_url

        # check_same_thread=False: sessions are used from FastAPI's threadpool
        # timeout: seconds a SQLite connection waits for another writer
        # pool_pre_ping=True: verify connections before use (detect stale connections)
        self.engine = create_engine(
            self.database_url,
            connect_args={"check_same_thread": False, "timeout": 30} if database_url.startswith("sqlite") else {},
            echo=False,
            future=True,
            pool_pre_ping=True,
        )
        if self.engine.dialect.name == "sqlite":
            _begin_immediate(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        if use_alembic is None:
            use_alembic = os.getenv("USE_ALEMBIC", "false").lower() == "true"
        init_db(self.engine, use_alembic=use_alembic, base=Base)

    def _get_session(self) -> Session:
        """Get a new database session (caller must close)."""
        return self.SessionLocal()

    def _select_order(self, order_id: str, for_update: bool = False):
        stmt = (
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.id == order_id)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return stmt

    def _lock_table_row(self, session: Session, table_id: str) -> Optional[TableModel]:
        stmt = select(TableModel).where(TableModel.id == table_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def _lock_order(
        self, session: Session, order_id: str
    ) -> Tuple[Optional[OrderModel], Optional[TableModel]]:
        """
        Lock the order's table row (table first, as create_order does), then
        re-read the order under lock. Returns (order_row, table_row).
        """
        row = session.execute(self._select_order(order_id)).scalar_one_or_none()
        if row is None:
            return None, None
        table_row = None
        if row.table_id is not None:
            table_row = self._lock_table_row(session, row.table_id)
        row = session.execute(self._select_order(order_id, for_update=True)).scalar_one_or_none()
        return row, table_row

    def _count_active(self, session: Session, table_id: str, exclude: Optional[str] = None) -> int:
        stmt = (
            select(OrderModel.id)
            .where(OrderModel.table_id == table_id)
            .where(OrderModel.status.notin_(_TERMINAL_VALUES))
        )
        if exclude is not None:
            stmt = stmt.where(OrderModel.id != exclude)
        return len(session.execute(stmt).scalars().all())

    # ---------- Tables ----------
    def get_table(self, table_id: str) -> Optional[Table]:
        session = self._get_session()
        try:
            row = session.get(TableModel, table_id)
            return _table_to_domain(row) if row else None
        finally:
            session.close()

    def list_tables(self) -> List[Table]:
        session = self._get_session()
        try:
            rows = session.execute(select(TableModel).order_by(TableModel.number)).scalars().all()
            return [_table_to_domain(row) for row in rows]
        finally:
            session.close()

    def save_table(self, table: Table) -> Table:
        session = self._get_session()
        try:
            with session.begin():
                row = session.get(TableModel, table.id)
                if row is None:
                    row = TableModel(id=table.id)
                    session.add(row)
                row.number = table.number
                row.capacity = table.capacity
                row.status = table.status.value
                row.assigned_user_id = table.assigned_user_id
            return _table_to_domain(row)
        finally:
            session.close()

    # ---------- Orders ----------
    def get_order(self, order_id: str) -> Optional[Order]:
        session = self._get_session()
        try:
            row = session.execute(self._select_order(order_id)).scalar_one_or_none()
            return _order_to_domain(row) if row else None
        finally:
            session.close()

    def get_orders(self, table_id: str, active_only: bool = False) -> List[Order]:
        session = self._get_session()
        try:
            stmt = (
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(OrderModel.table_id == table_id)
                .order_by(OrderModel.created_at)
            )
            if active_only:
                stmt = stmt.where(OrderModel.status.notin_(_TERMINAL_VALUES))
            rows = session.execute(stmt).scalars().all()
            return [_order_to_domain(row) for row in rows]
        finally:
            session.close()

    def create_order(self, order: Order) -> Order:
        session = self._get_session()
        try:
            with session.begin():
                if order.table_id is not None:
                    table_row = self._lock_table_row(session, order.table_id)
                    if table_row is None:
                        raise LookupError(f"table {order.table_id} not found")
                    if self._count_active(session, order.table_id) > 0:
                        raise ActiveOrderExists(order.table_id)
                    table_row.status = TableStatus.OCUPADA.value
                    if table_row.assigned_user_id is None:
                        table_row.assigned_user_id = order.staff_user_id

                row = OrderModel(
                    id=order.id,
                    table_id=order.table_id,
                    staff_user_id=order.staff_user_id,
                    status=order.status.value,
                    total=to_cents(order.compute_total()),
                    is_paid=order.is_paid,
                    payment_method=order.payment_method.value if order.payment_method else None,
                    notes=order.notes,
                    created_at=order.created_at,
                    updated_at=order.updated_at,
                    paid_at=order.paid_at,
                )
                row.items = [_item_to_row(item, pos) for pos, item in enumerate(order.items)]
                session.add(row)
                session.flush()
            return _order_to_domain(row)
        except IntegrityError as e:
            message = str(e.orig)
            if order.table_id is not None and (ACTIVE_ORDER_INDEX in message or "orders.table_id" in message):
                logger.warning("Active order index rejected order %s for table %s", order.id, order.table_id)
                raise ActiveOrderExists(order.table_id) from e
            raise
        finally:
            session.close()

    def append_items(
        self, order_id: str, items: List[OrderItem], updated_at: datetime
    ) -> Optional[Order]:
        session = self._get_session()
        try:
            with session.begin():
                row, _ = self._lock_order(session, order_id)
                if row is None:
                    return None
                if row.status in _TERMINAL_VALUES:
                    raise OrderNotActive(row.id, OrderStatus(row.status))
                start = len(row.items)
                for offset, item in enumerate(items):
                    row.items.append(_item_to_row(item, start + offset))
                row.total = sum(i.unit_price * i.quantity for i in row.items)
                row.updated_at = updated_at
                session.flush()
            return _order_to_domain(row)
        finally:
            session.close()

    def mark_paid(
        self, order_id: str, method: PaymentMethod, paid_at: datetime
    ) -> Optional[Order]:
        session = self._get_session()
        try:
            with session.begin():
                row, _ = self._lock_order(session, order_id)
                if row is None:
                    return None
                if row.is_paid:
                    raise OrderAlreadyPaid(row.id)
                if row.status == OrderStatus.CANCELADO.value:
                    raise OrderNotActive(row.id, OrderStatus.CANCELADO)
                row.is_paid = True
                row.payment_method = method.value
                row.paid_at = paid_at
                row.updated_at = paid_at
            return _order_to_domain(row)
        finally:
            session.close()

    def set_order_status(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Optional[Order]:
        session = self._get_session()
        try:
            with session.begin():
                row, _ = self._lock_order(session, order_id)
                if row is None:
                    return None
                if row.status in _TERMINAL_VALUES:
                    raise OrderNotActive(row.id, OrderStatus(row.status))
                row.status = status.value
                row.updated_at = updated_at
            return _order_to_domain(row)
        finally:
            session.close()

    def close_order(
        self, order_id: str, status: OrderStatus, updated_at: datetime
    ) -> Tuple[Optional[Order], Optional[Table]]:
        session = self._get_session()
        try:
            with session.begin():
                row, table_row = self._lock_order(session, order_id)
                if row is None:
                    return None, None
                if row.status in _TERMINAL_VALUES:
                    raise OrderNotActive(row.id, OrderStatus(row.status))

                row.status = status.value
                row.updated_at = updated_at

                if table_row is not None:
                    remaining = self._count_active(session, table_row.id, exclude=row.id)
                    if remaining == 0 and table_row.status == TableStatus.OCUPADA.value:
                        table_row.status = TableStatus.LIVRE.value
                        table_row.assigned_user_id = None
                session.flush()
            return (
                _order_to_domain(row),
                _table_to_domain(table_row) if table_row is not None else None,
            )
        finally:
            session.close()

    def clear(self) -> None:
        """Clear all state. Wrapped in transaction."""
        session = self._get_session()
        try:
            with session.begin():
                session.execute(delete(OrderItemModel))
                session.execute(delete(OrderModel))
                session.execute(delete(TableModel))
        finally:
            session.close()

    def close(self) -> None:
        """Close database connections."""
        self.engine.dispose()
