"""
Relational database models for tableorders.

These models back SQLAlchemyStorage and are used by Alembic for migration
generation. Money is stored as integer cents.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import declarative_base, relationship

from tableorders.domain import TERMINAL_ORDER_STATUSES, money
from tableorders.utils.time_utils import now_local_naive

Base = declarative_base()

ACTIVE_ORDER_INDEX = "uq_orders_one_active_per_table"
_ACTIVE_ORDER_WHERE = text(
    "status NOT IN ({})".format(", ".join(f"'{s.value}'" for s in sorted(TERMINAL_ORDER_STATUSES)))
)


def to_cents(amount: Decimal) -> int:
    return int(money(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return money(Decimal(cents or 0) / 100)


class TableModel(Base):
    """Restaurant table and its occupancy status."""

    __tablename__ = "tables"

    id = Column(String(64), primary_key=True)
    number = Column(Integer, nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=4)
    status = Column(String(20), nullable=False, default="LIVRE")  # LIVRE, OCUPADA, RESERVADA, MANUTENCAO
    assigned_user_id = Column(String(64), nullable=True)

    __table_args__ = (
        Index("idx_tables_status", "status"),
    )

    orders = relationship("OrderModel", back_populates="table")

    def __repr__(self):
        return f"<TableModel(id={self.id}, number={self.number}, status={self.status})>"


class OrderModel(Base):
    """Order placed for a table (table_id is null for counter orders)."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    table_id = Column(String(64), ForeignKey("tables.id"), nullable=True)
    staff_user_id = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False, default="PENDENTE")
    total = Column(Integer, nullable=False, default=0)  # Total in cents
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_method = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=now_local_naive, nullable=False)
    updated_at = Column(DateTime, default=now_local_naive, nullable=False)
    paid_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_orders_table_status", "table_id", "status"),
        Index("idx_orders_created", "created_at"),
        # At most one non-terminal order per table
        Index(
            ACTIVE_ORDER_INDEX,
            "table_id",
            unique=True,
            sqlite_where=_ACTIVE_ORDER_WHERE,
            postgresql_where=_ACTIVE_ORDER_WHERE,
        ),
    )

    table = relationship("TableModel", back_populates="orders")
    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, table_id={self.table_id}, status={self.status})>"


class OrderItemModel(Base):
    """Individual item in an order, priced at the time it was added."""

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)  # Price in cents
    notes = Column(Text, nullable=True)
    customizations = Column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_order_items_product", "product_id"),
    )

    order = relationship("OrderModel", back_populates="items")

    def __repr__(self):
        return f"<OrderItemModel(id={self.id}, product_id={self.product_id}, qty={self.quantity})>"
