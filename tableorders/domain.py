"""
Domain records for the table/order lifecycle.

Tables, orders and order items are plain pydantic models shared by the
storage backends, the manager and the HTTP layer. Table and order statuses
are two separate enums so one can never be assigned where the other belongs.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

CENTS = Decimal("0.01")


def money(value: Any) -> Decimal:
    """Normalize a price/total to a two-place Decimal."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class TableStatus(str, Enum):
    LIVRE = "LIVRE"
    OCUPADA = "OCUPADA"
    RESERVADA = "RESERVADA"
    MANUTENCAO = "MANUTENCAO"


class OrderStatus(str, Enum):
    PENDENTE = "PENDENTE"
    CONFIRMADO = "CONFIRMADO"
    PREPARANDO = "PREPARANDO"
    PRONTO = "PRONTO"
    ENTREGUE = "ENTREGUE"
    CANCELADO = "CANCELADO"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATUSES


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.ENTREGUE, OrderStatus.CANCELADO})

# Kitchen workflow order; terminal states are reached through dedicated operations
ORDER_WORKFLOW = [
    OrderStatus.PENDENTE,
    OrderStatus.CONFIRMADO,
    OrderStatus.PREPARANDO,
    OrderStatus.PRONTO,
]


class PaymentMethod(str, Enum):
    DINHEIRO = "DINHEIRO"
    CARTAO = "CARTAO"
    PIX = "PIX"
    CARTAO_CREDITO = "CARTAO_CREDITO"
    CARTAO_DEBITO = "CARTAO_DEBITO"


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INFRA_ERROR = "INFRA_ERROR"


class Table(BaseModel):
    """A physical restaurant table."""
    id: str
    number: int
    capacity: int = 4
    status: TableStatus = TableStatus.LIVRE
    assigned_user_id: Optional[str] = None


class OrderItem(BaseModel):
    """A line of an order. `price` is the unit price captured when the item was added."""
    id: str
    order_id: str
    product_id: str
    quantity: int
    price: Decimal
    notes: Optional[str] = None
    customizations: Optional[Dict[str, Any]] = None

    @property
    def line_total(self) -> Decimal:
        return money(self.price * self.quantity)


class Order(BaseModel):
    """A table (or counter) order with its items."""
    id: str
    table_id: Optional[str] = None
    staff_user_id: str
    status: OrderStatus = OrderStatus.PENDENTE
    items: List[OrderItem] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")
    is_paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def compute_total(self) -> Decimal:
        """Sum of price * quantity over the current items."""
        return money(sum((item.line_total for item in self.items), Decimal("0")))


class TableState(BaseModel):
    """Reconciliation view of a table and its non-terminal orders."""
    table: Table
    active_orders: List[Order]
    should_be_occupied: bool
    status_matches: bool


class PaymentResult(BaseModel):
    order_id: str
    amount: Decimal
    method: PaymentMethod
    amount_tendered: Optional[Decimal] = None
    paid_at: datetime


# ---------- Inputs ----------
class OrderItemInput(BaseModel):
    """Item as submitted by staff. Values are checked by the manager, not here."""
    product_id: str
    quantity: int
    price: Decimal
    notes: Optional[str] = None
    customizations: Optional[Dict[str, Any]] = None


class OrderCreationData(BaseModel):
    items: List[OrderItemInput] = Field(default_factory=list)
    table_id: str
    staff_user_id: str
    notes: Optional[str] = None


# ---------- Result ----------
T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """
    Outcome of a manager operation.

    Business-rule failures are returned as `success=False` with a readable
    message and an `ErrorKind`; callers branch on `success`.
    """
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, data: Any) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "Result":
        return cls(success=False, error=message, kind=kind)
