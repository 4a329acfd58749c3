"""
Table/order lifecycle manager.

Coordinates table occupancy with the orders placed on it:

1. Table selection
2. Order creation (one active order per table)
3. Adding products to the active order
4. Payment
5. Delivery / cancellation, releasing the table when its last order closes
6. Reconciliation between table status and active orders

Business-rule failures come back as `Result.fail(...)`. The storage re-checks
order state inside its own transaction (another process may have changed it)
and its ActiveOrderExists, OrderNotActive and OrderAlreadyPaid become
failed results here; any other storage exception propagates to the caller.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, List, Optional, Sequence, Union
from uuid import uuid4

from pydantic import ValidationError

from tableorders.catalog import ProductCatalog
from tableorders.domain import (
    ORDER_WORKFLOW,
    ErrorKind,
    Order,
    OrderCreationData,
    OrderItem,
    OrderItemInput,
    OrderStatus,
    PaymentMethod,
    PaymentResult,
    Result,
    TableState,
    TableStatus,
    money,
)
from tableorders.storage.base import ActiveOrderExists, OrderAlreadyPaid, OrderNotActive, Storage
from tableorders.utils.time_utils import now_local_naive

logger = logging.getLogger(__name__)

MSG_INVALID_TABLE = "mesa inválida"
MSG_TABLE_NOT_FOUND = "mesa não encontrada"
MSG_TABLE_HAS_ACTIVE_ORDER = "mesa já possui pedido ativo"
MSG_NO_ACTIVE_ORDER = "mesa não possui pedido ativo"
MSG_TABLE_IN_MAINTENANCE = "mesa em manutenção"
MSG_ITEMS_REQUIRED = "itens do pedido são obrigatórios"
MSG_STAFF_REQUIRED = "ID do staff é obrigatório"
MSG_ORDER_NOT_FOUND = "pedido não encontrado"
MSG_ALREADY_PAID = "pedido já foi pago"
MSG_CANCELLED_NOT_PAYABLE = "pedido cancelado não pode ser pago"
MSG_INVALID_PAYMENT_METHOD = "método de pagamento inválido"
MSG_INVALID_AMOUNT = "valor recebido inválido"
MSG_INVALID_STATUS = "status inválido"

ItemsInput = Sequence[Union[OrderItemInput, dict]]


class OrderTableManager:
    """
    Entry point for every table/order operation.

    Work on a table runs under `storage.table_lock(table_id)`; work on an
    order locks the order's table (or the order itself when it has none).
    """

    def __init__(self, storage: Storage, catalog: Optional[ProductCatalog] = None):
        self.storage = storage
        self.catalog = catalog

    # ---------- Helpers ----------
    @staticmethod
    def _invalid(message: str) -> Result:
        logger.warning("Rejected: %s", message)
        return Result.fail(ErrorKind.VALIDATION_ERROR, message)

    @staticmethod
    def _not_found(message: str) -> Result:
        logger.warning("Not found: %s", message)
        return Result.fail(ErrorKind.NOT_FOUND, message)

    @staticmethod
    def _conflict(message: str) -> Result:
        logger.warning("Conflict: %s", message)
        return Result.fail(ErrorKind.CONFLICT, message)

    @contextmanager
    def _order_scope(self, order_id: str) -> Iterator[Optional[Order]]:
        """Lock the order's table and yield a fresh copy of the order (or None)."""
        order = self.storage.get_order(order_id) if order_id else None
        if order is None:
            yield None
            return
        with self.storage.table_lock(order.table_id or order.id):
            yield self.storage.get_order(order_id)

    def _coerce_items(self, items: Optional[ItemsInput]) -> List[OrderItemInput]:
        return [
            item if isinstance(item, OrderItemInput) else OrderItemInput.model_validate(item)
            for item in (items or [])
        ]

    def _check_items(self, items: List[OrderItemInput]) -> Optional[Result]:
        """Validate submitted items; returns a failed Result or None when all are fine."""
        if not items:
            return self._invalid(MSG_ITEMS_REQUIRED)
        for position, item in enumerate(items, start=1):
            if not item.product_id or not item.product_id.strip():
                return self._invalid(f"item {position}: produto inválido")
            if item.quantity <= 0:
                return self._invalid(f"item {position}: quantidade deve ser positiva")
            if item.price < 0:
                return self._invalid(f"item {position}: preço não pode ser negativo")
            if self.catalog is not None:
                product = self.catalog.get_product(item.product_id)
                if product is None:
                    return self._not_found(f"produto {item.product_id} não encontrado")
                if not product.is_available:
                    return self._invalid(f"produto {product.name} não está disponível")
        return None

    @staticmethod
    def _build_items(order_id: str, items: List[OrderItemInput]) -> List[OrderItem]:
        return [
            OrderItem(
                id=str(uuid4()),
                order_id=order_id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=money(item.price),
                notes=item.notes,
                customizations=item.customizations,
            )
            for item in items
        ]

    def _table_state(self, table_id: str) -> Result:
        if not table_id:
            return self._invalid(MSG_INVALID_TABLE)
        with self.storage.table_lock(table_id):
            table = self.storage.get_table(table_id)
            if table is None:
                return self._not_found(MSG_TABLE_NOT_FOUND)
            active_orders = self.storage.get_orders(table_id, active_only=True)
        should_be_occupied = len(active_orders) > 0
        state = TableState(
            table=table,
            active_orders=active_orders,
            should_be_occupied=should_be_occupied,
            status_matches=(table.status == TableStatus.OCUPADA) == should_be_occupied,
        )
        return Result.ok(state)

    # ---------- 1. Table selection ----------
    def select_table(self, table_id: str, staff_user_id: Optional[str] = None) -> Result:
        """
        Return the table for the staff member who picked it.

        A free, unassigned table is assigned to `staff_user_id`; an occupied
        or already assigned table is returned unchanged.
        """
        logger.info("Selecting table %s for staff %s", table_id, staff_user_id)
        if not table_id:
            return self._invalid(MSG_INVALID_TABLE)

        with self.storage.table_lock(table_id):
            table = self.storage.get_table(table_id)
            if table is None:
                return self._not_found(MSG_TABLE_NOT_FOUND)
            if (
                staff_user_id
                and table.status == TableStatus.LIVRE
                and table.assigned_user_id is None
            ):
                table.assigned_user_id = staff_user_id
                table = self.storage.save_table(table)
        return Result.ok(table)

    # ---------- 2. Order creation ----------
    def create_order(self, data: Union[OrderCreationData, dict]) -> Result:
        """
        Create the order for a table and occupy the table.

        Fails with CONFLICT when the table already has a non-terminal order;
        orders are never merged silently.
        """
        try:
            if not isinstance(data, OrderCreationData):
                data = OrderCreationData.model_validate(data)
            items = self._coerce_items(data.items)
        except ValidationError as e:
            return self._invalid(f"dados do pedido inválidos: {e.errors()[0]['msg']}")

        logger.info("Creating order for table %s (%d items)", data.table_id, len(items))
        if not data.table_id or not data.table_id.strip():
            return self._invalid(MSG_INVALID_TABLE)
        if not data.staff_user_id:
            return self._invalid(MSG_STAFF_REQUIRED)
        failure = self._check_items(items)
        if failure is not None:
            return failure

        with self.storage.table_lock(data.table_id):
            table = self.storage.get_table(data.table_id)
            if table is None:
                return self._not_found(MSG_TABLE_NOT_FOUND)
            if table.status == TableStatus.MANUTENCAO:
                return self._conflict(MSG_TABLE_IN_MAINTENANCE)
            if self.storage.get_orders(data.table_id, active_only=True):
                return self._conflict(MSG_TABLE_HAS_ACTIVE_ORDER)

            now = now_local_naive()
            order_id = str(uuid4())
            order = Order(
                id=order_id,
                table_id=data.table_id,
                staff_user_id=data.staff_user_id,
                status=OrderStatus.PENDENTE,
                items=self._build_items(order_id, items),
                notes=data.notes,
                created_at=now,
                updated_at=now,
            )
            order.total = order.compute_total()
            try:
                created = self.storage.create_order(order)
            except ActiveOrderExists:
                return self._conflict(MSG_TABLE_HAS_ACTIVE_ORDER)

        logger.info("Order %s created, table %s occupied (total %s)", created.id, data.table_id, created.total)
        return Result.ok(created)

    # ---------- 3. Adding products ----------
    def add_products_to_order(self, table_id: str, items: Optional[ItemsInput]) -> Result:
        """Append items to the table's active order and recompute its total."""
        logger.info("Adding products to active order of table %s", table_id)
        if not table_id:
            return self._invalid(MSG_INVALID_TABLE)
        try:
            parsed = self._coerce_items(items)
        except ValidationError as e:
            return self._invalid(f"itens inválidos: {e.errors()[0]['msg']}")
        failure = self._check_items(parsed)
        if failure is not None:
            return failure

        with self.storage.table_lock(table_id):
            if self.storage.get_table(table_id) is None:
                return self._not_found(MSG_TABLE_NOT_FOUND)
            active_orders = self.storage.get_orders(table_id, active_only=True)
            if not active_orders:
                return self._not_found(MSG_NO_ACTIVE_ORDER)
            order = active_orders[0]
            try:
                updated = self.storage.append_items(
                    order.id, self._build_items(order.id, parsed), now_local_naive()
                )
            except OrderNotActive:
                return self._not_found(MSG_NO_ACTIVE_ORDER)

        logger.info("Order %s now has %d items (total %s)", updated.id, len(updated.items), updated.total)
        return Result.ok(updated)

    # ---------- 4. Payment ----------
    def process_payment(
        self,
        order_id: str,
        method: Union[PaymentMethod, str],
        amount_tendered: Optional[Any] = None,
    ) -> Result:
        """
        Record payment for an order.

        Payment is independent of fulfilment: order status and table status
        are left alone. `amount_tendered` is informational and echoed back.
        """
        logger.info("Processing payment for order %s with %s", order_id, method)
        try:
            payment_method = PaymentMethod(method.upper() if isinstance(method, str) else method)
        except (ValueError, AttributeError):
            return self._invalid(MSG_INVALID_PAYMENT_METHOD)

        tendered: Optional[Decimal] = None
        if amount_tendered is not None:
            try:
                tendered = money(amount_tendered)
            except (InvalidOperation, ValueError, TypeError):
                return self._invalid(MSG_INVALID_AMOUNT)
            if tendered < 0:
                return self._invalid(MSG_INVALID_AMOUNT)

        with self._order_scope(order_id) as order:
            if order is None:
                return self._not_found(MSG_ORDER_NOT_FOUND)
            if order.is_paid:
                return self._conflict(MSG_ALREADY_PAID)
            if order.status == OrderStatus.CANCELADO:
                return self._conflict(MSG_CANCELLED_NOT_PAYABLE)
            try:
                paid = self.storage.mark_paid(order_id, payment_method, now_local_naive())
            except OrderAlreadyPaid:
                return self._conflict(MSG_ALREADY_PAID)
            except OrderNotActive:
                return self._conflict(MSG_CANCELLED_NOT_PAYABLE)

        logger.info("Payment recorded for order %s: %s %s", paid.id, payment_method.value, paid.total)
        return Result.ok(
            PaymentResult(
                order_id=paid.id,
                amount=paid.total,
                method=payment_method,
                amount_tendered=tendered,
                paid_at=paid.paid_at,
            )
        )

    # ---------- 5. Closing orders ----------
    def _close_order(self, order_id: str, status: OrderStatus) -> Result:
        with self._order_scope(order_id) as order:
            if order is None:
                return self._not_found(MSG_ORDER_NOT_FOUND)
            if not order.is_active:
                return self._conflict(f"pedido já está {order.status.value.lower()}")
            try:
                closed, table = self.storage.close_order(order_id, status, now_local_naive())
            except OrderNotActive as e:
                return self._conflict(f"pedido já está {e.status.value.lower()}")

        if table is not None and table.status == TableStatus.LIVRE:
            logger.info("Order %s %s, table %s released", closed.id, status.value, table.id)
        else:
            logger.info("Order %s %s", closed.id, status.value)
        return Result.ok(closed)

    def mark_as_received(self, order_id: str) -> Result:
        """Deliver the order (ENTREGUE) and free its table if nothing else is open."""
        logger.info("Marking order %s as received", order_id)
        return self._close_order(order_id, OrderStatus.ENTREGUE)

    def cancel_order(self, order_id: str) -> Result:
        """Cancel the order (CANCELADO); a second cancel is a CONFLICT."""
        logger.info("Cancelling order %s", order_id)
        return self._close_order(order_id, OrderStatus.CANCELADO)

    def update_status(self, order_id: str, status: Union[OrderStatus, str]) -> Result:
        """Move an order forward through the kitchen workflow."""
        try:
            target = OrderStatus(status.upper() if isinstance(status, str) else status)
        except (ValueError, AttributeError):
            return self._invalid(MSG_INVALID_STATUS)
        if target == OrderStatus.ENTREGUE:
            return self.mark_as_received(order_id)
        if target == OrderStatus.CANCELADO:
            return self.cancel_order(order_id)

        logger.info("Updating order %s to %s", order_id, target.value)
        with self._order_scope(order_id) as order:
            if order is None:
                return self._not_found(MSG_ORDER_NOT_FOUND)
            if not order.is_active:
                return self._conflict(f"pedido já está {order.status.value.lower()}")
            if ORDER_WORKFLOW.index(target) <= ORDER_WORKFLOW.index(order.status):
                return self._conflict(
                    f"não é possível mudar status de {order.status.value} para {target.value}"
                )
            try:
                updated = self.storage.set_order_status(order_id, target, now_local_naive())
            except OrderNotActive as e:
                return self._conflict(f"pedido já está {e.status.value.lower()}")
        return Result.ok(updated)

    # ---------- 6. Reconciliation ----------
    def check_status(self, table_id: str) -> Result:
        """Compare table status with its active orders. Never corrects anything."""
        logger.info("Checking status of table %s", table_id)
        result = self._table_state(table_id)
        if result.success and not result.data.status_matches:
            logger.warning(
                "Table %s is %s but has %d active orders",
                table_id, result.data.table.status.value, len(result.data.active_orders),
            )
        return result

    def release_table(self, table_id: str) -> Result:
        """Force the table to LIVRE. Orders are not touched."""
        logger.info("Releasing table %s manually", table_id)
        if not table_id:
            return self._invalid(MSG_INVALID_TABLE)
        with self.storage.table_lock(table_id):
            table = self.storage.get_table(table_id)
            if table is None:
                return self._not_found(MSG_TABLE_NOT_FOUND)
            active = self.storage.get_orders(table_id, active_only=True)
            if active:
                logger.warning("Table %s released with %d active orders", table_id, len(active))
            table.status = TableStatus.LIVRE
            table.assigned_user_id = None
            table = self.storage.save_table(table)
        return Result.ok(table)

    def get_state(self, table_id: str) -> Result:
        """Table plus its active orders, for display."""
        return self._table_state(table_id)

    # ---------- Reads ----------
    def list_tables(self) -> Result:
        return Result.ok(self.storage.list_tables())

    def get_order(self, order_id: str) -> Result:
        order = self.storage.get_order(order_id) if order_id else None
        if order is None:
            return self._not_found(MSG_ORDER_NOT_FOUND)
        return Result.ok(order)
