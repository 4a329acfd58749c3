"""Order endpoints: creation, payment, kitchen status and closing."""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tableorders.api.dependencies import get_manager, result_response
from tableorders.domain import OrderCreationData
from tableorders.manager import OrderTableManager


router = APIRouter(prefix="/orders", tags=["orders"])


class PaymentRequest(BaseModel):
    """Request body for paying an order."""
    method: str
    amount_tendered: Optional[Decimal] = None


class StatusRequest(BaseModel):
    """Request body for a kitchen workflow transition."""
    status: str


@router.post("", summary="Create the order for a table")
def create_order(
    request: OrderCreationData,
    manager: OrderTableManager = Depends(get_manager),
):
    """
    Create an order and occupy its table.

    - **409** when the table already has an active order
    - **Returns**: the created order with its computed total
    """
    return result_response(manager.create_order(request), success_status=201)


@router.get("/{order_id}", summary="Get an order")
def get_order(order_id: str, manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.get_order(order_id))


@router.post("/{order_id}/payment", summary="Pay an order")
def process_payment(
    order_id: str,
    request: PaymentRequest,
    manager: OrderTableManager = Depends(get_manager),
):
    """
    Record payment (DINHEIRO, CARTAO, PIX, CARTAO_CREDITO, CARTAO_DEBITO).

    Payment does not close the order nor free the table.
    """
    return result_response(
        manager.process_payment(order_id, request.method, request.amount_tendered)
    )


@router.post("/{order_id}/status", summary="Advance the kitchen status of an order")
def update_status(
    order_id: str,
    request: StatusRequest,
    manager: OrderTableManager = Depends(get_manager),
):
    return result_response(manager.update_status(order_id, request.status))


@router.post("/{order_id}/receive", summary="Mark an order as delivered")
def mark_as_received(order_id: str, manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.mark_as_received(order_id))


@router.post("/{order_id}/cancel", summary="Cancel an order")
def cancel_order(order_id: str, manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.cancel_order(order_id))
