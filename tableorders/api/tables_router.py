"""Table endpoints: selection, active-order top-ups and reconciliation."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tableorders.api.dependencies import get_manager, result_response
from tableorders.domain import OrderItemInput
from tableorders.manager import OrderTableManager


router = APIRouter(prefix="/tables", tags=["tables"])


class SelectTableRequest(BaseModel):
    """Request body for selecting a table."""
    staff_user_id: Optional[str] = None


class AddItemsRequest(BaseModel):
    """Request body for adding products to a table's active order."""
    items: List[OrderItemInput] = []


@router.get("", summary="List tables")
def list_tables(manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.list_tables())


@router.post("/{table_id}/select", summary="Select a table")
def select_table(
    table_id: str,
    request: SelectTableRequest,
    manager: OrderTableManager = Depends(get_manager),
):
    """
    Select a table for a staff member.

    A free, unassigned table gets assigned to the staff member; selection
    never changes the occupancy status.
    """
    return result_response(manager.select_table(table_id, request.staff_user_id))


@router.post("/{table_id}/orders/items", summary="Add products to the table's active order")
def add_items(
    table_id: str,
    request: AddItemsRequest,
    manager: OrderTableManager = Depends(get_manager),
):
    """
    Append products to the active order of a table.

    - **404** when the table has no active order
    - **Returns**: the updated order with its new total
    """
    return result_response(manager.add_products_to_order(table_id, request.items))


@router.get("/{table_id}/status", summary="Check table status against its active orders")
def check_status(table_id: str, manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.check_status(table_id))


@router.post("/{table_id}/release", summary="Force a table back to LIVRE")
def release_table(table_id: str, manager: OrderTableManager = Depends(get_manager)):
    """
    Manual override for a table whose status drifted.

    Orders referencing the table are not touched.
    """
    return result_response(manager.release_table(table_id))


@router.get("/{table_id}/state", summary="Table with its active orders")
def get_state(table_id: str, manager: OrderTableManager = Depends(get_manager)):
    return result_response(manager.get_state(table_id))
