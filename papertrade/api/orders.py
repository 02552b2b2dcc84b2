"""Orders API — place, inspect, cancel and fill orders."""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from fastapi import status as http_status

from papertrade.api.deps import get_current_user_id, get_order_lifecycle, unwrap
from papertrade.engine.order_lifecycle import OrderLifecycle
from papertrade.schemas.order import CancelRequest, FillRequest, OrderCreate, OrderRead, OrderSummary

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("", response_model=list[OrderRead])
def list_orders(
    status: Literal["PENDING", "OPEN", "FILLED", "CANCELLED", "REJECTED"] | None = None,
    type: Literal["BUY", "SELL"] | None = None,
    order_type: Literal["MARKET", "LIMIT"] | None = None,
    symbol: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    return unwrap(orders.list_orders(user_id, status, type, order_type, symbol, limit, offset))


@router.get("/summary", response_model=OrderSummary)
def order_summary(
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    return unwrap(orders.order_summary(user_id))


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    return unwrap(orders.get_order(user_id, order_id))


@router.post("", response_model=OrderRead, status_code=http_status.HTTP_201_CREATED)
def place_order(
    body: OrderCreate,
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    """MARKET orders execute immediately; LIMIT orders wait for a matching price."""
    return unwrap(orders.place(user_id, body))


@router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: int,
    body: CancelRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    reason = body.reason if body else None
    return unwrap(orders.cancel(user_id, order_id, reason))


@router.post("/{order_id}/fill", response_model=OrderRead)
def fill_order(
    order_id: int,
    body: FillRequest,
    user_id: str = Depends(get_current_user_id),
    orders: OrderLifecycle = Depends(get_order_lifecycle),
):
    return unwrap(orders.fill(user_id, order_id, body.execution_price))
