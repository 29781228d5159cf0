"""Order routes - placement by diners, status updates by the kitchen."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import list_response, success_response
from qrdine.db.session import DbSession
from qrdine.models.order import OrderStatus
from qrdine.schemas.order import OrderCreate, OrderStatusUpdate
from qrdine.services.order_service import OrderService
from qrdine.services.realtime import EventBusDep
from qrdine.services.serializers import order_to_dict

router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
def list_orders(
    request: Request,
    db: DbSession,
    events: EventBusDep,
    restaurant_id: Optional[int] = None,
    session_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    limit: int = Query(50, ge=1, le=200),
):
    """Newest orders first, filtered for the dashboard or a diner's session."""
    orders = OrderService(db, events).list_orders(
        restaurant_id=restaurant_id, session_id=session_id, status=status, limit=limit
    )
    return list_response([order_to_dict(o) for o in orders])


@router.post("", status_code=201)
@limiter.limit("20/minute")
def place_order(request: Request, db: DbSession, events: EventBusDep, body: OrderCreate):
    items = None
    if body.items is not None:
        items = [
            {
                "menu_item_id": i.menu_item_id,
                "quantity": i.quantity,
                "variant_id": i.variant_id,
                "add_ons": [a.model_dump() for a in i.add_ons],
                "special_instructions": i.special_instructions,
            }
            for i in body.items
        ]
    order = OrderService(db, events).place_order(body.session_id, items, body.special_instructions)
    return success_response(order_to_dict(order), message="Order placed")


@router.get("/{order_id}")
@limiter.limit("60/minute")
def get_order(request: Request, db: DbSession, events: EventBusDep, order_id: int):
    return success_response(order_to_dict(OrderService(db, events).get_order(order_id)))


@router.put("/{order_id}/status")
@limiter.limit("60/minute")
def update_order_status(
    request: Request, db: DbSession, events: EventBusDep, order_id: int, body: OrderStatusUpdate
):
    order = OrderService(db, events).update_status(order_id, body.status, body.reason)
    return success_response(order_to_dict(order))
