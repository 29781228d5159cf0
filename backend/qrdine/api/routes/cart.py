"""Shared cart routes."""

from fastapi import APIRouter, Query, Request

from qrdine.core.rate_limit import limiter, session_limiter
from qrdine.core.responses import success_response
from qrdine.db.session import DbSession
from qrdine.schemas.cart import CartItemCreate, CartItemUpdate
from qrdine.services.cart_service import CartService
from qrdine.services.realtime import EventBusDep
from qrdine.services.serializers import cart_item_to_dict

router = APIRouter()


@router.get("")
@session_limiter.limit("120/minute")
def get_cart(request: Request, db: DbSession, events: EventBusDep, session_id: int = Query(..., gt=0)):
    return success_response(CartService(db, events).get_cart(session_id))


@router.post("")
@limiter.limit("60/minute")
def add_to_cart(request: Request, db: DbSession, events: EventBusDep, body: CartItemCreate):
    """Add an item, merging with an identical line already in the cart."""
    item = CartService(db, events).add_item(
        session_id=body.session_id,
        menu_item_id=body.menu_item_id,
        quantity=body.quantity,
        variant_id=body.variant_id,
        add_ons=[a.model_dump() for a in body.add_ons],
        special_instructions=body.special_instructions,
    )
    return success_response(cart_item_to_dict(item))


@router.put("/{item_id}")
@limiter.limit("60/minute")
def update_cart_item(request: Request, db: DbSession, events: EventBusDep, item_id: int, body: CartItemUpdate):
    item = CartService(db, events).update_quantity(item_id, body.quantity)
    if item is None:
        return success_response(None, message="Item removed from cart")
    return success_response(cart_item_to_dict(item))


@router.delete("/{item_id}")
@limiter.limit("60/minute")
def remove_cart_item(request: Request, db: DbSession, events: EventBusDep, item_id: int):
    CartService(db, events).remove_item(item_id)
    return success_response(None, message="Item removed from cart")


@router.delete("")
@session_limiter.limit("30/minute")
def clear_cart(request: Request, db: DbSession, events: EventBusDep, session_id: int = Query(..., gt=0)):
    removed = CartService(db, events).clear(session_id)
    return success_response({"removed": removed}, message="Cart cleared")
