"""Order Orchestrator.

Places orders from the shared cart (or an explicit item list), prices them
from the live catalog, and moves them through the kitchen status machine:

    PLACED -> PREPARING -> READY -> SERVED
    PLACED | PREPARING -> CANCELLED   (reason required)

Placement is one transaction: the order and its lines are inserted, the
session total is incremented atomically, and the cart lines the order was
built from are consumed. Status changes are compare-and-swap updates on
the status that was read, so two staff members acting on the same ticket
cannot both win.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from qrdine.core.config import settings
from qrdine.core.errors import (
    EmptyOrder,
    InvalidTransition,
    MenuItemUnavailable,
    OrderNotFound,
    ReasonRequired,
    SessionNotActive,
    StaleState,
    ValidationError,
)
from qrdine.db.base import utcnow
from qrdine.db.session import transaction
from qrdine.models.cart import CartItem
from qrdine.models.order import Order, OrderItem, OrderStatus
from qrdine.models.restaurant import Table
from qrdine.models.session import SessionStatus, TableSession
from qrdine.services import pricing, realtime
from qrdine.services.catalog_service import CatalogService, resolve_add_ons, resolve_variant
from qrdine.services.realtime import EventBus
from qrdine.services.serializers import cart_item_to_dict
from qrdine.services.session_service import get_active_session

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    OrderStatus.PLACED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.SERVED},
    OrderStatus.SERVED: set(),
    OrderStatus.CANCELLED: set(),
}

# Column stamped the first time an order enters each status
STATUS_TIMESTAMPS = {
    OrderStatus.PREPARING: "prepared_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.SERVED: "served_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, set())


class OrderService:
    """Order placement and kitchen workflow."""

    def __init__(self, db: Session, events: EventBus):
        self.db = db
        self.events = events
        self.catalog = CatalogService(db)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    def place_order(
        self,
        session_id: int,
        items: Optional[List[Dict[str, Any]]] = None,
        special_instructions: Optional[str] = None,
    ) -> Order:
        """Submit an order to the kitchen.

        ``items`` entries carry ``menu_item_id``, ``quantity``, ``variant_id``,
        ``add_ons`` and ``special_instructions``. When ``items`` is None the
        session's cart is ordered as-is. Client prices are never trusted.

        Only the cart lines read at the start of placement are consumed. A line
        added by another device meanwhile stays in the cart, and units merged
        into a consumed line meanwhile are left behind on it.
        """
        from_cart = items is None
        with transaction(self.db):
            session = get_active_session(self.db, session_id, for_update=True)
            cart_lines = self._cart_lines(session.id)
            snapshot = [(c.id, c.quantity) for c in cart_lines]
            if from_cart:
                items = [self._cart_line_as_entry(c) for c in cart_lines]
            if not items:
                raise EmptyOrder("Order must contain at least one item")

            lines = [self._price_line(session, entry) for entry in items]
            priced = [
                pricing.PricedLine(
                    unit_price=line["unit_price"],
                    quantity=line["quantity"],
                    preparation_time=line.pop("preparation_time"),
                )
                for line in lines
            ]
            total = pricing.order_total(priced)
            estimate = pricing.estimate_preparation_time(
                priced,
                settings.default_preparation_minutes,
                settings.min_preparation_minutes,
            )

            order = Order(
                session_id=session.id,
                restaurant_id=session.restaurant_id,
                table_id=session.table_id,
                status=OrderStatus.PLACED,
                total_amount=total,
                estimated_preparation_time=estimate,
                special_instructions=special_instructions,
                placed_at=utcnow(),
            )
            order.items = [OrderItem(**line) for line in lines]
            self.db.add(order)
            self.db.flush()

            result = self.db.execute(
                update(TableSession)
                .where(TableSession.id == session.id, TableSession.status == SessionStatus.ACTIVE)
                .values(total_amount=TableSession.total_amount + total)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise SessionNotActive(
                    f"Session {session.id} closed before the order was placed",
                    details={"session_id": session.id},
                )
            self._clear_cart(session.id, snapshot, strict=from_cart)

        table_number = self._table_number(order.table_id)
        logger.info(
            f"Order {order.id} placed: session={session_id} table={table_number} "
            f"total={total} eta={estimate}m"
        )
        realtime.emit_order_placed(
            self.events,
            order_id=order.id,
            session_id=order.session_id,
            restaurant_id=order.restaurant_id,
            table_number=table_number,
            status=order.status.value,
            estimated_time=order.estimated_preparation_time,
            total_amount=float(order.total_amount),
        )
        realtime.emit_cart_update(
            self.events,
            session_id,
            [cart_item_to_dict(c) for c in self._cart_lines(session_id)],
        )
        return order

    def _cart_lines(self, session_id: int) -> List[CartItem]:
        return (
            self.db.query(CartItem)
            .filter(CartItem.session_id == session_id)
            .order_by(CartItem.id)
            .all()
        )

    @staticmethod
    def _cart_line_as_entry(line: CartItem) -> Dict[str, Any]:
        return {
            "menu_item_id": line.menu_item_id,
            "quantity": line.quantity,
            "variant_id": line.selected_variant.get("id") if line.selected_variant else None,
            "add_ons": [
                {"add_on_id": a["add_on_id"], "quantity": a["quantity"]}
                for a in (line.selected_add_ons or [])
            ],
            "special_instructions": line.special_instructions,
        }

    def _price_line(self, session: TableSession, entry: Dict[str, Any]) -> Dict[str, Any]:
        quantity = int(entry.get("quantity", 1))
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})
        menu_item = self.catalog.get_menu_item(entry["menu_item_id"])
        if menu_item.restaurant_id != session.restaurant_id or not menu_item.is_available:
            raise MenuItemUnavailable(
                f"{menu_item.name} is not available",
                details={"menu_item_id": menu_item.id},
            )
        variant = resolve_variant(menu_item, entry.get("variant_id"))
        add_ons = resolve_add_ons(menu_item, entry.get("add_ons") or [])
        return {
            "menu_item_id": menu_item.id,
            "name": menu_item.name,
            "quantity": quantity,
            "selected_variant": variant,
            "selected_add_ons": add_ons,
            "special_instructions": entry.get("special_instructions"),
            "unit_price": pricing.item_price(menu_item.price, variant, add_ons),
            "preparation_time": menu_item.preparation_time,
        }

    def _clear_cart(self, session_id: int, snapshot: List[Tuple[int, int]], strict: bool) -> None:
        """Consume the cart lines as they were read, ``(line id, quantity)``.

        A line still at its read quantity is deleted. A line that grew since is
        reduced by the read quantity. With ``strict`` (the order was built from
        the cart), a line that shrank or vanished raises ``StaleState``.
        """
        for line_id, quantity in snapshot:
            deleted = (
                self.db.query(CartItem)
                .filter(CartItem.id == line_id, CartItem.quantity == quantity)
                .delete(synchronize_session=False)
            )
            if deleted:
                continue
            result = self.db.execute(
                update(CartItem)
                .where(CartItem.id == line_id, CartItem.quantity > quantity)
                .values(quantity=CartItem.quantity - quantity, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0 and strict:
                raise StaleState(
                    "The cart changed while the order was being placed, review it and retry",
                    details={"session_id": session_id, "cart_item_id": line_id},
                )

    def _table_number(self, table_id: int) -> Optional[str]:
        table = self.db.query(Table).filter(Table.id == table_id).first()
        return table.number if table else None

    # ------------------------------------------------------------------
    # Status machine
    # ------------------------------------------------------------------

    def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        reason: Optional[str] = None,
    ) -> Order:
        """Advance an order. Timestamps are stamped once and never overwritten."""
        new_status = OrderStatus(new_status)
        order = self.get_order(order_id)
        current = order.status

        if not can_transition(current, new_status):
            raise InvalidTransition(
                f"Cannot change order from {current.value} to {new_status.value}",
                details={"order_id": order_id, "from": current.value, "to": new_status.value},
            )
        if new_status == OrderStatus.CANCELLED and not (reason and reason.strip()):
            raise ReasonRequired("A reason is required to cancel an order")

        now = utcnow()
        values: Dict[str, Any] = {"status": new_status}
        stamp = STATUS_TIMESTAMPS.get(new_status)
        if stamp and getattr(order, stamp) is None:
            values[stamp] = now
        if new_status == OrderStatus.CANCELLED:
            values["cancellation_reason"] = reason.strip()

        with transaction(self.db):
            result = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise StaleState(
                    f"Order {order_id} was changed by someone else, reload and retry",
                    details={"order_id": order_id, "expected": current.value},
                )

        self.db.refresh(order)
        table_number = self._table_number(order.table_id)
        logger.info(f"Order {order_id}: {current.value} -> {new_status.value}")
        realtime.emit_order_status(
            self.events,
            order_id=order.id,
            session_id=order.session_id,
            restaurant_id=order.restaurant_id,
            table_number=table_number,
            status=order.status.value,
            estimated_time=order.estimated_preparation_time,
        )
        return order

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: int) -> Order:
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def list_orders(
        self,
        restaurant_id: Optional[int] = None,
        session_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        limit: int = 50,
    ) -> List[Order]:
        """Newest first."""
        query = self.db.query(Order)
        if restaurant_id is not None:
            query = query.filter(Order.restaurant_id == restaurant_id)
        if session_id is not None:
            query = query.filter(Order.session_id == session_id)
        if status is not None:
            query = query.filter(Order.status == OrderStatus(status))
        return query.order_by(Order.placed_at.desc(), Order.id.desc()).limit(limit).all()
