"""Cart Aggregator.

Every device at a table edits one shared cart. Adding an item that is already
in the cart with the same configuration (instructions, variant, add-ons)
increases the quantity of the existing line instead of adding a new one.

Line identity is a digest stored in ``CartItem.merge_key``, unique per
session. Quantities are incremented with ``quantity = quantity + :q`` so two
simultaneous adds never lose an update, and an insert that loses a race on
the unique key is retried as a merge.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrdine.core.config import settings
from qrdine.core.errors import CartItemNotFound, ConcurrencyConflict, MenuItemUnavailable, ValidationError
from qrdine.db.base import utcnow
from qrdine.db.session import transaction
from qrdine.models.cart import CartItem
from qrdine.services import pricing, realtime
from qrdine.services.catalog_service import CatalogService, resolve_add_ons, resolve_variant
from qrdine.services.realtime import EventBus
from qrdine.services.serializers import cart_item_to_dict
from qrdine.services.session_service import get_active_session, get_session_or_404

logger = logging.getLogger(__name__)


def compute_merge_key(
    menu_item_id: int,
    special_instructions: Optional[str],
    variant: Optional[Dict[str, Any]],
    add_ons: List[Dict[str, Any]],
) -> str:
    """Stable digest of a cart line's identity."""
    identity = {
        "menu_item_id": menu_item_id,
        "instructions": (special_instructions or "").strip(),
        "variant": str(variant["id"]) if variant else None,
        "add_ons": sorted((str(a["add_on_id"]), int(a["quantity"])) for a in add_ons),
    }
    canonical = json.dumps(identity, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()


class CartService:
    """Collaborative cart for a dining session."""

    def __init__(self, db: Session, events: EventBus):
        self.db = db
        self.events = events
        self.catalog = CatalogService(db)

    def add_item(
        self,
        session_id: int,
        menu_item_id: int,
        quantity: int = 1,
        variant_id: Optional[str] = None,
        add_ons: Optional[List[Dict[str, Any]]] = None,
        special_instructions: Optional[str] = None,
    ) -> CartItem:
        """Add a line to the cart or merge it into an identical one.

        The unit price is always computed from the catalog. When merging, the
        price snapshot is refreshed to the latest catalog price.
        """
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"quantity": quantity})
        session = get_active_session(self.db, session_id)
        menu_item = self.catalog.get_menu_item(menu_item_id)
        if menu_item.restaurant_id != session.restaurant_id or not menu_item.is_available:
            raise MenuItemUnavailable(
                f"{menu_item.name} is not available",
                details={"menu_item_id": menu_item_id},
            )

        variant = resolve_variant(menu_item, variant_id)
        add_on_snapshot = resolve_add_ons(menu_item, add_ons or [])
        unit_price = pricing.item_price(menu_item.price, variant, add_on_snapshot)
        merge_key = compute_merge_key(menu_item_id, special_instructions, variant, add_on_snapshot)

        item = None
        for attempt in range(1, settings.cart_merge_attempts + 1):
            try:
                with transaction(self.db):
                    item = self._merge_or_insert(
                        session_id, menu_item_id, quantity, variant, add_on_snapshot,
                        special_instructions, unit_price, merge_key,
                    )
                break
            except IntegrityError:
                item = None
                logger.warning(
                    f"Cart line race on session {session_id} (attempt {attempt}), retrying as merge"
                )
        if item is None:
            raise ConcurrencyConflict("Cart is busy, please try again")

        self.db.refresh(item)
        logger.info(f"Cart session={session_id} item={menu_item_id} qty=+{quantity} -> line {item.id}")
        self._broadcast(session_id)
        return item

    def _merge_or_insert(
        self,
        session_id: int,
        menu_item_id: int,
        quantity: int,
        variant: Optional[Dict[str, Any]],
        add_ons: List[Dict[str, Any]],
        special_instructions: Optional[str],
        unit_price,
        merge_key: str,
    ) -> CartItem:
        result = self.db.execute(
            update(CartItem)
            .where(CartItem.session_id == session_id, CartItem.merge_key == merge_key)
            .values(
                quantity=CartItem.quantity + quantity,
                unit_price=unit_price,
                selected_variant=variant,
                selected_add_ons=add_ons,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return (
                self.db.query(CartItem)
                .filter(CartItem.session_id == session_id, CartItem.merge_key == merge_key)
                .one()
            )

        item = CartItem(
            session_id=session_id,
            menu_item_id=menu_item_id,
            quantity=quantity,
            selected_variant=variant,
            selected_add_ons=add_ons,
            special_instructions=special_instructions,
            unit_price=unit_price,
            merge_key=merge_key,
        )
        self.db.add(item)
        self.db.flush()
        return item

    def update_quantity(self, item_id: int, quantity: int) -> Optional[CartItem]:
        """Set a line's quantity. ``quantity <= 0`` removes it and returns None.

        Removing a line that is already gone is a no-op and broadcasts nothing.
        """
        if quantity <= 0:
            item = self.db.query(CartItem).filter(CartItem.id == item_id).first()
            if item is None:
                return None
            session_id = item.session_id
            get_active_session(self.db, session_id)
            with transaction(self.db):
                deleted = self.db.query(CartItem).filter(CartItem.id == item_id).delete(
                    synchronize_session=False
                )
            self.db.expire_all()
            if deleted:
                self._broadcast(session_id)
            return None

        item = self._get_item(item_id)
        get_active_session(self.db, item.session_id)
        with transaction(self.db):
            item.quantity = quantity
        self.db.refresh(item)
        self._broadcast(item.session_id)
        return item

    def remove_item(self, item_id: int) -> None:
        item = self._get_item(item_id)
        session_id = item.session_id
        get_active_session(self.db, session_id)
        with transaction(self.db):
            self.db.delete(item)
        self._broadcast(session_id)

    def clear(self, session_id: int) -> int:
        """Empty the cart. Returns the number of lines removed."""
        get_active_session(self.db, session_id)
        with transaction(self.db):
            removed = self.db.query(CartItem).filter(CartItem.session_id == session_id).delete(
                synchronize_session=False
            )
        self.db.expire_all()
        logger.info(f"Cart cleared for session {session_id} ({removed} lines)")
        self._broadcast(session_id)
        return removed

    def get_cart(self, session_id: int) -> Dict[str, Any]:
        get_session_or_404(self.db, session_id)
        items = self._list_items(session_id)
        return {
            "session_id": session_id,
            "items": items,
            "total_amount": float(
                pricing.order_total(
                    pricing.PricedLine(unit_price=i["unit_price"], quantity=i["quantity"]) for i in items
                )
            ),
            "item_count": sum(i["quantity"] for i in items),
        }

    def _get_item(self, item_id: int) -> CartItem:
        item = self.db.query(CartItem).filter(CartItem.id == item_id).first()
        if not item:
            raise CartItemNotFound(f"Cart item {item_id} not found")
        return item

    def _list_items(self, session_id: int) -> List[Dict[str, Any]]:
        rows = (
            self.db.query(CartItem)
            .filter(CartItem.session_id == session_id)
            .order_by(CartItem.id)
            .all()
        )
        return [cart_item_to_dict(r) for r in rows]

    def _broadcast(self, session_id: int) -> None:
        realtime.emit_cart_update(self.events, session_id, self._list_items(session_id))
