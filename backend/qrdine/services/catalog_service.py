"""Catalog Service.

Read model of the menu plus the authoritative lookups the cart and order
services price against. Variant and add-on selections are resolved here from
the menu item's JSON options, so a client can only ever pick what the menu
currently offers.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from qrdine.core.config import settings
from qrdine.core.errors import InvalidSelection, MenuItemNotFound, NotFound
from qrdine.models.restaurant import Category, MenuItem, Restaurant

logger = logging.getLogger(__name__)


def menu_item_to_dict(item: MenuItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "restaurant_id": item.restaurant_id,
        "category_id": item.category_id,
        "name": item.name,
        "description": item.description,
        "price": float(item.price),
        "is_available": item.is_available,
        "is_veg": item.is_veg,
        "preparation_time": item.preparation_time,
        "variants": item.variants or [],
        "add_ons": item.add_ons or [],
        "quick_add_order": item.quick_add_order or 0,
    }


class CatalogService:
    """Menu lookups for a restaurant."""

    def __init__(self, db: Session):
        self.db = db

    def get_menu_item(self, menu_item_id: int) -> MenuItem:
        item = self.db.query(MenuItem).filter(MenuItem.id == menu_item_id).first()
        if not item:
            raise MenuItemNotFound(f"Menu item {menu_item_id} not found")
        return item

    def get_menu(self, restaurant_id: int) -> Dict[str, Any]:
        """Active categories with their available items, plus quick-add picks."""
        restaurant = self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if not restaurant:
            raise NotFound(f"Restaurant {restaurant_id} not found")

        categories = (
            self.db.query(Category)
            .filter(Category.restaurant_id == restaurant_id, Category.is_active.is_(True))
            .order_by(Category.sort_order, Category.id)
            .all()
        )
        items = (
            self.db.query(MenuItem)
            .filter(MenuItem.restaurant_id == restaurant_id, MenuItem.is_available.is_(True))
            .order_by(MenuItem.sort_order, MenuItem.id)
            .all()
        )

        by_category: Dict[Optional[int], List[Dict[str, Any]]] = {}
        for item in items:
            by_category.setdefault(item.category_id, []).append(menu_item_to_dict(item))

        quick_add = sorted(
            (i for i in items if (i.quick_add_order or 0) > 0),
            key=lambda i: (i.quick_add_order, i.id),
        )[: settings.quick_add_limit]

        return {
            "restaurant": {
                "id": restaurant.id,
                "name": restaurant.name,
                "currency": restaurant.currency,
                "is_active": restaurant.is_active,
            },
            "categories": [
                {
                    "id": c.id,
                    "name": c.name,
                    "description": c.description,
                    "items": by_category.get(c.id, []),
                }
                for c in categories
            ],
            "quick_add_items": [menu_item_to_dict(i) for i in quick_add],
        }


def resolve_variant(item: MenuItem, variant_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Snapshot of the chosen variant, or None when no variant was picked."""
    if variant_id is None:
        return None
    for variant in item.variants or []:
        if str(variant.get("id")) == str(variant_id):
            return {
                "id": variant.get("id"),
                "name": variant.get("name"),
                "price_modifier": float(variant.get("price_modifier", 0)),
            }
    raise InvalidSelection(
        f"Variant {variant_id} is not offered for {item.name}",
        details={"menu_item_id": item.id, "variant_id": variant_id},
    )


def resolve_add_ons(item: MenuItem, selections: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Snapshot of chosen add-ons with catalog prices, sorted by add-on id.

    Repeated ids are summed before checking ``max_quantity``.
    """
    offered = {str(a.get("id")): a for a in (item.add_ons or [])}
    quantities: Dict[str, int] = {}
    for selection in selections:
        add_on_id = str(selection["add_on_id"])
        if add_on_id not in offered:
            raise InvalidSelection(
                f"Add-on {add_on_id} is not offered for {item.name}",
                details={"menu_item_id": item.id, "add_on_id": add_on_id},
            )
        quantities[add_on_id] = quantities.get(add_on_id, 0) + int(selection.get("quantity", 1))

    snapshot = []
    for add_on_id in sorted(quantities):
        add_on = offered[add_on_id]
        quantity = quantities[add_on_id]
        max_quantity = add_on.get("max_quantity")
        if quantity < 1 or (max_quantity is not None and quantity > int(max_quantity)):
            raise InvalidSelection(
                f"Add-on {add_on.get('name')} allows at most {max_quantity}",
                details={"menu_item_id": item.id, "add_on_id": add_on_id, "quantity": quantity},
            )
        snapshot.append({
            "add_on_id": add_on.get("id"),
            "name": add_on.get("name"),
            "price": float(add_on.get("price", 0)),
            "quantity": quantity,
        })
    return snapshot
