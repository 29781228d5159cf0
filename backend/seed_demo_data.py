"""Seed a demo restaurant for local development.

Creates one restaurant with a handful of tables, a small menu (including an
item with variants and add-ons) and a welcome coupon, so the diner flow can
be exercised right after startup.

Usage:
    cd backend
    python seed_demo_data.py
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Ensure the backend package is importable
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from qrdine.db.base import Base
from qrdine.db.session import SessionLocal, engine
from qrdine.models import Category, Coupon, CouponType, MenuItem, Restaurant, Table

DEMO_SLUG = "spice-route"


def seed():
    """Insert the demo restaurant unless it already exists."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        _seed_all(db)
        db.commit()
        print("Seed data committed successfully.")
    except Exception as e:
        db.rollback()
        print(f"Error seeding data: {e}")
        raise
    finally:
        db.close()


def _seed_all(db):
    if db.query(Restaurant).filter(Restaurant.slug == DEMO_SLUG).first():
        print(f"  = Restaurant '{DEMO_SLUG}' already present, nothing to do")
        return

    # ---------------------------------------------------------------
    # 1. Restaurant and tables
    # ---------------------------------------------------------------
    restaurant = Restaurant(
        name="Spice Route",
        slug=DEMO_SLUG,
        tax_rate=Decimal("18"),
        service_charge_rate=Decimal("5"),
        currency="INR",
    )
    db.add(restaurant)
    db.flush()

    for n in range(1, 7):
        db.add(Table(
            restaurant_id=restaurant.id,
            number=f"T{n}",
            qr_code=f"{DEMO_SLUG}-t{n}-{os.urandom(4).hex()}",
            capacity=2 if n <= 2 else 4,
        ))
    db.flush()
    print("  + Tables (6)")

    # ---------------------------------------------------------------
    # 2. Menu
    # ---------------------------------------------------------------
    starters = Category(restaurant_id=restaurant.id, name="Starters", sort_order=1)
    mains = Category(restaurant_id=restaurant.id, name="Mains", sort_order=2)
    drinks = Category(restaurant_id=restaurant.id, name="Drinks", sort_order=3)
    db.add_all([starters, mains, drinks])
    db.flush()

    db.add_all([
        MenuItem(
            restaurant_id=restaurant.id, category_id=starters.id, name="Paneer Tikka",
            price=Decimal("200"), is_veg=True, preparation_time=15, quick_add_order=1, sort_order=1,
        ),
        MenuItem(
            restaurant_id=restaurant.id, category_id=starters.id, name="Chicken 65",
            price=Decimal("240"), preparation_time=12, sort_order=2,
        ),
        MenuItem(
            restaurant_id=restaurant.id, category_id=mains.id, name="Margherita",
            price=Decimal("300"), is_veg=True, preparation_time=20, sort_order=1,
            variants=[
                {"id": "sm", "name": "Small", "price_modifier": -50, "is_default": False},
                {"id": "md", "name": "Medium", "price_modifier": 0, "is_default": True},
                {"id": "lg", "name": "Large", "price_modifier": 100, "is_default": False},
            ],
            add_ons=[
                {"id": "cheese", "name": "Extra Cheese", "price": 40, "max_quantity": 2},
                {"id": "olives", "name": "Olives", "price": 25, "max_quantity": 1},
            ],
        ),
        MenuItem(
            restaurant_id=restaurant.id, category_id=mains.id, name="Dal Makhani",
            price=Decimal("220"), is_veg=True, preparation_time=18, sort_order=2,
        ),
        MenuItem(
            restaurant_id=restaurant.id, category_id=drinks.id, name="Sweet Lassi",
            price=Decimal("90"), is_veg=True, preparation_time=5, quick_add_order=2, sort_order=1,
        ),
        MenuItem(
            restaurant_id=restaurant.id, category_id=drinks.id, name="Masala Chai",
            price=Decimal("60"), is_veg=True, preparation_time=5, quick_add_order=3, sort_order=2,
        ),
    ])
    db.flush()
    print("  + Menu (3 categories, 6 items)")

    # ---------------------------------------------------------------
    # 3. Coupons
    # ---------------------------------------------------------------
    now = datetime.now(timezone.utc)
    db.add(Coupon(
        restaurant_id=restaurant.id,
        code="WELCOME10",
        name="10% off your first visit",
        type=CouponType.PERCENTAGE,
        value=Decimal("10"),
        max_discount_amount=Decimal("150"),
        valid_from=now,
        valid_until=now + timedelta(days=90),
        usage_limit=500,
    ))
    db.flush()
    print("  + Coupons (1)")


if __name__ == "__main__":
    print("=" * 60)
    print("qrdine - Seed Demo Data")
    print("=" * 60)
    seed()
