"""Restaurant catalog models - restaurants, tables, categories, menu items."""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from qrdine.core.config import settings
from qrdine.db.base import Base, TimestampMixin, utcnow
from qrdine.models.validators import non_negative, percentage, positive, validate_list


class Restaurant(Base, TimestampMixin):
    """A tenant. Every table, menu item and session belongs to exactly one."""
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    tax_rate = Column(Numeric(5, 2), default=lambda: Decimal(str(settings.default_tax_rate)), nullable=False)
    service_charge_rate = Column(
        Numeric(5, 2), default=lambda: Decimal(str(settings.default_service_charge_rate)), nullable=False
    )
    currency = Column(String(3), default=lambda: settings.currency, nullable=False)

    # Relationships
    tables = relationship("Table", back_populates="restaurant", cascade="all, delete-orphan")
    categories = relationship("Category", back_populates="restaurant", cascade="all, delete-orphan")

    @validates('tax_rate', 'service_charge_rate')
    def _validate_rates(self, key, value):
        return percentage(key, value)


class Table(Base):
    """Restaurant table for seating.

    ``current_session_id`` is a weak pointer to the ACTIVE session (no foreign
    key, sessions already reference tables). The partial unique index on
    ``sessions`` is what guarantees there is at most one.
    """
    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "number", name="uq_tables_restaurant_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(String(50), nullable=False)
    qr_code = Column(String(100), nullable=False, unique=True)  # secret token printed in the QR
    capacity = Column(Integer, default=4)
    is_active = Column(Boolean, default=True, nullable=False)
    current_session_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="tables")

    @validates('capacity')
    def _validate_capacity(self, key, value):
        return positive(key, value)


class Category(Base):
    """Menu category."""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    restaurant = relationship("Restaurant", back_populates="categories")
    items = relationship("MenuItem", back_populates="category")


class MenuItem(Base, TimestampMixin):
    """Menu item with optional variants and add-ons.

    ``variants`` entries look like ``{"id", "name", "price_modifier", "is_default"}``
    and ``add_ons`` entries like ``{"id", "name", "price", "max_quantity"}``.
    """
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    is_veg = Column(Boolean, default=False)
    preparation_time = Column(Integer, nullable=True)  # minutes
    variants = Column(JSON, default=list)
    add_ons = Column(JSON, default=list)
    quick_add_order = Column(Integer, default=0)  # 0 = not offered as quick add
    sort_order = Column(Integer, default=0)

    category = relationship("Category", back_populates="items")

    @validates('price')
    def _validate_price(self, key, value):
        return non_negative(key, value)

    @validates('preparation_time')
    def _validate_preparation_time(self, key, value):
        return non_negative(key, value)

    @validates('variants', 'add_ons')
    def _validate_options(self, key, value):
        return validate_list(key, value)
