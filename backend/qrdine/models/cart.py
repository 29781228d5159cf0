"""Shared cart line items."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship, validates

from qrdine.db.base import Base, utcnow
from qrdine.models.validators import non_negative, positive, validate_list


class CartItem(Base):
    """A pending line in a session's shared cart.

    ``merge_key`` digests the line identity (item, instructions, variant,
    add-ons); the unique constraint makes two devices adding the same line at
    once collapse into one row.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("session_id", "merge_key", name="uq_cart_items_session_merge_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    selected_variant = Column(JSON, nullable=True)
    selected_add_ons = Column(JSON, default=list)
    special_instructions = Column(Text, nullable=True)
    unit_price = Column(Numeric(10, 2), nullable=False)
    merge_key = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    session = relationship("TableSession", back_populates="cart_items")
    menu_item = relationship("MenuItem")

    @validates('quantity')
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates('unit_price')
    def _validate_unit_price(self, key, value):
        return non_negative(key, value)

    @validates('selected_add_ons')
    def _validate_add_ons(self, key, value):
        return validate_list(key, value)
