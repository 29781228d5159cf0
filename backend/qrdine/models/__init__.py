"""Database models."""

from qrdine.models.restaurant import Restaurant, Table, Category, MenuItem
from qrdine.models.session import TableSession, SessionStatus, PaymentStatus
from qrdine.models.cart import CartItem
from qrdine.models.order import Order, OrderItem, OrderStatus
from qrdine.models.billing import (
    Bill,
    Coupon,
    CouponType,
    Payment,
    PaymentMethod,
    PaymentState,
)
from qrdine.models.feedback import Feedback

__all__ = [
    "Restaurant",
    "Table",
    "Category",
    "MenuItem",
    "TableSession",
    "SessionStatus",
    "PaymentStatus",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Bill",
    "Coupon",
    "CouponType",
    "Payment",
    "PaymentMethod",
    "PaymentState",
    "Feedback",
]
