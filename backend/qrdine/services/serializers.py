"""Response dictionaries for ORM entities.

Money leaves the service layer as ``float`` rounded to two places, matching
what the dashboard and diner clients already render.
"""

from typing import Any, Dict, Optional

from qrdine.models.billing import Bill, Payment
from qrdine.models.cart import CartItem
from qrdine.models.order import Order, OrderItem
from qrdine.models.session import TableSession
from qrdine.services import pricing


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _enum(value) -> Optional[str]:
    return getattr(value, "value", value)


def cart_item_to_dict(item: CartItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "session_id": item.session_id,
        "menu_item_id": item.menu_item_id,
        "name": item.menu_item.name if item.menu_item else None,
        "quantity": item.quantity,
        "selected_variant": item.selected_variant,
        "selected_add_ons": item.selected_add_ons or [],
        "special_instructions": item.special_instructions,
        "unit_price": float(item.unit_price),
        "total_price": float(pricing.line_total(item.unit_price, item.quantity)),
    }


def order_item_to_dict(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "menu_item_id": item.menu_item_id,
        "name": item.name,
        "quantity": item.quantity,
        "selected_variant": item.selected_variant,
        "selected_add_ons": item.selected_add_ons or [],
        "special_instructions": item.special_instructions,
        "unit_price": float(item.unit_price),
        "total_price": float(pricing.line_total(item.unit_price, item.quantity)),
    }


def order_to_dict(order: Order, include_items: bool = True) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "session_id": order.session_id,
        "restaurant_id": order.restaurant_id,
        "table_id": order.table_id,
        "table_number": order.table.number if order.table else None,
        "status": _enum(order.status),
        "total_amount": float(order.total_amount),
        "estimated_preparation_time": order.estimated_preparation_time,
        "special_instructions": order.special_instructions,
        "placed_at": _iso(order.placed_at),
        "prepared_at": _iso(order.prepared_at),
        "ready_at": _iso(order.ready_at),
        "served_at": _iso(order.served_at),
        "cancelled_at": _iso(order.cancelled_at),
        "cancellation_reason": order.cancellation_reason,
    }
    if include_items:
        data["items"] = [order_item_to_dict(i) for i in order.items]
    return data


def payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "session_id": payment.session_id,
        "restaurant_id": payment.restaurant_id,
        "amount": float(payment.amount),
        "method": _enum(payment.method),
        "status": _enum(payment.status),
        "transaction_id": payment.transaction_id,
        "failure_reason": payment.failure_reason,
        "created_at": _iso(payment.created_at),
        "processed_at": _iso(payment.processed_at),
        "refunded_at": _iso(payment.refunded_at),
        "refund_reason": payment.refund_reason,
    }


def bill_to_dict(bill: Bill) -> Dict[str, Any]:
    return {
        "id": bill.id,
        "bill_number": bill.bill_number,
        "session_id": bill.session_id,
        "restaurant_id": bill.restaurant_id,
        "table_id": bill.table_id,
        "items": bill.items or [],
        "subtotal": float(bill.subtotal),
        "tax_amount": float(bill.tax_amount),
        "service_charge": float(bill.service_charge),
        "discount_amount": float(bill.discount_amount),
        "final_amount": float(bill.final_amount),
        "payment_methods": bill.payment_methods or [],
        "generated_at": _iso(bill.generated_at),
    }


def session_to_dict(session: TableSession) -> Dict[str, Any]:
    total = pricing.quantize(session.total_amount)
    paid = pricing.quantize(session.paid_amount)
    return {
        "id": session.id,
        "table_id": session.table_id,
        "table_number": session.table.number if session.table else None,
        "restaurant_id": session.restaurant_id,
        "status": _enum(session.status),
        "payment_status": _enum(session.payment_status),
        "total_amount": float(total),
        "paid_amount": float(paid),
        "balance_due": float(max(total - paid, pricing.ZERO)),
        "is_ready_for_billing": session.is_ready_for_billing,
        "coupon_code": session.coupon.code if session.coupon else None,
        "started_at": _iso(session.started_at),
        "ended_at": _iso(session.ended_at),
    }
