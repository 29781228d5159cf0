"""Domain error taxonomy.

Services raise these; the HTTP layer maps them to a structured failure payload
using ``status_code`` and ``code``. Nothing here knows about FastAPI.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for all expected, caller-visible failures."""

    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


# ==================== NOT FOUND ====================

class NotFound(DomainError):
    status_code = 404
    code = "not_found"


class TableNotFound(NotFound):
    code = "table_not_found"


class SessionNotFound(NotFound):
    code = "session_not_found"


class OrderNotFound(NotFound):
    code = "order_not_found"


class MenuItemNotFound(NotFound):
    code = "menu_item_not_found"


class CartItemNotFound(NotFound):
    code = "cart_item_not_found"


class PaymentNotFound(NotFound):
    code = "payment_not_found"


class BillNotFound(NotFound):
    code = "bill_not_found"


class CouponNotFound(NotFound):
    code = "coupon_not_found"


# ==================== INVALID STATE ====================

class InvalidState(DomainError):
    status_code = 409
    code = "invalid_state"


class SessionNotActive(InvalidState):
    code = "session_not_active"


class RestaurantClosed(InvalidState):
    status_code = 403
    code = "restaurant_closed"


class InvalidTransition(InvalidState):
    code = "invalid_transition"


class MenuItemUnavailable(InvalidState):
    code = "menu_item_unavailable"


class FeedbackAlreadySubmitted(InvalidState):
    code = "feedback_already_submitted"


# ==================== VALIDATION ====================

class ValidationError(DomainError):
    status_code = 422
    code = "validation_error"


class EmptyOrder(ValidationError):
    code = "empty_order"


class ReasonRequired(ValidationError):
    code = "reason_required"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidSelection(ValidationError):
    """Unknown variant/add-on, or an add-on quantity outside its limits."""

    code = "invalid_selection"


class CouponInvalid(ValidationError):
    code = "coupon_invalid"


# ==================== CONCURRENCY / UPSTREAM ====================

class ConcurrencyConflict(DomainError):
    status_code = 409
    code = "concurrency_conflict"


class StaleState(ConcurrencyConflict):
    """Another writer changed the row between our read and our write."""

    code = "stale_state"


class UpstreamFailure(DomainError):
    status_code = 503
    code = "upstream_failure"
