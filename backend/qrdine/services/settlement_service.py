"""Payment & Billing Settlement.

Payments are two-phase: ``initiate_payment`` records a PENDING attempt and the
gateway later calls ``confirm_payment`` or ``fail_payment``. Each transition
is a compare-and-swap on the payment status, so a retried webhook never
applies twice.

When the PAID payments cover the session total the session is finalized in a
single transaction: the bill is written (``bills.session_id`` is unique, so at
most one bill per session ever exists), the session is COMPLETED, the table is
freed and the coupon usage is counted. A retried confirmation finishes a
finalization that was interrupted.
"""

import logging
import secrets
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrdine.core.config import settings
from qrdine.core.errors import (
    BillNotFound,
    CouponInvalid,
    CouponNotFound,
    InvalidAmount,
    InvalidState,
    InvalidTransition,
    PaymentNotFound,
    ReasonRequired,
    UpstreamFailure,
)
from qrdine.db.base import utcnow
from qrdine.db.session import transaction
from qrdine.models.billing import Bill, Coupon, Payment, PaymentMethod, PaymentState
from qrdine.models.order import Order, OrderStatus
from qrdine.models.restaurant import Restaurant, Table
from qrdine.models.session import PaymentStatus, SessionStatus, TableSession
from qrdine.services import pricing, realtime
from qrdine.services.realtime import EventBus
from qrdine.services.session_service import get_active_session, get_session_or_404

logger = logging.getLogger(__name__)

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


def new_bill_number() -> str:
    """``BILL-<yyyymmddHHMMSS>-<6 random base32 chars>``."""
    suffix = "".join(secrets.choice(BASE32_ALPHABET) for _ in range(6))
    return f"BILL-{utcnow().strftime('%Y%m%d%H%M%S')}-{suffix}"


class SettlementService:
    """Payments, bill generation, coupons and refunds."""

    def __init__(self, db: Session, events: EventBus):
        self.db = db
        self.events = events

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def initiate_payment(
        self,
        session_id: int,
        amount,
        method: PaymentMethod,
        transaction_id: Optional[str] = None,
    ) -> Payment:
        """Record a PENDING payment.

        The amount must be positive and no larger than what is still owed
        once other pending attempts are accounted for.
        """
        amount = pricing.quantize(amount)
        if amount <= 0:
            raise InvalidAmount("Payment amount must be positive", details={"amount": float(amount)})
        method = PaymentMethod(method)

        with transaction(self.db):
            session = get_active_session(self.db, session_id, for_update=True)
            pending = pricing.quantize(
                self.db.query(func.coalesce(func.sum(Payment.amount), 0))
                .filter(Payment.session_id == session_id, Payment.status == PaymentState.PENDING)
                .scalar()
            )
            outstanding = (
                pricing.quantize(session.total_amount) - pricing.quantize(session.paid_amount) - pending
            )
            if amount > outstanding:
                raise InvalidAmount(
                    f"Payment of {amount} exceeds the outstanding balance of {max(outstanding, pricing.ZERO)}",
                    details={"amount": float(amount), "outstanding": float(max(outstanding, pricing.ZERO))},
                )

            payment = Payment(
                session_id=session_id,
                restaurant_id=session.restaurant_id,
                amount=amount,
                method=method,
                status=PaymentState.PENDING,
                transaction_id=transaction_id,
            )
            self.db.add(payment)
            self.db.flush()

        logger.info(f"Payment {payment.id} initiated: session={session_id} amount={amount} method={method.value}")
        self._emit_payment(payment)
        return payment

    def confirm_payment(self, payment_id: int, transaction_id: Optional[str] = None) -> Payment:
        """Gateway confirmation. Safe to call more than once."""
        payment = self._get_payment(payment_id)
        if payment.status in (PaymentState.FAILED, PaymentState.REFUNDED):
            raise InvalidTransition(
                f"Payment {payment_id} is {payment.status.value} and cannot be confirmed",
                details={"payment_id": payment_id, "status": payment.status.value},
            )

        applied = False
        if payment.status == PaymentState.PENDING:
            values: Dict[str, Any] = {"status": PaymentState.PAID, "processed_at": utcnow()}
            if transaction_id:
                values["transaction_id"] = transaction_id
            with transaction(self.db):
                result = self.db.execute(
                    update(Payment)
                    .where(Payment.id == payment_id, Payment.status == PaymentState.PENDING)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                applied = result.rowcount == 1
                if applied:
                    self._recompute_settlement(payment.session_id)

            self.db.refresh(payment)
            if not applied and payment.status != PaymentState.PAID:
                raise InvalidTransition(
                    f"Payment {payment_id} is {payment.status.value} and cannot be confirmed",
                    details={"payment_id": payment_id, "status": payment.status.value},
                )

        if applied:
            logger.info(f"Payment {payment_id} confirmed")
            self._emit_payment(payment)
        else:
            logger.info(f"Payment {payment_id} already confirmed, checking settlement")

        session = get_session_or_404(self.db, payment.session_id)
        if session.payment_status == PaymentStatus.PAID and session.status == SessionStatus.ACTIVE:
            self.generate_bill(session.id)
        return payment

    def fail_payment(self, payment_id: int, reason: Optional[str]) -> Payment:
        """Gateway failure. A failed payment never returns to PENDING."""
        if not reason or not reason.strip():
            raise ReasonRequired("A failure reason is required")
        payment = self._get_payment(payment_id)
        if payment.status == PaymentState.FAILED:
            return payment
        if payment.status != PaymentState.PENDING:
            raise InvalidTransition(
                f"Payment {payment_id} is {payment.status.value} and cannot fail",
                details={"payment_id": payment_id, "status": payment.status.value},
            )

        with transaction(self.db):
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == PaymentState.PENDING)
                .values(status=PaymentState.FAILED, failure_reason=reason.strip(), processed_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        self.db.refresh(payment)
        if result.rowcount == 0:
            if payment.status == PaymentState.FAILED:
                return payment
            raise InvalidTransition(
                f"Payment {payment_id} is {payment.status.value} and cannot fail",
                details={"payment_id": payment_id, "status": payment.status.value},
            )

        logger.info(f"Payment {payment_id} failed: {reason.strip()}")
        self._emit_payment(payment)
        return payment

    def refund_payment(self, payment_id: int, reason: Optional[str]) -> Payment:
        """Refund a settled payment. The bill is left as issued."""
        if not reason or not reason.strip():
            raise ReasonRequired("A refund reason is required")
        payment = self._get_payment(payment_id)
        if payment.status != PaymentState.PAID:
            raise InvalidTransition(
                f"Only PAID payments can be refunded, payment {payment_id} is {payment.status.value}",
                details={"payment_id": payment_id, "status": payment.status.value},
            )

        with transaction(self.db):
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.status == PaymentState.PAID)
                .values(status=PaymentState.REFUNDED, refunded_at=utcnow(), refund_reason=reason.strip())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._recompute_settlement(payment.session_id)

        self.db.refresh(payment)
        if result.rowcount == 0:
            raise InvalidTransition(
                f"Payment {payment_id} is {payment.status.value} and cannot be refunded",
                details={"payment_id": payment_id, "status": payment.status.value},
            )

        logger.info(f"Payment {payment_id} refunded: {reason.strip()}")
        self._emit_payment(payment)
        return payment

    def list_payments(self, session_id: int) -> List[Payment]:
        get_session_or_404(self.db, session_id)
        return (
            self.db.query(Payment)
            .filter(Payment.session_id == session_id)
            .order_by(Payment.id)
            .all()
        )

    def _get_payment(self, payment_id: int) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise PaymentNotFound(f"Payment {payment_id} not found")
        return payment

    def _recompute_settlement(self, session_id: int) -> TableSession:
        """Derive ``paid_amount`` and ``payment_status`` from the PAID payments."""
        session = get_session_or_404(self.db, session_id, for_update=True)
        paid = pricing.quantize(
            self.db.query(func.coalesce(func.sum(Payment.amount), 0))
            .filter(Payment.session_id == session_id, Payment.status == PaymentState.PAID)
            .scalar()
        )
        total = pricing.quantize(session.total_amount)
        session.paid_amount = paid

        if paid > 0 and total > 0 and paid >= total:
            session.payment_status = PaymentStatus.PAID
        elif paid > 0:
            session.payment_status = PaymentStatus.PARTIAL
        elif self.db.query(Payment).filter(
            Payment.session_id == session_id, Payment.status == PaymentState.REFUNDED
        ).count():
            session.payment_status = PaymentStatus.REFUNDED
        else:
            session.payment_status = PaymentStatus.PENDING
        self.db.flush()
        return session

    def _emit_payment(self, payment: Payment) -> None:
        realtime.emit_payment_status(
            self.events,
            payment_id=payment.id,
            session_id=payment.session_id,
            restaurant_id=payment.restaurant_id,
            status=payment.status.value,
            amount=float(payment.amount),
        )

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    def generate_bill(self, session_id: int) -> Bill:
        """Issue the session's bill and close the session.

        Returns the existing bill if one was already issued. A bill number
        collision is retried with a fresh number; exhausting the attempts
        raises ``UpstreamFailure`` and leaves the session untouched.
        """
        existing = self.db.query(Bill).filter(Bill.session_id == session_id).first()
        if existing:
            return existing

        session = get_session_or_404(self.db, session_id)
        if session.payment_status != PaymentStatus.PAID:
            raise InvalidState(
                "Session still has an outstanding balance",
                details={"session_id": session_id, "payment_status": session.payment_status.value},
            )

        bill = None
        attempts = settings.bill_number_attempts
        for attempt in range(1, attempts + 1):
            try:
                with transaction(self.db):
                    bill = self._issue_bill(session_id)
                break
            except IntegrityError:
                bill = None
                existing = self.db.query(Bill).filter(Bill.session_id == session_id).first()
                if existing:
                    return existing
                logger.warning(f"Bill number collision for session {session_id} (attempt {attempt}/{attempts})")
        if bill is None:
            raise UpstreamFailure("Could not allocate a bill number, please retry")

        session = get_session_or_404(self.db, session_id)
        logger.info(f"Bill {bill.bill_number} issued for session {session_id}: final={bill.final_amount}")
        realtime.emit_table_status(
            self.events,
            restaurant_id=session.restaurant_id,
            table_id=session.table_id,
            status="available",
            has_active_session=False,
        )
        return bill

    def _issue_bill(self, session_id: int) -> Bill:
        session = get_session_or_404(self.db, session_id, for_update=True)
        restaurant = self.db.query(Restaurant).filter(Restaurant.id == session.restaurant_id).one()
        subtotal = pricing.quantize(session.total_amount)

        discount = pricing.ZERO
        if session.coupon_id:
            discount = self._redeem_coupon(session.coupon_id, subtotal)

        totals = pricing.summarize_bill(
            subtotal, restaurant.tax_rate, restaurant.service_charge_rate, discount
        )
        bill = Bill(
            session_id=session.id,
            restaurant_id=session.restaurant_id,
            table_id=session.table_id,
            bill_number=new_bill_number(),
            items=self._bill_lines(session.id),
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            service_charge=totals.service_charge,
            discount_amount=totals.discount_amount,
            final_amount=totals.final_amount,
            payment_methods=self._payment_summary(session.id),
            generated_at=utcnow(),
        )
        self.db.add(bill)
        self.db.flush()

        session.status = SessionStatus.COMPLETED
        session.ended_at = utcnow()
        self.db.query(Table).filter(
            Table.id == session.table_id,
            Table.current_session_id == session.id,
        ).update({Table.current_session_id: None}, synchronize_session=False)
        return bill

    def _redeem_coupon(self, coupon_id: int, subtotal: Decimal) -> Decimal:
        """Count one use of the coupon and return its discount, or zero if it lapsed."""
        coupon = self.db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not pricing.is_coupon_valid(coupon, subtotal):
            logger.warning(f"Coupon {coupon_id} is no longer valid at billing time, no discount applied")
            return pricing.ZERO

        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"Coupon {coupon_id} usage limit reached at billing time, no discount applied")
            return pricing.ZERO
        return pricing.coupon_discount(coupon, subtotal)

    def _bill_lines(self, session_id: int) -> List[Dict[str, Any]]:
        orders = (
            self.db.query(Order)
            .filter(Order.session_id == session_id, Order.status != OrderStatus.CANCELLED)
            .order_by(Order.id)
            .all()
        )
        lines = []
        for order in orders:
            for item in order.items:
                lines.append({
                    "menu_item_id": item.menu_item_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "unit_price": float(item.unit_price),
                    "total_price": float(pricing.line_total(item.unit_price, item.quantity)),
                    "variant": item.selected_variant.get("name") if item.selected_variant else None,
                    "add_ons": [a.get("name") for a in (item.selected_add_ons or [])],
                })
        return lines

    def _payment_summary(self, session_id: int) -> List[Dict[str, Any]]:
        payments = (
            self.db.query(Payment)
            .filter(Payment.session_id == session_id, Payment.status == PaymentState.PAID)
            .order_by(Payment.id)
            .all()
        )
        summary: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for payment in payments:
            entry = summary.setdefault(
                payment.method.value, {"method": payment.method.value, "amount": pricing.ZERO, "count": 0}
            )
            entry["amount"] += pricing.quantize(payment.amount)
            entry["count"] += 1
        return [{**e, "amount": float(e["amount"])} for e in summary.values()]

    def get_bill(self, session_id: int) -> Bill:
        bill = self.db.query(Bill).filter(Bill.session_id == session_id).first()
        if not bill:
            raise BillNotFound(f"No bill has been issued for session {session_id}")
        return bill

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    def apply_coupon(self, session_id: int, code: str) -> Dict[str, Any]:
        """Attach a coupon to the session and preview the bill it produces."""
        normalized = (code or "").strip().upper()
        with transaction(self.db):
            session = get_active_session(self.db, session_id, for_update=True)
            coupon = (
                self.db.query(Coupon)
                .filter(
                    Coupon.restaurant_id == session.restaurant_id,
                    func.upper(Coupon.code) == normalized,
                )
                .first()
            )
            if not coupon:
                raise CouponNotFound(f"Coupon {normalized} not found")

            subtotal = pricing.quantize(session.total_amount)
            if not pricing.is_coupon_valid(coupon, subtotal):
                raise CouponInvalid(
                    f"Coupon {coupon.code} cannot be applied to this order",
                    details={"code": coupon.code, "subtotal": float(subtotal)},
                )
            session.coupon_id = coupon.id
            restaurant = self.db.query(Restaurant).filter(Restaurant.id == session.restaurant_id).one()
            totals = pricing.summarize_bill(
                subtotal,
                restaurant.tax_rate,
                restaurant.service_charge_rate,
                pricing.coupon_discount(coupon, subtotal),
            )

        logger.info(f"Coupon {coupon.code} applied to session {session_id}")
        return {
            "session_id": session_id,
            "code": coupon.code,
            "name": coupon.name,
            "subtotal": float(totals.subtotal),
            "tax_amount": float(totals.tax_amount),
            "service_charge": float(totals.service_charge),
            "discount_amount": float(totals.discount_amount),
            "final_amount": float(totals.final_amount),
        }
