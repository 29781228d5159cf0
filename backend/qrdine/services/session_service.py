"""Session Manager.

Turns a QR scan into a dining session and owns the session lifecycle.

At most one ACTIVE session exists per table. Two phones scanning the same
table at the same moment both end up in the same session:

1. The Table row is locked (``SELECT ... FOR UPDATE``) and the active session
   is looked up again under the lock.
2. If none exists a new session is inserted and ``Table.current_session_id``
   is pointed at it in the same transaction.
3. On stores without row locks the partial unique index on
   ``sessions(table_id) WHERE status = 'ACTIVE'`` rejects the loser's insert;
   the loser rolls back, re-reads and joins the winner's session.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrdine.core.errors import (
    ConcurrencyConflict,
    InvalidState,
    ReasonRequired,
    RestaurantClosed,
    SessionNotActive,
    SessionNotFound,
    TableNotFound,
)
from qrdine.db.base import utcnow
from qrdine.db.session import transaction
from qrdine.models.billing import Bill, Payment, PaymentState
from qrdine.models.cart import CartItem
from qrdine.models.restaurant import Restaurant, Table
from qrdine.models.session import PaymentStatus, SessionStatus, TableSession
from qrdine.services import realtime
from qrdine.services.realtime import EventBus
from qrdine.services.serializers import (
    bill_to_dict,
    cart_item_to_dict,
    order_to_dict,
    payment_to_dict,
    session_to_dict,
)

logger = logging.getLogger(__name__)


def get_session_or_404(db: Session, session_id: int, for_update: bool = False) -> TableSession:
    query = db.query(TableSession).filter(TableSession.id == session_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    session = query.first()
    if not session:
        raise SessionNotFound(f"Session {session_id} not found")
    return session


def get_active_session(db: Session, session_id: int, for_update: bool = False) -> TableSession:
    """Load a session and insist it is still ACTIVE."""
    session = get_session_or_404(db, session_id, for_update=for_update)
    if session.status != SessionStatus.ACTIVE:
        raise SessionNotActive(
            f"Session {session_id} is {session.status.value}",
            details={"session_id": session_id, "status": session.status.value},
        )
    return session


class SessionService:
    """QR scan, session lookup and session lifecycle."""

    def __init__(self, db: Session, events: EventBus):
        self.db = db
        self.events = events

    # ------------------------------------------------------------------
    # Scan
    # ------------------------------------------------------------------

    def validate_scan(self, qr_code: str, table_id: int, restaurant_id: int) -> Dict[str, Any]:
        """Resolve a QR scan to the table's ACTIVE session, creating it if needed.

        Rescanning is idempotent: the same table yields the same session until
        it is completed or cancelled. Does not broadcast.
        """
        table = (
            self.db.query(Table)
            .filter(
                Table.id == table_id,
                Table.restaurant_id == restaurant_id,
                Table.qr_code == qr_code,
                Table.is_active.is_(True),
            )
            .first()
        )
        if not table:
            raise TableNotFound("Invalid QR code or table not found")

        restaurant = self.db.query(Restaurant).filter(Restaurant.id == restaurant_id).first()
        if not restaurant or not restaurant.is_active:
            raise RestaurantClosed("Restaurant is not accepting orders right now")

        session = self._find_active_session(table.id)
        is_new = False
        if session is None:
            session, is_new = self._create_or_join(table.id, restaurant_id)

        cart_items = (
            self.db.query(CartItem)
            .filter(CartItem.session_id == session.id)
            .order_by(CartItem.id)
            .all()
        )
        return {
            "session_id": session.id,
            "table_id": table.id,
            "table_number": table.number,
            "restaurant_id": restaurant.id,
            "restaurant_name": restaurant.name,
            "cart_items": [cart_item_to_dict(i) for i in cart_items],
            "is_new_session": is_new,
        }

    def _find_active_session(self, table_id: int) -> Optional[TableSession]:
        return (
            self.db.query(TableSession)
            .filter(TableSession.table_id == table_id, TableSession.status == SessionStatus.ACTIVE)
            .order_by(TableSession.started_at.desc(), TableSession.id.desc())
            .first()
        )

    def _create_or_join(self, table_id: int, restaurant_id: int) -> "tuple[TableSession, bool]":
        try:
            with transaction(self.db):
                table = self.db.query(Table).filter(Table.id == table_id).with_for_update().one()
                existing = self._find_active_session(table_id)
                if existing is not None:
                    return existing, False

                session = TableSession(
                    table_id=table_id,
                    restaurant_id=restaurant_id,
                    status=SessionStatus.ACTIVE,
                    started_at=utcnow(),
                    payment_status=PaymentStatus.PENDING,
                )
                self.db.add(session)
                self.db.flush()
                table.current_session_id = session.id
        except IntegrityError as exc:
            logger.warning(f"Concurrent session creation on table {table_id}, joining the existing session")
            winner = self._find_active_session(table_id)
            if winner is None:
                raise ConcurrencyConflict(f"Could not open a session for table {table_id}, please rescan") from exc
            return winner, False

        logger.info(f"Session {session.id} started on table {table_id}")
        return session, True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: int) -> TableSession:
        return get_session_or_404(self.db, session_id)

    def get_summary(self, session_id: int) -> Dict[str, Any]:
        """Session with its orders, payments and outstanding balance."""
        session = get_session_or_404(self.db, session_id)
        bill = self.db.query(Bill).filter(Bill.session_id == session_id).first()
        data = session_to_dict(session)
        data["orders"] = [order_to_dict(o) for o in session.orders]
        data["payments"] = [payment_to_dict(p) for p in session.payments]
        data["bill"] = bill_to_dict(bill) if bill else None
        return data

    def list_tables(self, restaurant_id: int) -> List[Dict[str, Any]]:
        """Floor plan view for the staff dashboard."""
        tables = (
            self.db.query(Table)
            .filter(Table.restaurant_id == restaurant_id)
            .order_by(Table.id)
            .all()
        )
        active = {
            s.table_id: s
            for s in self.db.query(TableSession).filter(
                TableSession.restaurant_id == restaurant_id,
                TableSession.status == SessionStatus.ACTIVE,
            )
        }
        result = []
        for table in tables:
            session = active.get(table.id)
            if session is None:
                status = "available"
            elif session.is_ready_for_billing:
                status = "billing"
            else:
                status = "occupied"
            result.append({
                "id": table.id,
                "number": table.number,
                "capacity": table.capacity,
                "is_active": table.is_active,
                "status": status,
                "has_active_session": session is not None,
                "current_session_id": session.id if session else None,
                "session_total": float(session.total_amount) if session else 0.0,
                "session_paid": float(session.paid_amount) if session else 0.0,
                "is_ready_for_billing": bool(session and session.is_ready_for_billing),
            })
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request_bill(self, session_id: int) -> TableSession:
        """Diner asks for the bill; staff see the table flip to billing."""
        with transaction(self.db):
            session = get_active_session(self.db, session_id, for_update=True)
            session.is_ready_for_billing = True

        logger.info(f"Bill requested for session {session_id}")
        realtime.emit_table_status(
            self.events,
            restaurant_id=session.restaurant_id,
            table_id=session.table_id,
            status="billing",
            has_active_session=True,
        )
        return session

    def cancel_session(self, session_id: int, reason: Optional[str]) -> TableSession:
        """Abandon a session that has not been paid for.

        Pending payments are failed, the cart is emptied and the table is freed.
        """
        if not reason or not reason.strip():
            raise ReasonRequired("A reason is required to cancel a session")

        with transaction(self.db):
            session = get_active_session(self.db, session_id, for_update=True)
            paid = (
                self.db.query(Payment)
                .filter(Payment.session_id == session_id, Payment.status == PaymentState.PAID)
                .count()
            )
            if paid:
                raise InvalidState(
                    "Session has settled payments and cannot be cancelled",
                    details={"session_id": session_id, "paid_payments": paid},
                )

            now = utcnow()
            session.status = SessionStatus.CANCELLED
            session.ended_at = now
            session.notes = reason.strip()

            self.db.query(Payment).filter(
                Payment.session_id == session_id,
                Payment.status == PaymentState.PENDING,
            ).update(
                {
                    Payment.status: PaymentState.FAILED,
                    Payment.failure_reason: "Session cancelled",
                    Payment.processed_at: now,
                },
                synchronize_session=False,
            )
            self.db.query(CartItem).filter(CartItem.session_id == session_id).delete(
                synchronize_session=False
            )
            self.db.query(Table).filter(
                Table.id == session.table_id,
                Table.current_session_id == session_id,
            ).update({Table.current_session_id: None}, synchronize_session=False)

        logger.info(f"Session {session_id} cancelled: {reason.strip()}")
        realtime.emit_cart_update(self.events, session_id, [])
        realtime.emit_table_status(
            self.events,
            restaurant_id=session.restaurant_id,
            table_id=session.table_id,
            status="available",
            has_active_session=False,
        )
        return session
