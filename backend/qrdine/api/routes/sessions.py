"""Session routes - summary, billing and lifecycle."""

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import list_response, success_response
from qrdine.db.session import DbSession
from qrdine.schemas.payment import CouponApply, SessionCancel
from qrdine.services.realtime import EventBusDep
from qrdine.services.serializers import bill_to_dict, payment_to_dict, session_to_dict
from qrdine.services.session_service import SessionService
from qrdine.services.settlement_service import SettlementService

router = APIRouter()


@router.get("/{session_id}")
@limiter.limit("60/minute")
def get_session_summary(request: Request, db: DbSession, events: EventBusDep, session_id: int):
    """Session with orders, payments, balance due and bill (once issued)."""
    return success_response(SessionService(db, events).get_summary(session_id))


@router.get("/{session_id}/payments")
@limiter.limit("60/minute")
def list_session_payments(request: Request, db: DbSession, events: EventBusDep, session_id: int):
    payments = SettlementService(db, events).list_payments(session_id)
    return list_response([payment_to_dict(p) for p in payments])


@router.get("/{session_id}/bill")
@limiter.limit("60/minute")
def get_session_bill(request: Request, db: DbSession, events: EventBusDep, session_id: int):
    return success_response(bill_to_dict(SettlementService(db, events).get_bill(session_id)))


@router.post("/{session_id}/coupon")
@limiter.limit("10/minute")
def apply_coupon(request: Request, db: DbSession, events: EventBusDep, session_id: int, body: CouponApply):
    return success_response(SettlementService(db, events).apply_coupon(session_id, body.code))


@router.post("/{session_id}/request-bill")
@limiter.limit("10/minute")
def request_bill(request: Request, db: DbSession, events: EventBusDep, session_id: int):
    session = SessionService(db, events).request_bill(session_id)
    return success_response(session_to_dict(session), message="Bill requested")


@router.post("/{session_id}/cancel")
@limiter.limit("10/minute")
def cancel_session(request: Request, db: DbSession, events: EventBusDep, session_id: int, body: SessionCancel):
    session = SessionService(db, events).cancel_session(session_id, body.reason)
    return success_response(session_to_dict(session), message="Session cancelled")
