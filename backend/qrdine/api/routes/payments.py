"""Payment routes.

``/confirm`` and ``/fail`` are the gateway webhooks of the two-phase flow.
"""

from typing import Optional

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import success_response
from qrdine.db.session import DbSession
from qrdine.schemas.payment import PaymentConfirm, PaymentCreate, PaymentReason
from qrdine.services.realtime import EventBusDep
from qrdine.services.serializers import payment_to_dict
from qrdine.services.settlement_service import SettlementService

router = APIRouter()


@router.post("", status_code=201)
@limiter.limit("20/minute")
def initiate_payment(request: Request, db: DbSession, events: EventBusDep, body: PaymentCreate):
    payment = SettlementService(db, events).initiate_payment(
        body.session_id, body.amount, body.method, body.transaction_id
    )
    return success_response(payment_to_dict(payment), message="Payment initiated")


@router.post("/{payment_id}/confirm")
@limiter.limit("60/minute")
def confirm_payment(
    request: Request, db: DbSession, events: EventBusDep, payment_id: int, body: Optional[PaymentConfirm] = None
):
    transaction_id = body.transaction_id if body else None
    payment = SettlementService(db, events).confirm_payment(payment_id, transaction_id)
    return success_response(payment_to_dict(payment))


@router.post("/{payment_id}/fail")
@limiter.limit("60/minute")
def fail_payment(request: Request, db: DbSession, events: EventBusDep, payment_id: int, body: PaymentReason):
    payment = SettlementService(db, events).fail_payment(payment_id, body.reason)
    return success_response(payment_to_dict(payment))


@router.post("/{payment_id}/refund")
@limiter.limit("10/minute")
def refund_payment(request: Request, db: DbSession, events: EventBusDep, payment_id: int, body: PaymentReason):
    payment = SettlementService(db, events).refund_payment(payment_id, body.reason)
    return success_response(payment_to_dict(payment), message="Payment refunded")
