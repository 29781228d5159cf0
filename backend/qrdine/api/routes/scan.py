"""QR scan routes - diner entry point."""

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import success_response
from qrdine.db.session import DbSession
from qrdine.schemas.scan import ScanValidateRequest
from qrdine.services.realtime import EventBusDep
from qrdine.services.session_service import SessionService

router = APIRouter()


@router.post("/validate")
@limiter.limit("30/minute")
def validate_scan(request: Request, db: DbSession, events: EventBusDep, body: ScanValidateRequest):
    """Validate a scanned table QR code and join (or open) the table's session."""
    result = SessionService(db, events).validate_scan(body.qr_code, body.table_id, body.restaurant_id)
    return success_response(result)
