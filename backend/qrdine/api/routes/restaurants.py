"""Restaurant dashboard routes."""

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import list_response
from qrdine.db.session import DbSession
from qrdine.services.realtime import EventBusDep
from qrdine.services.session_service import SessionService

router = APIRouter()


@router.get("/{restaurant_id}/tables")
@limiter.limit("60/minute")
def list_tables(request: Request, db: DbSession, events: EventBusDep, restaurant_id: int):
    """Floor plan: every table with its live session state."""
    return list_response(SessionService(db, events).list_tables(restaurant_id))
