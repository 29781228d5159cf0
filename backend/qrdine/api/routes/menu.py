"""Menu routes."""

from fastapi import APIRouter, Request

from qrdine.core.rate_limit import limiter
from qrdine.core.responses import success_response
from qrdine.db.session import DbSession
from qrdine.services.catalog_service import CatalogService

router = APIRouter()


@router.get("/{restaurant_id}")
@limiter.limit("60/minute")
def get_menu(request: Request, db: DbSession, restaurant_id: int):
    """Available menu grouped by category, with quick-add suggestions."""
    return success_response(CatalogService(db).get_menu(restaurant_id))
