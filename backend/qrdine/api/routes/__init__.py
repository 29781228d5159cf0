"""API routes."""

import logging
from fastapi import APIRouter

logger = logging.getLogger(__name__)

from qrdine.api.routes import (
    scan, menu, cart, orders, payments, sessions, restaurants, feedback,
    websocket_endpoints,
)

api_router = APIRouter()

# Diner flow
api_router.include_router(scan.router, prefix="/scan", tags=["scan"])
api_router.include_router(menu.router, prefix="/menu", tags=["menu"])
api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders", "kitchen"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(feedback.router, prefix="/feedback", tags=["feedback"])

# Sessions and staff dashboard
api_router.include_router(sessions.router, prefix="/sessions", tags=["sessions", "billing"])
api_router.include_router(restaurants.router, prefix="/restaurants", tags=["restaurants", "floor-plan"])

# Real-time rooms
api_router.include_router(websocket_endpoints.router, prefix="/ws", tags=["websocket"])
