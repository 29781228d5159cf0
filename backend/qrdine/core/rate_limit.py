"""Shared rate limiter instance for use across route files."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from qrdine.core.config import settings


def get_session_or_ip(request: Request) -> str:
    """Rate limit diners by dining session when one is given, else by IP.

    Several phones at one table share a NAT address; keying on the session
    keeps one busy table from throttling its neighbours.
    """
    session_id = request.query_params.get("session_id")
    if session_id:
        return f"session:{session_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
session_limiter = Limiter(key_func=get_session_or_ip, enabled=settings.rate_limit_enabled)
