"""FastAPI dependencies for the gateway and the caller's identity.

Authentication happens upstream; the authenticated user id arrives in
the ``X-User-Id`` header.
"""

import logging
from typing import Optional

from fastapi import Header, Request

from src.errors.exceptions import AuthenticationError
from src.errors.validators import validate_user_id
from src.realtime.gateway import RealtimeGateway

logger = logging.getLogger(__name__)


def get_gateway(request: Request) -> RealtimeGateway:
    """Return the process-wide gateway created by the app factory."""
    return request.app.state.gateway


async def require_user_id(
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    """Require the caller's user id on protected endpoints.

    Usage::

        @router.post("/messages/send/{receiver_id}")
        async def send(user_id: str = Depends(require_user_id)):
            ...
    """
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")
    return validate_user_id(x_user_id, field="X-User-Id")
