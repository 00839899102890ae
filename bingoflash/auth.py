"""
Shared-secret admin access and per-event PIN access.

With no ADMIN_TOKEN configured the service runs in dev mode and every admin
route is open.
"""
from typing import Optional

from fastapi import Request

from . import config
from .errors import ErrorCode, UnauthorizedError
from .helpers import ct_equal, norm_str
from .model.events import event_pin
from .model.store import DocumentStore


def admin_token() -> str:
    # read per request so tests and restarts can change it
    return (config.ADMIN_TOKEN or "").strip()


def provided_admin_token(request: Request) -> str:
    h = norm_str(request.headers.get("authorization"))
    if h.lower().startswith("bearer "):
        return h[7:].strip()
    if h:
        return h
    return norm_str(request.headers.get("x-admin-token"))


def is_admin(request: Request) -> bool:
    token = admin_token()
    if not token:
        return True
    provided = provided_admin_token(request)
    return bool(provided) and ct_equal(provided, token)


def require_admin(request: Request) -> None:
    if not is_admin(request):
        raise UnauthorizedError()


async def check_event_access(request: Request, store: DocumentStore,
                             event_id: str, *,
                             setting_pin: bool = False) -> Optional[str]:
    """Admin token, or the event's PIN in X-Event-Pin.

    An event without a PIN is only reachable with the admin token; that is
    also what it takes to set its first PIN. Returns how access was granted.
    """
    if is_admin(request):
        return "admin"

    async with store.snapshot() as doc:
        expected = event_pin(doc, event_id)
    if not expected:
        if setting_pin:
            raise UnauthorizedError(
                message="Setting the first PIN requires the admin token"
            )
        raise UnauthorizedError(ErrorCode.PIN_NOT_SET, "No PIN set")

    pin = norm_str(request.headers.get("x-event-pin"))
    if not pin:
        raise UnauthorizedError(ErrorCode.PIN_REQUIRED, "PIN required")
    if not ct_equal(pin, str(expected)):
        raise UnauthorizedError(ErrorCode.PIN_INVALID, "Invalid PIN")
    return "pin"
