"""
Starlette adapter for the authorization gate.

Normalizes an incoming request into a RequestDescriptor and renders gate
decisions as JSON error responses. Routing stays with the application: the
middleware only asks a resolver which action and resource a request targets.
"""

import logging
import math
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from .exceptions import AdminGateError
from .gate import AuthorizationGate
from .types import STATUS_CODES, Decision, DenyReason, RequestDescriptor, Resource
from .utils import get_client_ip

logger = logging.getLogger(__name__)

ActionResolver = Callable[[Request], tuple[str, Resource] | None]

MESSAGES = {
    DenyReason.TOKEN_INVALID: "Invalid credentials",
    DenyReason.TOKEN_EXPIRED: "Credentials have expired",
    DenyReason.SESSION_REVOKED: "Session is no longer active",
    DenyReason.IDENTITY_NOT_FOUND: "Invalid credentials",
    DenyReason.IP_NOT_ALLOWED: "Access from this address is not allowed",
    DenyReason.LOCKED: "Account is temporarily locked",
    DenyReason.RATE_LIMITED: "Too many requests",
    DenyReason.INSUFFICIENT_ROLE: "Insufficient role",
    DenyReason.PERMISSION_NOT_GRANTED: "Permission not granted",
    DenyReason.SCOPE_EXCEEDED: "Resource is outside the permitted scope",
    DenyReason.STATUS_NOT_ACTIVE: "Account is not active",
    DenyReason.TEMPORARILY_UNAVAILABLE: "Authorization is temporarily unavailable",
}


def status_code_for(reason: DenyReason | None) -> int:
    """Map a denial reason to an HTTP status code; None means an internal error."""
    if reason is None:
        return HTTP_500_INTERNAL_SERVER_ERROR
    return STATUS_CODES[reason]


def bearer_credential(request: Request) -> str | None:
    authorization = request.headers.get("authorization", "")
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential.strip():
        return None
    return credential.strip()


def descriptor_from_request(
    request: Request,
    action: str,
    resource: Resource,
    now: datetime | None = None,
    trusted_proxies: list[str] | None = None,
) -> RequestDescriptor:
    """Build a RequestDescriptor from a Starlette request."""
    return RequestDescriptor(
        credential=bearer_credential(request),
        source_ip=get_client_ip(request, trusted_proxies),
        action=action,
        resource=resource,
        now=now or datetime.now(UTC),
        user_agent=request.headers.get("user-agent", ""),
        request_id=request.headers.get("x-request-id") or uuid.uuid4().hex,
    )


def decision_response(decision: Decision, request_id: str | None) -> JSONResponse:
    """Render a denied decision as a JSON error response."""
    headers = {}
    if decision.retry_after is not None and decision.reason in (
        DenyReason.RATE_LIMITED,
        DenyReason.LOCKED,
    ):
        headers["Retry-After"] = str(max(1, math.ceil(decision.retry_after.total_seconds())))

    return JSONResponse(
        {
            "code": decision.reason.value,
            "message": MESSAGES[decision.reason],
            "request_id": request_id,
        },
        status_code=status_code_for(decision.reason),
        headers=headers,
    )


def error_response(error: AdminGateError, request_id: str | None) -> JSONResponse:
    """Render an internal gate failure. Error details are not exposed."""
    return JSONResponse(
        {
            "code": "internal_error",
            "message": "Internal server error",
            "request_id": request_id,
        },
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
    )


class AdminGateMiddleware(BaseHTTPMiddleware):
    """Runs the authorization gate in front of protected routes."""

    def __init__(
        self,
        app,
        gate: AuthorizationGate,
        resolve_action: ActionResolver,
        trusted_proxies: list[str] | None = None,
    ):
        super().__init__(app)
        self.gate = gate
        self.resolve_action = resolve_action
        self.trusted_proxies = (
            gate.config.trusted_proxies if trusted_proxies is None else trusted_proxies
        )

    async def dispatch(self, request: Request, call_next):
        target = self.resolve_action(request)
        if target is None:
            return await call_next(request)

        action, resource = target
        descriptor = descriptor_from_request(
            request, action, resource, trusted_proxies=self.trusted_proxies
        )

        try:
            decision = await self.gate.authorize_within(descriptor)
        except AdminGateError as e:
            logger.error(
                f"Authorization of '{action}' failed for request {descriptor.request_id}: {e.message}"
            )
            return error_response(e, descriptor.request_id)

        if not decision.allowed:
            return decision_response(decision, descriptor.request_id)

        request.state.admin_decision = decision
        request.state.admin_request = descriptor
        return await call_next(request)
