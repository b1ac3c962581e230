"""Audit trail for state-changing API calls.

Every write under ``/api/`` produces one ``AuditLog`` row after the response
is known. Handlers can name the action, the resource and extra detail with
:func:`set_audit_context`; the middleware fills in the rest.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ambulink.domain.access import Principal
from ambulink.domain.models import AuditLog, now_utc
from ambulink.infra.db import engine
from ambulink.infra.request_context import CORRELATION_HEADER, bind_correlation_id

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
AUDIT_CONTEXT_STATE_KEY = "_audit_context"
ANONYMOUS_ORGANIZATION = "anonymous"


def write_audit_log(log: AuditLog) -> None:
    with Session(engine) as session:
        session.add(log)
        session.commit()


def merge_detail(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        current = merged.get(key)
        merged[key] = merge_detail(current, value) if isinstance(value, dict) and isinstance(current, dict) else value
    return merged


def outcome_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def should_audit_request(method: str, path: str) -> bool:
    return method in WRITE_METHODS and path.startswith("/api/")


def set_audit_context(
    request: Request,
    *,
    action: str | None = None,
    resource: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    context = dict(getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {}))
    if action is not None:
        context["action"] = action
    if resource is not None:
        context["resource"] = resource
    if detail:
        context["detail"] = merge_detail(context.get("detail", {}), detail)
    setattr(request.state, AUDIT_CONTEXT_STATE_KEY, context)


def build_audit_log(
    *,
    principal: Principal | None,
    method: str,
    path: str,
    route: str,
    client_ip: str | None,
    status_code: int,
    correlation_id: str,
    context: dict[str, Any],
) -> AuditLog:
    action = context.get("action") or f"{method}:{path}"
    resource = context.get("resource") or path
    organization_id = principal.organization_id if principal is not None else ANONYMOUS_ORGANIZATION
    detail: dict[str, Any] = {
        "who": {
            "organization_id": organization_id,
            "actor_id": principal.id if principal is not None else None,
            "role": str(principal.role) if principal is not None else None,
        },
        "where": {"path": path, "route": route, "client_ip": client_ip},
        "what": {"action": action, "resource": resource, "method": method},
        "result": {"status_code": status_code, "outcome": outcome_for(status_code)},
        "correlation_id": correlation_id,
    }
    if context.get("detail"):
        detail = merge_detail(detail, context["detail"])
    return AuditLog(
        organization_id=organization_id,
        actor_id=principal.id if principal is not None else None,
        action=action,
        resource=resource,
        method=method,
        status_code=status_code,
        ts=now_utc(),
        detail=detail,
    )


class AuditMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = bind_correlation_id(request.headers.get(CORRELATION_HEADER))
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id

        context = getattr(request.state, AUDIT_CONTEXT_STATE_KEY, {})
        if not should_audit_request(request.method, request.url.path) and not context:
            return response

        route = request.scope.get("route")
        log = build_audit_log(
            principal=getattr(request.state, "principal", None),
            method=request.method,
            path=request.url.path,
            route=getattr(route, "path", request.url.path),
            client_ip=request.client.host if request.client is not None else None,
            status_code=response.status_code,
            correlation_id=correlation_id,
            context=context,
        )
        try:
            write_audit_log(log)
        except Exception:
            logger.exception("failed to write audit log for %s %s", request.method, request.url.path)
        return response
