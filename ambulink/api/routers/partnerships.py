from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import (
    CollaborationDecisionRequest,
    CollaborationRequestCreate,
    CollaborationRequestRead,
    PartnershipPairRequest,
    PartnershipRead,
    PartnershipStatus,
)
from ambulink.domain.permissions import (
    PERM_COLLABORATION_APPROVE,
    PERM_COLLABORATION_READ,
    PERM_COLLABORATION_REQUEST,
    PERM_ORGANIZATION_WRITE,
)
from ambulink.domain.state_machine import CollaborationStatus
from ambulink.infra.audit import set_audit_context
from ambulink.services.errors import ServiceError
from ambulink.services.partnership_service import PartnershipService

router = APIRouter()


def get_partnership_service() -> PartnershipService:
    return PartnershipService()


Service = Annotated[PartnershipService, Depends(get_partnership_service)]


@router.post(
    "/requests",
    response_model=CollaborationRequestRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_REQUEST))],
)
def request_collaboration(
    payload: CollaborationRequestCreate,
    principal: CurrentPrincipal,
    service: Service,
) -> CollaborationRequestRead:
    try:
        request = service.request_collaboration(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return CollaborationRequestRead.model_validate(request)


@router.get(
    "/requests",
    response_model=list[CollaborationRequestRead],
    dependencies=[Depends(require_perm(PERM_COLLABORATION_READ))],
)
def list_requests(
    principal: CurrentPrincipal,
    service: Service,
    status_filter: CollaborationStatus | None = None,
) -> list[CollaborationRequestRead]:
    rows = service.list_requests(principal, status=status_filter)
    return [CollaborationRequestRead.model_validate(item) for item in rows]


@router.get(
    "/requests/{request_id}",
    response_model=CollaborationRequestRead,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_READ))],
)
def get_request(request_id: str, principal: CurrentPrincipal, service: Service) -> CollaborationRequestRead:
    try:
        request = service.get_request(principal, request_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return CollaborationRequestRead.model_validate(request)


@router.post(
    "/requests/{request_id}/accept",
    response_model=PartnershipRead,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_APPROVE))],
)
def accept_request(
    request_id: str,
    payload: CollaborationDecisionRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> PartnershipRead:
    set_audit_context(request, action="collaboration.accept", resource=f"collaboration:{request_id}")
    try:
        _, partnership = service.accept(principal, request_id, payload.reason)
    except ServiceError as exc:
        handle_service_error(exc)
    return PartnershipRead.model_validate(partnership)


@router.post(
    "/requests/{request_id}/reject",
    response_model=CollaborationRequestRead,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_APPROVE))],
)
def reject_request(
    request_id: str,
    payload: CollaborationDecisionRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> CollaborationRequestRead:
    set_audit_context(request, action="collaboration.reject", resource=f"collaboration:{request_id}")
    try:
        row = service.reject(principal, request_id, payload.reason)
    except ServiceError as exc:
        handle_service_error(exc)
    return CollaborationRequestRead.model_validate(row)


@router.post(
    "/requests/{request_id}/cancel",
    response_model=CollaborationRequestRead,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_READ))],
)
def cancel_request(
    request_id: str,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> CollaborationRequestRead:
    set_audit_context(request, action="collaboration.cancel", resource=f"collaboration:{request_id}")
    try:
        row = service.cancel(principal, request_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return CollaborationRequestRead.model_validate(row)


@router.get(
    "",
    response_model=list[PartnershipRead],
    dependencies=[Depends(require_perm(PERM_COLLABORATION_READ))],
)
def list_partnerships(
    principal: CurrentPrincipal,
    service: Service,
    status_filter: PartnershipStatus | None = None,
) -> list[PartnershipRead]:
    rows = service.list_partnerships(principal, status=status_filter)
    return [PartnershipRead.model_validate(item) for item in rows]


@router.post(
    "/deactivate",
    response_model=PartnershipRead,
    dependencies=[Depends(require_perm(PERM_COLLABORATION_READ))],
)
def deactivate_partnership(
    payload: PartnershipPairRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> PartnershipRead:
    set_audit_context(
        request,
        action="partnership.deactivate",
        detail={"what": {"fleet_id": payload.fleet_id, "hospital_id": payload.hospital_id}},
    )
    try:
        partnership = service.deactivate_partnership(principal, payload.fleet_id, payload.hospital_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return PartnershipRead.model_validate(partnership)


@router.post(
    "/ensure",
    response_model=PartnershipRead,
    dependencies=[Depends(require_perm(PERM_ORGANIZATION_WRITE))],
)
def ensure_partnership(
    payload: PartnershipPairRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> PartnershipRead:
    try:
        partnership, changed = service.ensure_active_partnership(payload.fleet_id, payload.hospital_id, principal.id)
    except ServiceError as exc:
        handle_service_error(exc)
    set_audit_context(request, action="partnership.ensure", detail={"result": {"changed": changed}})
    return PartnershipRead.model_validate(partnership)
