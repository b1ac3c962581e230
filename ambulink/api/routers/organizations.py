from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import (
    OrganizationCreate,
    OrganizationRead,
    OrganizationStatus,
    OrganizationStatusUpdate,
)
from ambulink.domain.permissions import (
    PERM_ORGANIZATION_READ,
    PERM_ORGANIZATION_WRITE,
    OrganizationType,
)
from ambulink.infra.audit import set_audit_context
from ambulink.services.errors import ServiceError
from ambulink.services.organization_service import OrganizationService

router = APIRouter()


def get_organization_service() -> OrganizationService:
    return OrganizationService()


Service = Annotated[OrganizationService, Depends(get_organization_service)]


@router.post(
    "",
    response_model=OrganizationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ORGANIZATION_WRITE))],
)
def create_organization(payload: OrganizationCreate, principal: CurrentPrincipal, service: Service) -> OrganizationRead:
    try:
        organization = service.create_organization(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return OrganizationRead.model_validate(organization)


@router.get(
    "",
    response_model=list[OrganizationRead],
    dependencies=[Depends(require_perm(PERM_ORGANIZATION_READ))],
)
def list_organizations(
    service: Service,
    organization_type: OrganizationType | None = None,
    status_filter: OrganizationStatus | None = None,
) -> list[OrganizationRead]:
    rows = service.list_organizations(organization_type=organization_type, status=status_filter)
    return [OrganizationRead.model_validate(item) for item in rows]


@router.get(
    "/{organization_id}",
    response_model=OrganizationRead,
    dependencies=[Depends(require_perm(PERM_ORGANIZATION_READ))],
)
def get_organization(organization_id: str, service: Service) -> OrganizationRead:
    try:
        organization = service.get_organization(organization_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return OrganizationRead.model_validate(organization)


@router.patch(
    "/{organization_id}/status",
    response_model=OrganizationRead,
    dependencies=[Depends(require_perm(PERM_ORGANIZATION_WRITE))],
)
def set_organization_status(
    organization_id: str,
    payload: OrganizationStatusUpdate,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> OrganizationRead:
    set_audit_context(request, action="organization.status", detail={"what": {"status": payload.status}})
    try:
        organization = service.set_organization_status(principal, organization_id, payload.status)
    except ServiceError as exc:
        handle_service_error(exc)
    return OrganizationRead.model_validate(organization)

