from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import (
    AssignmentCreate,
    AssignmentRead,
    UnassignResult,
    VehicleCreate,
    VehicleRead,
    VehicleStatusUpdate,
    VehicleUpdate,
)
from ambulink.domain.permissions import (
    PERM_ASSIGNMENT_WRITE,
    PERM_VEHICLE_APPROVE,
    PERM_VEHICLE_READ,
    PERM_VEHICLE_WRITE,
)
from ambulink.domain.state_machine import VehicleStatus
from ambulink.infra.audit import set_audit_context
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import ServiceError
from ambulink.services.vehicle_service import VehicleService

router = APIRouter()


def get_vehicle_service() -> VehicleService:
    return VehicleService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[VehicleService, Depends(get_vehicle_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "",
    response_model=VehicleRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_VEHICLE_WRITE))],
)
def create_vehicle(payload: VehicleCreate, principal: CurrentPrincipal, service: Service) -> VehicleRead:
    try:
        vehicle = service.create_vehicle(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return VehicleRead.model_validate(vehicle)


@router.get(
    "",
    response_model=list[VehicleRead],
    dependencies=[Depends(require_perm(PERM_VEHICLE_READ))],
)
def list_vehicles(
    principal: CurrentPrincipal,
    service: Service,
    status_filter: VehicleStatus | None = None,
    organization_id: str | None = None,
) -> list[VehicleRead]:
    rows = service.list_vehicles(principal, status=status_filter, organization_id=organization_id)
    return [VehicleRead.model_validate(item) for item in rows]


@router.get(
    "/{vehicle_id}",
    response_model=VehicleRead,
    dependencies=[Depends(require_perm(PERM_VEHICLE_READ))],
)
def get_vehicle(vehicle_id: str, principal: CurrentPrincipal, service: Service) -> VehicleRead:
    try:
        vehicle = service.get_vehicle(principal, vehicle_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return VehicleRead.model_validate(vehicle)


@router.patch(
    "/{vehicle_id}",
    response_model=VehicleRead,
    dependencies=[Depends(require_perm(PERM_VEHICLE_WRITE))],
)
def update_vehicle(
    vehicle_id: str,
    payload: VehicleUpdate,
    principal: CurrentPrincipal,
    service: Service,
) -> VehicleRead:
    try:
        vehicle = service.update_vehicle(principal, vehicle_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return VehicleRead.model_validate(vehicle)


@router.post(
    "/{vehicle_id}/approve",
    response_model=VehicleRead,
    dependencies=[Depends(require_perm(PERM_VEHICLE_APPROVE))],
)
def approve_vehicle(vehicle_id: str, request: Request, principal: CurrentPrincipal, service: Service) -> VehicleRead:
    set_audit_context(request, action="vehicle.approve", resource=f"vehicle:{vehicle_id}")
    try:
        vehicle = service.approve(principal, vehicle_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return VehicleRead.model_validate(vehicle)


@router.post(
    "/{vehicle_id}/status",
    response_model=VehicleRead,
    dependencies=[Depends(require_perm(PERM_VEHICLE_WRITE))],
)
def set_vehicle_status(
    vehicle_id: str,
    payload: VehicleStatusUpdate,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> VehicleRead:
    set_audit_context(
        request,
        action="vehicle.status",
        resource=f"vehicle:{vehicle_id}",
        detail={"what": {"target_status": payload.status}},
    )
    try:
        vehicle = service.set_status(principal, vehicle_id, payload.status)
    except ServiceError as exc:
        handle_service_error(exc)
    return VehicleRead.model_validate(vehicle)


@router.post(
    "/{vehicle_id}/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def assign_crew(
    vehicle_id: str,
    payload: AssignmentCreate,
    principal: CurrentPrincipal,
    assignments: Assignments,
) -> AssignmentRead:
    try:
        assignment = assignments.assign(principal, vehicle_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return AssignmentRead.model_validate(assignment)


@router.get(
    "/{vehicle_id}/assignments",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_perm(PERM_VEHICLE_READ))],
)
def list_vehicle_assignments(
    vehicle_id: str,
    principal: CurrentPrincipal,
    assignments: Assignments,
) -> list[AssignmentRead]:
    try:
        rows = assignments.list_for_vehicle(principal, vehicle_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return [AssignmentRead.model_validate(item) for item in rows]


@router.delete(
    "/{vehicle_id}/assignments/{user_id}",
    response_model=UnassignResult,
    dependencies=[Depends(require_perm(PERM_ASSIGNMENT_WRITE))],
)
def unassign_crew(
    vehicle_id: str,
    user_id: str,
    request: Request,
    principal: CurrentPrincipal,
    assignments: Assignments,
    assigning_organization_id: str | None = None,
) -> UnassignResult:
    try:
        result = assignments.unassign(principal, vehicle_id, user_id, assigning_organization_id)
    except ServiceError as exc:
        handle_service_error(exc)
    set_audit_context(
        request,
        action="assignment.remove",
        resource=f"vehicle:{vehicle_id}",
        detail={"what": {"user_id": user_id, "authorized_via": result.authorized_via}},
    )
    return result
