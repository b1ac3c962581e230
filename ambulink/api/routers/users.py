from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import UserCreate, UserRead, UserStatus, VehicleRead
from ambulink.domain.permissions import PERM_USER_READ, PERM_USER_WRITE, PERM_VEHICLE_READ, UserRole
from ambulink.infra.audit import set_audit_context
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import ServiceError
from ambulink.services.user_service import UserService

router = APIRouter()


def get_user_service() -> UserService:
    return UserService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


Service = Annotated[UserService, Depends(get_user_service)]
Assignments = Annotated[AssignmentService, Depends(get_assignment_service)]


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_USER_WRITE))],
)
def create_user(payload: UserCreate, principal: CurrentPrincipal, service: Service) -> UserRead:
    try:
        user = service.create_user(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return UserRead.model_validate(user)


@router.get(
    "",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_USER_READ))],
)
def list_users(
    principal: CurrentPrincipal,
    service: Service,
    role: UserRole | None = None,
    status_filter: UserStatus | None = None,
) -> list[UserRead]:
    rows = service.list_users(principal, role=role, status=status_filter)
    return [UserRead.model_validate(item) for item in rows]


@router.get(
    "/me/vehicles",
    response_model=list[VehicleRead],
    dependencies=[Depends(require_perm(PERM_VEHICLE_READ))],
)
def list_my_vehicles(principal: CurrentPrincipal, assignments: Assignments) -> list[VehicleRead]:
    rows = assignments.list_assigned_vehicles(principal)
    return [VehicleRead.model_validate(item) for item in rows]


@router.get(
    "/{user_id}",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USER_READ))],
)
def get_user(user_id: str, principal: CurrentPrincipal, service: Service) -> UserRead:
    try:
        user = service.get_user(principal, user_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return UserRead.model_validate(user)


@router.get(
    "/{user_id}/vehicles",
    response_model=list[VehicleRead],
    dependencies=[Depends(require_perm(PERM_USER_READ))],
)
def list_user_vehicles(user_id: str, principal: CurrentPrincipal, assignments: Assignments) -> list[VehicleRead]:
    try:
        rows = assignments.list_assigned_vehicles(principal, user_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return [VehicleRead.model_validate(item) for item in rows]


@router.post(
    "/{user_id}/suspend",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USER_WRITE))],
)
def suspend_user(user_id: str, request: Request, principal: CurrentPrincipal, service: Service) -> UserRead:
    set_audit_context(request, action="user.suspend", resource=f"user:{user_id}")
    try:
        user = service.suspend_user(principal, user_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return UserRead.model_validate(user)


@router.post(
    "/{user_id}/activate",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_USER_WRITE))],
)
def activate_user(user_id: str, request: Request, principal: CurrentPrincipal, service: Service) -> UserRead:
    set_audit_context(request, action="user.activate", resource=f"user:{user_id}")
    try:
        user = service.activate_user(principal, user_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return UserRead.model_validate(user)
