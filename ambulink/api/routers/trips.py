from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import (
    CancelRequest,
    OffboardRequest,
    OnboardRequest,
    TripDataEntryCreate,
    TripDataEntryRead,
    TripRead,
)
from ambulink.domain.permissions import (
    PERM_TRIP_DATA_WRITE,
    PERM_TRIP_OFFBOARD,
    PERM_TRIP_ONBOARD,
    PERM_TRIP_READ,
)
from ambulink.domain.state_machine import TripStatus
from ambulink.infra.audit import set_audit_context
from ambulink.services.errors import ServiceError
from ambulink.services.trip_service import TripService

router = APIRouter()


def get_trip_service() -> TripService:
    return TripService()


Service = Annotated[TripService, Depends(get_trip_service)]


@router.post(
    "",
    response_model=TripRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_TRIP_ONBOARD))],
)
def onboard(payload: OnboardRequest, request: Request, principal: CurrentPrincipal, service: Service) -> TripRead:
    set_audit_context(
        request,
        action="trip.onboard",
        detail={"what": {"vehicle_id": payload.vehicle_id, "patient_id": payload.patient_id}},
    )
    try:
        trip = service.onboard(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripRead.model_validate(trip)


@router.get(
    "",
    response_model=list[TripRead],
    dependencies=[Depends(require_perm(PERM_TRIP_READ))],
)
def list_trips(
    principal: CurrentPrincipal,
    service: Service,
    status_filter: TripStatus | None = None,
    vehicle_id: str | None = None,
    patient_id: str | None = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[TripRead]:
    rows = service.list_trips(
        principal,
        status=status_filter,
        vehicle_id=vehicle_id,
        patient_id=patient_id,
        limit=limit,
        offset=offset,
    )
    return [TripRead.model_validate(item) for item in rows]


@router.get(
    "/{trip_id}",
    response_model=TripRead,
    dependencies=[Depends(require_perm(PERM_TRIP_READ))],
)
def get_trip(trip_id: str, principal: CurrentPrincipal, service: Service) -> TripRead:
    try:
        trip = service.get_trip(principal, trip_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripRead.model_validate(trip)


@router.post(
    "/{trip_id}/transit",
    response_model=TripRead,
    dependencies=[Depends(require_perm(PERM_TRIP_OFFBOARD))],
)
def start_transit(trip_id: str, request: Request, principal: CurrentPrincipal, service: Service) -> TripRead:
    set_audit_context(request, action="trip.transit", resource=f"trip:{trip_id}")
    try:
        trip = service.start_transit(principal, trip_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripRead.model_validate(trip)


@router.post(
    "/{trip_id}/offboard",
    response_model=TripRead,
    dependencies=[Depends(require_perm(PERM_TRIP_OFFBOARD))],
)
def offboard(
    trip_id: str,
    payload: OffboardRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> TripRead:
    set_audit_context(request, action="trip.offboard", resource=f"trip:{trip_id}")
    try:
        trip = service.offboard(principal, trip_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripRead.model_validate(trip)


@router.post(
    "/{trip_id}/cancel",
    response_model=TripRead,
    dependencies=[Depends(require_perm(PERM_TRIP_OFFBOARD))],
)
def cancel(
    trip_id: str,
    payload: CancelRequest,
    request: Request,
    principal: CurrentPrincipal,
    service: Service,
) -> TripRead:
    set_audit_context(request, action="trip.cancel", resource=f"trip:{trip_id}")
    try:
        trip = service.cancel(principal, trip_id, payload.reason)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripRead.model_validate(trip)


@router.post(
    "/{trip_id}/data",
    response_model=TripDataEntryRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_TRIP_DATA_WRITE))],
)
def add_entry(
    trip_id: str,
    payload: TripDataEntryCreate,
    principal: CurrentPrincipal,
    service: Service,
) -> TripDataEntryRead:
    try:
        entry = service.add_entry(principal, trip_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return TripDataEntryRead.model_validate(entry)


@router.get(
    "/{trip_id}/data",
    response_model=list[TripDataEntryRead],
    dependencies=[Depends(require_perm(PERM_TRIP_READ))],
)
def list_entries(trip_id: str, principal: CurrentPrincipal, service: Service) -> list[TripDataEntryRead]:
    try:
        rows = service.list_entries(principal, trip_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return [TripDataEntryRead.model_validate(item) for item in rows]


@router.delete(
    "/{trip_id}/data/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_perm(PERM_TRIP_DATA_WRITE))],
)
def delete_entry(trip_id: str, entry_id: str, principal: CurrentPrincipal, service: Service) -> Response:
    try:
        service.delete_entry(principal, trip_id, entry_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
