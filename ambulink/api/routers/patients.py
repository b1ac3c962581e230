from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ambulink.api.deps import CurrentPrincipal, handle_service_error, require_perm
from ambulink.domain.models import PatientCreate, PatientRead, PatientUpdate
from ambulink.domain.permissions import PERM_PATIENT_READ, PERM_PATIENT_WRITE
from ambulink.services.errors import ServiceError
from ambulink.services.patient_service import PatientService

router = APIRouter()


def get_patient_service() -> PatientService:
    return PatientService()


Service = Annotated[PatientService, Depends(get_patient_service)]


@router.post(
    "",
    response_model=PatientRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PATIENT_WRITE))],
)
def create_patient(payload: PatientCreate, principal: CurrentPrincipal, service: Service) -> PatientRead:
    try:
        patient = service.create_patient(principal, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return PatientRead.model_validate(patient)


@router.get(
    "",
    response_model=list[PatientRead],
    dependencies=[Depends(require_perm(PERM_PATIENT_READ))],
)
def list_patients(
    principal: CurrentPrincipal,
    service: Service,
    available_only: bool = False,
    include_inactive: bool = False,
) -> list[PatientRead]:
    rows = service.list_patients(principal, available_only=available_only, include_inactive=include_inactive)
    return [PatientRead.model_validate(item) for item in rows]


@router.get(
    "/{patient_id}",
    response_model=PatientRead,
    dependencies=[Depends(require_perm(PERM_PATIENT_READ))],
)
def get_patient(patient_id: str, principal: CurrentPrincipal, service: Service) -> PatientRead:
    try:
        patient = service.get_patient(principal, patient_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return PatientRead.model_validate(patient)


@router.patch(
    "/{patient_id}",
    response_model=PatientRead,
    dependencies=[Depends(require_perm(PERM_PATIENT_WRITE))],
)
def update_patient(
    patient_id: str,
    payload: PatientUpdate,
    principal: CurrentPrincipal,
    service: Service,
) -> PatientRead:
    try:
        patient = service.update_patient(principal, patient_id, payload)
    except ServiceError as exc:
        handle_service_error(exc)
    return PatientRead.model_validate(patient)


@router.post(
    "/{patient_id}/deactivate",
    response_model=PatientRead,
    dependencies=[Depends(require_perm(PERM_PATIENT_WRITE))],
)
def deactivate_patient(patient_id: str, principal: CurrentPrincipal, service: Service) -> PatientRead:
    try:
        patient = service.deactivate_patient(principal, patient_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return PatientRead.model_validate(patient)


@router.post(
    "/{patient_id}/activate",
    response_model=PatientRead,
    dependencies=[Depends(require_perm(PERM_PATIENT_WRITE))],
)
def activate_patient(patient_id: str, principal: CurrentPrincipal, service: Service) -> PatientRead:
    try:
        patient = service.activate_patient(principal, patient_id)
    except ServiceError as exc:
        handle_service_error(exc)
    return PatientRead.model_validate(patient)
