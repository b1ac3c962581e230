from __future__ import annotations

from datetime import UTC, datetime

from sqlmodel import Session, or_, select

from ambulink.domain.access import Principal
from ambulink.domain.models import Patient, PatientCreate, PatientUpdate
from ambulink.infra.db import get_engine
from ambulink.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    commit_or_raise,
)
from ambulink.services.organization_service import OrganizationService


class PatientService:
    """Patient records. Trip pointers on a patient are owned by the trip lifecycle."""

    def __init__(self) -> None:
        self._organizations = OrganizationService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def can_use(self, principal: Principal, patient: Patient) -> bool:
        return (
            principal.is_superadmin
            or patient.organization_id is None
            or patient.organization_id == principal.organization_id
        )

    def require_patient(self, session: Session, patient_id: str, *, for_update: bool = False) -> Patient:
        if for_update:
            patient = session.exec(select(Patient).where(Patient.id == patient_id).with_for_update()).first()
        else:
            patient = session.get(Patient, patient_id)
        if patient is None:
            raise NotFoundError("patient not found")
        return patient

    def _get_for_principal(self, session: Session, principal: Principal, patient_id: str) -> Patient:
        patient = self.require_patient(session, patient_id)
        if not self.can_use(principal, patient):
            raise NotFoundError("patient not found")
        return patient

    def create_patient(self, principal: Principal, payload: PatientCreate) -> Patient:
        if principal.is_superadmin:
            # A superadmin without an organization creates a global record.
            organization_id = payload.organization_id
        else:
            organization_id = principal.organization_id

        with self._session() as session:
            if organization_id is not None:
                self._organizations.require_organization(session, organization_id)
            patient = Patient(
                **payload.model_dump(exclude={"organization_id"}),
                organization_id=organization_id,
                created_by=principal.id,
            )
            session.add(patient)
            commit_or_raise(session, "patient code already exists")
            session.refresh(patient)
            return patient

    def get_patient(self, principal: Principal, patient_id: str) -> Patient:
        with self._session() as session:
            return self._get_for_principal(session, principal, patient_id)

    def list_patients(
        self,
        principal: Principal,
        available_only: bool = False,
        include_inactive: bool = False,
    ) -> list[Patient]:
        with self._session() as session:
            statement = select(Patient)
            if not principal.is_superadmin:
                statement = statement.where(
                    or_(
                        Patient.organization_id == principal.organization_id,
                        Patient.organization_id == None,  # noqa: E711
                    )
                )
            if available_only:
                statement = statement.where(Patient.is_onboarded == False)  # noqa: E712
            if not include_inactive:
                statement = statement.where(Patient.is_active == True)  # noqa: E712
            return list(session.exec(statement.order_by(Patient.code)).all())

    def update_patient(self, principal: Principal, patient_id: str, payload: PatientUpdate) -> Patient:
        with self._session() as session:
            patient = self._get_for_principal(session, principal, patient_id)
            if patient.organization_id is None and not principal.is_superadmin:
                raise ForbiddenError("global patient records are read-only")
            for key, value in payload.model_dump(exclude_unset=True).items():
                setattr(patient, key, value)
            patient.updated_at = datetime.now(UTC)
            session.add(patient)
            commit_or_raise(session, "patient update conflict")
            session.refresh(patient)
            return patient

    def _set_active(self, principal: Principal, patient_id: str, is_active: bool) -> Patient:
        with self._session() as session:
            patient = self._get_for_principal(session, principal, patient_id)
            if patient.organization_id is None and not principal.is_superadmin:
                raise ForbiddenError("global patient records are read-only")
            if not is_active and patient.is_onboarded:
                raise ConflictError("patient is onboarded on a trip")
            patient.is_active = is_active
            patient.updated_at = datetime.now(UTC)
            session.add(patient)
            commit_or_raise(session, "patient update conflict")
            session.refresh(patient)
            return patient

    def deactivate_patient(self, principal: Principal, patient_id: str) -> Patient:
        return self._set_active(principal, patient_id, False)

    def activate_patient(self, principal: Principal, patient_id: str) -> Patient:
        return self._set_active(principal, patient_id, True)
