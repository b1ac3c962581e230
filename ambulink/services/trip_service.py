from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlmodel import Session, col, or_, select

from ambulink.domain.access import Principal, TripAccessContext, can_access, resolve_access
from ambulink.domain.models import (
    Assignment,
    OffboardRequest,
    OnboardRequest,
    Organization,
    Patient,
    Trip,
    TripDataEntry,
    TripDataEntryCreate,
    Vehicle,
)
from ambulink.domain.permissions import OrganizationType, is_admin_role
from ambulink.domain.state_machine import TripStatus, VehicleStatus, can_trip_transition, is_terminal
from ambulink.infra.db import get_engine
from ambulink.infra.events import event_bus
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    commit_or_raise,
)
from ambulink.services.organization_service import OrganizationService
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.patient_service import PatientService
from ambulink.services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _new_trip_code() -> str:
    return f"TRIP-{datetime.now(UTC):%Y%m%d%H%M%S}-{uuid4().hex[:6].upper()}"


class TripService:
    """Owns the trip lifecycle: onboard, transit, offboard and cancel.

    Every lifecycle write touches the trip, its vehicle and its patient in a
    single transaction. Events are published only after the commit.
    """

    def __init__(self) -> None:
        self._organizations = OrganizationService()
        self._partnerships = PartnershipService()
        self._vehicles = VehicleService()
        self._assignments = AssignmentService()
        self._patients = PatientService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _require_trip(self, session: Session, trip_id: str, *, for_update: bool = False) -> Trip:
        if for_update:
            trip = session.exec(select(Trip).where(Trip.id == trip_id).with_for_update()).first()
        else:
            trip = session.get(Trip, trip_id)
        if trip is None:
            raise NotFoundError("trip not found")
        return trip

    def _access_context(self, session: Session, principal: Principal, trip: Trip) -> TripAccessContext:
        vehicle = self._vehicles.require_vehicle(session, trip.vehicle_id)
        return TripAccessContext(
            principal=principal,
            trip_organization_id=trip.organization_id,
            destination_organization_id=trip.destination_organization_id,
            vehicle_organization_id=vehicle.organization_id,
            active_crew_user_ids=self._assignments.active_crew_ids(session, trip.vehicle_id),
        )

    def _visible_trip(self, session: Session, principal: Principal, trip_id: str, *, for_update: bool = False) -> Trip:
        trip = self._require_trip(session, trip_id, for_update=for_update)
        if not can_access(self._access_context(session, principal, trip)):
            raise NotFoundError("trip not found")
        return trip

    def _authorize(self, session: Session, principal: Principal, trip: Trip) -> str:
        path = resolve_access(self._access_context(session, principal, trip))
        if path is None:
            raise ForbiddenError("not allowed to act on this trip")
        return path

    def _bind_patient_to_trip(self, patient: Patient, trip: Trip | None) -> None:
        """The only writer of a patient's onboarding pointers."""
        patient.is_onboarded = trip is not None
        patient.current_trip_id = trip.id if trip is not None else None
        patient.updated_at = datetime.now(UTC)

    def _ensure_can_use_vehicle(self, session: Session, principal: Principal, vehicle: Vehicle) -> None:
        if principal.is_superadmin or principal.organization_id == vehicle.organization_id:
            return
        if principal.organization_type == OrganizationType.HOSPITAL and self._partnerships.has_active_partnership(
            session, vehicle.organization_id, principal.organization_id
        ):
            return
        raise ForbiddenError("vehicle belongs to an organization without an active partnership")

    def _release(self, session: Session, trip: Trip) -> None:
        vehicle = self._vehicles.require_vehicle(session, trip.vehicle_id, for_update=True)
        vehicle.status = VehicleStatus.AVAILABLE
        self._vehicles.release_lock(vehicle)
        session.add(vehicle)

        patient = self._patients.require_patient(session, trip.patient_id, for_update=True)
        if patient.current_trip_id == trip.id:
            self._bind_patient_to_trip(patient, None)
            session.add(patient)

        trip.active_vehicle_id = None
        trip.active_patient_id = None

    def _event_payload(self, trip: Trip, vehicle_organization_id: str, **extra: Any) -> dict[str, Any]:
        return {
            "trip_id": trip.id,
            "trip_code": trip.code,
            "vehicle_id": trip.vehicle_id,
            "patient_id": trip.patient_id,
            "destination_organization_id": trip.destination_organization_id,
            "vehicle_organization_id": vehicle_organization_id,
            **extra,
        }

    def onboard(self, principal: Principal, payload: OnboardRequest) -> Trip:
        with self._session() as session:
            vehicle = self._vehicles.require_vehicle(session, payload.vehicle_id, for_update=True)
            if vehicle.status == VehicleStatus.ACTIVE:
                raise ConflictError("vehicle is already on a trip")
            if vehicle.status != VehicleStatus.AVAILABLE:
                raise InvalidStateError(f"vehicle is {vehicle.status}")
            if self._vehicles.has_live_trip(session, vehicle.id):
                raise ConflictError("vehicle is already on a trip")
            if vehicle.locked_hospital_id not in {None, principal.organization_id}:
                raise ConflictError("vehicle is locked by another hospital")

            patient = self._patients.require_patient(session, payload.patient_id, for_update=True)
            if not self._patients.can_use(principal, patient):
                raise NotFoundError("patient not found")
            if not patient.is_active:
                raise InvalidStateError("patient record is inactive")
            live_patient_trip = session.exec(select(Trip).where(Trip.active_patient_id == patient.id)).first()
            if patient.is_onboarded or live_patient_trip is not None:
                raise ConflictError("patient is already on a trip")

            self._ensure_can_use_vehicle(session, principal, vehicle)

            if payload.destination_organization_id is not None:
                self._organizations.require_organization(
                    session, payload.destination_organization_id, OrganizationType.HOSPITAL
                )

            trip = Trip(
                code=_new_trip_code(),
                patient_id=patient.id,
                vehicle_id=vehicle.id,
                organization_id=principal.organization_id,
                destination_organization_id=payload.destination_organization_id,
                status=TripStatus.ONBOARDED,
                active_vehicle_id=vehicle.id,
                active_patient_id=patient.id,
                pickup_location=payload.pickup_location,
                pickup_coordinates=payload.pickup_coordinates,
                destination_location=payload.destination_location,
                destination_coordinates=payload.destination_coordinates,
                chief_complaint=payload.chief_complaint,
                initial_assessment=payload.initial_assessment,
                onboarded_by=principal.id,
            )
            session.add(trip)

            vehicle.status = VehicleStatus.ACTIVE
            self._vehicles.claim_lock(vehicle, principal.organization_id)
            session.add(vehicle)

            self._bind_patient_to_trip(patient, trip)
            session.add(patient)

            commit_or_raise(session, "vehicle or patient is already on a trip")
            session.refresh(trip)
            vehicle_organization_id = vehicle.organization_id

        logger.info("trip %s onboarded on vehicle %s", trip.code, trip.vehicle_id)
        event_bus.publish_dict(
            "onboarded",
            trip.organization_id,
            self._event_payload(trip, vehicle_organization_id),
            actor_id=principal.id,
        )
        return trip

    def start_transit(self, principal: Principal, trip_id: str) -> Trip:
        with self._session() as session:
            trip = self._require_trip(session, trip_id, for_update=True)
            if is_terminal(trip.status):
                raise ConflictError(f"trip is already {trip.status}")
            via = self._authorize(session, principal, trip)
            if not can_trip_transition(trip.status, TripStatus.IN_TRANSIT):
                raise InvalidStateError(f"trip is already {trip.status}")
            now = datetime.now(UTC)
            trip.status = TripStatus.IN_TRANSIT
            trip.transit_started_at = now
            trip.updated_at = now
            session.add(trip)
            commit_or_raise(session, "trip update conflict")
            session.refresh(trip)
            vehicle_organization_id = self._vehicles.require_vehicle(session, trip.vehicle_id).organization_id

        event_bus.publish_dict(
            "in_transit",
            trip.organization_id,
            self._event_payload(trip, vehicle_organization_id, authorized_via=via),
            actor_id=principal.id,
        )
        return trip

    def _organization_summary(self, session: Session, organization_id: str | None) -> dict[str, Any] | None:
        if organization_id is None:
            return None
        organization = session.get(Organization, organization_id)
        if organization is None:
            return {"id": organization_id}
        return {"id": organization.id, "name": organization.name, "type": organization.type}

    def _build_snapshot(self, session: Session, trip: Trip, offboarded_at: datetime) -> dict[str, Any]:
        patient = self._patients.require_patient(session, trip.patient_id)
        vehicle = self._vehicles.require_vehicle(session, trip.vehicle_id)
        entries = session.exec(
            select(TripDataEntry).where(TripDataEntry.trip_id == trip.id).order_by(TripDataEntry.added_at)
        ).all()
        onboarded_at = _aware(trip.onboarded_at)
        return {
            "patient": {
                "id": patient.id,
                "code": patient.code,
                "name": f"{patient.first_name} {patient.last_name}",
                "age": patient.age,
                "gender": patient.gender,
                "blood_group": patient.blood_group,
                "allergies": patient.allergies,
            },
            "vehicle": {
                "id": vehicle.id,
                "code": vehicle.code,
                "registration_number": vehicle.registration_number,
                "vehicle_type": vehicle.vehicle_type,
                "organization_id": vehicle.organization_id,
            },
            "crew": self._assignments.crew_roster(session, vehicle.id),
            "organization": self._organization_summary(session, trip.organization_id),
            "destination_organization": self._organization_summary(session, trip.destination_organization_id),
            "pickup": {"location": trip.pickup_location, "coordinates": trip.pickup_coordinates},
            "destination": {"location": trip.destination_location, "coordinates": trip.destination_coordinates},
            "chief_complaint": trip.chief_complaint,
            "onboarded_at": onboarded_at.isoformat(),
            "offboarded_at": offboarded_at.isoformat(),
            "duration_seconds": int((offboarded_at - onboarded_at).total_seconds()),
            "data_entries": [
                {
                    "id": entry.id,
                    "data_type": str(entry.data_type),
                    "content": entry.content,
                    "added_by": entry.added_by,
                    "added_at": _aware(entry.added_at).isoformat(),
                }
                for entry in entries
            ],
        }

    def offboard(self, principal: Principal, trip_id: str, payload: OffboardRequest) -> Trip:
        with self._session() as session:
            trip = self._require_trip(session, trip_id, for_update=True)
            if is_terminal(trip.status):
                raise ConflictError(f"trip is already {trip.status}")
            via = self._authorize(session, principal, trip)
            now = datetime.now(UTC)
            # Captured before release so the crew roster and pointers are intact.
            trip.offboard_snapshot = self._build_snapshot(session, trip, now)
            trip.status = TripStatus.OFFBOARDED
            trip.offboarded_by = principal.id
            trip.offboarded_at = now
            trip.updated_at = now
            if payload.treatment_notes is not None:
                trip.treatment_notes = payload.treatment_notes
            self._release(session, trip)
            session.add(trip)
            commit_or_raise(session, "trip update conflict")
            session.refresh(trip)
            vehicle_organization_id = self._vehicles.require_vehicle(session, trip.vehicle_id).organization_id

        logger.info("trip %s offboarded via %s", trip.code, via)
        event_bus.publish_dict(
            "offboarded",
            trip.organization_id,
            self._event_payload(
                trip,
                vehicle_organization_id,
                authorized_via=via,
                duration_seconds=trip.offboard_snapshot.get("duration_seconds"),
            ),
            actor_id=principal.id,
        )
        return trip

    def cancel(self, principal: Principal, trip_id: str, reason: str | None = None) -> Trip:
        with self._session() as session:
            trip = self._require_trip(session, trip_id, for_update=True)
            if is_terminal(trip.status):
                raise ConflictError(f"trip is already {trip.status}")
            via = self._authorize(session, principal, trip)
            now = datetime.now(UTC)
            trip.status = TripStatus.CANCELLED
            trip.cancelled_by = principal.id
            trip.cancelled_at = now
            trip.cancel_reason = reason
            trip.updated_at = now
            self._release(session, trip)
            session.add(trip)
            commit_or_raise(session, "trip update conflict")
            session.refresh(trip)
            vehicle_organization_id = self._vehicles.require_vehicle(session, trip.vehicle_id).organization_id

        logger.info("trip %s cancelled via %s", trip.code, via)
        event_bus.publish_dict(
            "cancelled",
            trip.organization_id,
            self._event_payload(trip, vehicle_organization_id, authorized_via=via, reason=reason),
            actor_id=principal.id,
        )
        return trip

    def get_trip(self, principal: Principal, trip_id: str) -> Trip:
        with self._session() as session:
            return self._visible_trip(session, principal, trip_id)

    def list_trips(
        self,
        principal: Principal,
        status: TripStatus | None = None,
        vehicle_id: str | None = None,
        patient_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Trip]:
        with self._session() as session:
            statement = select(Trip)
            if not principal.is_superadmin:
                crew_vehicles = (
                    select(Assignment.vehicle_id)
                    .where(Assignment.user_id == principal.id)
                    .where(Assignment.is_active == True)  # noqa: E712
                )
                clauses = [
                    Trip.organization_id == principal.organization_id,
                    Trip.destination_organization_id == principal.organization_id,
                    col(Trip.vehicle_id).in_(crew_vehicles),
                ]
                if principal.organization_type == OrganizationType.FLEET:
                    owned_vehicles = select(Vehicle.id).where(Vehicle.organization_id == principal.organization_id)
                    clauses.append(col(Trip.vehicle_id).in_(owned_vehicles))
                statement = statement.where(or_(*clauses))
            if status is not None:
                statement = statement.where(Trip.status == status)
            if vehicle_id is not None:
                statement = statement.where(Trip.vehicle_id == vehicle_id)
            if patient_id is not None:
                statement = statement.where(Trip.patient_id == patient_id)
            statement = statement.order_by(col(Trip.onboarded_at).desc(), col(Trip.id))

            # The SQL filter mirrors the access rules; the resolver still confirms each row.
            wanted = offset + limit
            visible: list[Trip] = []
            batch_size = wanted
            scanned = 0
            while len(visible) < wanted:
                batch = session.exec(statement.offset(scanned).limit(batch_size)).all()
                visible.extend(
                    trip for trip in batch if can_access(self._access_context(session, principal, trip))
                )
                scanned += len(batch)
                if len(batch) < batch_size:
                    break
            return visible[offset:wanted]

    def add_entry(self, principal: Principal, trip_id: str, payload: TripDataEntryCreate) -> TripDataEntry:
        with self._session() as session:
            trip = self._visible_trip(session, principal, trip_id)
            if is_terminal(trip.status):
                raise ConflictError(f"trip is already {trip.status}")
            entry = TripDataEntry(
                trip_id=trip.id,
                data_type=payload.data_type,
                content=payload.content,
                added_by=principal.id,
            )
            session.add(entry)
            commit_or_raise(session, "trip data conflict")
            session.refresh(entry)
            organization_id = trip.organization_id
            destination_organization_id = trip.destination_organization_id

        event_bus.publish_dict(
            "trip_data_added",
            organization_id,
            {
                "trip_id": trip_id,
                "entry_id": entry.id,
                "data_type": entry.data_type,
                "destination_organization_id": destination_organization_id,
            },
            actor_id=principal.id,
        )
        return entry

    def list_entries(self, principal: Principal, trip_id: str) -> list[TripDataEntry]:
        with self._session() as session:
            trip = self._visible_trip(session, principal, trip_id)
            return list(
                session.exec(
                    select(TripDataEntry).where(TripDataEntry.trip_id == trip.id).order_by(TripDataEntry.added_at)
                ).all()
            )

    def delete_entry(self, principal: Principal, trip_id: str, entry_id: str) -> None:
        with self._session() as session:
            trip = self._visible_trip(session, principal, trip_id)
            if is_terminal(trip.status):
                raise ConflictError(f"trip is already {trip.status}")
            entry = session.get(TripDataEntry, entry_id)
            if entry is None or entry.trip_id != trip.id:
                raise NotFoundError("trip data entry not found")
            if entry.added_by != principal.id and not is_admin_role(principal.role):
                raise ForbiddenError("only the author or an admin can delete this entry")
            session.delete(entry)
            commit_or_raise(session, "trip data conflict")
            organization_id = trip.organization_id

        event_bus.publish_dict(
            "trip_data_deleted",
            organization_id,
            {"trip_id": trip_id, "entry_id": entry_id},
            actor_id=principal.id,
        )
