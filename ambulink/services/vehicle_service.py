from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlmodel import Session, col, or_, select

from ambulink.domain.access import Principal
from ambulink.domain.models import (
    Assignment,
    Trip,
    Vehicle,
    VehicleCreate,
    VehicleUpdate,
)
from ambulink.domain.permissions import OrganizationType
from ambulink.domain.state_machine import (
    RESTRICTED_VEHICLE_STATUSES,
    VehicleStatus,
    can_vehicle_transition,
)
from ambulink.infra.db import get_engine
from ambulink.infra.events import event_bus
from ambulink.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    commit_or_raise,
)
from ambulink.services.organization_service import OrganizationService
from ambulink.services.partnership_service import PartnershipService

logger = logging.getLogger(__name__)

PARTNER_VISIBLE_STATUSES = frozenset({VehicleStatus.AVAILABLE, VehicleStatus.ACTIVE})


class VehicleService:
    def __init__(self) -> None:
        self._organizations = OrganizationService()
        self._partnerships = PartnershipService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def require_vehicle(self, session: Session, vehicle_id: str, *, for_update: bool = False) -> Vehicle:
        if for_update:
            vehicle = session.exec(select(Vehicle).where(Vehicle.id == vehicle_id).with_for_update()).first()
        else:
            vehicle = session.get(Vehicle, vehicle_id)
        if vehicle is None:
            raise NotFoundError("vehicle not found")
        return vehicle

    def live_trip(self, session: Session, vehicle_id: str) -> Trip | None:
        return session.exec(select(Trip).where(Trip.active_vehicle_id == vehicle_id)).first()

    def has_live_trip(self, session: Session, vehicle_id: str) -> bool:
        return self.live_trip(session, vehicle_id) is not None

    def claim_lock(self, vehicle: Vehicle, hospital_id: str) -> None:
        """Hold ``vehicle`` for ``hospital_id``. The caller owns the transaction."""
        if vehicle.locked_hospital_id not in {None, hospital_id}:
            raise ConflictError("vehicle is locked by another hospital")
        vehicle.locked_hospital_id = hospital_id
        vehicle.updated_at = datetime.now(UTC)

    def release_lock(self, vehicle: Vehicle) -> None:
        vehicle.locked_hospital_id = None
        vehicle.updated_at = datetime.now(UTC)

    def release_stale_locks(self, session: Session, fleet_id: str, hospital_id: str) -> list[str]:
        """Clear locks ``hospital_id`` holds on ``fleet_id`` vehicles that have no live trip."""
        rows = session.exec(
            select(Vehicle)
            .where(Vehicle.organization_id == fleet_id)
            .where(Vehicle.locked_hospital_id == hospital_id)
            .with_for_update()
        ).all()
        released: list[str] = []
        for vehicle in rows:
            if self.has_live_trip(session, vehicle.id):
                continue
            self.release_lock(vehicle)
            session.add(vehicle)
            released.append(vehicle.id)
        return released

    def _is_crew(self, session: Session, vehicle_id: str, user_id: str) -> bool:
        row = session.exec(
            select(Assignment)
            .where(Assignment.vehicle_id == vehicle_id)
            .where(Assignment.user_id == user_id)
            .where(Assignment.is_active == True)  # noqa: E712
        ).first()
        return row is not None

    def can_view(self, session: Session, principal: Principal, vehicle: Vehicle) -> bool:
        if principal.is_superadmin or principal.organization_id == vehicle.organization_id:
            return True
        if (
            principal.organization_type == OrganizationType.HOSPITAL
            and vehicle.status in PARTNER_VISIBLE_STATUSES
            and self._partnerships.has_active_partnership(session, vehicle.organization_id, principal.organization_id)
        ):
            return True
        return self._is_crew(session, vehicle.id, principal.id)

    def _ensure_owner(self, principal: Principal, vehicle: Vehicle) -> None:
        if principal.is_superadmin:
            return
        if principal.organization_id != vehicle.organization_id:
            raise ForbiddenError("vehicle belongs to another organization")

    def _publish_status(self, vehicle: Vehicle, previous: VehicleStatus, actor_id: str) -> None:
        event_bus.publish_dict(
            "vehicle_status_changed",
            vehicle.organization_id,
            {"vehicle_id": vehicle.id, "from": previous, "to": vehicle.status},
            actor_id=actor_id,
        )

    def create_vehicle(self, principal: Principal, payload: VehicleCreate) -> Vehicle:
        if principal.is_superadmin and payload.organization_id is not None:
            organization_id = payload.organization_id
        elif principal.organization_type == OrganizationType.FLEET:
            organization_id = principal.organization_id
        else:
            raise ForbiddenError("only fleet organizations can register vehicles")

        with self._session() as session:
            self._organizations.require_organization(session, organization_id, OrganizationType.FLEET)
            vehicle = Vehicle(
                organization_id=organization_id,
                code=payload.code,
                registration_number=payload.registration_number,
                vehicle_model=payload.vehicle_model,
                vehicle_type=payload.vehicle_type,
                status=VehicleStatus.PENDING_APPROVAL,
                created_by=principal.id,
            )
            session.add(vehicle)
            commit_or_raise(session, "vehicle code already exists")
            session.refresh(vehicle)

        event_bus.publish_dict(
            "vehicle_registered",
            vehicle.organization_id,
            {"vehicle_id": vehicle.id, "code": vehicle.code},
            actor_id=principal.id,
        )
        return vehicle

    def approve(self, principal: Principal, vehicle_id: str) -> Vehicle:
        if not principal.is_superadmin:
            raise ForbiddenError("only superadmin can approve vehicles")
        with self._session() as session:
            vehicle = self.require_vehicle(session, vehicle_id)
            if vehicle.status != VehicleStatus.PENDING_APPROVAL:
                raise InvalidStateError(f"vehicle is {vehicle.status}, not pending approval")
            now = datetime.now(UTC)
            vehicle.status = VehicleStatus.AVAILABLE
            vehicle.approved_by = principal.id
            vehicle.approved_at = now
            vehicle.updated_at = now
            session.add(vehicle)
            commit_or_raise(session, "vehicle update conflict")
            session.refresh(vehicle)

        logger.info("vehicle %s approved by %s", vehicle.id, principal.id)
        event_bus.publish_dict(
            "vehicle_approved",
            vehicle.organization_id,
            {"vehicle_id": vehicle.id},
            actor_id=principal.id,
        )
        return vehicle

    def update_vehicle(self, principal: Principal, vehicle_id: str, payload: VehicleUpdate) -> Vehicle:
        with self._session() as session:
            vehicle = self.require_vehicle(session, vehicle_id)
            self._ensure_owner(principal, vehicle)
            for key, value in payload.model_dump(exclude_unset=True).items():
                setattr(vehicle, key, value)
            vehicle.updated_at = datetime.now(UTC)
            session.add(vehicle)
            commit_or_raise(session, "vehicle update conflict")
            session.refresh(vehicle)
            return vehicle

    def lock(self, principal: Principal, vehicle_id: str, hospital_id: str) -> Vehicle:
        """Confirm ``hospital_id`` holds the vehicle for its live trip.

        A lock only exists alongside a live trip started by that hospital, so
        locking an idle vehicle is refused and locking by the holder is a no-op.
        """
        if not (principal.is_superadmin or principal.organization_id == hospital_id):
            raise ForbiddenError("a hospital can only lock vehicles for itself")
        with self._session() as session:
            self._organizations.require_organization(session, hospital_id, OrganizationType.HOSPITAL)
            vehicle = self.require_vehicle(session, vehicle_id, for_update=True)
            if not (
                principal.is_superadmin
                or vehicle.organization_id == hospital_id
                or self._partnerships.has_active_partnership(session, vehicle.organization_id, hospital_id)
            ):
                raise ForbiddenError("no active partnership with the vehicle owner")
            if vehicle.locked_hospital_id == hospital_id:
                return vehicle
            if vehicle.locked_hospital_id is not None:
                raise ConflictError("vehicle is locked by another hospital")
            trip = self.live_trip(session, vehicle.id)
            if vehicle.status != VehicleStatus.ACTIVE or trip is None:
                raise InvalidStateError("vehicle has no live trip")
            if trip.organization_id != hospital_id:
                raise ConflictError("vehicle is on a trip for another organization")
            self.claim_lock(vehicle, hospital_id)
            session.add(vehicle)
            commit_or_raise(session, "vehicle lock conflict")
            session.refresh(vehicle)
            return vehicle

    def unlock(self, principal: Principal, vehicle_id: str) -> Vehicle:
        with self._session() as session:
            vehicle = self.require_vehicle(session, vehicle_id, for_update=True)
            if not (
                principal.is_superadmin
                or principal.organization_id in {vehicle.organization_id, vehicle.locked_hospital_id}
            ):
                raise ForbiddenError("vehicle is not locked by this organization")
            if vehicle.locked_hospital_id is None:
                return vehicle
            if self.has_live_trip(session, vehicle.id):
                raise ConflictError("vehicle has a live trip")
            self.release_lock(vehicle)
            session.add(vehicle)
            commit_or_raise(session, "vehicle lock conflict")
            session.refresh(vehicle)
            return vehicle

    def set_status(self, principal: Principal, vehicle_id: str, status: VehicleStatus) -> Vehicle:
        if status == VehicleStatus.PENDING_APPROVAL:
            raise InvalidStateError("vehicles cannot return to pending approval")
        if status == VehicleStatus.ACTIVE:
            raise InvalidStateError("only trip onboarding can mark a vehicle active")
        if status in RESTRICTED_VEHICLE_STATUSES and not principal.is_superadmin:
            raise ForbiddenError(f"only superadmin can set a vehicle {status}")

        with self._session() as session:
            vehicle = self.require_vehicle(session, vehicle_id, for_update=True)
            self._ensure_owner(principal, vehicle)
            if vehicle.status == VehicleStatus.PENDING_APPROVAL and status == VehicleStatus.AVAILABLE:
                raise InvalidStateError("vehicle must be approved first")
            if vehicle.locked_hospital_id is not None or self.has_live_trip(session, vehicle.id):
                raise ConflictError("vehicle is in use")
            if not can_vehicle_transition(vehicle.status, status):
                raise InvalidStateError(f"vehicle cannot move from {vehicle.status} to {status}")
            previous = vehicle.status
            vehicle.status = status
            vehicle.updated_at = datetime.now(UTC)
            session.add(vehicle)
            commit_or_raise(session, "vehicle update conflict")
            session.refresh(vehicle)

        self._publish_status(vehicle, previous, principal.id)
        return vehicle

    def get_vehicle(self, principal: Principal, vehicle_id: str) -> Vehicle:
        with self._session() as session:
            vehicle = self.require_vehicle(session, vehicle_id)
            if not self.can_view(session, principal, vehicle):
                raise NotFoundError("vehicle not found")
            return vehicle

    def list_vehicles(
        self,
        principal: Principal,
        status: VehicleStatus | None = None,
        organization_id: str | None = None,
    ) -> list[Vehicle]:
        with self._session() as session:
            statement = select(Vehicle)
            if not principal.is_superadmin:
                visible_orgs = [principal.organization_id]
                if principal.organization_type == OrganizationType.HOSPITAL:
                    visible_orgs.extend(self._partnerships.partnered_fleet_ids(session, principal.organization_id))
                crew_vehicles = (
                    select(Assignment.vehicle_id)
                    .where(Assignment.user_id == principal.id)
                    .where(Assignment.is_active == True)  # noqa: E712
                )
                statement = statement.where(
                    or_(col(Vehicle.organization_id).in_(visible_orgs), col(Vehicle.id).in_(crew_vehicles))
                )
            if status is not None:
                statement = statement.where(Vehicle.status == status)
            if organization_id is not None:
                statement = statement.where(Vehicle.organization_id == organization_id)
            rows = session.exec(statement.order_by(Vehicle.code)).all()
            return [row for row in rows if self.can_view(session, principal, row)]
