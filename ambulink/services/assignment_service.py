from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlmodel import Session, col, or_, select

from ambulink.domain.access import Principal, UnassignContext, resolve_unassign
from ambulink.domain.models import (
    Assignment,
    AssignmentCreate,
    UnassignResult,
    User,
    UserStatus,
    Vehicle,
)
from ambulink.domain.permissions import OrganizationType, is_clinical_role
from ambulink.domain.state_machine import VehicleStatus
from ambulink.infra.db import get_engine
from ambulink.infra.events import event_bus
from ambulink.services.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    commit_or_raise,
)
from ambulink.services.organization_service import OrganizationService
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.vehicle_service import VehicleService

logger = logging.getLogger(__name__)


class AssignmentService:
    """Crew-to-vehicle attachments, each scoped to the organization that made it."""

    def __init__(self) -> None:
        self._organizations = OrganizationService()
        self._partnerships = PartnershipService()
        self._vehicles = VehicleService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _active_rows(self, session: Session, vehicle_id: str, user_id: str | None = None) -> list[Assignment]:
        statement = (
            select(Assignment)
            .where(Assignment.vehicle_id == vehicle_id)
            .where(Assignment.is_active == True)  # noqa: E712
        )
        if user_id is not None:
            statement = statement.where(Assignment.user_id == user_id)
        return list(session.exec(statement).all())

    def is_actively_assigned(self, session: Session, vehicle_id: str, user_id: str) -> bool:
        return bool(self._active_rows(session, vehicle_id, user_id))

    def active_crew_ids(self, session: Session, vehicle_id: str) -> frozenset[str]:
        return frozenset(row.user_id for row in self._active_rows(session, vehicle_id))

    def crew_roster(self, session: Session, vehicle_id: str) -> list[dict[str, str | None]]:
        rows = self._active_rows(session, vehicle_id)
        users = self._organizations.users_by_id(session, [row.user_id for row in rows])
        roster: list[dict[str, str | None]] = []
        for row in rows:
            user = users.get(row.user_id)
            roster.append(
                {
                    "user_id": row.user_id,
                    "name": f"{user.first_name} {user.last_name}" if user is not None else None,
                    "role": row.role,
                    "assigning_organization_id": row.assigning_organization_id,
                }
            )
        return roster

    def unassign_all_for_user(self, session: Session, user_id: str, actor_id: str | None) -> list[Assignment]:
        """Deactivate every active row for ``user_id``. The caller commits."""
        rows = session.exec(
            select(Assignment).where(Assignment.user_id == user_id).where(Assignment.is_active == True)  # noqa: E712
        ).all()
        now = datetime.now(UTC)
        for row in rows:
            row.is_active = False
            row.unassigned_by = actor_id
            row.unassigned_at = now
            session.add(row)
        return list(rows)

    def unassign_partner_crew(
        self,
        session: Session,
        fleet_id: str,
        hospital_id: str,
        actor_id: str | None,
    ) -> tuple[list[Assignment], list[Assignment]]:
        """Deactivate hospital crew on the fleet's vehicles once their partnership ends.

        Covers rows the hospital made and rows holding the hospital's own staff.
        Vehicles with a live trip keep their crew until the trip ends. Returns
        ``(removed, kept)``; the caller commits.
        """
        rows = session.exec(
            select(Assignment)
            .join(Vehicle, col(Vehicle.id) == col(Assignment.vehicle_id))
            .join(User, col(User.id) == col(Assignment.user_id))
            .where(Vehicle.organization_id == fleet_id)
            .where(Assignment.is_active == True)  # noqa: E712
            .where(or_(Assignment.assigning_organization_id == hospital_id, User.organization_id == hospital_id))
        ).all()
        removed: list[Assignment] = []
        kept: list[Assignment] = []
        now = datetime.now(UTC)
        for row in rows:
            if self._vehicles.has_live_trip(session, row.vehicle_id):
                kept.append(row)
                continue
            row.is_active = False
            row.unassigned_by = actor_id
            row.unassigned_at = now
            session.add(row)
            removed.append(row)
        return removed, kept

    def assign(self, principal: Principal, vehicle_id: str, payload: AssignmentCreate) -> Assignment:
        with self._session() as session:
            vehicle = self._vehicles.require_vehicle(session, vehicle_id)
            if not principal.is_superadmin:
                assigning_organization_id = principal.organization_id
            else:
                assigning_organization_id = payload.assigning_organization_id or vehicle.organization_id
                self._organizations.require_organization(session, assigning_organization_id)
            if vehicle.status == VehicleStatus.PENDING_APPROVAL:
                raise InvalidStateError("vehicle is pending approval")
            user = self._organizations.require_user(session, payload.user_id, for_update=True)
            if not is_clinical_role(user.role):
                raise InvalidStateError("only doctors and paramedics can be assigned to a vehicle")
            if user.status != UserStatus.ACTIVE:
                raise InvalidStateError(f"user is {user.status}")
            if assigning_organization_id != vehicle.organization_id and not self._partnerships.has_active_partnership(
                session, assigning_organization_id, vehicle.organization_id
            ):
                raise ForbiddenError("no active partnership with the vehicle owner")

            assignment = session.exec(
                select(Assignment)
                .where(Assignment.vehicle_id == vehicle_id)
                .where(Assignment.user_id == user.id)
                .where(Assignment.assigning_organization_id == assigning_organization_id)
            ).first()
            now = datetime.now(UTC)
            if assignment is None:
                assignment = Assignment(
                    vehicle_id=vehicle_id,
                    user_id=user.id,
                    assigning_organization_id=assigning_organization_id,
                    role=payload.role or str(user.role),
                )
            assignment.role = payload.role or assignment.role
            assignment.is_active = True
            assignment.assigned_by = principal.id
            assignment.assigned_at = now
            assignment.unassigned_by = None
            assignment.unassigned_at = None
            session.add(assignment)
            commit_or_raise(session, "assignment already exists")
            session.refresh(assignment)
            vehicle_organization_id = vehicle.organization_id

        event_bus.publish_dict(
            "assignment_created",
            assigning_organization_id,
            {
                "assignment_id": assignment.id,
                "vehicle_id": vehicle_id,
                "user_id": assignment.user_id,
                "vehicle_organization_id": vehicle_organization_id,
            },
            actor_id=principal.id,
        )
        return assignment

    def unassign(
        self,
        principal: Principal,
        vehicle_id: str,
        user_id: str,
        assigning_organization_id: str | None = None,
    ) -> UnassignResult:
        """Deactivate the crew member's rows on a vehicle.

        Without an explicit ``assigning_organization_id`` the caller's own row
        is targeted when one exists, otherwise every active row for the pair.
        Each targeted row must pass the unassign rules; the path that
        authorized the first row is reported back.
        """
        with self._session() as session:
            vehicle = self._vehicles.require_vehicle(session, vehicle_id)
            rows = self._active_rows(session, vehicle_id, user_id)
            if assigning_organization_id is not None:
                rows = [row for row in rows if row.assigning_organization_id == assigning_organization_id]
            else:
                own = [row for row in rows if row.assigning_organization_id == principal.organization_id]
                rows = own or rows
            if not rows:
                raise NotFoundError("no active assignment for this crew member")

            paths: list[str] = []
            for row in rows:
                path = resolve_unassign(
                    UnassignContext(
                        principal=principal,
                        assigning_organization_id=row.assigning_organization_id,
                        vehicle_organization_id=vehicle.organization_id,
                    )
                )
                if path is None:
                    raise ForbiddenError("not allowed to remove this assignment")
                paths.append(path)

            now = datetime.now(UTC)
            for row in rows:
                row.is_active = False
                row.unassigned_by = principal.id
                row.unassigned_at = now
                session.add(row)
            commit_or_raise(session, "assignment update conflict")

        result = UnassignResult(
            vehicle_id=vehicle_id,
            user_id=user_id,
            assignment_ids=[row.id for row in rows],
            authorized_via=paths[0],
        )
        logger.info("crew %s removed from vehicle %s via %s", user_id, vehicle_id, result.authorized_via)
        event_bus.publish_dict(
            "assignment_removed",
            principal.organization_id,
            {
                "vehicle_id": vehicle_id,
                "user_id": user_id,
                "assignment_ids": result.assignment_ids,
                "authorized_via": result.authorized_via,
                "vehicle_organization_id": vehicle.organization_id,
            },
            actor_id=principal.id,
        )
        return result

    def list_for_vehicle(self, principal: Principal, vehicle_id: str) -> list[Assignment]:
        with self._session() as session:
            vehicle = self._vehicles.require_vehicle(session, vehicle_id)
            rows = self._active_rows(session, vehicle_id)
            if principal.is_superadmin:
                return rows
            if principal.organization_type == OrganizationType.HOSPITAL:
                return [row for row in rows if row.assigning_organization_id == principal.organization_id]
            if principal.organization_type == OrganizationType.FLEET:
                return rows if vehicle.organization_id == principal.organization_id else []
            return []

    def list_assigned_vehicles(self, principal: Principal, user_id: str | None = None) -> list[Vehicle]:
        target_user_id = user_id or principal.id
        with self._session() as session:
            if target_user_id != principal.id and not principal.is_superadmin:
                user = self._organizations.require_user(session, target_user_id)
                if user.organization_id != principal.organization_id:
                    raise NotFoundError("user not found")
            rows = session.exec(
                select(Assignment)
                .where(Assignment.user_id == target_user_id)
                .where(Assignment.is_active == True)  # noqa: E712
            ).all()
            vehicle_ids = sorted({row.vehicle_id for row in rows})
            if not vehicle_ids:
                return []
            return list(session.exec(select(Vehicle).where(col(Vehicle.id).in_(vehicle_ids))).all())
