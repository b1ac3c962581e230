from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, or_, select

from ambulink.domain.access import Principal
from ambulink.domain.models import (
    CollaborationRequest,
    CollaborationRequestCreate,
    Partnership,
    PartnershipStatus,
)
from ambulink.domain.permissions import OrganizationType
from ambulink.domain.state_machine import CollaborationStatus, can_collaboration_transition
from ambulink.infra.db import get_engine
from ambulink.infra.events import event_bus
from ambulink.services.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    commit_or_raise,
)
from ambulink.services.organization_service import OrganizationService

logger = logging.getLogger(__name__)


class PartnershipService:
    """Collaboration requests and the fleet/hospital trust grants derived from them."""

    def __init__(self) -> None:
        self._organizations = OrganizationService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _get_pair(
        self,
        session: Session,
        fleet_id: str,
        hospital_id: str,
        *,
        for_update: bool = False,
    ) -> Partnership | None:
        statement = (
            select(Partnership).where(Partnership.fleet_id == fleet_id).where(Partnership.hospital_id == hospital_id)
        )
        if for_update:
            statement = statement.with_for_update()
        return session.exec(statement).first()

    def _get_request(self, session: Session, request_id: str) -> CollaborationRequest:
        request = session.get(CollaborationRequest, request_id)
        if request is None:
            raise NotFoundError("collaboration request not found")
        return request

    def has_active_partnership(self, session: Session, organization_a: str, organization_b: str) -> bool:
        """True when an active partnership links the two organizations in either role."""
        statement = (
            select(Partnership)
            .where(Partnership.status == PartnershipStatus.ACTIVE)
            .where(
                or_(
                    (Partnership.fleet_id == organization_a) & (Partnership.hospital_id == organization_b),
                    (Partnership.fleet_id == organization_b) & (Partnership.hospital_id == organization_a),
                )
            )
        )
        return session.exec(statement).first() is not None

    def partnered_fleet_ids(self, session: Session, hospital_id: str) -> list[str]:
        rows = session.exec(
            select(Partnership)
            .where(Partnership.hospital_id == hospital_id)
            .where(Partnership.status == PartnershipStatus.ACTIVE)
        ).all()
        return [row.fleet_id for row in rows]

    def _ensure_active(
        self,
        session: Session,
        fleet_id: str,
        hospital_id: str,
        actor_id: str | None,
    ) -> tuple[Partnership, bool]:
        existing = self._get_pair(session, fleet_id, hospital_id)
        if existing is not None:
            if existing.status == PartnershipStatus.ACTIVE:
                return existing, False
            existing.status = PartnershipStatus.ACTIVE
            existing.updated_at = datetime.now(UTC)
            session.add(existing)
            return existing, True

        partnership = Partnership(
            fleet_id=fleet_id,
            hospital_id=hospital_id,
            status=PartnershipStatus.ACTIVE,
            created_by=actor_id,
        )
        try:
            with session.begin_nested():
                session.add(partnership)
        except IntegrityError:
            # Lost a race with a concurrent insert for the same pair.
            concurrent = self._get_pair(session, fleet_id, hospital_id)
            if concurrent is None:
                raise InternalError("partnership insert failed") from None
            return self._ensure_active(session, fleet_id, hospital_id, actor_id)
        return partnership, True

    def _publish_activated(self, partnership: Partnership, actor_id: str | None) -> None:
        event_bus.publish_dict(
            "partnership_activated",
            partnership.hospital_id,
            {
                "partnership_id": partnership.id,
                "fleet_id": partnership.fleet_id,
                "hospital_id": partnership.hospital_id,
            },
            actor_id=actor_id,
        )

    def ensure_active_partnership(
        self,
        fleet_id: str,
        hospital_id: str,
        actor_id: str | None = None,
    ) -> tuple[Partnership, bool]:
        """Create, reactivate or leave alone the (fleet, hospital) partnership.

        Safe to call repeatedly: the pair has at most one row and an already
        active row is returned untouched. The second element of the result
        tells whether anything changed.
        """
        with self._session() as session:
            self._organizations.require_organization(session, fleet_id, OrganizationType.FLEET)
            self._organizations.require_organization(session, hospital_id, OrganizationType.HOSPITAL)
            partnership, changed = self._ensure_active(session, fleet_id, hospital_id, actor_id)
            if changed:
                commit_or_raise(session, "partnership already exists")
                session.refresh(partnership)

        if changed:
            logger.info("partnership %s activated (fleet=%s hospital=%s)", partnership.id, fleet_id, hospital_id)
            self._publish_activated(partnership, actor_id)
        return partnership, changed

    def _deactivate(self, session: Session, partnership: Partnership, actor_id: str) -> dict[str, list[str]]:
        """End ``partnership`` and pull the hospital's crew and locks off the fleet's idle vehicles."""
        # assignment_service and vehicle_service import this module.
        from ambulink.services.assignment_service import AssignmentService
        from ambulink.services.vehicle_service import VehicleService

        partnership.status = PartnershipStatus.INACTIVE
        partnership.updated_at = datetime.now(UTC)
        session.add(partnership)
        removed, kept = AssignmentService().unassign_partner_crew(
            session, partnership.fleet_id, partnership.hospital_id, actor_id
        )
        released = VehicleService().release_stale_locks(session, partnership.fleet_id, partnership.hospital_id)
        return {
            "removed_assignment_ids": [row.id for row in removed],
            "kept_assignment_ids": [row.id for row in kept],
            "released_vehicle_ids": released,
        }

    def _publish_deactivated(
        self,
        partnership: Partnership,
        organization_id: str,
        cascade: dict[str, list[str]],
        actor_id: str,
    ) -> None:
        logger.info(
            "partnership %s deactivated, %d assignments removed, %d kept on live trips",
            partnership.id,
            len(cascade["removed_assignment_ids"]),
            len(cascade["kept_assignment_ids"]),
        )
        event_bus.publish_dict(
            "partnership_deactivated",
            organization_id,
            {
                "partnership_id": partnership.id,
                "fleet_id": partnership.fleet_id,
                "hospital_id": partnership.hospital_id,
                **cascade,
            },
            actor_id=actor_id,
        )

    def deactivate_partnership(self, principal: Principal, fleet_id: str, hospital_id: str) -> Partnership:
        if not (principal.is_superadmin or principal.organization_id in {fleet_id, hospital_id}):
            raise ForbiddenError("only a partner organization can end a partnership")
        with self._session() as session:
            partnership = self._get_pair(session, fleet_id, hospital_id, for_update=True)
            if partnership is None:
                raise NotFoundError("partnership not found")
            if partnership.status == PartnershipStatus.INACTIVE:
                raise ConflictError("partnership is already inactive")
            cascade = self._deactivate(session, partnership, principal.id)
            commit_or_raise(session, "partnership update conflict")
            session.refresh(partnership)

        self._publish_deactivated(partnership, principal.organization_id, cascade, principal.id)
        return partnership

    def list_partnerships(
        self,
        principal: Principal,
        status: PartnershipStatus | None = None,
    ) -> list[Partnership]:
        with self._session() as session:
            statement = select(Partnership)
            if not principal.is_superadmin:
                statement = statement.where(
                    or_(
                        Partnership.fleet_id == principal.organization_id,
                        Partnership.hospital_id == principal.organization_id,
                    )
                )
            if status is not None:
                statement = statement.where(Partnership.status == status)
            return list(session.exec(statement).all())

    def request_collaboration(
        self,
        principal: Principal,
        payload: CollaborationRequestCreate,
    ) -> CollaborationRequest:
        if principal.is_superadmin:
            if payload.hospital_id is None:
                raise NotFoundError("hospital organization not found")
            hospital_id = payload.hospital_id
        elif principal.organization_type == OrganizationType.HOSPITAL:
            hospital_id = principal.organization_id
        else:
            raise ForbiddenError("only hospitals can request a collaboration")

        with self._session() as session:
            self._organizations.require_organization(session, payload.fleet_id, OrganizationType.FLEET)
            self._organizations.require_organization(session, hospital_id, OrganizationType.HOSPITAL)
            pending = session.exec(
                select(CollaborationRequest)
                .where(CollaborationRequest.fleet_id == payload.fleet_id)
                .where(CollaborationRequest.hospital_id == hospital_id)
                .where(CollaborationRequest.status == CollaborationStatus.PENDING)
            ).first()
            if pending is not None:
                raise ConflictError("a pending collaboration request already exists for this pair")
            request = CollaborationRequest(
                hospital_id=hospital_id,
                fleet_id=payload.fleet_id,
                request_type=payload.request_type,
                message=payload.message,
                terms=payload.terms,
                requested_by=principal.id,
            )
            session.add(request)
            commit_or_raise(session, "collaboration request conflict")
            session.refresh(request)

        event_bus.publish_dict(
            "collaboration_requested",
            hospital_id,
            {"request_id": request.id, "fleet_id": request.fleet_id, "hospital_id": request.hospital_id},
            actor_id=principal.id,
        )
        return request

    def _ensure_fleet_side(self, principal: Principal, request: CollaborationRequest) -> None:
        if principal.is_superadmin:
            return
        if principal.organization_type != OrganizationType.FLEET or principal.organization_id != request.fleet_id:
            raise ForbiddenError("only the requested fleet can decide on this request")

    def _decide(
        self,
        session: Session,
        request: CollaborationRequest,
        target: CollaborationStatus,
        principal: Principal,
        reason: str | None,
    ) -> None:
        if not can_collaboration_transition(request.status, target):
            raise ConflictError(f"collaboration request is already {request.status}")
        now = datetime.now(UTC)
        request.status = target
        request.decided_by = principal.id
        request.decided_at = now
        request.rejected_reason = reason
        request.updated_at = now
        session.add(request)

    def accept(
        self,
        principal: Principal,
        request_id: str,
        reason: str | None = None,
    ) -> tuple[CollaborationRequest, Partnership]:
        with self._session() as session:
            request = self._get_request(session, request_id)
            self._ensure_fleet_side(principal, request)
            self._decide(session, request, CollaborationStatus.APPROVED, principal, reason)
            partnership, changed = self._ensure_active(session, request.fleet_id, request.hospital_id, principal.id)
            commit_or_raise(session, "collaboration accept conflict")
            session.refresh(request)
            session.refresh(partnership)

        event_bus.publish_dict(
            "collaboration_accepted",
            request.fleet_id,
            {"request_id": request.id, "fleet_id": request.fleet_id, "hospital_id": request.hospital_id},
            actor_id=principal.id,
        )
        if changed:
            self._publish_activated(partnership, principal.id)
        return request, partnership

    def reject(self, principal: Principal, request_id: str, reason: str | None = None) -> CollaborationRequest:
        with self._session() as session:
            request = self._get_request(session, request_id)
            self._ensure_fleet_side(principal, request)
            self._decide(session, request, CollaborationStatus.REJECTED, principal, reason)
            commit_or_raise(session, "collaboration reject conflict")
            session.refresh(request)

        event_bus.publish_dict(
            "collaboration_rejected",
            request.fleet_id,
            {"request_id": request.id, "fleet_id": request.fleet_id, "hospital_id": request.hospital_id},
            actor_id=principal.id,
        )
        return request

    def cancel(self, principal: Principal, request_id: str) -> CollaborationRequest:
        """Withdraw a request. Cancelling an approved one ends the partnership it created."""
        cascade: dict[str, list[str]] | None = None
        with self._session() as session:
            request = self._get_request(session, request_id)
            if not (
                principal.is_superadmin
                or principal.organization_id in {request.hospital_id, request.fleet_id}
            ):
                raise ForbiddenError("only the requesting hospital, the fleet or superadmin can cancel")
            if not can_collaboration_transition(request.status, CollaborationStatus.CANCELLED):
                raise ConflictError(f"collaboration request is already {request.status}")
            if request.status == CollaborationStatus.APPROVED:
                partnership = self._get_pair(session, request.fleet_id, request.hospital_id, for_update=True)
                if partnership is not None and partnership.status == PartnershipStatus.ACTIVE:
                    cascade = self._deactivate(session, partnership, principal.id)
            request.status = CollaborationStatus.CANCELLED
            request.updated_at = datetime.now(UTC)
            session.add(request)
            commit_or_raise(session, "collaboration cancel conflict")
            session.refresh(request)
            if cascade is not None:
                session.refresh(partnership)

        event_bus.publish_dict(
            "collaboration_cancelled",
            principal.organization_id,
            {"request_id": request.id, "fleet_id": request.fleet_id, "hospital_id": request.hospital_id},
            actor_id=principal.id,
        )
        if cascade is not None:
            self._publish_deactivated(partnership, principal.organization_id, cascade, principal.id)
        return request

    def get_request(self, principal: Principal, request_id: str) -> CollaborationRequest:
        with self._session() as session:
            request = self._get_request(session, request_id)
            if not (
                principal.is_superadmin
                or principal.organization_id in {request.hospital_id, request.fleet_id}
            ):
                raise NotFoundError("collaboration request not found")
            return request

    def list_requests(
        self,
        principal: Principal,
        status: CollaborationStatus | None = None,
    ) -> list[CollaborationRequest]:
        with self._session() as session:
            statement = select(CollaborationRequest)
            if not principal.is_superadmin:
                statement = statement.where(
                    or_(
                        CollaborationRequest.hospital_id == principal.organization_id,
                        CollaborationRequest.fleet_id == principal.organization_id,
                    )
                )
            if status is not None:
                statement = statement.where(CollaborationRequest.status == status)
            statement = statement.order_by(CollaborationRequest.created_at.desc())  # type: ignore[attr-defined]
            return list(session.exec(statement).all())
