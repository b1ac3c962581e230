from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlmodel import Session, select

from ambulink.domain.access import Principal
from ambulink.domain.models import Organization, OrganizationStatus, User, UserCreate, UserStatus
from ambulink.domain.permissions import UserRole, is_admin_role, organization_type_for_role
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

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self) -> None:
        self._organizations = OrganizationService()
        self._assignments = AssignmentService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _ensure_manager(self, principal: Principal, organization_id: str) -> None:
        if principal.is_superadmin:
            return
        if not is_admin_role(principal.role) or principal.organization_id != organization_id:
            raise ForbiddenError("only an admin of the organization can manage its staff")

    def create_user(self, principal: Principal, payload: UserCreate) -> User:
        organization_id = payload.organization_id or principal.organization_id
        self._ensure_manager(principal, organization_id)
        if not principal.is_superadmin and is_admin_role(payload.role):
            raise ForbiddenError("only superadmin can create admin accounts")

        with self._session() as session:
            organization = self._organizations.require_organization(session, organization_id)
            if organization_type_for_role(payload.role) != organization.type:
                raise InvalidStateError(f"role {payload.role} does not fit a {organization.type} organization")
            user = User(
                organization_id=organization_id,
                email=payload.email.lower(),
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone=payload.phone,
                role=payload.role,
            )
            session.add(user)
            commit_or_raise(session, "email already registered")
            session.refresh(user)
            return user

    def get_user(self, principal: Principal, user_id: str) -> User:
        with self._session() as session:
            user = self._organizations.require_user(session, user_id)
            if not principal.is_superadmin and user.organization_id != principal.organization_id:
                raise NotFoundError("user not found")
            return user

    def list_users(
        self,
        principal: Principal,
        role: UserRole | None = None,
        status: UserStatus | None = None,
    ) -> list[User]:
        with self._session() as session:
            statement = select(User)
            if not principal.is_superadmin:
                statement = statement.where(User.organization_id == principal.organization_id)
            if role is not None:
                statement = statement.where(User.role == role)
            if status is not None:
                statement = statement.where(User.status == status)
            return list(session.exec(statement.order_by(User.email)).all())

    def suspend_user(self, principal: Principal, user_id: str) -> User:
        """Suspend a staff account and drop all of its vehicle assignments.

        Both writes share one transaction so a suspended user is never left
        attached to a vehicle.
        """
        with self._session() as session:
            user = self._organizations.require_user(session, user_id, for_update=True)
            self._ensure_manager(principal, user.organization_id)
            if user.id == principal.id:
                raise ForbiddenError("users cannot suspend themselves")
            if user.status == UserStatus.SUSPENDED:
                raise ConflictError("user is already suspended")
            removed = self._assignments.unassign_all_for_user(session, user.id, principal.id)
            user.status = UserStatus.SUSPENDED
            user.updated_at = datetime.now(UTC)
            session.add(user)
            commit_or_raise(session, "user update conflict")
            session.refresh(user)
            removed_ids = [row.id for row in removed]

        logger.info("user %s suspended, %d assignments removed", user.id, len(removed_ids))
        event_bus.publish_dict(
            "user_suspended",
            user.organization_id,
            {"user_id": user.id, "assignment_ids": removed_ids},
            actor_id=principal.id,
        )
        return user

    def resolve_login(self, user_id: str) -> tuple[User, Organization]:
        with self._session() as session:
            user = self._organizations.require_user(session, user_id)
            if user.status != UserStatus.ACTIVE:
                raise ForbiddenError(f"user is {user.status}")
            organization = self._organizations.require_organization(session, user.organization_id)
            if organization.status != OrganizationStatus.ACTIVE:
                raise ForbiddenError(f"organization is {organization.status}")
            return user, organization

    def activate_user(self, principal: Principal, user_id: str) -> User:
        with self._session() as session:
            user = self._organizations.require_user(session, user_id)
            self._ensure_manager(principal, user.organization_id)
            if user.status == UserStatus.ACTIVE:
                return user
            user.status = UserStatus.ACTIVE
            user.updated_at = datetime.now(UTC)
            session.add(user)
            commit_or_raise(session, "user update conflict")
            session.refresh(user)
            return user
