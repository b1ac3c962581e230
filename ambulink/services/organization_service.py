from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlmodel import Session, col, select

from ambulink.domain.access import Principal
from ambulink.domain.models import (
    Organization,
    OrganizationCreate,
    OrganizationStatus,
    User,
)
from ambulink.domain.permissions import OrganizationType, UserRole
from ambulink.infra.db import get_engine
from ambulink.infra.events import event_bus
from ambulink.services.errors import ConflictError, ForbiddenError, NotFoundError, commit_or_raise

logger = logging.getLogger(__name__)


class OrganizationService:
    """Directory of organizations. Also the read surface for staff rows."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def require_organization(
        self,
        session: Session,
        organization_id: str,
        expected_type: OrganizationType | None = None,
    ) -> Organization:
        organization = session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError("organization not found")
        if expected_type is not None and organization.type != expected_type:
            raise NotFoundError(f"{expected_type} organization not found")
        return organization

    def require_user(self, session: Session, user_id: str, *, for_update: bool = False) -> User:
        if for_update:
            user = session.exec(select(User).where(User.id == user_id).with_for_update()).first()
        else:
            user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def users_by_id(self, session: Session, user_ids: list[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        rows = session.exec(select(User).where(col(User.id).in_(user_ids))).all()
        return {row.id: row for row in rows}

    def create_organization(self, principal: Principal, payload: OrganizationCreate) -> Organization:
        if not principal.is_superadmin:
            raise ForbiddenError("only superadmin can register organizations")
        with self._session() as session:
            organization = Organization(
                name=payload.name,
                code=payload.code,
                type=payload.type,
                city=payload.city,
            )
            session.add(organization)
            commit_or_raise(session, "organization code already exists")
            session.refresh(organization)

        event_bus.publish_dict(
            "organization_registered",
            organization.id,
            {"organization_id": organization.id, "type": organization.type, "name": organization.name},
            actor_id=principal.id,
        )
        return organization

    def bootstrap_superadmin(
        self,
        email: str,
        *,
        organization_code: str = "SYSTEM",
        first_name: str = "System",
        last_name: str = "Admin",
    ) -> User:
        """Create the system organization and its superadmin once; later calls return the existing user."""
        with self._session() as session:
            organization = session.exec(select(Organization).where(Organization.code == organization_code)).first()
            if organization is None:
                organization = Organization(name="System", code=organization_code, type=OrganizationType.SYSTEM)
                session.add(organization)
            elif organization.type != OrganizationType.SYSTEM:
                raise ConflictError(f"organization {organization_code} is not a system organization")

            user = session.exec(select(User).where(User.email == email.lower())).first()
            if user is not None:
                if user.role != UserRole.SUPERADMIN:
                    raise ConflictError("email already registered")
                return user
            user = User(
                organization_id=organization.id,
                email=email.lower(),
                first_name=first_name,
                last_name=last_name,
                role=UserRole.SUPERADMIN,
            )
            session.add(user)
            commit_or_raise(session, "superadmin bootstrap conflict")
            session.refresh(user)

        logger.info("bootstrapped superadmin %s", user.id)
        return user

    def get_organization(self, organization_id: str) -> Organization:
        with self._session() as session:
            return self.require_organization(session, organization_id)

    def list_organizations(
        self,
        organization_type: OrganizationType | None = None,
        status: OrganizationStatus | None = None,
    ) -> list[Organization]:
        with self._session() as session:
            statement = select(Organization)
            if organization_type is not None:
                statement = statement.where(Organization.type == organization_type)
            if status is not None:
                statement = statement.where(Organization.status == status)
            return list(session.exec(statement.order_by(Organization.name)).all())

    def set_organization_status(
        self,
        principal: Principal,
        organization_id: str,
        status: OrganizationStatus,
    ) -> Organization:
        if not principal.is_superadmin:
            raise ForbiddenError("only superadmin can change organization status")
        with self._session() as session:
            organization = self.require_organization(session, organization_id)
            previous = organization.status
            organization.status = status
            organization.updated_at = datetime.now(UTC)
            session.add(organization)
            commit_or_raise(session, "organization update conflict")
            session.refresh(organization)

        logger.info("organization %s status %s -> %s", organization.id, previous, status)
        return organization
