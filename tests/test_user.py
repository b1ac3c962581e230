from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from conftest import World

from ambulink.domain.models import AssignmentCreate, EventRecord, OrganizationStatus, UserCreate, UserStatus
from ambulink.domain.permissions import UserRole
from ambulink.infra import bootstrap
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from ambulink.services.organization_service import OrganizationService
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.user_service import UserService


def test_suspension_removes_every_assignment(world: World, test_engine: Engine) -> None:
    assignments = AssignmentService()
    first = world.approved_vehicle("AMB-1")
    second = world.approved_vehicle("AMB-2")
    assignments.assign(world.fleet_admin, first.id, AssignmentCreate(user_id=world.fleet_paramedic.id))
    assignments.assign(world.fleet_admin, second.id, AssignmentCreate(user_id=world.fleet_paramedic.id))

    suspended = UserService().suspend_user(world.fleet_admin, world.fleet_paramedic.id)

    assert suspended.status == UserStatus.SUSPENDED
    assert assignments.list_for_vehicle(world.fleet_admin, first.id) == []
    assert assignments.list_for_vehicle(world.fleet_admin, second.id) == []
    with Session(test_engine) as session:
        event = session.exec(select(EventRecord).where(EventRecord.event_type == "user_suspended")).one()
    assert event.payload["user_id"] == world.fleet_paramedic.id
    assert len(event.payload["assignment_ids"]) == 2


def test_suspension_covers_assignments_made_by_partners(world: World) -> None:
    assignments = AssignmentService()
    vehicle = world.approved_vehicle()
    PartnershipService().ensure_active_partnership(world.fleet.id, world.hospital.id)
    assignments.assign(world.hospital_admin, vehicle.id, AssignmentCreate(user_id=world.hospital_doctor.id))

    UserService().suspend_user(world.hospital_admin, world.hospital_doctor.id)

    assert assignments.list_for_vehicle(world.fleet_admin, vehicle.id) == []


def test_suspension_rules(world: World) -> None:
    service = UserService()
    with pytest.raises(ForbiddenError):
        service.suspend_user(world.fleet_admin, world.fleet_admin.id)
    with pytest.raises(ForbiddenError):
        service.suspend_user(world.hospital_admin, world.fleet_driver.id)
    with pytest.raises(NotFoundError):
        service.suspend_user(world.superadmin, "missing")

    service.suspend_user(world.superadmin, world.fleet_driver.id)
    with pytest.raises(ConflictError):
        service.suspend_user(world.fleet_admin, world.fleet_driver.id)

    restored = service.activate_user(world.fleet_admin, world.fleet_driver.id)
    assert restored.status == UserStatus.ACTIVE


def test_suspended_user_cannot_be_assigned(world: World) -> None:
    vehicle = world.approved_vehicle()
    UserService().suspend_user(world.fleet_admin, world.fleet_paramedic.id)
    with pytest.raises(InvalidStateError):
        AssignmentService().assign(world.fleet_admin, vehicle.id, AssignmentCreate(user_id=world.fleet_paramedic.id))


def test_create_user_rules(world: World) -> None:
    service = UserService()

    created = service.create_user(
        world.fleet_admin,
        UserCreate(email="New.Medic@Rapid.test", first_name="New", last_name="Medic", role=UserRole.FLEET_DOCTOR),
    )
    assert created.organization_id == world.fleet.id
    assert created.email == "new.medic@rapid.test"

    with pytest.raises(ConflictError):
        service.create_user(
            world.fleet_admin,
            UserCreate(email="new.medic@rapid.test", first_name="Dup", last_name="Medic", role=UserRole.FLEET_DOCTOR),
        )
    with pytest.raises(InvalidStateError):
        service.create_user(
            world.fleet_admin,
            UserCreate(email="doc@rapid.test", first_name="Wrong", last_name="Type", role=UserRole.HOSPITAL_DOCTOR),
        )
    with pytest.raises(ForbiddenError):
        service.create_user(
            world.fleet_admin,
            UserCreate(email="boss@rapid.test", first_name="Second", last_name="Admin", role=UserRole.FLEET_ADMIN),
        )
    with pytest.raises(ForbiddenError):
        service.create_user(
            world.hospital_admin,
            UserCreate(
                organization_id=world.fleet.id,
                email="x@rapid.test",
                first_name="Cross",
                last_name="Org",
                role=UserRole.FLEET_DRIVER,
            ),
        )
    with pytest.raises(ForbiddenError):
        service.create_user(
            world.fleet_paramedic,
            UserCreate(email="y@rapid.test", first_name="Not", last_name="Admin", role=UserRole.FLEET_DRIVER),
        )


def test_users_are_scoped_to_their_organization(world: World) -> None:
    service = UserService()

    fleet_users = service.list_users(world.fleet_admin)
    assert {user.organization_id for user in fleet_users} == {world.fleet.id}
    assert len(service.list_users(world.fleet_admin, role=UserRole.FLEET_DRIVER)) == 1
    assert len(service.list_users(world.superadmin)) == 8

    with pytest.raises(NotFoundError):
        service.get_user(world.hospital_admin, world.fleet_driver.id)
    assert service.get_user(world.superadmin, world.fleet_driver.id).id == world.fleet_driver.id


def test_resolve_login(world: World) -> None:
    service = UserService()

    user, organization = service.resolve_login(world.hospital_doctor.id)
    assert user.role == UserRole.HOSPITAL_DOCTOR
    assert organization.id == world.hospital.id

    with pytest.raises(NotFoundError):
        service.resolve_login("missing")

    service.suspend_user(world.hospital_admin, world.hospital_doctor.id)
    with pytest.raises(ForbiddenError):
        service.resolve_login(world.hospital_doctor.id)

    OrganizationService().set_organization_status(world.superadmin, world.fleet.id, OrganizationStatus.SUSPENDED)
    with pytest.raises(ForbiddenError):
        service.resolve_login(world.fleet_driver.id)


def test_bootstrap_superadmin_is_idempotent(world: World) -> None:
    again = OrganizationService().bootstrap_superadmin("ROOT@ambulink.test")
    assert again.id == world.superadmin.id

    with pytest.raises(ConflictError):
        OrganizationService().bootstrap_superadmin("admin@city.test")


def test_bootstrap_entrypoint_reuses_the_system_organization(world: World, monkeypatch) -> None:
    monkeypatch.setattr(bootstrap, "BOOTSTRAP_ADMIN_EMAIL", "ops@ambulink.test")

    user_id = bootstrap.run_bootstrap()

    assert bootstrap.run_bootstrap() == user_id
    created = UserService().get_user(world.superadmin, user_id)
    assert created.role == UserRole.SUPERADMIN
    assert created.organization_id == world.system.id


def test_suspend_and_assign_lock_the_user_row(world: World, monkeypatch) -> None:
    seen: list[tuple[str, bool]] = []
    original = OrganizationService.require_user

    def recording_require_user(self, session, user_id, *, for_update=False):  # type: ignore[no-untyped-def]
        seen.append((user_id, for_update))
        return original(self, session, user_id, for_update=for_update)

    monkeypatch.setattr(OrganizationService, "require_user", recording_require_user)
    vehicle = world.approved_vehicle()

    AssignmentService().assign(world.fleet_admin, vehicle.id, AssignmentCreate(user_id=world.fleet_paramedic.id))
    UserService().suspend_user(world.fleet_admin, world.fleet_paramedic.id)

    assert seen == [(world.fleet_paramedic.id, True), (world.fleet_paramedic.id, True)]
    with pytest.raises(InvalidStateError):
        AssignmentService().assign(world.fleet_admin, vehicle.id, AssignmentCreate(user_id=world.fleet_paramedic.id))
