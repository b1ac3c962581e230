from __future__ import annotations

import pytest

from conftest import World

from ambulink.domain.models import AssignmentCreate, OnboardRequest, VehicleCreate
from ambulink.domain.state_machine import VehicleStatus
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.trip_service import TripService
from ambulink.services.vehicle_service import VehicleService


def test_new_vehicle_waits_for_superadmin_approval(world: World) -> None:
    service = VehicleService()
    vehicle = service.create_vehicle(world.fleet_admin, VehicleCreate(code="AMB-100", registration_number="MH12"))
    assert vehicle.status == VehicleStatus.PENDING_APPROVAL
    assert vehicle.organization_id == world.fleet.id

    with pytest.raises(ForbiddenError):
        service.approve(world.fleet_admin, vehicle.id)

    approved = service.approve(world.superadmin, vehicle.id)
    assert approved.status == VehicleStatus.AVAILABLE
    assert approved.approved_by == world.superadmin.id
    assert approved.approved_at is not None

    with pytest.raises(InvalidStateError):
        service.approve(world.superadmin, vehicle.id)


def test_approve_unknown_vehicle(world: World) -> None:
    with pytest.raises(NotFoundError):
        VehicleService().approve(world.superadmin, "missing")


def test_duplicate_vehicle_code_conflicts(world: World) -> None:
    service = VehicleService()
    service.create_vehicle(world.fleet_admin, VehicleCreate(code="AMB-1", registration_number="A"))
    with pytest.raises(ConflictError):
        service.create_vehicle(world.fleet_admin, VehicleCreate(code="AMB-1", registration_number="B"))


def test_hospitals_cannot_register_vehicles(world: World) -> None:
    with pytest.raises(ForbiddenError):
        VehicleService().create_vehicle(world.hospital_admin, VehicleCreate(code="AMB-9", registration_number="X"))


def test_lock_needs_partnership_and_a_live_trip(world: World) -> None:
    service = VehicleService()
    vehicle = world.approved_vehicle()

    with pytest.raises(ForbiddenError):
        service.lock(world.other_admin, vehicle.id, world.other_hospital.id)
    with pytest.raises(ForbiddenError):
        service.lock(world.other_admin, vehicle.id, world.hospital.id)

    PartnershipService().ensure_active_partnership(world.fleet.id, world.hospital.id)
    with pytest.raises(InvalidStateError):
        service.lock(world.hospital_admin, vehicle.id, world.hospital.id)
    idle = service.get_vehicle(world.fleet_admin, vehicle.id)
    assert idle.status == VehicleStatus.AVAILABLE
    assert idle.locked_hospital_id is None

    patient = world.patient()
    TripService().onboard(world.hospital_doctor, OnboardRequest(patient_id=patient.id, vehicle_id=vehicle.id))

    held = service.lock(world.hospital_admin, vehicle.id, world.hospital.id)
    assert held.locked_hospital_id == world.hospital.id

    PartnershipService().ensure_active_partnership(world.fleet.id, world.other_hospital.id)
    with pytest.raises(ConflictError):
        service.lock(world.other_admin, vehicle.id, world.other_hospital.id)
    with pytest.raises(ConflictError):
        service.unlock(world.hospital_admin, vehicle.id)


def test_set_status_rules(world: World) -> None:
    service = VehicleService()
    vehicle = world.approved_vehicle()

    with pytest.raises(InvalidStateError):
        service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.ACTIVE)
    with pytest.raises(InvalidStateError):
        service.set_status(world.superadmin, vehicle.id, VehicleStatus.PENDING_APPROVAL)
    with pytest.raises(ForbiddenError):
        service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.DISABLED)
    with pytest.raises(ForbiddenError):
        service.set_status(world.hospital_admin, vehicle.id, VehicleStatus.MAINTENANCE)

    maintenance = service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.MAINTENANCE)
    assert maintenance.status == VehicleStatus.MAINTENANCE
    disabled = service.set_status(world.superadmin, vehicle.id, VehicleStatus.DISABLED)
    assert disabled.status == VehicleStatus.DISABLED


def test_pending_vehicle_cannot_skip_approval(world: World) -> None:
    service = VehicleService()
    vehicle = service.create_vehicle(world.fleet_admin, VehicleCreate(code="AMB-7", registration_number="P"))
    with pytest.raises(InvalidStateError):
        service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.AVAILABLE)


def test_vehicle_in_use_cannot_change_status(world: World) -> None:
    service = VehicleService()
    vehicle = world.approved_vehicle()
    patient = world.patient(owner=world.fleet_admin)
    TripService().onboard(world.fleet_admin, OnboardRequest(patient_id=patient.id, vehicle_id=vehicle.id))

    with pytest.raises(InvalidStateError):
        service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.ACTIVE)
    with pytest.raises(ConflictError):
        service.set_status(world.fleet_admin, vehicle.id, VehicleStatus.MAINTENANCE)


def test_visibility_follows_ownership_and_partnership(world: World) -> None:
    service = VehicleService()
    available = world.approved_vehicle("AMB-A")
    pending = service.create_vehicle(world.fleet_admin, VehicleCreate(code="AMB-P", registration_number="P"))

    assert {row.id for row in service.list_vehicles(world.fleet_admin)} == {available.id, pending.id}
    assert service.list_vehicles(world.hospital_admin) == []
    with pytest.raises(NotFoundError):
        service.get_vehicle(world.hospital_admin, available.id)

    PartnershipService().ensure_active_partnership(world.fleet.id, world.hospital.id)

    assert [row.id for row in service.list_vehicles(world.hospital_admin)] == [available.id]
    assert service.get_vehicle(world.hospital_admin, available.id).id == available.id
    with pytest.raises(NotFoundError):
        service.get_vehicle(world.hospital_admin, pending.id)
    assert service.list_vehicles(world.other_admin) == []
    assert len(service.list_vehicles(world.superadmin)) == 2


def test_crew_from_unpartnered_organization_lists_assigned_vehicle(world: World) -> None:
    service = VehicleService()
    vehicle = world.approved_vehicle()
    AssignmentService().assign(world.fleet_admin, vehicle.id, AssignmentCreate(user_id=world.other_doctor.id))

    assert [row.id for row in service.list_vehicles(world.other_doctor)] == [vehicle.id]
    assert service.get_vehicle(world.other_doctor, vehicle.id).id == vehicle.id
    assert service.list_vehicles(world.other_admin) == []
