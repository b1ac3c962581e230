from __future__ import annotations

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from conftest import World

from ambulink.domain.models import (
    AssignmentCreate,
    CollaborationRequestCreate,
    EventRecord,
    OnboardRequest,
    Partnership,
    PartnershipStatus,
    Trip,
    Vehicle,
)
from ambulink.domain.state_machine import CollaborationStatus
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.errors import ConflictError, ForbiddenError, NotFoundError
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.trip_service import TripService
from ambulink.services.vehicle_service import VehicleService


def _partnership_rows(engine: Engine) -> list[Partnership]:
    with Session(engine) as session:
        return list(session.exec(select(Partnership)).all())


def test_ensure_active_partnership_is_idempotent(world: World, test_engine: Engine) -> None:
    service = PartnershipService()

    first, changed_first = service.ensure_active_partnership(world.fleet.id, world.hospital.id)
    second, changed_second = service.ensure_active_partnership(world.fleet.id, world.hospital.id)

    assert changed_first is True
    assert changed_second is False
    assert first.id == second.id
    rows = _partnership_rows(test_engine)
    assert len(rows) == 1
    assert rows[0].status == PartnershipStatus.ACTIVE

    with Session(test_engine) as session:
        activations = session.exec(select(EventRecord).where(EventRecord.event_type == "partnership_activated")).all()
    assert len(activations) == 1


def test_ensure_active_partnership_reactivates_inactive_row(world: World, test_engine: Engine) -> None:
    service = PartnershipService()
    service.ensure_active_partnership(world.fleet.id, world.hospital.id)
    service.deactivate_partnership(world.hospital_admin, world.fleet.id, world.hospital.id)

    row, changed = service.ensure_active_partnership(world.fleet.id, world.hospital.id)

    assert changed is True
    assert row.status == PartnershipStatus.ACTIVE
    assert len(_partnership_rows(test_engine)) == 1


def test_ensure_active_partnership_rejects_wrong_organization_types(world: World) -> None:
    with pytest.raises(NotFoundError):
        PartnershipService().ensure_active_partnership(world.hospital.id, world.other_hospital.id)


def test_collaboration_accept_creates_partnership(world: World, test_engine: Engine) -> None:
    service = PartnershipService()
    request = service.request_collaboration(
        world.hospital_admin,
        CollaborationRequestCreate(fleet_id=world.fleet.id, message="night cover"),
    )
    assert request.hospital_id == world.hospital.id
    assert request.status == CollaborationStatus.PENDING

    with Session(test_engine) as session:
        assert not service.has_active_partnership(session, world.fleet.id, world.hospital.id)

    accepted, partnership = service.accept(world.fleet_admin, request.id)

    assert accepted.status == CollaborationStatus.APPROVED
    assert accepted.decided_by == world.fleet_admin.id
    assert partnership.status == PartnershipStatus.ACTIVE
    assert (partnership.fleet_id, partnership.hospital_id) == (world.fleet.id, world.hospital.id)


def test_duplicate_pending_request_conflicts(world: World) -> None:
    service = PartnershipService()
    payload = CollaborationRequestCreate(fleet_id=world.fleet.id)
    service.request_collaboration(world.hospital_admin, payload)

    with pytest.raises(ConflictError):
        service.request_collaboration(world.hospital_admin, payload)


def test_request_requires_fleet_target(world: World) -> None:
    with pytest.raises(NotFoundError):
        PartnershipService().request_collaboration(
            world.hospital_admin,
            CollaborationRequestCreate(fleet_id=world.other_hospital.id),
        )


def test_only_the_fleet_side_decides(world: World) -> None:
    service = PartnershipService()
    request = service.request_collaboration(world.hospital_admin, CollaborationRequestCreate(fleet_id=world.fleet.id))

    with pytest.raises(ForbiddenError):
        service.accept(world.hospital_admin, request.id)
    with pytest.raises(ForbiddenError):
        service.reject(world.other_admin, request.id)


@pytest.mark.parametrize("first_action", ["accept", "reject", "cancel"])
def test_decided_request_cannot_change_again(world: World, first_action: str) -> None:
    service = PartnershipService()
    request = service.request_collaboration(world.hospital_admin, CollaborationRequestCreate(fleet_id=world.fleet.id))
    if first_action == "accept":
        service.accept(world.fleet_admin, request.id)
    elif first_action == "reject":
        service.reject(world.fleet_admin, request.id, "no capacity")
    else:
        service.cancel(world.hospital_admin, request.id)

    with pytest.raises(ConflictError):
        service.accept(world.fleet_admin, request.id)
    with pytest.raises(ConflictError):
        service.reject(world.fleet_admin, request.id)
    if first_action != "accept":
        with pytest.raises(ConflictError):
            service.cancel(world.hospital_admin, request.id)


def test_requests_are_listed_per_side(world: World) -> None:
    service = PartnershipService()
    service.request_collaboration(world.hospital_admin, CollaborationRequestCreate(fleet_id=world.fleet.id))

    assert len(service.list_requests(world.hospital_admin)) == 1
    assert len(service.list_requests(world.fleet_admin)) == 1
    assert service.list_requests(world.other_admin) == []
    assert len(service.list_requests(world.superadmin, status=CollaborationStatus.PENDING)) == 1


def _crew_partnered_vehicles(world: World) -> tuple[Vehicle, Vehicle, Trip]:
    """Hospital doctor crewing two fleet vehicles, one of them on a live hospital trip."""
    PartnershipService().ensure_active_partnership(world.fleet.id, world.hospital.id)
    idle = world.approved_vehicle("AMB-IDLE")
    busy = world.approved_vehicle("AMB-BUSY")
    assignments = AssignmentService()
    for vehicle in (idle, busy):
        assignments.assign(world.hospital_admin, vehicle.id, AssignmentCreate(user_id=world.hospital_doctor.id))
    live = TripService().onboard(
        world.hospital_doctor,
        OnboardRequest(patient_id=world.patient().id, vehicle_id=busy.id),
    )
    return idle, busy, live


def test_deactivation_removes_partner_crew_from_idle_vehicles(world: World, test_engine: Engine) -> None:
    idle, busy, live = _crew_partnered_vehicles(world)

    PartnershipService().deactivate_partnership(world.fleet_admin, world.fleet.id, world.hospital.id)

    assignments = AssignmentService()
    assert assignments.list_for_vehicle(world.fleet_admin, idle.id) == []
    assert [row.user_id for row in assignments.list_for_vehicle(world.fleet_admin, busy.id)] == [
        world.hospital_doctor.id
    ]
    assert VehicleService().get_vehicle(world.fleet_admin, busy.id).locked_hospital_id == world.hospital.id
    assert TripService().get_trip(world.hospital_doctor, live.id).id == live.id

    fleet_patient = world.patient("PAT-FLEET", owner=world.fleet_admin)
    fleet_trip = TripService().onboard(
        world.fleet_admin,
        OnboardRequest(patient_id=fleet_patient.id, vehicle_id=idle.id),
    )
    with pytest.raises(NotFoundError):
        TripService().get_trip(world.hospital_doctor, fleet_trip.id)

    with Session(test_engine) as session:
        event = session.exec(
            select(EventRecord).where(EventRecord.event_type == "partnership_deactivated")
        ).one()
    assert len(event.payload["removed_assignment_ids"]) == 1
    assert len(event.payload["kept_assignment_ids"]) == 1


def test_cancelling_an_approved_request_ends_the_partnership(world: World, test_engine: Engine) -> None:
    service = PartnershipService()
    request = service.request_collaboration(world.hospital_admin, CollaborationRequestCreate(fleet_id=world.fleet.id))
    service.accept(world.fleet_admin, request.id)
    vehicle = world.approved_vehicle()
    AssignmentService().assign(world.hospital_admin, vehicle.id, AssignmentCreate(user_id=world.hospital_doctor.id))

    cancelled = service.cancel(world.hospital_admin, request.id)

    assert cancelled.status == CollaborationStatus.CANCELLED
    rows = _partnership_rows(test_engine)
    assert [row.status for row in rows] == [PartnershipStatus.INACTIVE]
    assert AssignmentService().list_for_vehicle(world.fleet_admin, vehicle.id) == []
    with pytest.raises(NotFoundError):
        VehicleService().get_vehicle(world.hospital_doctor, vehicle.id)
    with pytest.raises(ConflictError):
        service.cancel(world.hospital_admin, request.id)
