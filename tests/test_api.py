from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from conftest import World

from ambulink import main as app_main
from ambulink.domain.access import Principal
from ambulink.domain.models import AssignmentCreate, AuditLog, EventRecord
from ambulink.infra.auth import create_access_token
from ambulink.services.assignment_service import AssignmentService
from ambulink.services.partnership_service import PartnershipService
from ambulink.services.user_service import UserService


@pytest.fixture()
def api_client(world: World) -> Generator[TestClient, None, None]:
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(principal: Principal) -> dict[str, str]:
    token = create_access_token(
        user_id=principal.id,
        role=principal.role,
        organization_id=principal.organization_id,
        organization_type=principal.organization_type,
    )
    return {"Authorization": f"Bearer {token}"}


def _audit_rows(engine: Engine, action: str) -> list[AuditLog]:
    with Session(engine) as session:
        return list(session.exec(select(AuditLog).where(AuditLog.action == action)).all())


def test_dev_token_issues_usable_token(api_client: TestClient, world: World) -> None:
    response = api_client.post("/api/auth/dev-token", json={"user_id": world.fleet_admin.id})
    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "fleet_admin"
    assert body["organization_id"] == world.fleet.id

    listed = api_client.get(
        "/api/vehicles",
        headers={"Authorization": f"Bearer {body['access_token']}"},
    )
    assert listed.status_code == 200
    assert listed.json() == []


def test_dev_token_refuses_unknown_and_suspended_users(api_client: TestClient, world: World) -> None:
    assert api_client.post("/api/auth/dev-token", json={"user_id": "missing"}).status_code == 401

    UserService().suspend_user(world.fleet_admin, world.fleet_driver.id)
    response = api_client.post("/api/auth/dev-token", json={"user_id": world.fleet_driver.id})
    assert response.status_code == 401


def test_bad_token_and_missing_permission(api_client: TestClient, world: World) -> None:
    unauthenticated = api_client.get("/api/trips", headers={"Authorization": "Bearer not-a-token"})
    assert unauthenticated.status_code == 401

    forbidden = api_client.post(
        "/api/trips",
        json={"patient_id": "p", "vehicle_id": "v"},
        headers=_auth_header(world.fleet_driver),
    )
    assert forbidden.status_code == 403


def test_vehicle_registration_and_approval(api_client: TestClient, world: World, test_engine: Engine) -> None:
    created = api_client.post(
        "/api/vehicles",
        json={"code": "AMB-H1", "registration_number": "MH12-1"},
        headers=_auth_header(world.fleet_admin),
    )
    assert created.status_code == 201
    vehicle_id = created.json()["id"]
    assert created.json()["status"] == "pending_approval"

    denied = api_client.post(f"/api/vehicles/{vehicle_id}/approve", headers=_auth_header(world.fleet_admin))
    assert denied.status_code == 403

    approved = api_client.post(f"/api/vehicles/{vehicle_id}/approve", headers=_auth_header(world.superadmin))
    assert approved.status_code == 200
    assert approved.json()["status"] == "available"

    again = api_client.post(f"/api/vehicles/{vehicle_id}/approve", headers=_auth_header(world.superadmin))
    assert again.status_code == 422

    rows = _audit_rows(test_engine, "vehicle.approve")
    # Permission failures are rejected before the handler names the action.
    assert sorted(row.status_code for row in rows) == [200, 422]


def test_trip_lifecycle_over_http(api_client: TestClient, world: World, test_engine: Engine) -> None:
    vehicle = world.approved_vehicle()
    patient = world.patient()

    requested = api_client.post(
        "/api/partnerships/requests",
        json={"fleet_id": world.fleet.id, "message": "night cover"},
        headers=_auth_header(world.hospital_admin),
    )
    assert requested.status_code == 201
    accepted = api_client.post(
        f"/api/partnerships/requests/{requested.json()['id']}/accept",
        json={},
        headers=_auth_header(world.fleet_admin),
    )
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "active"

    doctor = _auth_header(world.hospital_doctor)
    onboarded = api_client.post(
        "/api/trips",
        json={"patient_id": patient.id, "vehicle_id": vehicle.id, "chief_complaint": "fall"},
        headers=doctor,
    )
    assert onboarded.status_code == 201
    trip_id = onboarded.json()["id"]
    assert onboarded.json()["status"] == "onboarded"

    second_patient = world.patient("PAT-002")
    busy = api_client.post(
        "/api/trips",
        json={"patient_id": second_patient.id, "vehicle_id": vehicle.id},
        headers=doctor,
    )
    assert busy.status_code == 409

    fleet_view = api_client.get("/api/trips", headers=_auth_header(world.fleet_admin))
    assert [row["id"] for row in fleet_view.json()] == [trip_id]
    hidden = api_client.get(f"/api/trips/{trip_id}", headers=_auth_header(world.other_admin))
    assert hidden.status_code == 404

    entry = api_client.post(
        f"/api/trips/{trip_id}/data",
        json={"data_type": "note", "content": {"text": "alert"}},
        headers=doctor,
    )
    assert entry.status_code == 201

    offboarded = api_client.post(f"/api/trips/{trip_id}/offboard", json={}, headers=doctor)
    assert offboarded.status_code == 200
    assert offboarded.json()["offboard_snapshot"]["data_entries"][0]["content"] == {"text": "alert"}

    twice = api_client.post(f"/api/trips/{trip_id}/offboard", json={}, headers=doctor)
    assert twice.status_code == 409

    vehicle_view = api_client.get(f"/api/vehicles/{vehicle.id}", headers=_auth_header(world.fleet_admin))
    assert vehicle_view.json()["status"] == "available"
    assert vehicle_view.json()["locked_hospital_id"] is None

    onboard_audits = _audit_rows(test_engine, "trip.onboard")
    assert sorted(row.status_code for row in onboard_audits) == [201, 409]
    assert all(row.organization_id == world.hospital.id for row in onboard_audits)


def test_unassign_records_authorization_path(api_client: TestClient, world: World, test_engine: Engine) -> None:
    vehicle = world.approved_vehicle()
    PartnershipService().ensure_active_partnership(world.fleet.id, world.hospital.id)
    AssignmentService().assign(world.hospital_admin, vehicle.id, AssignmentCreate(user_id=world.hospital_doctor.id))

    response = api_client.delete(
        f"/api/vehicles/{vehicle.id}/assignments/{world.hospital_doctor.id}",
        headers=_auth_header(world.fleet_admin),
    )

    assert response.status_code == 200
    assert response.json()["authorized_via"] == "vehicle_owner"
    rows = _audit_rows(test_engine, "assignment.remove")
    assert len(rows) == 1
    assert rows[0].detail["what"]["authorized_via"] == "vehicle_owner"
    assert rows[0].detail["who"]["organization_id"] == world.fleet.id


def test_crew_lists_own_vehicles(api_client: TestClient, world: World) -> None:
    vehicle = world.approved_vehicle()
    AssignmentService().assign(world.fleet_admin, vehicle.id, AssignmentCreate(user_id=world.fleet_paramedic.id))

    response = api_client.get("/api/users/me/vehicles", headers=_auth_header(world.fleet_paramedic))

    assert response.status_code == 200
    assert [row["id"] for row in response.json()] == [vehicle.id]


def test_request_id_flows_into_events_and_audit(api_client: TestClient, world: World, test_engine: Engine) -> None:
    response = api_client.post(
        "/api/vehicles",
        json={"code": "AMB-R1", "registration_number": "R1"},
        headers={**_auth_header(world.fleet_admin), "X-Request-ID": "req-123"},
    )

    assert response.status_code == 201
    assert response.headers["X-Request-ID"] == "req-123"
    with Session(test_engine) as session:
        registered = session.exec(select(EventRecord).where(EventRecord.event_type == "vehicle_registered")).one()
        audit_row = session.exec(select(AuditLog).where(AuditLog.method == "POST")).one()
    assert registered.correlation_id == "req-123"
    assert audit_row.detail["correlation_id"] == "req-123"
