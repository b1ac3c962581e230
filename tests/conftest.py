from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel

from ambulink.domain.access import Principal
from ambulink.domain.models import (
    Organization,
    OrganizationCreate,
    Patient,
    PatientCreate,
    User,
    UserCreate,
    Vehicle,
    VehicleCreate,
)
from ambulink.domain.permissions import OrganizationType, UserRole
from ambulink.infra import audit, db, events
from ambulink.services.organization_service import OrganizationService
from ambulink.services.patient_service import PatientService
from ambulink.services.user_service import UserService
from ambulink.services.vehicle_service import VehicleService


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    engine = db.build_engine(f"sqlite:///{tmp_path / 'ambulink_test.db'}")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(audit, "engine", engine)
    monkeypatch.setattr(events, "engine", engine)
    yield engine
    engine.dispose()


def principal_for(user: User, organization: Organization) -> Principal:
    return Principal(
        id=user.id,
        role=user.role,
        organization_id=organization.id,
        organization_type=organization.type,
    )


@dataclass
class World:
    system: Organization
    hospital: Organization
    fleet: Organization
    other_hospital: Organization
    superadmin: Principal
    hospital_admin: Principal
    hospital_doctor: Principal
    fleet_admin: Principal
    fleet_paramedic: Principal
    fleet_driver: Principal
    other_admin: Principal
    other_doctor: Principal

    def approved_vehicle(self, code: str = "AMB-001") -> Vehicle:
        vehicles = VehicleService()
        vehicle = vehicles.create_vehicle(
            self.fleet_admin,
            VehicleCreate(code=code, registration_number=f"REG-{code}", vehicle_type="als"),
        )
        return vehicles.approve(self.superadmin, vehicle.id)

    def patient(self, code: str = "PAT-001", owner: Principal | None = None) -> Patient:
        return PatientService().create_patient(
            owner or self.hospital_admin,
            PatientCreate(code=code, first_name="Asha", last_name="Rao", age=54, blood_group="O+"),
        )


@pytest.fixture()
def world(test_engine: Engine) -> World:
    organizations = OrganizationService()
    users = UserService()

    root_user = organizations.bootstrap_superadmin("root@ambulink.test")
    with Session(test_engine) as session:
        system = session.get(Organization, root_user.organization_id)
    assert system is not None
    superadmin = principal_for(root_user, system)

    def _org(name: str, code: str, organization_type: OrganizationType) -> Organization:
        return organizations.create_organization(
            superadmin,
            OrganizationCreate(name=name, code=code, type=organization_type, city="Pune"),
        )

    hospital = _org("City Hospital", "CITY-H", OrganizationType.HOSPITAL)
    fleet = _org("Rapid Fleet", "RAPID-F", OrganizationType.FLEET)
    other_hospital = _org("Lake Hospital", "LAKE-H", OrganizationType.HOSPITAL)

    def _staff(organization: Organization, role: UserRole, email: str) -> Principal:
        user = users.create_user(
            superadmin,
            UserCreate(
                organization_id=organization.id,
                email=email,
                first_name=role.value.split("_")[-1].title(),
                last_name=organization.code.title(),
                role=role,
            ),
        )
        return principal_for(user, organization)

    return World(
        system=system,
        hospital=hospital,
        fleet=fleet,
        other_hospital=other_hospital,
        superadmin=superadmin,
        hospital_admin=_staff(hospital, UserRole.HOSPITAL_ADMIN, "admin@city.test"),
        hospital_doctor=_staff(hospital, UserRole.HOSPITAL_DOCTOR, "doctor@city.test"),
        fleet_admin=_staff(fleet, UserRole.FLEET_ADMIN, "admin@rapid.test"),
        fleet_paramedic=_staff(fleet, UserRole.FLEET_PARAMEDIC, "medic@rapid.test"),
        fleet_driver=_staff(fleet, UserRole.FLEET_DRIVER, "driver@rapid.test"),
        other_admin=_staff(other_hospital, UserRole.HOSPITAL_ADMIN, "admin@lake.test"),
        other_doctor=_staff(other_hospital, UserRole.HOSPITAL_DOCTOR, "doctor@lake.test"),
    )
