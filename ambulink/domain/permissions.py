from __future__ import annotations

from enum import StrEnum
from typing import assert_never


class OrganizationType(StrEnum):
    HOSPITAL = "hospital"
    FLEET = "fleet"
    SYSTEM = "system"


class UserRole(StrEnum):
    SUPERADMIN = "superadmin"
    HOSPITAL_ADMIN = "hospital_admin"
    HOSPITAL_STAFF = "hospital_staff"
    HOSPITAL_DOCTOR = "hospital_doctor"
    HOSPITAL_PARAMEDIC = "hospital_paramedic"
    FLEET_ADMIN = "fleet_admin"
    FLEET_STAFF = "fleet_staff"
    FLEET_DOCTOR = "fleet_doctor"
    FLEET_PARAMEDIC = "fleet_paramedic"
    FLEET_DRIVER = "fleet_driver"


PERM_WILDCARD = "*"
PERM_ORGANIZATION_READ = "organization.read"
PERM_ORGANIZATION_WRITE = "organization.write"
PERM_USER_READ = "user.read"
PERM_USER_WRITE = "user.write"
PERM_VEHICLE_READ = "vehicle.read"
PERM_VEHICLE_WRITE = "vehicle.write"
PERM_VEHICLE_APPROVE = "vehicle.approve"
PERM_ASSIGNMENT_WRITE = "assignment.write"
PERM_PATIENT_READ = "patient.read"
PERM_PATIENT_WRITE = "patient.write"
PERM_TRIP_READ = "trip.read"
PERM_TRIP_ONBOARD = "trip.onboard"
PERM_TRIP_OFFBOARD = "trip.offboard"
PERM_TRIP_DATA_WRITE = "trip.data.write"
PERM_COLLABORATION_READ = "collaboration.read"
PERM_COLLABORATION_REQUEST = "collaboration.request"
PERM_COLLABORATION_APPROVE = "collaboration.approve"

_CLINICAL_PERMISSIONS = [
    PERM_VEHICLE_READ,
    PERM_PATIENT_READ,
    PERM_PATIENT_WRITE,
    PERM_TRIP_READ,
    PERM_TRIP_OFFBOARD,
    PERM_TRIP_DATA_WRITE,
]

ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.SUPERADMIN: [PERM_WILDCARD],
    UserRole.HOSPITAL_ADMIN: [
        PERM_ORGANIZATION_READ,
        PERM_USER_READ,
        PERM_USER_WRITE,
        PERM_VEHICLE_READ,
        PERM_VEHICLE_WRITE,
        PERM_ASSIGNMENT_WRITE,
        PERM_PATIENT_READ,
        PERM_PATIENT_WRITE,
        PERM_TRIP_READ,
        PERM_TRIP_ONBOARD,
        PERM_TRIP_OFFBOARD,
        PERM_TRIP_DATA_WRITE,
        PERM_COLLABORATION_READ,
        PERM_COLLABORATION_REQUEST,
    ],
    UserRole.HOSPITAL_STAFF: [
        PERM_VEHICLE_READ,
        PERM_PATIENT_READ,
        PERM_TRIP_READ,
    ],
    UserRole.HOSPITAL_DOCTOR: [*_CLINICAL_PERMISSIONS, PERM_TRIP_ONBOARD, PERM_ASSIGNMENT_WRITE],
    UserRole.HOSPITAL_PARAMEDIC: [*_CLINICAL_PERMISSIONS, PERM_ASSIGNMENT_WRITE],
    UserRole.FLEET_ADMIN: [
        PERM_ORGANIZATION_READ,
        PERM_USER_READ,
        PERM_USER_WRITE,
        PERM_VEHICLE_READ,
        PERM_VEHICLE_WRITE,
        PERM_ASSIGNMENT_WRITE,
        PERM_TRIP_READ,
        PERM_TRIP_ONBOARD,
        PERM_TRIP_OFFBOARD,
        PERM_COLLABORATION_READ,
        PERM_COLLABORATION_APPROVE,
    ],
    UserRole.FLEET_STAFF: [PERM_VEHICLE_READ, PERM_TRIP_READ],
    UserRole.FLEET_DOCTOR: [*_CLINICAL_PERMISSIONS, PERM_ASSIGNMENT_WRITE],
    UserRole.FLEET_PARAMEDIC: [*_CLINICAL_PERMISSIONS, PERM_ASSIGNMENT_WRITE],
    UserRole.FLEET_DRIVER: [PERM_VEHICLE_READ, PERM_TRIP_READ],
}


def is_superadmin(role: UserRole) -> bool:
    return role == UserRole.SUPERADMIN


def is_clinical_role(role: UserRole) -> bool:
    match role:
        case (
            UserRole.HOSPITAL_DOCTOR
            | UserRole.HOSPITAL_PARAMEDIC
            | UserRole.FLEET_DOCTOR
            | UserRole.FLEET_PARAMEDIC
        ):
            return True
        case (
            UserRole.SUPERADMIN
            | UserRole.HOSPITAL_ADMIN
            | UserRole.HOSPITAL_STAFF
            | UserRole.FLEET_ADMIN
            | UserRole.FLEET_STAFF
            | UserRole.FLEET_DRIVER
        ):
            return False
        case _:
            assert_never(role)


def is_admin_role(role: UserRole) -> bool:
    match role:
        case UserRole.SUPERADMIN | UserRole.HOSPITAL_ADMIN | UserRole.FLEET_ADMIN:
            return True
        case (
            UserRole.HOSPITAL_STAFF
            | UserRole.HOSPITAL_DOCTOR
            | UserRole.HOSPITAL_PARAMEDIC
            | UserRole.FLEET_STAFF
            | UserRole.FLEET_DOCTOR
            | UserRole.FLEET_PARAMEDIC
            | UserRole.FLEET_DRIVER
        ):
            return False
        case _:
            assert_never(role)


def organization_type_for_role(role: UserRole) -> OrganizationType:
    """Return the only organization type a role may belong to."""
    match role:
        case UserRole.SUPERADMIN:
            return OrganizationType.SYSTEM
        case (
            UserRole.HOSPITAL_ADMIN
            | UserRole.HOSPITAL_STAFF
            | UserRole.HOSPITAL_DOCTOR
            | UserRole.HOSPITAL_PARAMEDIC
        ):
            return OrganizationType.HOSPITAL
        case (
            UserRole.FLEET_ADMIN
            | UserRole.FLEET_STAFF
            | UserRole.FLEET_DOCTOR
            | UserRole.FLEET_PARAMEDIC
            | UserRole.FLEET_DRIVER
        ):
            return OrganizationType.FLEET
        case _:
            assert_never(role)


def permissions_for_role(role: UserRole) -> list[str]:
    return list(ROLE_PERMISSIONS.get(role, []))


def has_permission(role: UserRole, permission: str) -> bool:
    permissions = ROLE_PERMISSIONS.get(role, [])
    return permission in permissions or PERM_WILDCARD in permissions
