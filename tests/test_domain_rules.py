from __future__ import annotations

import pytest

from ambulink.domain.permissions import (
    PERM_TRIP_ONBOARD,
    PERM_VEHICLE_APPROVE,
    ROLE_PERMISSIONS,
    OrganizationType,
    UserRole,
    has_permission,
    is_admin_role,
    is_clinical_role,
    organization_type_for_role,
)
from ambulink.domain.state_machine import (
    ACTIVE_TRIP_STATUSES,
    TripStatus,
    VehicleStatus,
    can_trip_transition,
    can_vehicle_transition,
    is_terminal,
)


def test_every_role_has_permissions_and_an_organization_type() -> None:
    for role in UserRole:
        assert role in ROLE_PERMISSIONS
        assert isinstance(organization_type_for_role(role), OrganizationType)
        is_admin_role(role)
        is_clinical_role(role)


def test_clinical_roles() -> None:
    clinical = {role for role in UserRole if is_clinical_role(role)}
    assert clinical == {
        UserRole.HOSPITAL_DOCTOR,
        UserRole.HOSPITAL_PARAMEDIC,
        UserRole.FLEET_DOCTOR,
        UserRole.FLEET_PARAMEDIC,
    }


def test_superadmin_holds_wildcard() -> None:
    assert has_permission(UserRole.SUPERADMIN, PERM_VEHICLE_APPROVE)
    assert not has_permission(UserRole.FLEET_ADMIN, PERM_VEHICLE_APPROVE)
    assert not has_permission(UserRole.HOSPITAL_STAFF, PERM_TRIP_ONBOARD)


@pytest.mark.parametrize(
    ("source", "target", "allowed"),
    [
        (TripStatus.ONBOARDED, TripStatus.IN_TRANSIT, True),
        (TripStatus.ONBOARDED, TripStatus.OFFBOARDED, True),
        (TripStatus.IN_TRANSIT, TripStatus.CANCELLED, True),
        (TripStatus.IN_TRANSIT, TripStatus.ONBOARDED, False),
        (TripStatus.OFFBOARDED, TripStatus.CANCELLED, False),
        (TripStatus.CANCELLED, TripStatus.ONBOARDED, False),
    ],
)
def test_trip_transitions(source: TripStatus, target: TripStatus, allowed: bool) -> None:
    assert can_trip_transition(source, target) is allowed


def test_terminal_statuses() -> None:
    assert {status for status in TripStatus if not is_terminal(status)} == set(ACTIVE_TRIP_STATUSES)
    assert is_terminal(TripStatus.OFFBOARDED)
    assert is_terminal(TripStatus.CANCELLED)


def test_vehicle_manual_transitions_never_produce_active_or_pending() -> None:
    for source in VehicleStatus:
        assert not can_vehicle_transition(source, VehicleStatus.ACTIVE)
        assert not can_vehicle_transition(source, VehicleStatus.PENDING_APPROVAL)
    assert can_vehicle_transition(VehicleStatus.AVAILABLE, VehicleStatus.MAINTENANCE)
    assert can_vehicle_transition(VehicleStatus.MAINTENANCE, VehicleStatus.AVAILABLE)
