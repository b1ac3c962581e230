from __future__ import annotations

from enum import StrEnum


class TripStatus(StrEnum):
    ONBOARDED = "onboarded"
    IN_TRANSIT = "in_transit"
    OFFBOARDED = "offboarded"
    CANCELLED = "cancelled"


ACTIVE_TRIP_STATUSES: frozenset[TripStatus] = frozenset({TripStatus.ONBOARDED, TripStatus.IN_TRANSIT})

TRIP_ALLOWED_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.ONBOARDED: {TripStatus.IN_TRANSIT, TripStatus.OFFBOARDED, TripStatus.CANCELLED},
    TripStatus.IN_TRANSIT: {TripStatus.OFFBOARDED, TripStatus.CANCELLED},
    TripStatus.OFFBOARDED: set(),
    TripStatus.CANCELLED: set(),
}


def can_trip_transition(source: TripStatus, target: TripStatus) -> bool:
    return target in TRIP_ALLOWED_TRANSITIONS.get(source, set())


def is_terminal(status: TripStatus) -> bool:
    return status not in ACTIVE_TRIP_STATUSES


class VehicleStatus(StrEnum):
    PENDING_APPROVAL = "pending_approval"
    AVAILABLE = "available"
    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"
    DISABLED = "disabled"


# Manual status changes only. PENDING_APPROVAL is produced by creation, the
# AVAILABLE <-> ACTIVE pair is driven by trip onboarding and release.
VEHICLE_MANUAL_TRANSITIONS: dict[VehicleStatus, set[VehicleStatus]] = {
    VehicleStatus.PENDING_APPROVAL: {VehicleStatus.INACTIVE, VehicleStatus.DISABLED},
    VehicleStatus.AVAILABLE: {VehicleStatus.MAINTENANCE, VehicleStatus.INACTIVE, VehicleStatus.DISABLED},
    VehicleStatus.ACTIVE: set(),
    VehicleStatus.MAINTENANCE: {VehicleStatus.AVAILABLE, VehicleStatus.INACTIVE, VehicleStatus.DISABLED},
    VehicleStatus.INACTIVE: {VehicleStatus.AVAILABLE, VehicleStatus.MAINTENANCE, VehicleStatus.DISABLED},
    VehicleStatus.DISABLED: {VehicleStatus.AVAILABLE, VehicleStatus.INACTIVE},
}

RESTRICTED_VEHICLE_STATUSES: frozenset[VehicleStatus] = frozenset(
    {VehicleStatus.INACTIVE, VehicleStatus.DISABLED}
)


def can_vehicle_transition(source: VehicleStatus, target: VehicleStatus) -> bool:
    return target in VEHICLE_MANUAL_TRANSITIONS.get(source, set())


class CollaborationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


COLLABORATION_ALLOWED_TRANSITIONS: dict[CollaborationStatus, set[CollaborationStatus]] = {
    CollaborationStatus.PENDING: {
        CollaborationStatus.APPROVED,
        CollaborationStatus.REJECTED,
        CollaborationStatus.CANCELLED,
    },
    CollaborationStatus.APPROVED: {CollaborationStatus.CANCELLED},
    CollaborationStatus.REJECTED: set(),
    CollaborationStatus.CANCELLED: set(),
}


def can_collaboration_transition(source: CollaborationStatus, target: CollaborationStatus) -> bool:
    return target in COLLABORATION_ALLOWED_TRANSITIONS.get(source, set())
