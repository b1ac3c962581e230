"""Cross-organization access decisions.

Every decision here is a pure function of a ``Principal`` and a small,
pre-fetched context object. Rules are ordered ``(name, predicate)`` pairs and
are evaluated by :func:`first_match`; the first predicate that holds grants
access and its name is reported so callers can record which path applied.

An active partnership between two organizations is deliberately absent from
the trip rules: a partnership lets a hospital onboard onto a fleet vehicle,
it does not expose that fleet's trip history.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeVar

from ambulink.domain.permissions import OrganizationType, UserRole, is_superadmin

SubjectT = TypeVar("SubjectT")
Rule = tuple[str, Callable[[SubjectT], bool]]


@dataclass(frozen=True)
class Principal:
    id: str
    role: UserRole
    organization_id: str
    organization_type: OrganizationType

    @property
    def is_superadmin(self) -> bool:
        return is_superadmin(self.role)


@dataclass(frozen=True)
class TripAccessContext:
    principal: Principal
    trip_organization_id: str
    destination_organization_id: str | None
    vehicle_organization_id: str
    active_crew_user_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class UnassignContext:
    principal: Principal
    assigning_organization_id: str
    vehicle_organization_id: str


def first_match(rules: Sequence[Rule[SubjectT]], subject: SubjectT) -> str | None:
    for name, predicate in rules:
        if predicate(subject):
            return name
    return None


def _is_superadmin(ctx: TripAccessContext) -> bool:
    return ctx.principal.is_superadmin


def _owns_trip(ctx: TripAccessContext) -> bool:
    return ctx.principal.organization_id == ctx.trip_organization_id


def _is_destination(ctx: TripAccessContext) -> bool:
    return (
        ctx.destination_organization_id is not None
        and ctx.principal.organization_id == ctx.destination_organization_id
    )


def _is_active_crew(ctx: TripAccessContext) -> bool:
    return ctx.principal.id in ctx.active_crew_user_ids


def _is_fleet_vehicle_owner(ctx: TripAccessContext) -> bool:
    return (
        ctx.principal.organization_type == OrganizationType.FLEET
        and ctx.principal.organization_id == ctx.vehicle_organization_id
    )


TRIP_ACCESS_RULES: tuple[Rule[TripAccessContext], ...] = (
    ("superadmin", _is_superadmin),
    ("trip_owner", _owns_trip),
    ("destination", _is_destination),
    ("assigned_crew", _is_active_crew),
    ("fleet_vehicle_owner", _is_fleet_vehicle_owner),
)


def resolve_access(ctx: TripAccessContext) -> str | None:
    return first_match(TRIP_ACCESS_RULES, ctx)


def can_access(ctx: TripAccessContext) -> bool:
    return resolve_access(ctx) is not None


def _is_assigning_organization(ctx: UnassignContext) -> bool:
    return ctx.principal.organization_id == ctx.assigning_organization_id


def _unassign_superadmin(ctx: UnassignContext) -> bool:
    return ctx.principal.is_superadmin


def _owns_vehicle(ctx: UnassignContext) -> bool:
    return ctx.principal.organization_id == ctx.vehicle_organization_id


UNASSIGN_RULES: tuple[Rule[UnassignContext], ...] = (
    ("assigning_organization", _is_assigning_organization),
    ("superadmin", _unassign_superadmin),
    ("vehicle_owner", _owns_vehicle),
)


def resolve_unassign(ctx: UnassignContext) -> str | None:
    return first_match(UNASSIGN_RULES, ctx)
