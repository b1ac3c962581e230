from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from ambulink.domain.permissions import OrganizationType, UserRole
from ambulink.domain.state_machine import CollaborationStatus, TripStatus, VehicleStatus


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    organization_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class OrganizationStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


class Organization(SQLModel, table=True):
    __tablename__ = "organizations"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True)
    code: str = Field(index=True, unique=True)
    type: OrganizationType = Field(index=True)
    status: OrganizationStatus = Field(default=OrganizationStatus.ACTIVE, index=True)
    city: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class UserStatus(StrEnum):
    PENDING_APPROVAL = "pending_approval"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    email: str = Field(index=True, unique=True)
    first_name: str
    last_name: str
    phone: str | None = None
    role: UserRole = Field(index=True)
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Vehicle(SQLModel, table=True):
    __tablename__ = "vehicles"
    __table_args__ = (Index("ix_vehicles_org_status", "organization_id", "status"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    code: str = Field(index=True, unique=True)
    registration_number: str = Field(index=True)
    vehicle_model: str | None = None
    vehicle_type: str | None = None
    status: VehicleStatus = Field(default=VehicleStatus.PENDING_APPROVAL, index=True)
    locked_hospital_id: str | None = Field(default=None, foreign_key="organizations.id", index=True)
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Patient(SQLModel, table=True):
    __tablename__ = "patients"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    organization_id: str | None = Field(default=None, foreign_key="organizations.id", index=True)
    code: str = Field(index=True, unique=True)
    first_name: str
    last_name: str
    age: int | None = None
    gender: str | None = None
    blood_group: str | None = None
    phone: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    current_medications: str | None = None
    is_active: bool = Field(default=True, index=True)
    is_onboarded: bool = Field(default=False, index=True)
    # Written only by the trip lifecycle manager.
    current_trip_id: str | None = Field(default=None, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Trip(SQLModel, table=True):
    __tablename__ = "trips"
    __table_args__ = (
        Index("ix_trips_org_status", "organization_id", "status"),
        Index("ix_trips_vehicle_status", "vehicle_id", "status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    code: str = Field(index=True, unique=True)
    patient_id: str = Field(foreign_key="patients.id", index=True)
    vehicle_id: str = Field(foreign_key="vehicles.id", index=True)
    organization_id: str = Field(foreign_key="organizations.id", index=True)
    destination_organization_id: str | None = Field(
        default=None,
        foreign_key="organizations.id",
        index=True,
    )
    status: TripStatus = Field(default=TripStatus.ONBOARDED, index=True)
    # Hold vehicle_id/patient_id while the trip is live and NULL afterwards;
    # the unique constraints allow one live trip per vehicle and per patient.
    active_vehicle_id: str | None = Field(default=None, unique=True)
    active_patient_id: str | None = Field(default=None, unique=True)
    pickup_location: str | None = None
    pickup_coordinates: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    destination_location: str | None = None
    destination_coordinates: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    chief_complaint: str | None = None
    initial_assessment: str | None = None
    treatment_notes: str | None = None
    onboarded_by: str
    onboarded_at: datetime = Field(default_factory=now_utc, index=True)
    transit_started_at: datetime | None = None
    offboarded_by: str | None = None
    offboarded_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    offboard_snapshot: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class TripDataType(StrEnum):
    NOTE = "note"
    MEDICATION = "medication"
    FILE = "file"


class TripDataEntry(SQLModel, table=True):
    __tablename__ = "trip_data_entries"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    trip_id: str = Field(foreign_key="trips.id", index=True)
    data_type: TripDataType = Field(index=True)
    content: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    added_by: str = Field(index=True)
    added_at: datetime = Field(default_factory=now_utc, index=True)


class PartnershipStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Partnership(SQLModel, table=True):
    __tablename__ = "partnerships"
    __table_args__ = (UniqueConstraint("fleet_id", "hospital_id", name="uq_partnerships_fleet_hospital"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    fleet_id: str = Field(foreign_key="organizations.id", index=True)
    hospital_id: str = Field(foreign_key="organizations.id", index=True)
    status: PartnershipStatus = Field(default=PartnershipStatus.ACTIVE, index=True)
    created_by: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class CollaborationRequest(SQLModel, table=True):
    __tablename__ = "collaboration_requests"
    __table_args__ = (Index("ix_collaboration_requests_pair_status", "fleet_id", "hospital_id", "status"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    hospital_id: str = Field(foreign_key="organizations.id", index=True)
    fleet_id: str = Field(foreign_key="organizations.id", index=True)
    request_type: str = Field(default="partnership")
    message: str | None = None
    terms: str | None = None
    requested_by: str
    status: CollaborationStatus = Field(default=CollaborationStatus.PENDING, index=True)
    decided_by: str | None = None
    decided_at: datetime | None = None
    rejected_reason: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Assignment(SQLModel, table=True):
    __tablename__ = "vehicle_assignments"
    __table_args__ = (
        UniqueConstraint(
            "vehicle_id",
            "user_id",
            "assigning_organization_id",
            name="uq_vehicle_assignments_vehicle_user_org",
        ),
        Index("ix_vehicle_assignments_vehicle_active", "vehicle_id", "is_active"),
        Index("ix_vehicle_assignments_user_active", "user_id", "is_active"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    vehicle_id: str = Field(foreign_key="vehicles.id", index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    assigning_organization_id: str = Field(foreign_key="organizations.id", index=True)
    role: str
    is_active: bool = Field(default=True, index=True)
    assigned_by: str | None = None
    assigned_at: datetime = Field(default_factory=now_utc, index=True)
    unassigned_by: str | None = None
    unassigned_at: datetime | None = None


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    organization_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationCreate(BaseModel):
    name: str
    code: str
    type: OrganizationType
    city: str | None = None


class OrganizationStatusUpdate(BaseModel):
    status: OrganizationStatus


class OrganizationRead(ORMReadModel):
    id: str
    name: str
    code: str
    type: OrganizationType
    status: OrganizationStatus
    city: str | None
    created_at: datetime


class UserCreate(BaseModel):
    organization_id: str | None = None
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    role: UserRole


class UserRead(ORMReadModel):
    id: str
    organization_id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None
    role: UserRole
    status: UserStatus
    created_at: datetime


class VehicleCreate(BaseModel):
    organization_id: str | None = None
    code: str
    registration_number: str
    vehicle_model: str | None = None
    vehicle_type: str | None = None


class VehicleUpdate(BaseModel):
    registration_number: str | None = None
    vehicle_model: str | None = None
    vehicle_type: str | None = None


class VehicleStatusUpdate(BaseModel):
    status: VehicleStatus


class VehicleRead(ORMReadModel):
    id: str
    organization_id: str
    code: str
    registration_number: str
    vehicle_model: str | None
    vehicle_type: str | None
    status: VehicleStatus
    locked_hospital_id: str | None
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AssignmentCreate(BaseModel):
    user_id: str
    role: str | None = None
    assigning_organization_id: str | None = None


class AssignmentRead(ORMReadModel):
    id: str
    vehicle_id: str
    user_id: str
    assigning_organization_id: str
    role: str
    is_active: bool
    assigned_by: str | None
    assigned_at: datetime


class UnassignResult(BaseModel):
    vehicle_id: str
    user_id: str
    assignment_ids: list[str]
    authorized_via: str


class PatientCreate(BaseModel):
    organization_id: str | None = None
    code: str
    first_name: str
    last_name: str
    age: int | None = None
    gender: str | None = None
    blood_group: str | None = None
    phone: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    current_medications: str | None = None


class PatientUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    age: int | None = None
    gender: str | None = None
    blood_group: str | None = None
    phone: str | None = None
    emergency_contact_name: str | None = None
    emergency_contact_phone: str | None = None
    medical_history: str | None = None
    allergies: str | None = None
    current_medications: str | None = None


class PatientRead(ORMReadModel):
    id: str
    organization_id: str | None
    code: str
    first_name: str
    last_name: str
    age: int | None
    gender: str | None
    blood_group: str | None
    is_active: bool
    is_onboarded: bool
    current_trip_id: str | None
    created_at: datetime


class OnboardRequest(BaseModel):
    patient_id: str
    vehicle_id: str
    destination_organization_id: str | None = None
    pickup_location: str | None = None
    pickup_coordinates: dict[str, Any] = PydanticField(default_factory=dict)
    destination_location: str | None = None
    destination_coordinates: dict[str, Any] = PydanticField(default_factory=dict)
    chief_complaint: str | None = None
    initial_assessment: str | None = None


class OffboardRequest(BaseModel):
    treatment_notes: str | None = None


class CancelRequest(BaseModel):
    reason: str | None = None


class TripRead(ORMReadModel):
    id: str
    code: str
    patient_id: str
    vehicle_id: str
    organization_id: str
    destination_organization_id: str | None
    status: TripStatus
    pickup_location: str | None
    pickup_coordinates: dict[str, Any]
    destination_location: str | None
    destination_coordinates: dict[str, Any]
    chief_complaint: str | None
    initial_assessment: str | None
    treatment_notes: str | None
    onboarded_by: str
    onboarded_at: datetime
    transit_started_at: datetime | None
    offboarded_by: str | None
    offboarded_at: datetime | None
    cancelled_by: str | None
    cancelled_at: datetime | None
    cancel_reason: str | None
    offboard_snapshot: dict[str, Any]


class TripDataEntryCreate(BaseModel):
    data_type: TripDataType
    content: dict[str, Any] = PydanticField(default_factory=dict)


class TripDataEntryRead(ORMReadModel):
    id: str
    trip_id: str
    data_type: TripDataType
    content: dict[str, Any]
    added_by: str
    added_at: datetime


class CollaborationRequestCreate(BaseModel):
    fleet_id: str
    hospital_id: str | None = None
    request_type: str = "partnership"
    message: str | None = None
    terms: str | None = None


class CollaborationDecisionRequest(BaseModel):
    reason: str | None = None


class CollaborationRequestRead(ORMReadModel):
    id: str
    hospital_id: str
    fleet_id: str
    request_type: str
    message: str | None
    terms: str | None
    requested_by: str
    status: CollaborationStatus
    decided_by: str | None
    decided_at: datetime | None
    rejected_reason: str | None
    created_at: datetime


class PartnershipPairRequest(BaseModel):
    fleet_id: str
    hospital_id: str


class PartnershipRead(ORMReadModel):
    id: str
    fleet_id: str
    hospital_id: str
    status: PartnershipStatus
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class DevTokenRequest(BaseModel):
    user_id: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    organization_id: str
