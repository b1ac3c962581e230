"""init ambulink tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_organization_id", "events", ["organization_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_organization_id", "audit_logs", ["organization_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_organizations_name", "organizations", ["name"])
    op.create_index("ix_organizations_code", "organizations", ["code"], unique=True)
    op.create_index("ix_organizations_type", "organizations", ["type"])
    op.create_index("ix_organizations_status", "organizations", ["status"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_status", "users", ["status"])

    op.create_table(
        "vehicles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("registration_number", sa.String(), nullable=False),
        sa.Column("vehicle_model", sa.String(), nullable=True),
        sa.Column("vehicle_type", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("locked_hospital_id", sa.String(), nullable=True),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["locked_hospital_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vehicles_organization_id", "vehicles", ["organization_id"])
    op.create_index("ix_vehicles_code", "vehicles", ["code"], unique=True)
    op.create_index("ix_vehicles_registration_number", "vehicles", ["registration_number"])
    op.create_index("ix_vehicles_status", "vehicles", ["status"])
    op.create_index("ix_vehicles_locked_hospital_id", "vehicles", ["locked_hospital_id"])
    op.create_index("ix_vehicles_org_status", "vehicles", ["organization_id", "status"])

    op.create_table(
        "patients",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=True),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(), nullable=True),
        sa.Column("blood_group", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("emergency_contact_name", sa.String(), nullable=True),
        sa.Column("emergency_contact_phone", sa.String(), nullable=True),
        sa.Column("medical_history", sa.String(), nullable=True),
        sa.Column("allergies", sa.String(), nullable=True),
        sa.Column("current_medications", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_onboarded", sa.Boolean(), nullable=False),
        sa.Column("current_trip_id", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_patients_organization_id", "patients", ["organization_id"])
    op.create_index("ix_patients_code", "patients", ["code"], unique=True)
    op.create_index("ix_patients_is_active", "patients", ["is_active"])
    op.create_index("ix_patients_is_onboarded", "patients", ["is_onboarded"])
    op.create_index("ix_patients_current_trip_id", "patients", ["current_trip_id"])

    op.create_table(
        "trips",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("patient_id", sa.String(), nullable=False),
        sa.Column("vehicle_id", sa.String(), nullable=False),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("destination_organization_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("active_vehicle_id", sa.String(), nullable=True),
        sa.Column("active_patient_id", sa.String(), nullable=True),
        sa.Column("pickup_location", sa.String(), nullable=True),
        sa.Column("pickup_coordinates", sa.JSON(), nullable=False),
        sa.Column("destination_location", sa.String(), nullable=True),
        sa.Column("destination_coordinates", sa.JSON(), nullable=False),
        sa.Column("chief_complaint", sa.String(), nullable=True),
        sa.Column("initial_assessment", sa.String(), nullable=True),
        sa.Column("treatment_notes", sa.String(), nullable=True),
        sa.Column("onboarded_by", sa.String(), nullable=False),
        sa.Column("onboarded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("transit_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("offboarded_by", sa.String(), nullable=True),
        sa.Column("offboarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(), nullable=True),
        sa.Column("offboard_snapshot", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"]),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["destination_organization_id"], ["organizations.id"]),
        sa.UniqueConstraint("active_vehicle_id"),
        sa.UniqueConstraint("active_patient_id"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trips_code", "trips", ["code"], unique=True)
    op.create_index("ix_trips_patient_id", "trips", ["patient_id"])
    op.create_index("ix_trips_vehicle_id", "trips", ["vehicle_id"])
    op.create_index("ix_trips_organization_id", "trips", ["organization_id"])
    op.create_index("ix_trips_destination_organization_id", "trips", ["destination_organization_id"])
    op.create_index("ix_trips_status", "trips", ["status"])
    op.create_index("ix_trips_onboarded_at", "trips", ["onboarded_at"])
    op.create_index("ix_trips_org_status", "trips", ["organization_id", "status"])
    op.create_index("ix_trips_vehicle_status", "trips", ["vehicle_id", "status"])

    op.create_table(
        "trip_data_entries",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("trip_id", sa.String(), nullable=False),
        sa.Column("data_type", sa.String(), nullable=False),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("added_by", sa.String(), nullable=False),
        sa.Column("added_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["trip_id"], ["trips.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trip_data_entries_trip_id", "trip_data_entries", ["trip_id"])
    op.create_index("ix_trip_data_entries_added_at", "trip_data_entries", ["added_at"])

    op.create_table(
        "partnerships",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("fleet_id", sa.String(), nullable=False),
        sa.Column("hospital_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["fleet_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["hospital_id"], ["organizations.id"]),
        sa.UniqueConstraint("fleet_id", "hospital_id", name="uq_partnerships_fleet_hospital"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_partnerships_fleet_id", "partnerships", ["fleet_id"])
    op.create_index("ix_partnerships_hospital_id", "partnerships", ["hospital_id"])
    op.create_index("ix_partnerships_status", "partnerships", ["status"])

    op.create_table(
        "collaboration_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("hospital_id", sa.String(), nullable=False),
        sa.Column("fleet_id", sa.String(), nullable=False),
        sa.Column("request_type", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("terms", sa.String(), nullable=True),
        sa.Column("requested_by", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("decided_by", sa.String(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_reason", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["hospital_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["fleet_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_collaboration_requests_hospital_id", "collaboration_requests", ["hospital_id"])
    op.create_index("ix_collaboration_requests_fleet_id", "collaboration_requests", ["fleet_id"])
    op.create_index("ix_collaboration_requests_status", "collaboration_requests", ["status"])
    op.create_index(
        "ix_collaboration_requests_pair_status",
        "collaboration_requests",
        ["fleet_id", "hospital_id", "status"],
    )

    op.create_table(
        "vehicle_assignments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("vehicle_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("assigning_organization_id", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unassigned_by", sa.String(), nullable=True),
        sa.Column("unassigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigning_organization_id"], ["organizations.id"]),
        sa.UniqueConstraint(
            "vehicle_id",
            "user_id",
            "assigning_organization_id",
            name="uq_vehicle_assignments_vehicle_user_org",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vehicle_assignments_vehicle_id", "vehicle_assignments", ["vehicle_id"])
    op.create_index("ix_vehicle_assignments_user_id", "vehicle_assignments", ["user_id"])
    op.create_index(
        "ix_vehicle_assignments_assigning_organization_id",
        "vehicle_assignments",
        ["assigning_organization_id"],
    )
    op.create_index("ix_vehicle_assignments_vehicle_active", "vehicle_assignments", ["vehicle_id", "is_active"])
    op.create_index("ix_vehicle_assignments_user_active", "vehicle_assignments", ["user_id", "is_active"])


def downgrade() -> None:
    op.drop_table("vehicle_assignments")
    op.drop_table("collaboration_requests")
    op.drop_table("partnerships")
    op.drop_table("trip_data_entries")
    op.drop_table("trips")
    op.drop_table("patients")
    op.drop_table("vehicles")
    op.drop_table("users")
    op.drop_table("organizations")
    op.drop_table("audit_logs")
    op.drop_table("events")
