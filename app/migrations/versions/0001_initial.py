"""Initial presence and booking schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-09-01 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "audit_actor_type": ("EMPLOYEE", "ADMIN", "SYSTEM"),
    "verification_method": ("GPS", "WIFI", "QR_CODE", "MANUAL"),
    "attendance_status": ("OFFICE", "WFH", "LEAVE"),
    "wifi_security_level": ("OPEN", "SECURE", "ENTERPRISE"),
    "room_booking_status": ("CONFIRMED", "CANCELLED", "COMPLETED"),
    "parking_reservation_status": ("ACTIVE", "COMPLETED", "CANCELLED"),
    "parking_spot_type": ("CAR", "BIKE"),
    "wfh_urgency": ("NORMAL", "URGENT", "EMERGENCY"),
    "wfh_status": ("PENDING", "APPROVED", "REJECTED", "AUTO_APPROVED", "EXPIRED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    for name, labels in ENUM_TYPES.items():
        quoted = ", ".join(f"'{label}'" for label in labels)
        op.execute(
            f"""
            DO $$
            BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{name}') THEN
                    CREATE TYPE {name} AS ENUM ({quoted});
                END IF;
            END $$;
            """
        )

    op.create_table(
        "office_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("office_hours_start", sa.Time(), nullable=False, server_default=sa.text("'09:00'")),
        sa.Column("office_hours_end", sa.Time(), nullable=False, server_default=sa.text("'18:00'")),
        sa.Column(
            "office_days",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[\"mon\",\"tue\",\"wed\",\"thu\",\"fri\"]'::jsonb"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "geofence_radius_m > 0 AND geofence_radius_m <= 1000",
            name="ck_office_locations_radius",
        ),
        sa.CheckConstraint(
            "lat BETWEEN -90 AND 90 AND lon BETWEEN -180 AND 180",
            name="ck_office_locations_coordinates",
        ),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("can_approve_wfh", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("max_wfh_days_per_month", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("primary_office_location_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["manager_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["primary_office_location_id"], ["office_locations.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_employees_email"),
    )
    op.create_index("ix_employees_manager_id", "employees", ["manager_id"], unique=False)

    op.create_table(
        "office_wifi_networks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("office_location_id", sa.Integer(), nullable=False),
        sa.Column("ssid", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "security_level",
            _enum("wifi_security_level"),
            nullable=False,
            server_default=sa.text("'SECURE'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("office_location_id", "ssid", name="uq_office_wifi_networks_location_ssid"),
    )
    op.create_index(
        "ix_office_wifi_networks_office_location_id",
        "office_wifi_networks",
        ["office_location_id"],
        unique=False,
    )
    op.create_index("ix_office_wifi_networks_ssid", "office_wifi_networks", ["ssid"], unique=False)

    op.create_table(
        "office_qr_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("office_location_id", sa.Integer(), nullable=False),
        sa.Column("code_value", sa.String(length=255), nullable=False),
        sa.Column("location_description", sa.String(length=100), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scan_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code_value", name="uq_office_qr_codes_code_value"),
        sa.CheckConstraint("expires_at IS NULL OR expires_at > created_at", name="ck_office_qr_codes_expiration"),
    )
    op.create_index("ix_office_qr_codes_code_value", "office_qr_codes", ["code_value"], unique=False)
    op.create_index(
        "ix_office_qr_codes_office_location_id",
        "office_qr_codes",
        ["office_location_id"],
        unique=False,
    )

    op.create_table(
        "qr_scans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("qr_code_id", sa.Integer(), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("counted", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["qr_code_id"], ["office_qr_codes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_qr_scans_employee_code_ts",
        "qr_scans",
        ["employee_id", "qr_code_id", "scanned_at"],
        unique=False,
    )

    op.create_table(
        "wfh_approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("requested_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("urgency", _enum("wfh_urgency"), nullable=False, server_default=sa.text("'NORMAL'")),
        sa.Column("status", _enum("wfh_status"), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("review_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("decided_by", sa.Integer(), nullable=True),
        sa.Column("manager_comment", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["manager_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["decided_by"], ["employees.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("length(btrim(reason)) > 0", name="ck_wfh_approvals_reason"),
    )
    op.create_index("ix_wfh_approvals_manager_status", "wfh_approvals", ["manager_id", "status"], unique=False)
    op.create_index("ix_wfh_approvals_status_expires", "wfh_approvals", ["status", "expires_at"], unique=False)
    op.create_index(
        "uq_wfh_approvals_employee_date_live",
        "wfh_approvals",
        ["employee_id", "requested_date"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED', 'AUTO_APPROVED')"),
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("attendance_status"), nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("office_location_id", sa.Integer(), nullable=True),
        sa.Column("primary_verification_method", _enum("verification_method"), nullable=True),
        sa.Column("verification_confidence", sa.Float(), nullable=True),
        sa.Column("check_in_method_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("wfh_approval_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["wfh_approval_id"], ["wfh_approvals.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_records_employee_date"),
        sa.CheckConstraint(
            "verification_confidence IS NULL OR verification_confidence BETWEEN 0 AND 1",
            name="ck_attendance_records_confidence",
        ),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index(
        "ix_attendance_records_attendance_date",
        "attendance_records",
        ["attendance_date"],
        unique=False,
    )
    op.create_index(
        "ix_attendance_records_office_location_id",
        "attendance_records",
        ["office_location_id"],
        unique=False,
    )

    op.create_table(
        "verification_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=True),
        sa.Column("office_location_id", sa.Integer(), nullable=True),
        sa.Column("method", _enum("verification_method"), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("reason", sa.String(length=100), nullable=True),
        sa.Column(
            "evidence",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("attempted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_verification_attempts_employee_id", "verification_attempts", ["employee_id"], unique=False)
    op.create_index(
        "ix_verification_attempts_attendance_record_id",
        "verification_attempts",
        ["attendance_record_id"],
        unique=False,
    )
    op.create_index("ix_verification_attempts_method", "verification_attempts", ["method"], unique=False)
    op.create_index(
        "ix_verification_attempts_attempted_at",
        "verification_attempts",
        ["attempted_at"],
        unique=False,
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("office_location_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("floor", sa.String(length=10), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default=sa.text("4")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rooms_office_location_id", "rooms", ["office_location_id"], unique=False)

    op.create_table(
        "room_bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column(
            "status",
            _enum("room_booking_status"),
            nullable=False,
            server_default=sa.text("'CONFIRMED'"),
        ),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("end_time > start_time", name="ck_room_bookings_time_order"),
    )
    op.create_index("ix_room_bookings_date_room", "room_bookings", ["booking_date", "room_id"], unique=False)
    op.create_index(
        "ix_room_bookings_employee_date",
        "room_bookings",
        ["employee_id", "booking_date"],
        unique=False,
    )

    op.create_table(
        "parking_spots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("office_location_id", sa.Integer(), nullable=False),
        sa.Column("spot_number", sa.Integer(), nullable=False),
        sa.Column("spot_type", _enum("parking_spot_type"), nullable=False),
        sa.Column("section", sa.String(length=10), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["office_location_id"], ["office_locations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "office_location_id",
            "spot_number",
            "spot_type",
            name="uq_parking_spots_number_type",
        ),
    )
    op.create_index("ix_parking_spots_office_location_id", "parking_spots", ["office_location_id"], unique=False)

    op.create_table(
        "parking_reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("parking_spot_id", sa.Integer(), nullable=False),
        sa.Column("reservation_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False, server_default=sa.text("'00:00:00'")),
        sa.Column("end_time", sa.Time(), nullable=False, server_default=sa.text("'23:59:59'")),
        sa.Column(
            "status",
            _enum("parking_reservation_status"),
            nullable=False,
            server_default=sa.text("'ACTIVE'"),
        ),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parking_spot_id"], ["parking_spots.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_parking_reservations_date", "parking_reservations", ["reservation_date"], unique=False)
    op.create_index(
        "uq_parking_reservations_employee_date_active",
        "parking_reservations",
        ["employee_id", "reservation_date"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_index(
        "uq_parking_reservations_spot_date_active",
        "parking_reservations",
        ["parking_spot_id", "reservation_date"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", _enum("audit_actor_type"), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_parking_reservations_date", table_name="parking_reservations")
    op.drop_table("parking_reservations")
    op.drop_index("ix_parking_spots_office_location_id", table_name="parking_spots")
    op.drop_table("parking_spots")
    op.drop_index("ix_room_bookings_employee_date", table_name="room_bookings")
    op.drop_index("ix_room_bookings_date_room", table_name="room_bookings")
    op.drop_table("room_bookings")
    op.drop_index("ix_rooms_office_location_id", table_name="rooms")
    op.drop_table("rooms")
    op.drop_table("verification_attempts")
    op.drop_table("attendance_records")
    op.drop_index("ix_wfh_approvals_status_expires", table_name="wfh_approvals")
    op.drop_index("ix_wfh_approvals_manager_status", table_name="wfh_approvals")
    op.drop_table("wfh_approvals")
    op.drop_index("ix_qr_scans_employee_code_ts", table_name="qr_scans")
    op.drop_table("qr_scans")
    op.drop_table("office_qr_codes")
    op.drop_table("office_wifi_networks")
    op.drop_index("ix_employees_manager_id", table_name="employees")
    op.drop_table("employees")
    op.drop_table("office_locations")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
