"""Initial schema: users, roles, service categories, availability, bookings, requests, audit log, rate limits.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_SLOT_PREDICATE = sa.text("status IN ('pending', 'confirmed')")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index(op.f("ix_user_roles_user_id"), "user_roles", ["user_id"], unique=False)
    op.create_index(op.f("ix_user_roles_role"), "user_roles", ["role"], unique=False)

    op.create_table(
        "service_categories",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("base_price", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(op.f("ix_service_categories_is_active"), "service_categories", ["is_active"], unique=False)

    op.create_table(
        "availability_windows",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.String(length=10), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("services", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id", "day_of_week", "start_time", name="uq_availability_provider_day_start"),
    )
    op.create_index(op.f("ix_availability_windows_provider_id"), "availability_windows", ["provider_id"], unique=False)
    op.create_index(op.f("ix_availability_windows_day_of_week"), "availability_windows", ["day_of_week"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration_hours", sa.Float(), nullable=False),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="unpaid"),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("meeting_type", sa.String(length=20), nullable=False, server_default="in_person"),
        sa.Column("service_category_id", sa.Integer(), nullable=True),
        sa.Column("special_requests", sa.String(), nullable=True),
        sa.Column("meeting_location", sa.String(length=255), nullable=True),
        sa.Column("booking_request_id", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_category_id"], ["service_categories.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookings_client_id"), "bookings", ["client_id"], unique=False)
    op.create_index(op.f("ix_bookings_provider_id"), "bookings", ["provider_id"], unique=False)
    op.create_index(op.f("ix_bookings_status"), "bookings", ["status"], unique=False)
    op.create_index(op.f("ix_bookings_booking_request_id"), "bookings", ["booking_request_id"], unique=False)
    op.create_index("ix_bookings_provider_date", "bookings", ["provider_id", "booking_date"], unique=False)
    op.create_index(
        "uq_bookings_active_slot",
        "bookings",
        ["provider_id", "booking_date", "start_time"],
        unique=True,
        postgresql_where=ACTIVE_SLOT_PREDICATE,
        sqlite_where=ACTIVE_SLOT_PREDICATE,
    )

    op.create_table(
        "booking_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("requested_date", sa.Date(), nullable=False),
        sa.Column("preferred_time", sa.String(length=20), nullable=True),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("duration_hours", sa.Float(), nullable=False),
        sa.Column("service_category_id", sa.Integer(), nullable=True),
        sa.Column("meeting_type", sa.String(length=20), nullable=False, server_default="in_person"),
        sa.Column("special_requests", sa.String(), nullable=True),
        sa.Column("meeting_location", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("companion_response", sa.String(), nullable=True),
        sa.Column("suggested_date", sa.Date(), nullable=True),
        sa.Column("suggested_start_time", sa.Time(), nullable=True),
        sa.Column("suggested_end_time", sa.Time(), nullable=True),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("responded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_category_id"], ["service_categories.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_booking_requests_client_id"), "booking_requests", ["client_id"], unique=False)
    op.create_index(op.f("ix_booking_requests_provider_id"), "booking_requests", ["provider_id"], unique=False)
    op.create_index(op.f("ix_booking_requests_status"), "booking_requests", ["status"], unique=False)
    op.create_index(op.f("ix_booking_requests_expires_at"), "booking_requests", ["expires_at"], unique=False)

    op.create_table(
        "availability_audit_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("old_data", sa.JSON(), nullable=True),
        sa.Column("new_data", sa.JSON(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_audit_log_provider_id"), "availability_audit_log", ["provider_id"], unique=False)
    op.create_index(op.f("ix_availability_audit_log_action"), "availability_audit_log", ["action"], unique=False)
    op.create_index(op.f("ix_availability_audit_log_actor_id"), "availability_audit_log", ["actor_id"], unique=False)
    op.create_index(op.f("ix_availability_audit_log_created_at"), "availability_audit_log", ["created_at"], unique=False)

    op.create_table(
        "rate_limit_hits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rate_limit_hits_key"), "rate_limit_hits", ["key"], unique=False)
    op.create_index(op.f("ix_rate_limit_hits_created_at"), "rate_limit_hits", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_rate_limit_hits_created_at"), table_name="rate_limit_hits")
    op.drop_index(op.f("ix_rate_limit_hits_key"), table_name="rate_limit_hits")
    op.drop_table("rate_limit_hits")
    op.drop_index(op.f("ix_availability_audit_log_created_at"), table_name="availability_audit_log")
    op.drop_index(op.f("ix_availability_audit_log_actor_id"), table_name="availability_audit_log")
    op.drop_index(op.f("ix_availability_audit_log_action"), table_name="availability_audit_log")
    op.drop_index(op.f("ix_availability_audit_log_provider_id"), table_name="availability_audit_log")
    op.drop_table("availability_audit_log")
    op.drop_index(op.f("ix_booking_requests_expires_at"), table_name="booking_requests")
    op.drop_index(op.f("ix_booking_requests_status"), table_name="booking_requests")
    op.drop_index(op.f("ix_booking_requests_provider_id"), table_name="booking_requests")
    op.drop_index(op.f("ix_booking_requests_client_id"), table_name="booking_requests")
    op.drop_table("booking_requests")
    op.drop_index("uq_bookings_active_slot", table_name="bookings")
    op.drop_index("ix_bookings_provider_date", table_name="bookings")
    op.drop_index(op.f("ix_bookings_booking_request_id"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_status"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_provider_id"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_client_id"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index(op.f("ix_availability_windows_day_of_week"), table_name="availability_windows")
    op.drop_index(op.f("ix_availability_windows_provider_id"), table_name="availability_windows")
    op.drop_table("availability_windows")
    op.drop_index(op.f("ix_service_categories_is_active"), table_name="service_categories")
    op.drop_table("service_categories")
    op.drop_index(op.f("ix_user_roles_role"), table_name="user_roles")
    op.drop_index(op.f("ix_user_roles_user_id"), table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
