"""Initial schema: ride copies, accounts, drivers, shifts, payments"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ride_columns() -> list:
    return [
        sa.Column("pickup", sa.String(255), nullable=False),
        sa.Column("dropoff", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("vehicle", sa.String(30), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="cash"),
        sa.Column("help_with_loading", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("driver_id", sa.String, nullable=True),
        sa.Column("driver_name", sa.String(255), nullable=True),
        sa.Column("booking_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("declined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("customer_booking_id", sa.String, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("declined_by", sa.String, nullable=True),
        *_ride_columns(),
    )
    op.create_index("idx_ride_requests_status_booked", "ride_requests", ["status", "booking_time"])
    op.create_index("idx_ride_requests_customer", "ride_requests", ["customer_id"])
    op.create_index("idx_ride_requests_driver", "ride_requests", ["driver_id"])
    op.create_index("idx_ride_requests_booking", "ride_requests", ["customer_booking_id"])

    op.create_table(
        "customer_rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("request_id", sa.String, unique=True, nullable=True),
        sa.Column("synced_version", sa.Integer, nullable=False, server_default="1"),
        *_ride_columns(),
    )
    op.create_index("idx_customer_rides_customer_booked", "customer_rides", ["customer_id", "booking_time"])

    op.create_table(
        "customer_accounts",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("image_url", sa.String(512), nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "driver_profiles",
        sa.Column("driver_id", sa.String, primary_key=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("address", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("approval_status", sa.String(20), nullable=False, server_default="not_applied"),
        sa.Column("driver_image_url", sa.String(512), nullable=True),
        sa.Column("license_photo_url", sa.String(512), nullable=True),
        sa.Column("car_image_url", sa.String(512), nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_driver_profiles_approval", "driver_profiles", ["approval_status"])

    op.create_table(
        "driver_presence",
        sa.Column("driver_id", sa.String, primary_key=True),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("active_shift_id", sa.String, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "driver_shifts",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("driver_id", sa.String, nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_earnings", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("completed_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("idx_driver_shifts_window", "driver_shifts", ["driver_id", "archived", "start_time"])

    op.create_table(
        "shift_reports",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("driver_id", sa.String, nullable=False),
        sa.Column("week_key", sa.String(10), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rows", sa.JSON, nullable=False),
        sa.Column("completed_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Numeric(10, 2), nullable=False, server_default="0"),
    )
    op.create_index("idx_shift_reports_driver", "shift_reports", ["driver_id"])

    op.create_table(
        "rollover_markers",
        sa.Column("driver_id", sa.String, primary_key=True),
        sa.Column("last_week_key", sa.String(10), nullable=False),
        sa.Column("ran_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("request_id", sa.String, nullable=True),
        sa.Column("customer_id", sa.String, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(5), server_default="ZAR"),
        sa.Column("status", sa.String(20), nullable=False, server_default="initiated"),
        sa.Column("reference", sa.String(64), unique=True, nullable=False),
        sa.Column("gateway_payment_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_payments_request", "payments", ["request_id"])
    op.create_index("idx_payments_status", "payments", ["status"])


def downgrade() -> None:
    op.drop_table("payments")
    op.drop_table("rollover_markers")
    op.drop_table("shift_reports")
    op.drop_table("driver_shifts")
    op.drop_table("driver_presence")
    op.drop_table("driver_profiles")
    op.drop_table("customer_accounts")
    op.drop_table("customer_rides")
    op.drop_table("ride_requests")
