"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column("id", sa.String(36), primary_key=True)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    is_postgres = op.get_bind().dialect.name == "postgresql"

    # Tenants and reference data
    op.create_table(
        "businesses",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "branches",
        _id(),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "staff",
        _id(),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("branch_id", sa.String(36), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("percent_master", sa.Numeric(5, 2), nullable=False, server_default="60"),
        sa.Column("percent_salon", sa.Numeric(5, 2), nullable=False, server_default="40"),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_mode", sa.String(30), nullable=False, server_default="percent_with_guarantee"),
        *_timestamps(),
    )
    op.create_table(
        "services",
        _id(),
        sa.Column("branch_id", sa.String(36), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("duration_min", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "clients",
        _id(),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        *_timestamps(),
    )

    # Bookings
    op.create_table(
        "bookings",
        _id(),
        sa.Column("business_id", sa.String(36), sa.ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("branch_id", sa.String(36), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False),
        sa.Column("service_id", sa.String(36), sa.ForeignKey("services.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("staff_id", sa.String(36), sa.ForeignKey("staff.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="hold"),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promotion_applied", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bookings_staff_status_start", "bookings", ["staff_id", "status", "start_at"])
    op.create_index("ix_bookings_client_branch_status", "bookings", ["client_id", "branch_id", "status"])
    op.create_index("ix_bookings_status_hold_expires", "bookings", ["status", "hold_expires_at"])

    if is_postgres:
        # Two active bookings of one staff member may never overlap
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT bookings_staff_no_overlap "
            "EXCLUDE USING gist (staff_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
            "WHERE (status IN ('hold', 'confirmed'))"
        )

    # Promotions
    op.create_table(
        "promotions",
        _id(),
        sa.Column("branch_id", sa.String(36), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("promotion_type", sa.String(40), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("params", sa.JSON(), nullable=False),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "client_promotion_usage",
        _id(),
        sa.Column("client_id", sa.String(36), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("promotion_id", sa.String(36), sa.ForeignKey("promotions.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("client_id", "promotion_id", name="uq_client_promotion_usage"),
    )
    op.create_table(
        "client_referrals",
        _id(),
        sa.Column("referrer_id", sa.String(36), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("referred_id", sa.String(36), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("referred_booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("referrer_booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True),
        sa.Column("referrer_bonus_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("referrer_id", "referred_id", name="uq_client_referral_pair"),
    )

    # Shifts
    op.create_table(
        "staff_shifts",
        _id(),
        sa.Column("staff_id", sa.String(36), sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
        sa.Column("branch_id", sa.String(36), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("shift_date", sa.Date(), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("hours_worked", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("hours_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("consumables_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("percent_master", sa.Numeric(5, 2), nullable=False, server_default="60"),
        sa.Column("percent_salon", sa.Numeric(5, 2), nullable=False, server_default="40"),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_mode", sa.String(30), nullable=False, server_default="percent_with_guarantee"),
        sa.Column("master_share", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("salon_share", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("guaranteed_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("topup_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("staff_id", "shift_date", name="uq_staff_shift_date"),
    )
    op.create_table(
        "staff_shift_items",
        _id(),
        sa.Column("shift_id", sa.String(36), sa.ForeignKey("staff_shifts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, unique=True),
        sa.Column("client_name", sa.String(255), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=True),
        sa.Column("service_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("consumables_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        *_timestamps(),
    )

    # Ratings
    op.create_table(
        "rating_configs",
        _id(),
        sa.Column("reviews_weight", sa.Numeric(5, 2), nullable=False),
        sa.Column("productivity_weight", sa.Numeric(5, 2), nullable=False),
        sa.Column("loyalty_weight", sa.Numeric(5, 2), nullable=False),
        sa.Column("discipline_weight", sa.Numeric(5, 2), nullable=False),
        sa.Column("window_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index(
        "uq_rating_configs_single_active",
        "rating_configs",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_table(
        "entity_day_metrics",
        _id(),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("reviews_score", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("productivity_score", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("loyalty_score", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("discipline_score", sa.Numeric(5, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("entity_type", "entity_id", "metric_date", name="uq_entity_day_metric"),
    )
    op.create_table(
        "rating_scores",
        _id(),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("score", sa.Numeric(5, 2), nullable=False),
        sa.Column("config_id", sa.String(36), sa.ForeignKey("rating_configs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("days_with_metrics", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("entity_type", "entity_id", "metric_date", name="uq_rating_score_entity_date"),
    )
    op.create_table(
        "rating_recalc_errors",
        _id(),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False, index=True),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("rating_recalc_errors")
    op.drop_table("rating_scores")
    op.drop_table("entity_day_metrics")
    op.drop_index("uq_rating_configs_single_active", table_name="rating_configs")
    op.drop_table("rating_configs")
    op.drop_table("staff_shift_items")
    op.drop_table("staff_shifts")
    op.drop_table("client_referrals")
    op.drop_table("client_promotion_usage")
    op.drop_table("promotions")
    op.drop_table("bookings")
    op.drop_table("clients")
    op.drop_table("services")
    op.drop_table("staff")
    op.drop_table("branches")
    op.drop_table("businesses")
