"""Initial schema: users, vehicle offers and bookings.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


USER_ROLE = sa.Enum("passenger", "driver", name="user_role")
FARE_TYPE = sa.Enum("economy", "premium", "pool", name="fare_type")
OFFER_STATUS = sa.Enum(
    "empty", "boarding", "full", "in_progress", "completed", name="offer_status"
)
BOOKING_STATUS = sa.Enum(
    "pending",
    "accepted",
    "arrived",
    "in_progress",
    "completed",
    "cancelled",
    "rejected",
    name="booking_status",
)
JOIN_STATUS = sa.Enum("owner", "pending", "accepted", "rejected", name="join_status")


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("mobile", sa.String(20), unique=True, nullable=False),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", USER_ROLE, nullable=False, server_default="passenger"),
        sa.Column("is_verified", sa.Boolean, default=False),
        sa.Column("avatar", sa.Text, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
    )

    # ── vehicle_offers ────────────────────────────────────────────────
    op.create_table(
        "vehicle_offers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True),
        sa.Column("car_model", sa.String(120), nullable=False),
        sa.Column("car_number", sa.String(32), nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("heading", sa.Float, default=0.0),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("fare_type", FARE_TYPE, nullable=False, server_default="pool"),
        sa.Column("price_per_km", sa.Integer, nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="4"),
        sa.Column("occupied", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", OFFER_STATUS, nullable=False, server_default="empty"),
        sa.Column("destination_lat", sa.Float, nullable=True),
        sa.Column("destination_lng", sa.Float, nullable=True),
        sa.Column("destination_address", sa.Text, nullable=True),
        sa.Column("destination_cell", sa.String(20), nullable=True),
        sa.Column("route_geometry", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("capacity >= 1", name="ck_offers_capacity"),
        sa.CheckConstraint(
            "occupied >= 0 AND occupied <= capacity", name="ck_offers_occupied"
        ),
    )
    op.create_index("idx_offers_driver", "vehicle_offers", ["driver_id"])
    op.create_index(
        "idx_offers_match", "vehicle_offers", ["fare_type", "status", "is_available"]
    )

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "passenger_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "offer_id", sa.Integer, sa.ForeignKey("vehicle_offers.id"), nullable=True
        ),
        sa.Column("pickup_address", sa.Text, nullable=False, server_default=""),
        sa.Column("dropoff_address", sa.Text, nullable=False, server_default=""),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("status", BOOKING_STATUS, nullable=False, server_default="pending"),
        sa.Column("otp", sa.String(4), nullable=False),
        sa.Column("fare", sa.Integer, nullable=True),
        sa.Column("distance_km", sa.Float, nullable=True),
        sa.Column("is_pool", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "pool_owner_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=True
        ),
        sa.Column("join_status", JOIN_STATUS, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_bookings_status", "bookings", ["status", "created_at"])
    op.create_index("idx_bookings_passenger", "bookings", ["passenger_id"])
    op.create_index("idx_bookings_offer", "bookings", ["offer_id", "join_status"])
    op.create_index(
        "idx_bookings_pool_owner", "bookings", ["pool_owner_id", "join_status"]
    )
    op.create_index("idx_bookings_pickup", "bookings", ["pickup_lat", "pickup_lng"])


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("vehicle_offers")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS join_status")
    op.execute("DROP TYPE IF EXISTS booking_status")
    op.execute("DROP TYPE IF EXISTS offer_status")
    op.execute("DROP TYPE IF EXISTS fare_type")
    op.execute("DROP TYPE IF EXISTS user_role")
