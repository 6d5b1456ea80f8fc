"""Affiliate core tables: accounts, clicks, trending scores, monthly earnings,
plus the catalog tables the scheduled jobs read.

Revision ID: 3f9c1e7a2b40
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3f9c1e7a2b40"
down_revision = None
branch_labels = None
depends_on = None

PLATFORMS = ("AMAZON", "FLIPKART", "MYNTRA", "AJIO", "OTHER")
CLICK_STATES = ("CLICKED", "TRACKED", "CONVERTED", "EXPIRED")
DEVICES = ("MOBILE", "TABLET", "DESKTOP")

# Enum types are created once up front; columns only reference them
platform_enum = postgresql.ENUM(*PLATFORMS, name="platform", create_type=False)
clickstate_enum = postgresql.ENUM(*CLICK_STATES, name="clickstate", create_type=False)
device_enum = postgresql.ENUM(*DEVICES, name="device", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in (platform_enum, clickstate_enum, device_enum):
        sa.Enum(*enum.enums, name=enum.name).create(bind, checkfirst=True)

    op.create_table(
        "affiliate_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("affiliate_id", sa.String(80), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("password_hash", sa.String(256), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default="5"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_affiliate_accounts_affiliate_id", "affiliate_accounts", ["affiliate_id"], unique=True)
    op.create_index("ix_affiliate_accounts_email", "affiliate_accounts", ["email"], unique=True)

    op.create_table(
        "affiliate_clicks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("affiliate_id", sa.String(80), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("product_id", sa.String(100), nullable=False),
        sa.Column("platform", platform_enum, nullable=False),
        sa.Column("source_url", sa.String(2000), nullable=False),
        sa.Column("redirect_url", sa.String(2000), nullable=False),
        sa.Column("state", clickstate_enum, nullable=False),
        sa.Column("clicked_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
        sa.Column("purchase_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("commission", sa.Numeric(12, 2), nullable=True),
        sa.Column("purchased_at", sa.DateTime, nullable=True),
        sa.Column("device", device_enum, nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("referer", sa.String(1000), nullable=True),
        sa.Column("browser", sa.String(100), nullable=True),
        sa.Column("country", sa.String(2), nullable=True),
    )
    op.create_index("ix_affiliate_clicks_affiliate_id", "affiliate_clicks", ["affiliate_id"])
    op.create_index(
        "idx_clicks_affiliate_platform_time", "affiliate_clicks",
        ["affiliate_id", "platform", "clicked_at"],
    )
    op.create_index("idx_clicks_expiry", "affiliate_clicks", ["expires_at"])
    op.create_index("idx_clicks_product_time", "affiliate_clicks", ["product_id", "clicked_at"])
    op.create_index("idx_clicks_state_purchased", "affiliate_clicks", ["state", "purchased_at"])

    op.create_table(
        "trending_scores",
        sa.Column("product_id", sa.String(100), primary_key=True),
        sa.Column("score", sa.Float, nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("purchase_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_commission", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Float, nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "monthly_earnings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("affiliate_id", sa.String(80), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("total_commission", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("purchase_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("computed_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("affiliate_id", "month", name="uq_monthly_earning_affiliate_month"),
    )
    op.create_index("ix_monthly_earnings_affiliate_id", "monthly_earnings", ["affiliate_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("category", sa.String(100), nullable=False, server_default="general"),
        sa.Column("platforms", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_products_title", "products", ["title"])

    op.create_table(
        "watchlist",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("product_id", sa.String(100), nullable=False),
        sa.Column("platform", platform_enum, nullable=False),
        sa.Column("target_price", sa.Float, nullable=True),
        sa.Column("current_price", sa.Float, nullable=False),
        sa.Column("notify_on_drop", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("alerts_sent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_alert_at", sa.DateTime, nullable=True),
        sa.Column("added_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("user_id", "product_id", "platform", name="uq_watchlist_user_product_platform"),
    )
    op.create_index("ix_watchlist_user_id", "watchlist", ["user_id"])
    op.create_index("ix_watchlist_product_id", "watchlist", ["product_id"])
    op.create_index("ix_watchlist_notify", "watchlist", ["notify_on_drop", "target_price"])


def downgrade() -> None:
    op.drop_table("watchlist")
    op.drop_table("products")
    op.drop_table("monthly_earnings")
    op.drop_table("trending_scores")
    op.drop_table("affiliate_clicks")
    op.drop_table("affiliate_accounts")
    bind = op.get_bind()
    for enum in (device_enum, clickstate_enum, platform_enum):
        sa.Enum(*enum.enums, name=enum.name).drop(bind, checkfirst=True)
