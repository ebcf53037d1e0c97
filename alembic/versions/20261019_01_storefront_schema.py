"""storefront schema

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=12, scale=2), nullable=nullable)


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _address_columns(prefix: str) -> list[sa.Column]:
    return [
        sa.Column(f"{prefix}_name", sa.String(length=255), nullable=False),
        sa.Column(f"{prefix}_email", sa.String(length=255), nullable=True),
        sa.Column(f"{prefix}_phone", sa.String(length=64), nullable=True),
        sa.Column(f"{prefix}_address_line", sa.String(length=255), nullable=False),
        sa.Column(f"{prefix}_address_line_2", sa.String(length=255), nullable=True),
        sa.Column(f"{prefix}_city", sa.String(length=128), nullable=False),
        sa.Column(f"{prefix}_state", sa.String(length=128), nullable=True),
        sa.Column(f"{prefix}_postal_code", sa.String(length=32), nullable=False),
        sa.Column(f"{prefix}_country", sa.String(length=2), nullable=False),
    ]


def _ensure_catalog_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("display_name", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="customer"),
            _timestamp("created_at"),
        )
        op.create_index("ix_users_id", "users", ["id"], unique=False)
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("slug", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=False, unique=True),
            _money("price"),
            _money("sale_price", nullable=True),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("track_stock", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _timestamp("created_at"),
        )
        op.create_index("ix_products_id", "products", ["id"], unique=False)
        op.create_index("ix_products_slug", "products", ["slug"], unique=True)

    if not _table_exists(inspector, "product_variants"):
        op.create_table(
            "product_variants",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=False, unique=True),
            _money("price", nullable=True),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("attributes", sa.JSON(), nullable=True),
        )
        op.create_index("ix_product_variants_id", "product_variants", ["id"], unique=False)
        op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"], unique=False)

    if not _table_exists(inspector, "coupons"):
        op.create_table(
            "coupons",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("type", sa.String(length=16), nullable=False, server_default="percentage"),
            _money("value"),
            _money("minimum_amount", nullable=True),
            sa.Column("max_uses", sa.Integer(), nullable=True),
            sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
            _timestamp("starts_at"),
            _timestamp("expires_at"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _timestamp("created_at"),
        )
        op.create_index("ix_coupons_id", "coupons", ["id"], unique=False)
        op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)


def _ensure_cart_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "carts"):
        op.create_table(
            "carts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("session_id", sa.String(length=64), nullable=True),
            _timestamp("expires_at"),
            _timestamp("created_at"),
        )
        op.create_index("ix_carts_id", "carts", ["id"], unique=False)
        op.create_index("ix_carts_user_id", "carts", ["user_id"], unique=False)
        op.create_index("ix_carts_session_id", "carts", ["session_id"], unique=False)

    if not _table_exists(inspector, "cart_items"):
        op.create_table(
            "cart_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("cart_id", sa.Integer(), sa.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            _money("price_at_addition"),
        )
        op.create_index("ix_cart_items_id", "cart_items", ["id"], unique=False)
        op.create_index("ix_cart_items_cart_id", "cart_items", ["cart_id"], unique=False)

    if not _table_exists(inspector, "cart_coupons"):
        op.create_table(
            "cart_coupons",
            sa.Column("cart_id", sa.Integer(), sa.ForeignKey("carts.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
            _timestamp("created_at"),
        )


def _ensure_order_tables(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_number", sa.String(length=32), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=32), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            _money("subtotal"),
            _money("shipping_cost"),
            _money("tax"),
            _money("discount"),
            _money("total"),
            sa.Column("notes", sa.Text(), nullable=True),
            *_address_columns("shipping"),
            *_address_columns("billing"),
            _timestamp("paid_at"),
            _timestamp("shipped_at"),
            _timestamp("delivered_at"),
            _timestamp("cancelled_at"),
            _timestamp("stock_released_at"),
            _timestamp("reminder_sent_at"),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        )
        op.create_index("ix_orders_id", "orders", ["id"], unique=False)
        op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
        op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)
        op.create_index("ix_orders_status", "orders", ["status"], unique=False)
        op.create_index("ix_orders_payment_status", "orders", ["payment_status"], unique=False)
        op.create_index("ix_orders_created_at", "orders", ["created_at"], unique=False)

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
            sa.Column("variant_id", sa.Integer(), sa.ForeignKey("product_variants.id"), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("sku", sa.String(length=64), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            _money("unit_price"),
            _money("total"),
            sa.Column("options", sa.JSON(), nullable=True),
            sa.Column("stock_reserved", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
        op.create_index("ix_order_items_id", "order_items", ["id"], unique=False)
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"], unique=False)

    if not _table_exists(inspector, "order_status_history"):
        op.create_table(
            "order_status_history",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("status", sa.String(length=64), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("changed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            _timestamp("created_at"),
        )
        op.create_index("ix_order_status_history_id", "order_status_history", ["id"], unique=False)
        op.create_index("ix_order_status_history_order_id", "order_status_history", ["order_id"], unique=False)

    if not _table_exists(inspector, "payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("gateway", sa.String(length=32), nullable=False),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            _money("amount"),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("external_id", sa.String(length=255), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
        )
        op.create_index("ix_payments_id", "payments", ["id"], unique=False)
        op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=False)
        op.create_index("ix_payments_external_id", "payments", ["external_id"], unique=False)

    if not _table_exists(inspector, "coupon_usages"):
        op.create_table(
            "coupon_usages",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupons.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            _money("discount_amount"),
            _timestamp("used_at"),
            sa.UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usage_order"),
        )
        op.create_index("ix_coupon_usages_id", "coupon_usages", ["id"], unique=False)
        op.create_index("ix_coupon_usages_coupon_id", "coupon_usages", ["coupon_id"], unique=False)
        op.create_index("ix_coupon_usages_order_id", "coupon_usages", ["order_id"], unique=False)


def _ensure_job_table(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "jobs"):
        return
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        _timestamp("available_at", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=128), nullable=True, unique=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_jobs_id", "jobs", ["id"], unique=False)
    op.create_index("ix_jobs_name", "jobs", ["name"], unique=False)
    op.create_index("ix_jobs_status", "jobs", ["status"], unique=False)
    op.create_index("ix_jobs_available_at", "jobs", ["available_at"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    _ensure_catalog_tables(inspector)
    inspector = sa.inspect(bind)
    _ensure_cart_tables(inspector)
    inspector = sa.inspect(bind)
    _ensure_order_tables(inspector)
    inspector = sa.inspect(bind)
    _ensure_job_table(inspector)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "jobs",
        "coupon_usages",
        "payments",
        "order_status_history",
        "order_items",
        "orders",
        "cart_coupons",
        "cart_items",
        "carts",
        "coupons",
        "product_variants",
        "products",
        "users",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
