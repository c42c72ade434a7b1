"""create storefront tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _create_index_if_missing(
    inspector: sa.Inspector,
    table_name: str,
    index_name: str,
    columns: list,
    *,
    unique: bool = False,
) -> None:
    if not _index_exists(inspector, table_name, index_name):
        op.create_index(index_name, table_name, columns, unique=unique)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=100), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="customer"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("description", sa.String(length=2000), nullable=True),
            sa.Column("category", sa.String(length=100), nullable=True),
            sa.Column("price", sa.Numeric(12, 2), nullable=False),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_quantity_non_negative"),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "carts"):
        op.create_table(
            "carts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "cart_items"):
        op.create_table(
            "cart_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("cart_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["cart_id"], ["carts.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        )

    if not _table_exists(inspector, "session_carts"):
        op.create_table(
            "session_carts",
            sa.Column("session_id", sa.String(length=64), nullable=False),
            sa.Column("items_json", sa.JSON(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("session_id"),
        )

    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("customer_id", sa.String(length=36), nullable=True),
            sa.Column("session_id", sa.String(length=64), nullable=True),
            sa.Column("customer_name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("address", sa.String(length=500), nullable=False),
            sa.Column("payment_method", sa.String(length=20), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("order_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("gateway_receipt", sa.String(length=64), nullable=True),
            sa.Column("gateway_order_id", sa.String(length=64), nullable=True),
            sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
            sa.Column("tentative_payment_id", sa.String(length=64), nullable=True),
            sa.Column("payment_verified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("shipped_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.ForeignKeyConstraint(["customer_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("gateway_receipt"),
        )

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("image_url", sa.String(length=500), nullable=True),
            sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "webhook_logs"):
        op.create_table(
            "webhook_logs",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("event", sa.String(length=100), nullable=False),
            sa.Column("raw_payload", sa.LargeBinary(), nullable=False),
            sa.Column("payload", sa.Text(), nullable=False),
            sa.Column("signature_header", sa.Text(), nullable=False, server_default=""),
            sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("processing_result", sa.String(length=255), nullable=True),
            sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
            sa.Column("gateway_order_id", sa.String(length=64), nullable=True),
            sa.Column("order_id", sa.String(length=36), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    _create_index_if_missing(inspector, "users", "ix_users_email", ["email"], unique=True)
    if not _index_exists(inspector, "users", "ux_users_email_lower"):
        op.create_index("ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)

    _create_index_if_missing(inspector, "carts", "ix_carts_user_id", ["user_id"], unique=True)
    _create_index_if_missing(inspector, "cart_items", "ix_cart_items_cart_id", ["cart_id"])
    _create_index_if_missing(inspector, "cart_items", "ix_cart_items_product_id", ["product_id"])

    _create_index_if_missing(inspector, "orders", "ix_orders_customer_id", ["customer_id"])
    _create_index_if_missing(inspector, "orders", "ix_orders_gateway_order_id", ["gateway_order_id"], unique=True)
    _create_index_if_missing(inspector, "orders", "ix_orders_gateway_payment_id", ["gateway_payment_id"], unique=True)
    _create_index_if_missing(inspector, "orders", "ix_orders_customer_created_at", ["customer_id", "created_at"])
    _create_index_if_missing(inspector, "orders", "ix_orders_status_created_at", ["order_status", "created_at"])
    _create_index_if_missing(inspector, "order_items", "ix_order_items_order_id", ["order_id"])
    _create_index_if_missing(inspector, "order_items", "ix_order_items_product_id", ["product_id"])

    _create_index_if_missing(inspector, "webhook_logs", "ix_webhook_logs_gateway_payment_id", ["gateway_payment_id"])
    _create_index_if_missing(inspector, "webhook_logs", "ix_webhook_logs_gateway_order_id", ["gateway_order_id"])
    _create_index_if_missing(inspector, "webhook_logs", "ix_webhook_logs_order_id", ["order_id"])
    _create_index_if_missing(
        inspector,
        "webhook_logs",
        "ix_webhook_logs_processed_received_at",
        ["processed", "received_at"],
    )
    _create_index_if_missing(
        inspector,
        "webhook_logs",
        "ix_webhook_logs_payment_processed",
        ["gateway_payment_id", "processed"],
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "webhook_logs",
        "order_items",
        "orders",
        "session_carts",
        "cart_items",
        "carts",
        "products",
        "users",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
