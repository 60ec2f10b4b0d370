"""Initial schema: orders, order logs and inventory sync batches.

Revision ID: 20260213_000001
Revises:
Create Date: 2026-02-13 00:00:01
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from siesa_bridge.domain.statuses import InventorySyncStatus, OrderLogLevel, OrderStatus, SyncBatchStatus


# revision identifiers, used by Alembic.
revision: str = "20260213_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _in(column: str, values: Sequence[str]) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("shopify_order_id", sa.String(255), nullable=False),
        sa.Column("shopify_order_number", sa.String(50), nullable=False),
        sa.Column("order_json", sa.Text(), nullable=False),
        sa.Column("flat_file_name", sa.String(255), nullable=True),
        sa.Column("flat_file_path", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("shopify_order_id", name="uq_orders_shopify_order_id"),
        sa.CheckConstraint(_in("status", OrderStatus.values()), name="ck_orders_status"),
        sa.CheckConstraint("attempts >= 0", name="ck_orders_attempts"),
    )
    op.create_index("idx_orders_status", "orders", ["status"], unique=False)
    op.create_index("idx_orders_created_at", "orders", ["created_at"], unique=False)

    op.create_table(
        "order_logs",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column(
            "order_id",
            _ID,
            sa.ForeignKey("orders.id", ondelete="CASCADE", name="fk_order_logs_order_id"),
            nullable=False,
        ),
        sa.Column("level", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(_in("level", OrderLogLevel.values()), name="ck_order_logs_level"),
    )
    op.create_index("idx_order_logs_order_id", "order_logs", ["order_id"], unique=False)
    op.create_index("idx_order_logs_level", "order_logs", ["level"], unique=False)

    op.create_table(
        "inventory_sync_batches",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("total_products", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("successful_syncs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("failed_syncs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("skipped_syncs", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'running'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(_in("status", SyncBatchStatus.values()), name="ck_inventory_sync_batches_status"),
        sa.CheckConstraint(
            "total_products >= 0 AND successful_syncs >= 0 AND failed_syncs >= 0 AND skipped_syncs >= 0",
            name="ck_inventory_sync_batches_counters",
        ),
    )
    op.create_index("idx_inventory_sync_batches_status", "inventory_sync_batches", ["status"], unique=False)
    op.create_index("idx_inventory_sync_batches_started_at", "inventory_sync_batches", ["started_at"], unique=False)

    op.create_table(
        "inventory_syncs",
        sa.Column("id", _ID, primary_key=True, autoincrement=True),
        sa.Column(
            "sync_batch_id",
            _ID,
            sa.ForeignKey("inventory_sync_batches.id", ondelete="CASCADE", name="fk_inventory_syncs_batch_id"),
            nullable=False,
        ),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(500), nullable=False),
        sa.Column("shopify_product_id", sa.String(255), nullable=True),
        sa.Column("shopify_variant_id", sa.String(255), nullable=True),
        sa.Column("shopify_inventory_item_id", sa.String(255), nullable=True),
        sa.Column("shopify_location_id", sa.String(255), nullable=True),
        sa.Column("siesa_quantity", sa.Integer(), nullable=False),
        sa.Column("shopify_quantity_before", sa.Integer(), nullable=True),
        sa.Column("shopify_quantity_after", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("synced_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(_in("status", InventorySyncStatus.values()), name="ck_inventory_syncs_status"),
    )
    op.create_index("idx_inventory_syncs_batch_id", "inventory_syncs", ["sync_batch_id"], unique=False)
    op.create_index("idx_inventory_syncs_sku", "inventory_syncs", ["sku"], unique=False)
    op.create_index("idx_inventory_syncs_status", "inventory_syncs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_inventory_syncs_status", table_name="inventory_syncs")
    op.drop_index("idx_inventory_syncs_sku", table_name="inventory_syncs")
    op.drop_index("idx_inventory_syncs_batch_id", table_name="inventory_syncs")
    op.drop_table("inventory_syncs")

    op.drop_index("idx_inventory_sync_batches_started_at", table_name="inventory_sync_batches")
    op.drop_index("idx_inventory_sync_batches_status", table_name="inventory_sync_batches")
    op.drop_table("inventory_sync_batches")

    op.drop_index("idx_order_logs_level", table_name="order_logs")
    op.drop_index("idx_order_logs_order_id", table_name="order_logs")
    op.drop_table("order_logs")

    op.drop_index("idx_orders_created_at", table_name="orders")
    op.drop_index("idx_orders_status", table_name="orders")
    op.drop_table("orders")
