"""Consignment core: stores, products, daily transactions, supplier stats, audit, notifications

Revision ID: 20261019_consignment_core
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_consignment_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="Asia/Jakarta"),
        sa.Column("is_open", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("emergency_mode", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("cutoff_time", sa.String(5), nullable=True, server_default="11:00"),
        sa.Column("cutoff_grace_period", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("auto_cancel_enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stores", schema=None) as batch_op:
        batch_op.create_index("ix_stores_owner_id", ["owner_id"], unique=False)
        batch_op.create_index("ix_stores_auto_cancel", ["auto_cancel_enabled"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_buy", sa.Integer(), nullable=False),
        sa.Column("price_sell", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_products_supplier_id", ["supplier_id"], unique=False)
        batch_op.create_index("ix_products_store_supplier", ["store_id", "supplier_id"], unique=False)
        batch_op.create_index("ix_products_store_status", ["store_id", "status"], unique=False)

    op.create_table(
        "daily_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("total_items_in", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_items_sold", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_payout", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("verified_by_actor_id", sa.Integer(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by_actor_id", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_actor_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("daily_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_daily_transactions_status", ["status"], unique=False)
        batch_op.create_index("ix_daily_trx_store_date_status", ["store_id", "date", "status"], unique=False)
        batch_op.create_index("ix_daily_trx_supplier_store", ["supplier_id", "store_id"], unique=False)

    # One open (non-cancelled) delivery per store, supplier and day
    op.create_index(
        "uq_daily_trx_open_key",
        "daily_transactions",
        ["store_id", "supplier_id", "date"],
        unique=True,
        sqlite_where=sa.text("status != 'cancelled'"),
        postgresql_where=sa.text("status != 'cancelled'"),
    )

    op.create_table(
        "transaction_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trx_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("qty_planned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qty_actual", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("qty_returned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["trx_id"], ["daily_transactions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("trx_id", "product_id", name="uq_transaction_items_trx_product"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("transaction_items", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_items_trx_id", ["trx_id"], unique=False)
        batch_op.create_index("ix_transaction_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "supplier_stats",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("total_transactions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completed_transactions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cancelled_by_supplier", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_planned_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_actual_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_sold_qty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_revenue", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("average_accuracy", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("reliability_score", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("last_transaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("supplier_id", "store_id", name="uq_supplier_stats_supplier_store"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("supplier_stats", schema=None) as batch_op:
        batch_op.create_index("ix_supplier_stats_store_id", ["store_id"], unique=False)
        batch_op.create_index("ix_supplier_stats_store_score", ["store_id", "reliability_score"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index("ix_audit_logs_entity", ["entity_type", "entity_id"], unique=False)
        batch_op.create_index("ix_audit_logs_created", ["created_at"], unique=False)
        batch_op.create_index("ix_audit_logs_action", ["action"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("event_kind", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("store_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("notifications", schema=None) as batch_op:
        batch_op.create_index("ix_notifications_user_read", ["user_id", "is_read"], unique=False)

    op.create_table(
        "cutoff_warnings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("store_id", sa.Integer(), nullable=False),
        sa.Column("supplier_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["store_id"], ["stores.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("store_id", "supplier_id", "date", name="uq_cutoff_warnings_key"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("cutoff_warnings")

    with op.batch_alter_table("notifications", schema=None) as batch_op:
        batch_op.drop_index("ix_notifications_user_read")
    op.drop_table("notifications")

    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.drop_index("ix_audit_logs_action")
        batch_op.drop_index("ix_audit_logs_created")
        batch_op.drop_index("ix_audit_logs_entity")
    op.drop_table("audit_logs")

    with op.batch_alter_table("supplier_stats", schema=None) as batch_op:
        batch_op.drop_index("ix_supplier_stats_store_score")
        batch_op.drop_index("ix_supplier_stats_store_id")
    op.drop_table("supplier_stats")

    with op.batch_alter_table("transaction_items", schema=None) as batch_op:
        batch_op.drop_index("ix_transaction_items_product_id")
        batch_op.drop_index("ix_transaction_items_trx_id")
    op.drop_table("transaction_items")

    op.drop_index("uq_daily_trx_open_key", table_name="daily_transactions")
    with op.batch_alter_table("daily_transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_daily_trx_supplier_store")
        batch_op.drop_index("ix_daily_trx_store_date_status")
        batch_op.drop_index("ix_daily_transactions_status")
    op.drop_table("daily_transactions")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_store_status")
        batch_op.drop_index("ix_products_store_supplier")
        batch_op.drop_index("ix_products_supplier_id")
        batch_op.drop_index("ix_products_store_id")
    op.drop_table("products")

    with op.batch_alter_table("stores", schema=None) as batch_op:
        batch_op.drop_index("ix_stores_auto_cancel")
        batch_op.drop_index("ix_stores_owner_id")
    op.drop_table("stores")
