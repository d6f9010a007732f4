"""Initial invoicing schema: customers, lots, documents, ledger and sync outbox

Revision ID: 20261019_initial_invoicing
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_invoicing"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(with_updated: bool = False) -> list:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]
    if with_updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False)
        )
    return columns


def upgrade():
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("total_invoiced_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outstanding_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_invoice_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_name", "customers", ["name"], unique=False)

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("purchase_number", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=False),
        sa.Column("supplier", sa.String(length=255), nullable=True),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("remaining", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("retail_price_cents", sa.Integer(), nullable=True),
        sa.Column("wholesale_price_cents", sa.Integer(), nullable=True),
        sa.Column("shipping_cost_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cost_cents", sa.Integer(), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("purchase_number", name="uq_purchases_purchase_number"),
        sa.CheckConstraint("remaining >= 0", name="ck_purchases_remaining_non_negative"),
        sa.CheckConstraint("remaining <= quantity", name="ck_purchases_remaining_capped"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchases_variant_fifo", "purchases", ["product_id", "variant_id", "purchase_date"], unique=False)

    op.create_table(
        "virtual_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=True),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_virtual_products_sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "virtual_product_components",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("virtual_product_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["virtual_product_id"], ["virtual_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity >= 1", name="ck_vp_components_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_virtual_product_components_virtual_product_id",
        "virtual_product_components",
        ["virtual_product_id"],
        unique=False,
    )

    op.create_table(
        "virtual_product_expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("virtual_product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="other"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["virtual_product_id"], ["virtual_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_virtual_product_expenses_virtual_product_id",
        "virtual_product_expenses",
        ["virtual_product_id"],
        unique=False,
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("doc_type", sa.String(length=16), nullable=False, server_default="invoice"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("customer_company", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gst_type", sa.String(length=16), nullable=True),
        sa.Column("gst_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gst_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("profit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_custom", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock_deducted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("converted_to_invoice", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("converted_invoice_id", sa.Integer(), nullable=True),
        sa.Column("source_quotation_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        *_timestamps(with_updated=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_number", name="uq_invoices_document_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.create_index("ix_invoices_status", ["status"], unique=False)
        batch_op.create_index("ix_invoices_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_invoices_source_quotation_id", ["source_quotation_id"], unique=False)
        batch_op.create_index("ix_invoices_type_status", ["doc_type", "status"], unique=False)
        batch_op.create_index("ix_invoices_customer_date", ["customer_id", "date"], unique=False)

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("variant_id", sa.String(length=64), nullable=True),
        sa.Column("variant_sku", sa.String(length=64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="pcs"),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_type", sa.String(length=16), nullable=True),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("original_rate_cents", sa.Integer(), nullable=True),
        sa.Column("purchase_id", sa.Integer(), nullable=True),
        sa.Column("virtual_product_id", sa.Integer(), nullable=True),
        sa.Column("stock_deducted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("allocations", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.ForeignKeyConstraint(["virtual_product_id"], ["virtual_products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"], unique=False)
    op.create_index("ix_invoice_items_purchase_id", "invoice_items", ["purchase_id"], unique=False)

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_uid", sa.String(length=36), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("added_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_uid", name="uq_invoice_payments_uid"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_invoice_payments_invoice_id", "invoice_payments", ["invoice_id"], unique=False)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("transaction_number", sa.String(length=64), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("payment_uid", sa.String(length=36), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("debit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_number", name="uq_ledger_entries_txn_number"),
        sa.UniqueConstraint("payment_uid", name="uq_ledger_entries_payment_uid"),
        sa.CheckConstraint("debit_cents >= 0 AND credit_cents >= 0", name="ck_ledger_entries_non_negative"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_entries", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_entries_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_ledger_entries_customer_date", ["customer_id", "date"], unique=False)
        batch_op.create_index("ix_ledger_entries_invoice", ["invoice_id", "transaction_type"], unique=False)

    op.create_table(
        "sequence_counters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key", name="uq_sequence_counters_key"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "sync_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("aggregate_type", sa.String(length=32), nullable=False),
        sa.Column("aggregate_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sync_events", schema=None) as batch_op:
        batch_op.create_index("ix_sync_events_aggregate_id", ["aggregate_id"], unique=False)
        batch_op.create_index("ix_sync_events_status_id", ["status", "id"], unique=False)


def downgrade():
    with op.batch_alter_table("sync_events", schema=None) as batch_op:
        batch_op.drop_index("ix_sync_events_status_id")
        batch_op.drop_index("ix_sync_events_aggregate_id")
    op.drop_table("sync_events")
    op.drop_table("sequence_counters")

    with op.batch_alter_table("ledger_entries", schema=None) as batch_op:
        batch_op.drop_index("ix_ledger_entries_invoice")
        batch_op.drop_index("ix_ledger_entries_customer_date")
        batch_op.drop_index("ix_ledger_entries_customer_id")
    op.drop_table("ledger_entries")

    op.drop_index("ix_invoice_payments_invoice_id", table_name="invoice_payments")
    op.drop_table("invoice_payments")

    op.drop_index("ix_invoice_items_purchase_id", table_name="invoice_items")
    op.drop_index("ix_invoice_items_invoice_id", table_name="invoice_items")
    op.drop_table("invoice_items")

    with op.batch_alter_table("invoices", schema=None) as batch_op:
        batch_op.drop_index("ix_invoices_customer_date")
        batch_op.drop_index("ix_invoices_type_status")
        batch_op.drop_index("ix_invoices_source_quotation_id")
        batch_op.drop_index("ix_invoices_customer_id")
        batch_op.drop_index("ix_invoices_status")
    op.drop_table("invoices")

    op.drop_index("ix_virtual_product_expenses_virtual_product_id", table_name="virtual_product_expenses")
    op.drop_table("virtual_product_expenses")
    op.drop_index("ix_virtual_product_components_virtual_product_id", table_name="virtual_product_components")
    op.drop_table("virtual_product_components")
    op.drop_table("virtual_products")

    op.drop_index("ix_purchases_variant_fifo", table_name="purchases")
    op.drop_table("purchases")

    op.drop_index("ix_customers_name", table_name="customers")
    op.drop_table("customers")
