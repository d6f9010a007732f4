from __future__ import annotations

import json

from ..extensions import db
from invoicing.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Commercial document: an invoice or a quotation.

    WHY: The invoice is the source of truth. Stock remaining, the customer
    ledger and the customer aggregates are projections derived from it.

    INVARIANTS:
    - balance_cents == total_cents - paid_cents
    - paid_cents == sum(payments.amount_cents)
    - Quotations never carry payments and never touch stock or the ledger.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_invoices_document_number"),
        db.Index("ix_invoices_type_status", "doc_type", "status"),
        db.Index("ix_invoices_customer_date", "customer_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "INV-25-001", "QT-25-004")
    document_number = db.Column(db.String(64), nullable=False)
    doc_type = db.Column(db.String(16), nullable=False, default="invoice")
    status = db.Column(db.String(16), nullable=False, index=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    # Customer link plus a snapshot of billing details at issue time.
    # Over-the-counter (walk-in) sales have no customer account.
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    is_walk_in = db.Column(db.Boolean, nullable=False, default=False)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_company = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    # Money (all amounts in cents; percentage values in basis points)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    gst_type = db.Column(db.String(16), nullable=True)
    gst_value = db.Column(db.Integer, nullable=False, default=0)
    gst_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    profit_cents = db.Column(db.Integer, nullable=False, default=0)
    is_custom = db.Column(db.Boolean, nullable=False, default=False)

    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)

    # Quotation conversion links
    converted_to_invoice = db.Column(db.Boolean, nullable=False, default=False)
    converted_invoice_id = db.Column(db.Integer, nullable=True)
    source_quotation_id = db.Column(db.Integer, nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_quotation(self) -> bool:
        return self.doc_type == "quotation"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "type": self.doc_type,
            "status": self.status,
            "date": to_utc_z(self.date),
            "due_date": to_utc_z(self.due_date) if self.due_date else None,
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "customer_id": self.customer_id,
            "is_walk_in": self.is_walk_in,
            "customer_name": self.customer_name,
            "customer_company": self.customer_company,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "subtotal_cents": self.subtotal_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "gst_type": self.gst_type,
            "gst_value": self.gst_value,
            "gst_cents": self.gst_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "profit_cents": self.profit_cents,
            "is_custom": self.is_custom,
            "stock_deducted": self.stock_deducted,
            "converted_to_invoice": self.converted_to_invoice,
            "converted_invoice_id": self.converted_invoice_id,
            "source_quotation_id": self.source_quotation_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class InvoiceItem(db.Model):
    """
    Line item on an invoice or quotation.

    Stock binding is optional: purchase_id pins the item to one purchase lot,
    virtual_product_id explodes it into component lots. Items with neither are
    manual/custom lines with no stock obligation.
    """
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    variant_id = db.Column(db.String(64), nullable=True)
    variant_sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_type = db.Column(db.String(16), nullable=True)
    discount_value = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Unit cost basis used for profit (None = manual pricing)
    original_rate_cents = db.Column(db.Integer, nullable=True)

    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    virtual_product_id = db.Column(db.Integer, db.ForeignKey("virtual_products.id"), nullable=True)

    # Exact lots drawn when stock was deducted: [{"purchase_id": 1, "quantity": 3}, ...]
    stock_deducted = db.Column(db.Boolean, nullable=False, default=False)
    allocations = db.Column(db.Text, nullable=True)

    invoice = db.relationship("Invoice", back_populates="items")

    @property
    def is_stock_bearing(self) -> bool:
        return self.purchase_id is not None or self.virtual_product_id is not None

    @property
    def allocation_list(self) -> list[dict]:
        if not self.allocations:
            return []
        return json.loads(self.allocations)

    @allocation_list.setter
    def allocation_list(self, value: list[dict] | None) -> None:
        self.allocations = json.dumps(value) if value else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_id": self.variant_id,
            "variant_sku": self.variant_sku,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "original_rate_cents": self.original_rate_cents,
            "purchase_id": self.purchase_id,
            "virtual_product_id": self.virtual_product_id,
            "stock_deducted": self.stock_deducted,
            "allocations": self.allocation_list,
        }


class InvoicePayment(db.Model):
    """
    Payment applied to an invoice.

    WHY: payment_uid gives each payment a stable identity for its lifetime.
    Ledger entries are keyed by it, so deleting payment k never changes the
    identity of payments k+1..n even though their positions shift.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.UniqueConstraint("payment_uid", name="uq_invoice_payments_uid"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_uid = db.Column(db.String(36), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    added_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_uid": self.payment_uid,
            "invoice_id": self.invoice_id,
            "position": self.position,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "date": to_utc_z(self.date),
            "reference": self.reference,
            "notes": self.notes,
            "added_by": self.added_by,
            "created_at": to_utc_z(self.created_at),
        }
