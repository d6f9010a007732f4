from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer account with cached financial aggregates.

    WHY: Fast reads of what a customer owes without scanning every invoice.
    The aggregates are a cache: the non-cancelled invoices and their payments
    are authoritative, and reconciliation_service rebuilds these columns
    from them.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    company = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    # Denormalized aggregates (maintained incrementally by customer_service)
    total_invoiced_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    outstanding_cents = db.Column(db.Integer, nullable=False, default=0)
    last_invoice_date = db.Column(db.DateTime(timezone=True), nullable=True)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "company": self.company,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "total_invoiced_cents": self.total_invoiced_cents,
            "total_paid_cents": self.total_paid_cents,
            "outstanding_cents": self.outstanding_cents,
            "last_invoice_date": to_utc_z(self.last_invoice_date) if self.last_invoice_date else None,
            "last_payment_date": to_utc_z(self.last_payment_date) if self.last_payment_date else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
