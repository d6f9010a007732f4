from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z


class LedgerEntry(db.Model):
    """
    Per-customer financial journal entry.

    INVARIANTS:
    - Exactly one of debit_cents / credit_cents is positive.
    - One "invoice" charge per invoice (debit = invoice total).
    - One "payment" entry per payment, keyed by payment_uid.
    - Entries of cancelled invoices are retained for audit; every aggregate
      query filters them out by invoice status rather than deleting them.
    - balance_cents is the running balance per customer in (date, id) order.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_ledger_entries_txn_number"),
        db.UniqueConstraint("payment_uid", name="uq_ledger_entries_payment_uid"),
        db.CheckConstraint("debit_cents >= 0 AND credit_cents >= 0", name="ck_ledger_entries_non_negative"),
        db.Index("ix_ledger_entries_customer_date", "customer_id", "date"),
        db.Index("ix_ledger_entries_invoice", "invoice_id", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False)
    transaction_number = db.Column(db.String(64), nullable=False)

    # Source links (no FK: entries outlive cancelled documents)
    invoice_id = db.Column(db.Integer, nullable=True)
    payment_uid = db.Column(db.String(36), nullable=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "transaction_type": self.transaction_type,
            "transaction_number": self.transaction_number,
            "invoice_id": self.invoice_id,
            "payment_uid": self.payment_uid,
            "date": to_utc_z(self.date),
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "balance_cents": self.balance_cents,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
