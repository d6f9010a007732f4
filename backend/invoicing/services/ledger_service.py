# Overview: Per-customer payment ledger derived from invoice and payment events.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, select

from ..extensions import db
from ..models import Customer, Invoice, LedgerEntry
from .concurrency import lock_for_update
"""
Customer Ledger Invariants (authoritative)

- One "invoice" charge per invoice (type=invoice only; quotations never
  reach the ledger). Debit = invoice total; transaction_number = document
  number.
- One "payment" credit per payment, keyed by payment_uid (stable for the
  payment's lifetime, unlike its position in the invoice).
- Writes are idempotent: appending an entry that already exists returns the
  existing row, so a retried outbox event cannot double-post.
- Cancelled invoices keep their entries for audit. Every aggregate query
  below excludes them through ACTIVE_ENTRY_FILTER, never by deleting rows.
- Functions flush but do not commit; the caller owns the transaction.
"""


TXN_INVOICE = "invoice"
TXN_PAYMENT = "payment"
TXN_ADJUSTMENT = "adjustment"
TXN_CREDIT_NOTE = "credit_note"
TXN_DEBIT_NOTE = "debit_note"

VALID_TRANSACTION_TYPES = [
    TXN_INVOICE,
    TXN_PAYMENT,
    TXN_ADJUSTMENT,
    TXN_CREDIT_NOTE,
    TXN_DEBIT_NOTE,
]


def _cancelled_invoice_ids():
    return select(Invoice.id).where(Invoice.status == "cancelled")


def active_entry_filter():
    """Entries that count toward balances: not tied to a cancelled invoice."""
    return or_(
        LedgerEntry.invoice_id.is_(None),
        LedgerEntry.invoice_id.not_in(_cancelled_invoice_ids()),
    )


def payment_transaction_number(payment_uid: str) -> str:
    return f"PAY-{payment_uid}"


def _previous_balance(customer_id: int) -> int:
    last = (
        db.session.query(LedgerEntry.balance_cents)
        .filter(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc())
        .first()
    )
    return last[0] if last else 0


def _customer_name(customer_id: int, fallback: str | None) -> str:
    customer = db.session.get(Customer, customer_id)
    if customer is not None:
        return customer.name
    return fallback or "Unknown customer"


def _append(
    *,
    customer_id: int,
    customer_name: str | None,
    transaction_type: str,
    transaction_number: str,
    date: datetime,
    description: str,
    debit_cents: int = 0,
    credit_cents: int = 0,
    invoice_id: int | None = None,
    payment_uid: str | None = None,
    payment_method: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
) -> LedgerEntry:
    if (debit_cents > 0) == (credit_cents > 0):
        raise ValueError("Ledger entry needs exactly one of debit or credit")

    entry = LedgerEntry(
        customer_id=customer_id,
        customer_name=_customer_name(customer_id, customer_name),
        transaction_type=transaction_type,
        transaction_number=transaction_number,
        invoice_id=invoice_id,
        payment_uid=payment_uid,
        date=date,
        description=description,
        debit_cents=debit_cents,
        credit_cents=credit_cents,
        balance_cents=_previous_balance(customer_id) + debit_cents - credit_cents,
        payment_method=payment_method,
        reference=reference,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(entry)
    db.session.flush()

    # Back-dated entries shift the running balance of everything after them
    later = (
        db.session.query(LedgerEntry.id)
        .filter(LedgerEntry.customer_id == customer_id, LedgerEntry.date > date)
        .first()
    )
    if later:
        recalculate_balances(customer_id)
    return entry


# =============================================================================
# INVOICE CHARGES
# =============================================================================

def get_invoice_charge(invoice_id: int) -> LedgerEntry | None:
    return (
        db.session.query(LedgerEntry)
        .filter_by(invoice_id=invoice_id, transaction_type=TXN_INVOICE)
        .first()
    )


def append_invoice_charge(
    *,
    invoice_id: int,
    document_number: str,
    customer_id: int,
    customer_name: str | None,
    total_cents: int,
    date: datetime,
    created_by: str | None = None,
) -> LedgerEntry | None:
    """Debit the customer for an invoice. Zero-value invoices post nothing."""
    existing = get_invoice_charge(invoice_id)
    if existing is not None:
        return existing
    if total_cents <= 0:
        return None
    return _append(
        customer_id=customer_id,
        customer_name=customer_name,
        transaction_type=TXN_INVOICE,
        transaction_number=document_number,
        invoice_id=invoice_id,
        date=date,
        description=f"Invoice {document_number}",
        debit_cents=total_cents,
        created_by=created_by,
    )


def update_invoice_charge(*, invoice_id: int, document_number: str, total_cents: int) -> LedgerEntry | None:
    entry = lock_for_update(
        db.session.query(LedgerEntry).filter_by(invoice_id=invoice_id, transaction_type=TXN_INVOICE)
    ).first()
    if entry is None:
        return None
    entry.debit_cents = total_cents
    entry.description = f"Invoice {document_number}"
    db.session.flush()
    recalculate_balances(entry.customer_id)
    return entry


def remove_invoice_charge(invoice_id: int) -> bool:
    entry = get_invoice_charge(invoice_id)
    if entry is None:
        return False
    customer_id = entry.customer_id
    db.session.delete(entry)
    db.session.flush()
    recalculate_balances(customer_id)
    return True


# =============================================================================
# PAYMENTS
# =============================================================================

def get_payment_entry(payment_uid: str) -> LedgerEntry | None:
    return db.session.query(LedgerEntry).filter_by(payment_uid=payment_uid).first()


def append_payment_entry(
    *,
    payment_uid: str,
    invoice_id: int,
    document_number: str,
    customer_id: int,
    customer_name: str | None,
    amount_cents: int,
    method: str,
    date: datetime,
    reference: str | None = None,
    notes: str | None = None,
    created_by: str | None = None,
) -> LedgerEntry:
    existing = get_payment_entry(payment_uid)
    if existing is not None:
        return existing
    return _append(
        customer_id=customer_id,
        customer_name=customer_name,
        transaction_type=TXN_PAYMENT,
        transaction_number=payment_transaction_number(payment_uid),
        invoice_id=invoice_id,
        payment_uid=payment_uid,
        date=date,
        description=f"Payment for {document_number}",
        credit_cents=amount_cents,
        payment_method=method,
        reference=reference,
        notes=notes,
        created_by=created_by,
    )


def update_payment_entry(
    *,
    payment_uid: str,
    amount_cents: int,
    method: str,
    date: datetime,
    reference: str | None = None,
    notes: str | None = None,
) -> LedgerEntry | None:
    entry = lock_for_update(db.session.query(LedgerEntry).filter_by(payment_uid=payment_uid)).first()
    if entry is None:
        return None
    entry.credit_cents = amount_cents
    entry.payment_method = method
    entry.date = date
    entry.reference = reference
    entry.notes = notes
    db.session.flush()
    recalculate_balances(entry.customer_id)
    return entry


def remove_payment_entry(payment_uid: str) -> bool:
    entry = get_payment_entry(payment_uid)
    if entry is None:
        return False
    customer_id = entry.customer_id
    db.session.delete(entry)
    db.session.flush()
    recalculate_balances(customer_id)
    return True


# =============================================================================
# RUNNING BALANCES & QUERIES
# =============================================================================

def recalculate_balances(customer_id: int) -> int:
    """Rewrite running balances for one customer; returns entries changed."""
    entries = (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.date.asc(), LedgerEntry.id.asc())
        .all()
    )
    running = 0
    changed = 0
    for entry in entries:
        running += entry.debit_cents - entry.credit_cents
        if entry.balance_cents != running:
            entry.balance_cents = running
            changed += 1
    db.session.flush()
    return changed


def list_customer_entries(customer_id: int) -> list[LedgerEntry]:
    return (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.date.asc(), LedgerEntry.id.asc())
        .all()
    )


def get_customer_totals(customer_id: int) -> dict:
    """Debit/credit sums for a customer, excluding cancelled invoices."""
    debit, credit = (
        db.session.query(
            func.coalesce(func.sum(LedgerEntry.debit_cents), 0),
            func.coalesce(func.sum(LedgerEntry.credit_cents), 0),
        )
        .filter(LedgerEntry.customer_id == customer_id, active_entry_filter())
        .one()
    )
    return {
        "customer_id": customer_id,
        "total_debit_cents": int(debit),
        "total_credit_cents": int(credit),
        "balance_cents": int(debit) - int(credit),
    }


def get_customer_balance(customer_id: int) -> int:
    return get_customer_totals(customer_id)["balance_cents"]


def get_outstanding_by_customer() -> list[dict]:
    """Customers with a non-zero active ledger balance, largest first."""
    balance = func.sum(LedgerEntry.debit_cents) - func.sum(LedgerEntry.credit_cents)
    rows = (
        db.session.query(LedgerEntry.customer_id, balance.label("balance"))
        .filter(active_entry_filter())
        .group_by(LedgerEntry.customer_id)
        .having(balance != 0)
        .order_by(balance.desc())
        .all()
    )
    return [{"customer_id": row.customer_id, "balance_cents": int(row.balance)} for row in rows]
