# Overview: Out-of-band repair of derived projections (customer aggregates, ledger balances).

"""
Reconciliation Jobs

WHY: Customer aggregates are maintained incrementally and the saga's side
effects commit separately from the invoice. Any side effect that fails for
good leaves drift behind. These jobs recompute projections from the source
of truth (non-cancelled invoices and their payments) and report or fix the
difference.

- recalculate_customer_financials(): rewrite cached customer totals.
- recalculate_ledger_balances(): rewrite running ledger balances.
- verify_ledger_consistency(): read-only report of known drift patterns.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Invoice, InvoicePayment, LedgerEntry, SyncEvent
from . import ledger_service
from .invoice_state import PAYMENT_STATUSES, STATUS_CANCELLED, TYPE_INVOICE, payment_status
from .outbox_service import STATUS_FAILED

logger = logging.getLogger(__name__)

# Cap on example identifiers listed per issue
MAX_ISSUE_EXAMPLES = 10

MONEY_FIELDS = ("total_invoiced_cents", "total_paid_cents", "outstanding_cents")


def compute_customer_financials(customer_id: int) -> dict:
    """Authoritative totals for one customer from non-cancelled invoices."""
    active = (
        Invoice.customer_id == customer_id,
        Invoice.doc_type == TYPE_INVOICE,
        Invoice.status != STATUS_CANCELLED,
    )
    total_invoiced, total_paid, last_invoice = (
        db.session.query(
            func.coalesce(func.sum(Invoice.total_cents), 0),
            func.coalesce(func.sum(Invoice.paid_cents), 0),
            func.max(Invoice.date),
        )
        .filter(*active)
        .one()
    )
    last_payment = (
        db.session.query(func.max(InvoicePayment.date))
        .join(Invoice, Invoice.id == InvoicePayment.invoice_id)
        .filter(*active)
        .scalar()
    )
    return {
        "total_invoiced_cents": int(total_invoiced),
        "total_paid_cents": int(total_paid),
        "outstanding_cents": int(total_invoiced) - int(total_paid),
        "last_invoice_date": last_invoice,
        "last_payment_date": last_payment,
    }


def _cached_financials(customer: Customer) -> dict:
    return {
        "total_invoiced_cents": customer.total_invoiced_cents,
        "total_paid_cents": customer.total_paid_cents,
        "outstanding_cents": customer.outstanding_cents,
        "last_invoice_date": customer.last_invoice_date,
        "last_payment_date": customer.last_payment_date,
    }


def recalculate_customer_financials() -> dict:
    """Recompute every customer's aggregates and correct any drift."""
    customers = db.session.query(Customer).order_by(Customer.id.asc()).all()
    updated = []
    errors = []

    for customer in customers:
        try:
            expected = compute_customer_financials(customer.id)
            if _cached_financials(customer) != expected:
                for key, value in expected.items():
                    setattr(customer, key, value)
                db.session.commit()
                updated.append(customer.id)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Failed to recalculate financials for customer %s", customer.id)
            errors.append(f"Failed to update customer {customer.id}: {exc}")

    logger.info("Recalculated customer financials: %d of %d corrected", len(updated), len(customers))
    return {
        "total": len(customers),
        "updated": len(updated),
        "updated_customer_ids": updated,
        "errors": errors,
    }


def recalculate_ledger_balances() -> dict:
    """Rewrite running balances for every customer that has ledger entries."""
    customer_ids = [row[0] for row in db.session.query(LedgerEntry.customer_id).distinct().all()]
    entries_updated = 0
    for customer_id in customer_ids:
        entries_updated += ledger_service.recalculate_balances(customer_id)
    db.session.commit()
    return {"customers_processed": len(customer_ids), "entries_updated": entries_updated}


def verify_ledger_consistency() -> dict:
    """Read-only report of drift between invoices, ledger and customers."""
    issues = []

    def _add(issue_type: str, description: str, examples: list) -> None:
        if examples:
            issues.append({
                "type": issue_type,
                "description": description,
                "count": len(examples),
                "examples": examples[:MAX_ISSUE_EXAMPLES],
            })

    invoices = db.session.query(Invoice).filter(Invoice.doc_type == TYPE_INVOICE).all()

    _add(
        "balance_mismatch",
        "Invoices where balance != total - paid",
        [inv.document_number for inv in invoices if inv.balance_cents != inv.total_cents - inv.paid_cents],
    )
    _add(
        "paid_amount_mismatch",
        "Invoices where paid != sum of payments",
        [inv.document_number for inv in invoices if inv.paid_cents != sum(p.amount_cents for p in inv.payments)],
    )
    _add(
        "incorrect_invoice_status",
        "Invoices whose payment status does not match their payments",
        [
            inv.document_number for inv in invoices
            if inv.status in PAYMENT_STATUSES
            and not inv.is_walk_in
            and inv.status != payment_status(inv.total_cents, inv.paid_cents)
        ],
    )
    _add(
        "cancelled_with_payments",
        "Cancelled invoices that still carry payments",
        [inv.document_number for inv in invoices if inv.status == STATUS_CANCELLED and inv.paid_cents > 0],
    )

    ledger_backed = [inv for inv in invoices if inv.customer_id is not None]
    charges = {
        entry.invoice_id: entry
        for entry in db.session.query(LedgerEntry).filter_by(transaction_type=ledger_service.TXN_INVOICE)
    }
    _add(
        "missing_invoice_charge",
        "Invoices with no ledger charge entry",
        [inv.document_number for inv in ledger_backed if inv.total_cents > 0 and inv.id not in charges],
    )
    _add(
        "charge_amount_mismatch",
        "Ledger charges whose debit differs from the invoice total",
        [
            inv.document_number for inv in ledger_backed
            if inv.id in charges and charges[inv.id].debit_cents != inv.total_cents
        ],
    )

    payment_uids = {
        row[0]
        for row in db.session.query(LedgerEntry.payment_uid).filter(LedgerEntry.payment_uid.isnot(None))
    }
    _add(
        "mismatched_payments",
        "Invoices whose payments are not all mirrored in the ledger",
        [
            inv.document_number for inv in ledger_backed
            if any(p.payment_uid not in payment_uids for p in inv.payments)
        ],
    )

    # Ledger side: entries whose source row is gone
    invoice_ids = {row[0] for row in db.session.query(Invoice.id)}
    _add(
        "orphan_invoice_charges",
        "Ledger charges whose invoice no longer exists",
        [entry.transaction_number for entry in charges.values() if entry.invoice_id not in invoice_ids],
    )
    live_payment_uids = {row[0] for row in db.session.query(InvoicePayment.payment_uid)}
    _add(
        "orphan_payment_entries",
        "Ledger payment entries with no matching invoice payment",
        [
            entry.transaction_number
            for entry in db.session.query(LedgerEntry)
            .filter(LedgerEntry.transaction_type == ledger_service.TXN_PAYMENT)
            .order_by(LedgerEntry.id.asc())
            if entry.payment_uid not in live_payment_uids
        ],
    )

    # Money only: last-activity dates legitimately lag after reversals
    drifted = []
    for customer in db.session.query(Customer).order_by(Customer.id.asc()):
        cached = _cached_financials(customer)
        expected = compute_customer_financials(customer.id)
        if any(cached[key] != expected[key] for key in MONEY_FIELDS):
            drifted.append(customer.id)
    _add("customer_aggregate_drift", "Customers whose cached totals differ from their invoices", drifted)

    failed_events = [
        row[0] for row in db.session.query(SyncEvent.id).filter(SyncEvent.status == STATUS_FAILED)
    ]
    _add("failed_sync_events", "Side effects that exhausted their retries", failed_events)

    return {
        "total_issues": len(issues),
        "issues": issues,
        "summary": "No consistency issues found" if not issues else f"Found {len(issues)} types of issues",
    }
