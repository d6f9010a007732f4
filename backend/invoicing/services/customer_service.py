# Overview: Customer records and their cached financial aggregates.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Customer
from invoicing.validation import NotFoundError, require_text, optional_text
from .concurrency import lock_for_update, run_with_retry
"""
Customer Aggregate Invariants

- total_invoiced, total_paid, outstanding, last_invoice_date and
  last_payment_date are a cache over non-cancelled invoices and payments.
- Hot path: delta updates only, never a full recomputation.
- Every delta has a symmetric reversal (payment add/remove, invoice
  create/delete-or-cancel).
- Last-activity dates only move forward on the hot path; reconciliation may
  move them back.
- The delta functions flush but do not commit: the outbox processor commits
  them together with the event that caused them.
"""


def create_customer(data: dict) -> Customer:
    customer = Customer(
        name=require_text(data, "name", max_length=255),
        company=optional_text(data, "company", max_length=255),
        email=optional_text(data, "email", max_length=255),
        phone=optional_text(data, "phone", max_length=32),
        address=optional_text(data, "address"),
    )

    def _op():
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _locked_customer(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def _later(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def on_invoice_created(customer_id: int, total_cents: int, invoice_date: datetime | None) -> Customer:
    customer = _locked_customer(customer_id)
    customer.total_invoiced_cents += total_cents
    customer.outstanding_cents += total_cents
    customer.last_invoice_date = _later(customer.last_invoice_date, invoice_date)
    db.session.flush()
    return customer


def on_payment_added(customer_id: int, amount_cents: int, payment_date: datetime | None) -> Customer:
    customer = _locked_customer(customer_id)
    customer.total_paid_cents += amount_cents
    customer.outstanding_cents -= amount_cents
    customer.last_payment_date = _later(customer.last_payment_date, payment_date)
    db.session.flush()
    return customer


def on_payment_reversed(customer_id: int, amount_cents: int) -> Customer:
    customer = _locked_customer(customer_id)
    customer.total_paid_cents -= amount_cents
    customer.outstanding_cents += amount_cents
    db.session.flush()
    return customer


def on_invoice_updated(
    customer_id: int,
    old_total_cents: int,
    new_total_cents: int,
    old_paid_cents: int,
    new_paid_cents: int,
) -> Customer:
    customer = _locked_customer(customer_id)
    invoiced_delta = new_total_cents - old_total_cents
    paid_delta = new_paid_cents - old_paid_cents
    customer.total_invoiced_cents += invoiced_delta
    customer.total_paid_cents += paid_delta
    customer.outstanding_cents += invoiced_delta - paid_delta
    db.session.flush()
    return customer


def on_invoice_reversed(customer_id: int, total_cents: int, paid_cents: int) -> Customer:
    """Undo an invoice's contribution on delete or cancel."""
    customer = _locked_customer(customer_id)
    customer.total_invoiced_cents -= total_cents
    customer.total_paid_cents -= paid_cents
    customer.outstanding_cents = customer.total_invoiced_cents - customer.total_paid_cents
    db.session.flush()
    return customer
