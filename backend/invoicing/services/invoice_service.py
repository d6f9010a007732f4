# Overview: Invoice mutation saga; orchestrates stock, ledger and customer projections.

"""
Invoice Mutation Saga

WHY: Every invoice mutation has consequences in three other places: purchase
lot stock, the customer ledger and the customer aggregates. This module is
the only writer of invoices and decides the order those consequences happen
in.

ORDER (create):
1. Validate, number, price and persist the invoice. The ledger charge,
   customer aggregate and any initial payment side effects are queued as
   outbox events in the same commit.
2. Apply the queued events (best effort; failures stay queued).
3. Deduct stock for stock-bearing items (invoices only). stock_deducted is
   set only when every item succeeded.

FAILURE SEMANTICS:
- Validation, not-found and business-rule errors are raised before any
  write and leave every record untouched.
- Everything after the primary commit is best effort: logged, never raised.
  Drift is healed by the outbox processor and reconciliation_service.

Payments are addressed by position in the public API but identified by
payment_uid everywhere else.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import Invoice, InvoiceItem, InvoicePayment
from invoicing.time_utils import utcnow
from invoicing.validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    apply_amount_rule,
    coerce_amount_cents,
    coerce_amount_rule,
    coerce_int,
    coerce_optional_datetime,
    coerce_quantity,
    optional_text,
)
from . import outbox_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .customer_service import get_customer
from .invoice_state import (
    STATUS_CANCELLED,
    STATUS_CONVERTED,
    STATUS_DRAFT,
    STATUS_PAID,
    STATUS_PENDING,
    TYPE_INVOICE,
    TYPE_QUOTATION,
    VALID_DOCUMENT_TYPES,
    ensure_accepts_payments,
    ensure_cancellable,
    ensure_content_editable,
    ensure_convertible,
    ensure_deletable,
    initial_status,
    payment_status,
    recompute_payment_status,
    validate_manual_transition,
)
from .profit_service import calculate_invoice_profit, is_invoice_custom
from .sequence_service import next_id, prefix_for, preview_next_id

logger = logging.getLogger(__name__)


class InvoiceError(Exception):
    """Raised for invoice operations that fail with a structured explanation."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_ONLINE = "online"
METHOD_CHEQUE = "cheque"
METHOD_UPI = "upi"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_BANK_TRANSFER,
    METHOD_ONLINE,
    METHOD_CHEQUE,
    METHOD_UPI,
]

WALK_IN_CUSTOMER_NAME = "Walk-in Customer"

CUSTOMER_SNAPSHOT_FIELDS = {
    "customer_name": ("name", 255),
    "customer_company": ("company", 255),
    "customer_email": ("email", 255),
    "customer_phone": ("phone", 32),
    "customer_address": ("address", None),
}


# =============================================================================
# PARSING
# =============================================================================

def _actor(actor_id) -> str | None:
    if actor_id is None or str(actor_id).strip() == "":
        return None
    return str(actor_id).strip()[:64]


def _parse_items(raw_items) -> list[InvoiceItem]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    items = []
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        name = optional_text(raw, "product_name", max_length=255)
        if not name:
            raise ValidationError(f"Item {position + 1}: product_name is required")
        if raw.get("unit_price_cents") is None:
            raise ValidationError(f"Item {position + 1}: unit_price_cents is required")

        quantity = coerce_quantity(raw.get("quantity"))
        unit_price = coerce_amount_cents(raw["unit_price_cents"], "unit_price_cents")
        discount_type, discount_value = coerce_amount_rule(
            raw.get("discount_type"), raw.get("discount_value"), "discount"
        )
        gross = quantity * unit_price
        discount = min(apply_amount_rule(gross, discount_type, discount_value), gross)

        original_rate = raw.get("original_rate_cents")
        purchase_id = raw.get("purchase_id")
        virtual_product_id = raw.get("virtual_product_id")

        items.append(InvoiceItem(
            position=position,
            product_id=optional_text(raw, "product_id", max_length=64),
            product_name=name,
            variant_id=optional_text(raw, "variant_id", max_length=64),
            variant_sku=optional_text(raw, "variant_sku", max_length=64),
            quantity=quantity,
            unit=optional_text(raw, "unit", max_length=16) or "pcs",
            unit_price_cents=unit_price,
            discount_type=discount_type,
            discount_value=discount_value,
            discount_cents=discount,
            total_cents=gross - discount,
            original_rate_cents=(
                coerce_amount_cents(original_rate, "original_rate_cents") if original_rate is not None else None
            ),
            purchase_id=coerce_int(purchase_id, "purchase_id") if purchase_id is not None else None,
            virtual_product_id=(
                coerce_int(virtual_product_id, "virtual_product_id") if virtual_product_id is not None else None
            ),
            stock_deducted=False,
        ))
    return items


def _parse_payment(raw, *, partial: bool = False) -> dict:
    """Normalize a payment payload; partial=True keeps only supplied keys."""
    if not isinstance(raw, dict):
        raise ValidationError("Payment must be an object")

    parsed: dict = {}
    if "amount_cents" in raw or not partial:
        amount = coerce_int(raw.get("amount_cents"), "amount_cents") if raw.get("amount_cents") is not None else 0
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        parsed["amount_cents"] = coerce_amount_cents(amount, "amount_cents")
    if "method" in raw or not partial:
        method = raw.get("method") or METHOD_CASH
        if method not in VALID_PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_PAYMENT_METHODS}")
        parsed["method"] = method
    if "date" in raw or not partial:
        parsed["date"] = coerce_optional_datetime(raw.get("date"), "date") or utcnow()
    for key, max_length in (("reference", 128), ("notes", None)):
        if key in raw or not partial:
            parsed[key] = optional_text(raw, key, max_length=max_length)
    return parsed


def _resolve_customer(data: dict) -> dict:
    """Customer link and billing snapshot for a new document."""
    raw_id = data.get("customer_id")
    if raw_id is None or str(raw_id).strip() == "":
        raise ValidationError("customer_id is required")

    if str(raw_id).strip() == current_app.config.get("OTC_CUSTOMER_ID", "otc"):
        snapshot = {"customer_id": None, "is_walk_in": True, "customer_name": WALK_IN_CUSTOMER_NAME}
        source = None
    else:
        customer = get_customer(coerce_int(raw_id, "customer_id"))
        snapshot = {"customer_id": customer.id, "is_walk_in": False}
        source = customer

    for field, (attr, max_length) in CUSTOMER_SNAPSHOT_FIELDS.items():
        value = optional_text(data, field, max_length=max_length)
        if value is None and source is not None:
            value = getattr(source, attr)
        if value is not None:
            snapshot[field] = value
    return snapshot


# =============================================================================
# MONEY
# =============================================================================

def _price(items, discount_type, discount_value, gst_type, gst_value) -> dict:
    """
    Price a document from its items without touching the invoice.

    subtotal = sum(item totals)
    discount = rule applied to subtotal (capped at subtotal)
    gst      = rule applied to subtotal
    total    = subtotal - discount + gst
    """
    subtotal = sum(item.total_cents for item in items)
    discount = min(apply_amount_rule(subtotal, discount_type, discount_value), subtotal)
    gst = apply_amount_rule(subtotal, gst_type, gst_value)
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "gst_cents": gst,
        "total_cents": subtotal - discount + gst,
        "profit_cents": calculate_invoice_profit(items, discount),
        "is_custom": is_invoice_custom(items),
    }


def _apply_totals(invoice: Invoice) -> None:
    totals = _price(
        invoice.items, invoice.discount_type, invoice.discount_value, invoice.gst_type, invoice.gst_value,
    )
    for field, value in totals.items():
        setattr(invoice, field, value)


def _sync_paid(invoice: Invoice) -> None:
    invoice.paid_cents = sum(payment.amount_cents for payment in invoice.payments)
    recompute_payment_status(invoice, payment_changed=True)
    _settle_walk_in(invoice)


def _settle_walk_in(invoice: Invoice) -> None:
    # Counter sales are settled at the till; recomputes must not reopen them
    if invoice.is_walk_in and invoice.doc_type == TYPE_INVOICE and invoice.status not in (
        STATUS_CANCELLED, STATUS_DRAFT,
    ):
        invoice.status = STATUS_PAID


def _exceeds_balance(amount: int, balance: int) -> ValidationError:
    return ValidationError(f"Payment amount ({amount}) exceeds outstanding balance ({balance})")


# =============================================================================
# OUTBOX PAYLOADS
# =============================================================================

def _has_ledger(invoice: Invoice) -> bool:
    return invoice.doc_type == TYPE_INVOICE and invoice.customer_id is not None


def _charge_payload(invoice: Invoice) -> dict:
    return {
        "invoice_id": invoice.id,
        "document_number": invoice.document_number,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer_name,
        "total_cents": invoice.total_cents,
        "date": invoice.date,
        "created_by": invoice.created_by,
    }


def _payment_payload(invoice: Invoice, payment: InvoicePayment) -> dict:
    return {
        "payment_uid": payment.payment_uid,
        "invoice_id": invoice.id,
        "document_number": invoice.document_number,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer_name,
        "amount_cents": payment.amount_cents,
        "method": payment.method,
        "date": payment.date,
        "reference": payment.reference,
        "notes": payment.notes,
        "added_by": payment.added_by,
    }


def _queue(event_type: str, invoice: Invoice, payload: dict) -> int:
    return outbox_service.record_event(event_type, "invoice", invoice.id, payload).id


def _queue_invoice_created(invoice: Invoice) -> list[int]:
    if not _has_ledger(invoice):
        return []
    event_ids = [
        _queue(outbox_service.EVENT_LEDGER_CHARGE_CREATED, invoice, _charge_payload(invoice)),
        _queue(outbox_service.EVENT_CUSTOMER_INVOICED, invoice, {
            "customer_id": invoice.customer_id,
            "total_cents": invoice.total_cents,
            "date": invoice.date,
        }),
    ]
    for payment in invoice.payments:
        event_ids.extend(_queue_payment_added(invoice, payment))
    return event_ids


def _queue_payment_added(invoice: Invoice, payment: InvoicePayment) -> list[int]:
    if not _has_ledger(invoice):
        return []
    return [
        _queue(outbox_service.EVENT_LEDGER_PAYMENT_ADDED, invoice, _payment_payload(invoice, payment)),
        _queue(outbox_service.EVENT_CUSTOMER_PAID, invoice, {
            "customer_id": invoice.customer_id,
            "amount_cents": payment.amount_cents,
            "date": payment.date,
        }),
    ]


def _queue_payment_reversed(invoice: Invoice, payment_uid: str, amount_cents: int) -> list[int]:
    if not _has_ledger(invoice):
        return []
    return [
        _queue(outbox_service.EVENT_LEDGER_PAYMENT_REMOVED, invoice, {"payment_uid": payment_uid}),
        _queue(outbox_service.EVENT_CUSTOMER_PAYMENT_REVERSED, invoice, {
            "customer_id": invoice.customer_id,
            "amount_cents": amount_cents,
        }),
    ]


def _queue_invoice_reversed(invoice: Invoice, *, remove_charge: bool) -> list[int]:
    if not _has_ledger(invoice):
        return []
    event_ids = []
    if remove_charge:
        event_ids.append(_queue(outbox_service.EVENT_LEDGER_CHARGE_REMOVED, invoice, {"invoice_id": invoice.id}))
    event_ids.append(_queue(outbox_service.EVENT_CUSTOMER_INVOICE_REVERSED, invoice, {
        "customer_id": invoice.customer_id,
        "total_cents": invoice.total_cents,
        "paid_cents": invoice.paid_cents,
    }))
    return event_ids


def _dispatch(event_ids: list[int]) -> None:
    outbox_service.dispatch_inline(event_ids)


# =============================================================================
# STOCK STEPS
# =============================================================================

def _deduct_pending_items(invoice: Invoice) -> dict:
    """Deduct items not yet deducted; flags the invoice only if all are done."""
    pending = [item for item in invoice.items if item.is_stock_bearing and not item.stock_deducted]
    result = stock_service.deduct_items(pending)
    for deduction in result["deductions"]:
        item = pending[deduction["index"]]
        item.stock_deducted = True
        item.allocation_list = deduction["allocations"]

    stock_items = [item for item in invoice.items if item.is_stock_bearing]
    invoice.stock_deducted = bool(stock_items) and all(item.stock_deducted for item in stock_items)
    _settle_walk_in(invoice)
    return result


def _restore_deducted_items(invoice: Invoice) -> dict:
    deducted = [item for item in invoice.items if item.stock_deducted]
    result = stock_service.restore_items(deducted)
    # Items are cleared even when a lot could not be found: there is
    # nothing left to give back to
    for item in deducted:
        item.stock_deducted = False
        item.allocation_list = None
    invoice.stock_deducted = False
    return result


def _run_stock_step(invoice_id: int, step, label: str) -> dict | None:
    """Best-effort stock step after the primary write; never raises."""
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            return None
        result = step(invoice)
        db.session.commit()
        return result

    try:
        result = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        logger.exception("Stock %s failed for invoice %s", label, invoice_id)
        return None
    if result and result["errors"]:
        logger.warning("Stock %s incomplete for invoice %s: %s", label, invoice_id, result["errors"])
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def _locked_invoice(invoice_id: int, message: str = "Invoice not found") -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError(message)
    return invoice


def list_invoices(
    *,
    doc_type: str | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    limit: int = 200,
) -> list[Invoice]:
    query = db.session.query(Invoice)
    if doc_type:
        query = query.filter(Invoice.doc_type == doc_type)
    if status:
        query = query.filter(Invoice.status == status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    return query.order_by(Invoice.date.desc(), Invoice.id.desc()).limit(limit).all()


def get_next_document_number(doc_type: str) -> str:
    """Preview only: the number is not reserved."""
    if doc_type not in VALID_DOCUMENT_TYPES:
        raise ValidationError(f"Invalid document type: {doc_type}. Must be one of {VALID_DOCUMENT_TYPES}")
    return preview_next_id(prefix_for(doc_type))


def get_invoice_stats() -> dict:
    active = (Invoice.doc_type == TYPE_INVOICE, Invoice.status != STATUS_CANCELLED)
    total_count, revenue, outstanding, profit = (
        db.session.query(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_cents), 0),
            # Walk-in sales are settled at the till even though no payment row exists
            func.coalesce(func.sum(case((Invoice.is_walk_in.is_(True), 0), else_=Invoice.balance_cents)), 0),
            func.coalesce(func.sum(Invoice.profit_cents), 0),
        )
        .filter(*active)
        .one()
    )

    def _count(*criteria) -> int:
        return db.session.query(func.count(Invoice.id)).filter(Invoice.doc_type == TYPE_INVOICE, *criteria).scalar()

    return {
        "total_invoices": total_count,
        "paid_invoices": _count(Invoice.status == STATUS_PAID),
        "pending_invoices": _count(Invoice.status.in_([STATUS_PENDING, "partial"])),
        "cancelled_invoices": _count(Invoice.status == STATUS_CANCELLED),
        "total_revenue_cents": int(revenue),
        "outstanding_cents": int(outstanding),
        "total_profit_cents": int(profit),
    }


# =============================================================================
# CREATE
# =============================================================================

def create_invoice(data: dict, actor_id=None) -> Invoice:
    """
    Create an invoice or quotation.

    Request body keys: type, customer_id ("otc" for walk-in), customer_*
    snapshot overrides, date, due_date, valid_until, items, discount_type,
    discount_value, gst_type, gst_value, payments, notes, status ("draft"
    to hold an invoice as draft).
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    doc_type = data.get("type") or TYPE_INVOICE
    if doc_type not in VALID_DOCUMENT_TYPES:
        raise ValidationError(f"Invalid document type: {doc_type}. Must be one of {VALID_DOCUMENT_TYPES}")

    requested_status = data.get("status")
    if doc_type == TYPE_INVOICE and requested_status not in (None, STATUS_PENDING, STATUS_DRAFT):
        raise ValidationError("New invoices start as pending or draft")
    if doc_type == TYPE_QUOTATION and requested_status not in (None, STATUS_DRAFT):
        raise ValidationError("New quotations start as draft")

    raw_payments = data.get("payments") or []
    if doc_type == TYPE_QUOTATION and raw_payments:
        raise ValidationError("Payments can only be recorded against invoices")
    if not isinstance(raw_payments, list):
        raise ValidationError("payments must be a list")

    actor = _actor(actor_id if actor_id is not None else data.get("created_by"))
    doc_date = coerce_optional_datetime(data.get("date"), "date") or utcnow()
    due_date = coerce_optional_datetime(data.get("due_date"), "due_date")
    valid_until = coerce_optional_datetime(data.get("valid_until"), "valid_until")
    discount_type, discount_value = coerce_amount_rule(data.get("discount_type"), data.get("discount_value"), "discount")
    gst_type, gst_value = coerce_amount_rule(data.get("gst_type"), data.get("gst_value"), "gst")
    payments = [_parse_payment(raw) for raw in raw_payments]
    notes = optional_text(data, "notes")

    def _op():
        customer = _resolve_customer(data)
        items = _parse_items(data.get("items"))
        paid = sum(p["amount_cents"] for p in payments)
        priced_total = _price(items, discount_type, discount_value, gst_type, gst_value)["total_cents"]
        if paid > priced_total:
            raise _exceeds_balance(paid, priced_total)

        invoice = Invoice(
            document_number=next_id(prefix_for(doc_type)),
            doc_type=doc_type,
            date=doc_date,
            due_date=due_date,
            valid_until=valid_until,
            discount_type=discount_type,
            discount_value=discount_value,
            gst_type=gst_type,
            gst_value=gst_value,
            notes=notes,
            created_by=actor,
            stock_deducted=False,
            **customer,
        )
        invoice.items = items
        _apply_totals(invoice)

        for position, parsed in enumerate(payments):
            invoice.payments.append(InvoicePayment(
                payment_uid=str(uuid.uuid4()),
                position=position,
                added_by=actor,
                **parsed,
            ))
        invoice.paid_cents = paid
        invoice.status = initial_status(
            doc_type,
            total_cents=invoice.total_cents,
            paid_cents=paid,
            walk_in=invoice.is_walk_in,
            draft=requested_status == STATUS_DRAFT,
        )
        invoice.balance_cents = invoice.total_cents - paid

        db.session.add(invoice)
        db.session.flush()
        event_ids = _queue_invoice_created(invoice)
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    logger.info("Created %s %s (total=%s)", invoice.doc_type, invoice.document_number, invoice.total_cents)

    _dispatch(event_ids)

    if invoice.doc_type == TYPE_INVOICE and any(item.is_stock_bearing for item in invoice.items):
        _run_stock_step(invoice.id, _deduct_pending_items, "deduction")

    return get_invoice(invoice.id)


# =============================================================================
# UPDATE / DELETE / CANCEL
# =============================================================================

UPDATABLE_DATE_FIELDS = ("date", "due_date", "valid_until")


def update_invoice(invoice_id: int, data: dict) -> Invoice:
    """
    Edit document content. Status and payments have their own operations.

    Every change is validated and priced before the invoice, its items or
    any stock lot is touched. Replacing items on a stock-deducted invoice
    gives the old items' stock back and draws stock for the new ones.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    for forbidden in ("status", "payments", "type", "paid_cents", "balance_cents"):
        if forbidden in data:
            raise ValidationError(f"Field not allowed: {forbidden}")
    if "customer_id" in data:
        raise ValidationError("customer_id cannot be changed; cancel and re-issue the document")

    def _op():
        invoice = _locked_invoice(invoice_id)
        ensure_content_editable(invoice)

        old_total = invoice.total_cents
        old_paid = invoice.paid_cents

        changes = {}
        for field in UPDATABLE_DATE_FIELDS:
            if field in data:
                value = coerce_optional_datetime(data[field], field)
                if field == "date" and value is None:
                    raise ValidationError("date cannot be null")
                changes[field] = value
        for field, (_, max_length) in CUSTOMER_SNAPSHOT_FIELDS.items():
            if field in data:
                value = optional_text(data, field, max_length=max_length)
                if field == "customer_name" and not value:
                    raise ValidationError("customer_name cannot be blank")
                changes[field] = value
        if "notes" in data:
            changes["notes"] = optional_text(data, "notes")
        for rule in ("discount", "gst"):
            type_key, value_key = f"{rule}_type", f"{rule}_value"
            if type_key in data or value_key in data:
                changes[type_key], changes[value_key] = coerce_amount_rule(
                    data.get(type_key, getattr(invoice, type_key)),
                    data.get(value_key, getattr(invoice, value_key)),
                    rule,
                )
        new_items = _parse_items(data["items"]) if "items" in data else None

        rules = {
            key: changes.get(key, getattr(invoice, key))
            for key in ("discount_type", "discount_value", "gst_type", "gst_value")
        }
        priced = _price(new_items if new_items is not None else invoice.items, **rules)
        if priced["total_cents"] < invoice.paid_cents:
            raise ValidationError(
                f"Invoice total ({priced['total_cents']}) cannot be less than the amount already paid ({invoice.paid_cents})"
            )

        # Nothing has been modified above this line
        for field, value in changes.items():
            setattr(invoice, field, value)
        restock = False
        if new_items is not None:
            restock = invoice.doc_type == TYPE_INVOICE and any(item.stock_deducted for item in invoice.items)
            if restock:
                _restore_deducted_items(invoice)
            invoice.items = new_items

        _apply_totals(invoice)
        recompute_payment_status(invoice)
        _settle_walk_in(invoice)

        db.session.flush()
        stock_result = _deduct_pending_items(invoice) if restock else None

        event_ids = []
        if _has_ledger(invoice) and invoice.total_cents != old_total:
            event_ids.append(_queue(outbox_service.EVENT_LEDGER_CHARGE_UPDATED, invoice, _charge_payload(invoice)))
            event_ids.append(_queue(outbox_service.EVENT_CUSTOMER_INVOICE_UPDATED, invoice, {
                "customer_id": invoice.customer_id,
                "old_total_cents": old_total,
                "new_total_cents": invoice.total_cents,
                "old_paid_cents": old_paid,
                "new_paid_cents": invoice.paid_cents,
            }))
        db.session.commit()
        return invoice, event_ids, stock_result

    invoice, event_ids, stock_result = run_with_retry(_op)
    if stock_result and stock_result["errors"]:
        logger.warning("Stock deduction incomplete for %s after item change: %s", invoice.document_number, stock_result["errors"])
    _dispatch(event_ids)
    return get_invoice(invoice.id)


def delete_invoice(invoice_id: int) -> None:
    """
    Physically delete an untouched document.

    Only draft invoices and unconverted quotations without payments qualify;
    everything else must be cancelled so its history survives.
    """
    def _op():
        invoice = _locked_invoice(invoice_id)
        ensure_deletable(invoice)

        event_ids = _queue_invoice_reversed(invoice, remove_charge=True)
        if any(item.stock_deducted for item in invoice.items):
            result = _restore_deducted_items(invoice)
            if result["errors"]:
                logger.warning("Stock restore incomplete for %s: %s", invoice.document_number, result["errors"])

        number = invoice.document_number
        db.session.delete(invoice)
        db.session.commit()
        return number, event_ids

    number, event_ids = run_with_retry(_op)
    logger.info("Deleted %s", number)
    _dispatch(event_ids)


def cancel_invoice(invoice_id: int, reason: str | None = None) -> Invoice:
    """
    Cancel an invoice without payments.

    The ledger charge stays for audit (excluded from balances by status);
    the customer aggregate is reversed and deducted stock is restored.
    """
    def _op():
        invoice = _locked_invoice(invoice_id)
        ensure_cancellable(invoice)

        invoice.status = STATUS_CANCELLED
        if reason and reason.strip():
            note = f"Cancellation Reason: {reason.strip()}"
            invoice.notes = f"{invoice.notes}\n\n{note}" if invoice.notes else note

        db.session.flush()
        event_ids = _queue_invoice_reversed(invoice, remove_charge=False)
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    logger.info("Cancelled invoice %s", invoice.document_number)
    _dispatch(event_ids)

    if any(item.stock_deducted for item in invoice.items):
        _run_stock_step(invoice.id, _restore_deducted_items, "restoration")

    return get_invoice(invoice.id)


# =============================================================================
# PAYMENTS
# =============================================================================

def _payment_at(invoice: Invoice, index) -> InvoicePayment:
    position = coerce_int(index, "index")
    if position < 0 or position >= len(invoice.payments):
        raise NotFoundError(f"Payment at index {position} not found")
    return invoice.payments[position]


def add_payment(invoice_id: int, payment: dict, actor_id=None) -> Invoice:
    parsed = _parse_payment(payment)
    actor = _actor(actor_id)

    def _op():
        invoice = _locked_invoice(invoice_id)
        ensure_accepts_payments(invoice)

        if parsed["amount_cents"] > invoice.balance_cents:
            raise _exceeds_balance(parsed["amount_cents"], invoice.balance_cents)

        record = InvoicePayment(
            payment_uid=str(uuid.uuid4()),
            position=len(invoice.payments),
            added_by=actor,
            **parsed,
        )
        invoice.payments.append(record)
        _sync_paid(invoice)

        db.session.flush()
        event_ids = _queue_payment_added(invoice, record)
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    _dispatch(event_ids)
    return get_invoice(invoice.id)


def update_payment(invoice_id: int, index, payment: dict) -> Invoice:
    """Edit the payment at a position; its payment_uid (and ledger entry) is kept."""
    parsed = _parse_payment(payment, partial=True)

    def _op():
        invoice = _locked_invoice(invoice_id)
        ensure_accepts_payments(invoice)
        record = _payment_at(invoice, index)

        old_amount = record.amount_cents
        new_amount = parsed.get("amount_cents", old_amount)
        available = invoice.total_cents - (invoice.paid_cents - old_amount)
        if new_amount > available:
            raise _exceeds_balance(new_amount, available)

        for key, value in parsed.items():
            setattr(record, key, value)
        _sync_paid(invoice)
        db.session.flush()

        event_ids = []
        if _has_ledger(invoice):
            event_ids.append(
                _queue(outbox_service.EVENT_LEDGER_PAYMENT_UPDATED, invoice, _payment_payload(invoice, record))
            )
            event_ids.append(_queue(outbox_service.EVENT_CUSTOMER_PAYMENT_REVERSED, invoice, {
                "customer_id": invoice.customer_id,
                "amount_cents": old_amount,
            }))
            event_ids.append(_queue(outbox_service.EVENT_CUSTOMER_PAID, invoice, {
                "customer_id": invoice.customer_id,
                "amount_cents": record.amount_cents,
                "date": record.date,
            }))
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    _dispatch(event_ids)
    return get_invoice(invoice.id)


def delete_payment(invoice_id: int, index) -> Invoice:
    """Remove the payment at a position; later payments keep their identity."""
    def _op():
        invoice = _locked_invoice(invoice_id)
        record = _payment_at(invoice, index)
        payment_uid = record.payment_uid
        amount = record.amount_cents

        invoice.payments.remove(record)
        for position, remaining in enumerate(invoice.payments):
            remaining.position = position
        _sync_paid(invoice)

        db.session.flush()
        event_ids = _queue_payment_reversed(invoice, payment_uid, amount)
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    _dispatch(event_ids)
    return get_invoice(invoice.id)


# =============================================================================
# STATUS WORKFLOW
# =============================================================================

def update_invoice_status(invoice_id: int, status: str) -> Invoice:
    """Manual workflow transition; cancellation is routed through cancel_invoice."""
    if status == STATUS_CANCELLED:
        return cancel_invoice(invoice_id)

    def _op():
        invoice = _locked_invoice(invoice_id)
        validate_manual_transition(invoice, status)
        invoice.status = status
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Set %s %s to %s", invoice.doc_type, invoice.document_number, status)
    return invoice


def issue_invoice(invoice_id: int) -> Invoice:
    """Move a draft invoice into its payment-derived status."""
    def _op():
        invoice = _locked_invoice(invoice_id)
        if invoice.doc_type != TYPE_INVOICE or invoice.status != STATUS_DRAFT:
            raise ConflictError("Only draft invoices can be issued")
        invoice.status = payment_status(invoice.total_cents, invoice.paid_cents)
        _settle_walk_in(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def convert_quotation_to_invoice(quotation_id: int, actor_id=None) -> Invoice:
    """
    Turn a quotation into a new invoice (one way, at most once).

    The quotation keeps its number and becomes read-only with status
    "converted"; the invoice gets a fresh number and starts pending.
    """
    actor = _actor(actor_id)

    def _op():
        quotation = _locked_invoice(quotation_id, "Quotation not found")
        ensure_convertible(quotation)

        now = utcnow()
        invoice = Invoice(
            document_number=next_id(prefix_for(TYPE_INVOICE)),
            doc_type=TYPE_INVOICE,
            status=STATUS_PENDING,
            date=now,
            due_date=quotation.due_date or now + timedelta(days=current_app.config.get("INVOICE_DUE_DAYS", 30)),
            customer_id=quotation.customer_id,
            is_walk_in=quotation.is_walk_in,
            customer_name=quotation.customer_name,
            customer_company=quotation.customer_company,
            customer_email=quotation.customer_email,
            customer_phone=quotation.customer_phone,
            customer_address=quotation.customer_address,
            discount_type=quotation.discount_type,
            discount_value=quotation.discount_value,
            gst_type=quotation.gst_type,
            gst_value=quotation.gst_value,
            notes=quotation.notes,
            created_by=actor or quotation.created_by,
            source_quotation_id=quotation.id,
            paid_cents=0,
            stock_deducted=False,
        )
        invoice.items = [
            InvoiceItem(
                position=item.position,
                product_id=item.product_id,
                product_name=item.product_name,
                variant_id=item.variant_id,
                variant_sku=item.variant_sku,
                quantity=item.quantity,
                unit=item.unit,
                unit_price_cents=item.unit_price_cents,
                discount_type=item.discount_type,
                discount_value=item.discount_value,
                discount_cents=item.discount_cents,
                total_cents=item.total_cents,
                original_rate_cents=item.original_rate_cents,
                purchase_id=item.purchase_id,
                virtual_product_id=item.virtual_product_id,
                stock_deducted=False,
            )
            for item in quotation.items
        ]
        _apply_totals(invoice)
        invoice.balance_cents = invoice.total_cents
        _settle_walk_in(invoice)

        db.session.add(invoice)
        db.session.flush()

        quotation.converted_to_invoice = True
        quotation.converted_invoice_id = invoice.id
        quotation.status = STATUS_CONVERTED

        event_ids = _queue_invoice_created(invoice)
        db.session.commit()
        return invoice, event_ids

    invoice, event_ids = run_with_retry(_op)
    logger.info("Converted quotation %s into %s", quotation_id, invoice.document_number)
    _dispatch(event_ids)

    if any(item.is_stock_bearing for item in invoice.items):
        _run_stock_step(invoice.id, _deduct_pending_items, "deduction")

    return get_invoice(invoice.id)


# =============================================================================
# MANUAL STOCK CONTROL
# =============================================================================

def deduct_invoice_stock(invoice_id: int) -> dict:
    """Retry stock deduction for items that have not drawn stock yet."""
    def _op():
        invoice = _locked_invoice(invoice_id)
        if invoice.doc_type != TYPE_INVOICE:
            raise ValidationError("Stock can only be deducted for invoices")
        if invoice.status == STATUS_CANCELLED:
            raise ConflictError("Cannot deduct stock for a cancelled invoice")
        if invoice.stock_deducted:
            raise ConflictError("Stock already deducted for this invoice")
        if not any(item.is_stock_bearing for item in invoice.items):
            raise ValidationError("Invoice has no stock-bearing items")
        result = _deduct_pending_items(invoice)
        db.session.commit()
        return result

    result = run_with_retry(_op)
    if result["errors"]:
        raise InvoiceError("Stock deduction incomplete", details={"errors": result["errors"]})
    return result


def restore_invoice_stock(invoice_id: int) -> dict:
    """Give back all stock this invoice drew."""
    def _op():
        invoice = _locked_invoice(invoice_id)
        if not invoice.stock_deducted and not any(item.stock_deducted for item in invoice.items):
            raise ConflictError("Stock was not deducted for this invoice")
        result = _restore_deducted_items(invoice)
        db.session.commit()
        return result

    return run_with_retry(_op)
