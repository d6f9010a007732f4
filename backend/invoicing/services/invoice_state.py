# Overview: Legal status transitions for invoices and quotations.

"""
Invoice State Machine

WHY: Payment statuses are facts derived from money, workflow statuses are
decisions made by people. Keeping them apart means no user action can mark
an unpaid invoice as paid, and no payment can resurrect a cancelled one.

Invoices:   draft, pending, partial, paid, delivered, cancelled
Quotations: draft, sent, accepted, rejected, expired, converted

Automatic (invoice only; every payment mutation recomputes it unless the
invoice is cancelled, content edits only while it is pending/partial/paid):
    paid     balance <= 0 and paid > 0
    partial  paid > 0
    pending  otherwise

Manual:
    invoice    -> delivered, cancelled (cancel has its own guard)
    quotation  draft <-> sent <-> accepted/rejected/expired, in any order
    converted  only via conversion; terminal

Frozen: cancelled and paid invoices, converted quotations.
"""

from __future__ import annotations

from invoicing.validation import ConflictError, ValidationError


TYPE_INVOICE = "invoice"
TYPE_QUOTATION = "quotation"

VALID_DOCUMENT_TYPES = [TYPE_INVOICE, TYPE_QUOTATION]

STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"

STATUS_SENT = "sent"
STATUS_ACCEPTED = "accepted"
STATUS_REJECTED = "rejected"
STATUS_EXPIRED = "expired"
STATUS_CONVERTED = "converted"

INVOICE_STATUSES = [
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_PARTIAL,
    STATUS_PAID,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
]

QUOTATION_STATUSES = [
    STATUS_DRAFT,
    STATUS_SENT,
    STATUS_ACCEPTED,
    STATUS_REJECTED,
    STATUS_EXPIRED,
    STATUS_CONVERTED,
]

# Derived from paid/balance; never accepted from a manual request
PAYMENT_STATUSES = {STATUS_PENDING, STATUS_PARTIAL, STATUS_PAID}

FROZEN_INVOICE_STATUSES = {STATUS_CANCELLED, STATUS_PAID}


def statuses_for(doc_type: str) -> list[str]:
    return QUOTATION_STATUSES if doc_type == TYPE_QUOTATION else INVOICE_STATUSES


def payment_status(total_cents: int, paid_cents: int) -> str:
    balance = total_cents - paid_cents
    if balance <= 0 and paid_cents > 0:
        return STATUS_PAID
    if paid_cents > 0:
        return STATUS_PARTIAL
    return STATUS_PENDING


def initial_status(doc_type: str, *, total_cents: int, paid_cents: int, walk_in: bool, draft: bool) -> str:
    if doc_type == TYPE_QUOTATION:
        return STATUS_DRAFT
    if walk_in:
        # Over-the-counter sales are settled at the counter
        return STATUS_PAID
    if draft:
        return STATUS_DRAFT
    return payment_status(total_cents, paid_cents)


def recompute_payment_status(invoice, *, payment_changed: bool = False) -> str:
    """
    Refresh balance and, where money decides it, the status.

    Balance is always kept equal to total - paid. A payment mutation derives
    the status of any live invoice (draft and delivered included); other
    edits only refresh invoices already in a payment status.
    """
    invoice.balance_cents = invoice.total_cents - invoice.paid_cents
    if invoice.doc_type != TYPE_INVOICE or invoice.status == STATUS_CANCELLED:
        return invoice.status
    if payment_changed or invoice.status in PAYMENT_STATUSES:
        invoice.status = payment_status(invoice.total_cents, invoice.paid_cents)
    return invoice.status


def ensure_status_editable(invoice) -> None:
    if invoice.doc_type == TYPE_QUOTATION and invoice.status == STATUS_CONVERTED:
        raise ConflictError("Cannot change status of a converted quotation")
    if invoice.doc_type == TYPE_INVOICE and invoice.status in FROZEN_INVOICE_STATUSES:
        raise ConflictError(f"Cannot change status of a {invoice.status} invoice")


def validate_manual_transition(invoice, new_status: str) -> None:
    """
    Raise unless a user may move invoice to new_status directly.

    Cancellation is validated separately by ensure_cancellable.
    """
    allowed = statuses_for(invoice.doc_type)
    if new_status not in allowed:
        raise ValidationError(f"Invalid status '{new_status}' for {invoice.doc_type}. Must be one of {allowed}")

    if invoice.doc_type == TYPE_INVOICE and new_status in PAYMENT_STATUSES:
        raise ValidationError(
            f"Cannot manually set status to '{new_status}'. "
            "Payment statuses are automatically calculated based on payments made."
        )

    ensure_status_editable(invoice)

    if invoice.doc_type == TYPE_QUOTATION and new_status == STATUS_CONVERTED:
        raise ValidationError("Quotations are converted by converting them to an invoice")


def ensure_cancellable(invoice) -> None:
    if invoice.doc_type == TYPE_QUOTATION:
        raise ValidationError("Quotations cannot be cancelled; reject or delete them instead")
    if invoice.status == STATUS_CANCELLED:
        raise ConflictError("Invoice is already cancelled")
    ensure_status_editable(invoice)
    if invoice.paid_cents > 0:
        raise ConflictError(
            f"Cannot cancel invoice with payments ({invoice.paid_cents} cents paid). "
            "Remove the payments first."
        )


def ensure_deletable(invoice) -> None:
    if invoice.doc_type == TYPE_INVOICE and invoice.status != STATUS_DRAFT:
        raise ConflictError("Only draft invoices can be deleted. Cancel the invoice instead.")
    if invoice.doc_type == TYPE_QUOTATION and invoice.converted_to_invoice:
        raise ConflictError("Cannot delete a quotation that has been converted to an invoice")
    if invoice.paid_cents > 0 or invoice.payments:
        raise ConflictError("Cannot delete an invoice with payments")


def ensure_convertible(quotation) -> None:
    if quotation.doc_type != TYPE_QUOTATION:
        raise ValidationError("Document is not a quotation")
    if quotation.converted_to_invoice or quotation.status == STATUS_CONVERTED:
        raise ConflictError("Quotation already converted to invoice")


def ensure_accepts_payments(invoice) -> None:
    if invoice.doc_type != TYPE_INVOICE:
        raise ValidationError("Payments can only be recorded against invoices")
    if invoice.status == STATUS_CANCELLED:
        raise ConflictError("Cannot record payments on a cancelled invoice")


def ensure_content_editable(invoice) -> None:
    if invoice.doc_type == TYPE_INVOICE and invoice.status == STATUS_CANCELLED:
        raise ConflictError("Cannot edit a cancelled invoice")
    if invoice.doc_type == TYPE_QUOTATION and invoice.status == STATUS_CONVERTED:
        raise ConflictError("Cannot edit a converted quotation")
