# Overview: Pytest coverage for the invoice/quotation status rules.

from types import SimpleNamespace

import pytest

from invoicing.services.invoice_state import (
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
from invoicing.validation import ConflictError, ValidationError


def doc(doc_type="invoice", status="pending", total=1000, paid=0, **extra):
    values = {
        "doc_type": doc_type,
        "status": status,
        "total_cents": total,
        "paid_cents": paid,
        "balance_cents": total - paid,
        "converted_to_invoice": False,
        "payments": [],
    }
    values.update(extra)
    return SimpleNamespace(**values)


class TestPaymentStatus:
    """Status derived from money."""

    def test_unpaid_is_pending(self):
        assert payment_status(1000, 0) == "pending"

    def test_partly_paid_is_partial(self):
        assert payment_status(1000, 400) == "partial"

    def test_fully_paid_is_paid(self):
        assert payment_status(1000, 1000) == "paid"

    def test_zero_total_without_payment_stays_pending(self):
        assert payment_status(0, 0) == "pending"

    def test_recompute_follows_payments(self):
        invoice = doc(status="paid", total=1000, paid=300)
        assert recompute_payment_status(invoice) == "partial"
        assert invoice.balance_cents == 700

    def test_content_edit_leaves_workflow_statuses(self):
        invoice = doc(status="delivered", total=1000, paid=1000)
        assert recompute_payment_status(invoice) == "delivered"
        assert invoice.balance_cents == 0

    def test_payment_change_derives_workflow_statuses(self):
        assert recompute_payment_status(doc(status="delivered", total=1000, paid=1000), payment_changed=True) == "paid"
        assert recompute_payment_status(doc(status="draft", total=1000, paid=0), payment_changed=True) == "pending"

    def test_payment_change_keeps_cancelled(self):
        invoice = doc(status="cancelled", total=1000, paid=0)
        assert recompute_payment_status(invoice, payment_changed=True) == "cancelled"


class TestInitialStatus:
    def test_quotation_starts_draft(self):
        assert initial_status("quotation", total_cents=100, paid_cents=0, walk_in=False, draft=False) == "draft"

    def test_walk_in_is_settled(self):
        assert initial_status("invoice", total_cents=100, paid_cents=0, walk_in=True, draft=True) == "paid"

    def test_requested_draft(self):
        assert initial_status("invoice", total_cents=100, paid_cents=0, walk_in=False, draft=True) == "draft"

    def test_initial_payment_counts(self):
        assert initial_status("invoice", total_cents=100, paid_cents=40, walk_in=False, draft=False) == "partial"


class TestManualTransitions:
    """Payment statuses can never be set by hand."""

    @pytest.mark.parametrize("status", ["pending", "partial", "paid"])
    def test_payment_status_rejected(self, status):
        with pytest.raises(ValidationError) as exc_info:
            validate_manual_transition(doc(), status)
        assert str(exc_info.value) == (
            f"Cannot manually set status to '{status}'. "
            "Payment statuses are automatically calculated based on payments made."
        )

    def test_invoice_can_be_delivered(self):
        validate_manual_transition(doc(), "delivered")

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            validate_manual_transition(doc(), "archived")

    def test_quotation_workflow_is_free(self):
        validate_manual_transition(doc("quotation", "draft"), "sent")
        validate_manual_transition(doc("quotation", "accepted"), "draft")

    def test_converted_quotation_is_frozen(self):
        with pytest.raises(ConflictError):
            validate_manual_transition(doc("quotation", "converted"), "sent")

    def test_converted_status_only_through_conversion(self):
        with pytest.raises(ValidationError):
            validate_manual_transition(doc("quotation", "accepted"), "converted")

    def test_cancelled_invoice_is_frozen(self):
        with pytest.raises(ConflictError):
            validate_manual_transition(doc(status="cancelled"), "delivered")


class TestGuards:
    def test_cancel_rejects_payments(self):
        with pytest.raises(ConflictError, match="Cannot cancel invoice with payments"):
            ensure_cancellable(doc(paid=100))

    def test_cancel_twice(self):
        with pytest.raises(ConflictError, match="already cancelled"):
            ensure_cancellable(doc(status="cancelled"))

    def test_quotation_cannot_be_cancelled(self):
        with pytest.raises(ValidationError):
            ensure_cancellable(doc("quotation", "draft"))

    def test_only_drafts_are_deletable(self):
        ensure_deletable(doc(status="draft"))
        with pytest.raises(ConflictError):
            ensure_deletable(doc(status="pending"))

    def test_converted_quotation_not_deletable(self):
        with pytest.raises(ConflictError):
            ensure_deletable(doc("quotation", "converted", converted_to_invoice=True))

    def test_double_conversion(self):
        with pytest.raises(ConflictError, match="already converted"):
            ensure_convertible(doc("quotation", "converted", converted_to_invoice=True))

    def test_invoice_is_not_convertible(self):
        with pytest.raises(ValidationError, match="not a quotation"):
            ensure_convertible(doc())

    def test_payments_need_a_live_invoice(self):
        with pytest.raises(ValidationError):
            ensure_accepts_payments(doc("quotation", "sent"))
        with pytest.raises(ConflictError):
            ensure_accepts_payments(doc(status="cancelled"))
        ensure_accepts_payments(doc(status="draft"))

    def test_content_edit_guards(self):
        ensure_content_editable(doc(status="paid"))
        with pytest.raises(ConflictError):
            ensure_content_editable(doc(status="cancelled"))
        with pytest.raises(ConflictError):
            ensure_content_editable(doc("quotation", "converted"))
