# Overview: Transactional outbox that applies ledger and customer side effects of invoice mutations.

"""
Sync Outbox

WHY: An invoice mutation touches four records (invoice, stock, ledger,
customer) that commit independently. Instead of firing the ledger and
aggregate updates as fire-and-forget calls, the saga writes one SyncEvent
per intended side effect in the SAME transaction as the invoice change.
The intent is therefore durable as soon as the invoice is.

DESIGN:
- record_event() only adds the row; the caller commits it with the invoice.
- apply_event() runs the handler and marks the row APPLIED in one commit,
  so an event is applied at most once no matter how often it is retried.
- Events of one invoice apply in recording order. An event whose older
  sibling is still PENDING or FAILED waits, so a removal never overtakes
  the addition it undoes.
- dispatch() is the best-effort path used right after a saga commit:
  failures are logged, rolled back and counted, never raised.
- After SYNC_MAX_ATTEMPTS failures an event is parked as FAILED until
  `flask sync retry-failed` re-queues it.
- Handlers are idempotent on their own as well (ledger writes are keyed by
  invoice id / payment_uid).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import SyncEvent
from invoicing.time_utils import coerce_datetime, parse_iso_datetime, utcnow
from . import customer_service, ledger_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


class OutboxError(Exception):
    """Raised when an outbox event cannot be interpreted."""
    pass


# =============================================================================
# EVENT TYPES & STATUSES (CONSTANTS)
# =============================================================================

EVENT_LEDGER_CHARGE_CREATED = "ledger.charge_created"
EVENT_LEDGER_CHARGE_UPDATED = "ledger.charge_updated"
EVENT_LEDGER_CHARGE_REMOVED = "ledger.charge_removed"
EVENT_LEDGER_PAYMENT_ADDED = "ledger.payment_added"
EVENT_LEDGER_PAYMENT_UPDATED = "ledger.payment_updated"
EVENT_LEDGER_PAYMENT_REMOVED = "ledger.payment_removed"
EVENT_CUSTOMER_INVOICED = "customer.invoiced"
EVENT_CUSTOMER_PAID = "customer.paid"
EVENT_CUSTOMER_PAYMENT_REVERSED = "customer.payment_reversed"
EVENT_CUSTOMER_INVOICE_UPDATED = "customer.invoice_updated"
EVENT_CUSTOMER_INVOICE_REVERSED = "customer.invoice_reversed"

STATUS_PENDING = "PENDING"
STATUS_APPLIED = "APPLIED"
STATUS_FAILED = "FAILED"


def _dt(value):
    return parse_iso_datetime(value) if value else None


# =============================================================================
# HANDLERS
# =============================================================================

def _charge_created(data: dict) -> None:
    ledger_service.append_invoice_charge(
        invoice_id=data["invoice_id"],
        document_number=data["document_number"],
        customer_id=data["customer_id"],
        customer_name=data.get("customer_name"),
        total_cents=data["total_cents"],
        date=_dt(data["date"]),
        created_by=data.get("created_by"),
    )


def _charge_updated(data: dict) -> None:
    entry = ledger_service.update_invoice_charge(
        invoice_id=data["invoice_id"],
        document_number=data["document_number"],
        total_cents=data["total_cents"],
    )
    if entry is None:
        # Zero-value invoices post no charge until they get a total
        _charge_created(data)


def _charge_removed(data: dict) -> None:
    ledger_service.remove_invoice_charge(data["invoice_id"])


def _payment_added(data: dict) -> None:
    ledger_service.append_payment_entry(
        payment_uid=data["payment_uid"],
        invoice_id=data["invoice_id"],
        document_number=data["document_number"],
        customer_id=data["customer_id"],
        customer_name=data.get("customer_name"),
        amount_cents=data["amount_cents"],
        method=data["method"],
        date=_dt(data["date"]),
        reference=data.get("reference"),
        notes=data.get("notes"),
        created_by=data.get("added_by"),
    )


def _payment_updated(data: dict) -> None:
    ledger_service.update_payment_entry(
        payment_uid=data["payment_uid"],
        amount_cents=data["amount_cents"],
        method=data["method"],
        date=_dt(data["date"]),
        reference=data.get("reference"),
        notes=data.get("notes"),
    )


def _payment_removed(data: dict) -> None:
    ledger_service.remove_payment_entry(data["payment_uid"])


def _customer_invoiced(data: dict) -> None:
    customer_service.on_invoice_created(data["customer_id"], data["total_cents"], _dt(data.get("date")))


def _customer_paid(data: dict) -> None:
    customer_service.on_payment_added(data["customer_id"], data["amount_cents"], _dt(data.get("date")))


def _customer_payment_reversed(data: dict) -> None:
    customer_service.on_payment_reversed(data["customer_id"], data["amount_cents"])


def _customer_invoice_updated(data: dict) -> None:
    customer_service.on_invoice_updated(
        data["customer_id"],
        data["old_total_cents"],
        data["new_total_cents"],
        data["old_paid_cents"],
        data["new_paid_cents"],
    )


def _customer_invoice_reversed(data: dict) -> None:
    customer_service.on_invoice_reversed(data["customer_id"], data["total_cents"], data["paid_cents"])


HANDLERS = {
    EVENT_LEDGER_CHARGE_CREATED: _charge_created,
    EVENT_LEDGER_CHARGE_UPDATED: _charge_updated,
    EVENT_LEDGER_CHARGE_REMOVED: _charge_removed,
    EVENT_LEDGER_PAYMENT_ADDED: _payment_added,
    EVENT_LEDGER_PAYMENT_UPDATED: _payment_updated,
    EVENT_LEDGER_PAYMENT_REMOVED: _payment_removed,
    EVENT_CUSTOMER_INVOICED: _customer_invoiced,
    EVENT_CUSTOMER_PAID: _customer_paid,
    EVENT_CUSTOMER_PAYMENT_REVERSED: _customer_payment_reversed,
    EVENT_CUSTOMER_INVOICE_UPDATED: _customer_invoice_updated,
    EVENT_CUSTOMER_INVOICE_REVERSED: _customer_invoice_reversed,
}


# =============================================================================
# RECORDING
# =============================================================================

def _encode(value):
    # Full precision: projections are compared against the source rows
    if isinstance(value, datetime):
        return coerce_datetime(value).isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def record_event(event_type: str, aggregate_type: str, aggregate_id: int | None, payload: dict) -> SyncEvent:
    """Queue a side effect inside the caller's transaction (flush, no commit)."""
    if event_type not in HANDLERS:
        raise OutboxError(f"Unknown event type: {event_type}")
    event = SyncEvent(
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        payload=json.dumps(payload, default=_encode, sort_keys=True),
        status=STATUS_PENDING,
        attempts=0,
    )
    db.session.add(event)
    db.session.flush()
    return event


# =============================================================================
# APPLYING
# =============================================================================

def _has_unsettled_predecessor(event: SyncEvent) -> bool:
    """True while an older event of the same aggregate is still PENDING or FAILED."""
    if event.aggregate_id is None:
        return False
    return db.session.query(
        db.session.query(SyncEvent.id)
        .filter(
            SyncEvent.aggregate_type == event.aggregate_type,
            SyncEvent.aggregate_id == event.aggregate_id,
            SyncEvent.id < event.id,
            SyncEvent.status.in_([STATUS_PENDING, STATUS_FAILED]),
        )
        .exists()
    ).scalar()


def apply_event(event_id: int) -> bool:
    """
    Apply one pending event and mark it APPLIED in the same commit.

    Events of one aggregate are applied strictly in recording order: while
    an older one is unsettled the event stays PENDING untouched. Returns
    False if the event is missing, no longer pending, or waiting its turn.
    """
    def _op():
        event = lock_for_update(db.session.query(SyncEvent).filter_by(id=event_id)).first()
        if event is None or event.status != STATUS_PENDING:
            return False
        if _has_unsettled_predecessor(event):
            logger.debug("Sync event %s waits for older %s %s events", event_id, event.aggregate_type, event.aggregate_id)
            db.session.rollback()
            return False
        handler = HANDLERS.get(event.event_type)
        if handler is None:
            raise OutboxError(f"No handler for event type {event.event_type}")
        handler(event.data)
        event.status = STATUS_APPLIED
        event.attempts += 1
        event.applied_at = utcnow()
        event.last_error = None
        db.session.commit()
        return True

    return run_with_retry(_op)


def _record_failure(event_id: int, exc: Exception) -> None:
    max_attempts = current_app.config.get("SYNC_MAX_ATTEMPTS", 5)
    event = db.session.get(SyncEvent, event_id)
    if event is None:
        return
    event.attempts += 1
    event.last_error = f"{type(exc).__name__}: {exc}"[:1000]
    if event.attempts >= max_attempts:
        event.status = STATUS_FAILED
    db.session.commit()


def dispatch(event_ids) -> dict:
    """
    Best-effort application of the given events, in order.

    Never raises: a failed event is rolled back, logged and left for the
    background processor.
    """
    applied = 0
    failed = 0
    for event_id in event_ids:
        try:
            if apply_event(event_id):
                applied += 1
        except Exception as exc:
            db.session.rollback()
            failed += 1
            logger.exception("Sync event %s failed; left for retry", event_id)
            try:
                _record_failure(event_id, exc)
            except Exception:
                db.session.rollback()
                logger.exception("Could not record failure for sync event %s", event_id)
    return {"applied": applied, "failed": failed}


def dispatch_inline(event_ids) -> dict | None:
    """Apply events right away unless inline dispatch is switched off."""
    if not event_ids or not current_app.config.get("SYNC_DISPATCH_INLINE", True):
        return None
    return dispatch(event_ids)


def process_pending_events(limit: int = 500) -> dict:
    """Background processor: apply pending events oldest first."""
    event_ids = [
        row.id
        for row in db.session.query(SyncEvent.id)
        .filter(SyncEvent.status == STATUS_PENDING)
        .order_by(SyncEvent.id.asc())
        .limit(limit)
        .all()
    ]
    result = dispatch(event_ids)
    if event_ids:
        logger.info("Processed %d sync events (%d applied, %d failed)", len(event_ids), result["applied"], result["failed"])
    return {"processed": len(event_ids), **result}


def retry_failed_events() -> int:
    """Re-queue parked events; returns how many were re-queued."""
    count = (
        db.session.query(SyncEvent)
        .filter(SyncEvent.status == STATUS_FAILED)
        .update({"status": STATUS_PENDING, "attempts": 0}, synchronize_session=False)
    )
    db.session.commit()
    return count


def get_outbox_status() -> dict:
    rows = (
        db.session.query(SyncEvent.status, db.func.count(SyncEvent.id))
        .group_by(SyncEvent.status)
        .all()
    )
    counts = {STATUS_PENDING: 0, STATUS_APPLIED: 0, STATUS_FAILED: 0}
    counts.update({status: count for status, count in rows})
    return counts
