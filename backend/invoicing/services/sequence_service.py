# Overview: Collision-free document numbers per (prefix, year).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SequenceCounter
from invoicing.time_utils import utcnow
from .concurrency import run_with_retry
"""
Sequence Invariants (authoritative)

- Format: PREFIX-YY-NNN (NNN zero-padded to 3 digits, widens past 999).
- One counter row per key "<prefix lower>-<year>"; the stored value is the
  last issued number.
- Allocation is a single UPDATE seq = seq + 1 (never read-then-write); the
  first allocation for a key INSERTs seq=1 and falls back to the UPDATE if a
  concurrent caller won the INSERT.
- Numbers are never reused, even when the owning document is deleted.
- Preview never writes and reserves nothing.
"""


PREFIX_INVOICE = "INV"
PREFIX_QUOTATION = "QT"
PREFIX_PURCHASE = "PR"

DOCUMENT_PREFIXES = {
    "invoice": PREFIX_INVOICE,
    "quotation": PREFIX_QUOTATION,
    "purchase": PREFIX_PURCHASE,
}


class SequenceError(Exception):
    """Raised when sequence operations fail."""
    pass


def _counter_key(prefix: str, year: int) -> str:
    return f"{prefix.lower()}-{year}"


def format_document_number(prefix: str, year: int, number: int) -> str:
    return f"{prefix}-{year % 100:02d}-{number:03d}"


def _current_value(key: str) -> int | None:
    return db.session.query(SequenceCounter.seq).filter_by(key=key).scalar()


def next_id(prefix: str, year: int | None = None) -> str:
    """
    Atomically allocate the next number for (prefix, year).

    Flushes but does not commit: the increment becomes durable with the
    caller's transaction, which is the one that persists the document.
    """
    def _op() -> str:
        if not prefix:
            raise SequenceError("prefix is required")
        yr = year if year is not None else utcnow().year
        key = _counter_key(prefix, yr)

        stmt = (
            update(SequenceCounter)
            .where(SequenceCounter.key == key)
            .values(seq=SequenceCounter.seq + 1)
            .execution_options(synchronize_session=False)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            number = _current_value(key)
        else:
            db.session.add(SequenceCounter(key=key, seq=1))
            try:
                db.session.flush()
                number = 1
            except IntegrityError:
                db.session.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                number = _current_value(key)

        return format_document_number(prefix, yr, number)

    return run_with_retry(_op)


def preview_next_id(prefix: str, year: int | None = None) -> str:
    """Would-be next number (stored + 1). Callers must not treat it as reserved."""
    yr = year if year is not None else utcnow().year
    current = _current_value(_counter_key(prefix, yr)) or 0
    return format_document_number(prefix, yr, current + 1)


def prefix_for(doc_type: str) -> str:
    try:
        return DOCUMENT_PREFIXES[doc_type]
    except KeyError:
        raise SequenceError(f"Unknown document type: {doc_type}")
