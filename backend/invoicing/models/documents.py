from __future__ import annotations

import json

from ..extensions import db
from invoicing.time_utils import to_utc_z


class SequenceCounter(db.Model):
    """
    Last issued number per (prefix, year) key, e.g. "inv-2025".

    WHY: Document numbers must be unique and never reused, even when the
    owning document is deleted. Only sequence_service touches this table and
    it only ever increments.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_sequence_counters_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False)
    seq = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class SyncEvent(db.Model):
    """
    Outbox row: a side effect the invoice saga intends to apply.

    Written in the same transaction as the invoice mutation that caused it,
    so an intended ledger/aggregate update can never be lost even if applying
    it fails. outbox_service applies PENDING rows; applying a row and marking
    it APPLIED commit together, so re-running the processor is harmless.
    """
    __tablename__ = "sync_events"
    __table_args__ = (
        db.Index("ix_sync_events_status_id", "status", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False)
    aggregate_type = db.Column(db.String(32), nullable=False)
    aggregate_id = db.Column(db.Integer, nullable=True, index=True)
    payload = db.Column(db.Text, nullable=False, default="{}")

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def data(self) -> dict:
        return json.loads(self.payload or "{}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "aggregate_type": self.aggregate_type,
            "aggregate_id": self.aggregate_id,
            "payload": self.data,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": to_utc_z(self.created_at),
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
