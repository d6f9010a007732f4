# backend/invoicing/routes/system.py
"""
System health and maintenance endpoints.

Health covers the database and the sync outbox backlog; the maintenance
endpoints expose the reconciliation jobs and the outbox processor.
"""

import time
from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..models import Customer, Invoice, Purchase
from ..services import outbox_service, reconciliation_service
from ..decorators import handle_service_errors
from invoicing.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")

# Worst status wins; HTTP 503 only when something is down
_SEVERITY = {"healthy": 0, "degraded": 1, "unhealthy": 2}


def _timed_check(label: str, check) -> dict:
    """Run check() and wrap its (status, details) with latency; failures become 'unhealthy'."""
    started = time.perf_counter()
    try:
        status, details = check()
    except Exception:
        current_app.logger.exception("%s health check failed", label)
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": f"{label} error",
        }
    return {
        "status": status,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": details,
    }


def _check_database():
    return "healthy", {
        "invoices": db.session.query(Invoice).count(),
        "customers": db.session.query(Customer).count(),
        "purchases": db.session.query(Purchase).count(),
    }


def _check_outbox():
    # Pending rows are normal between dispatches; FAILED rows mean a projection is drifting
    counts = outbox_service.get_outbox_status()
    return ("degraded" if counts[outbox_service.STATUS_FAILED] else "healthy"), counts


@system_bp.get("/health")
def health():
    """200 when healthy or degraded, 503 when any check is unhealthy."""
    started = time.perf_counter()
    checks = {
        "database": _timed_check("Database", _check_database),
        "outbox": _timed_check("Outbox", _check_outbox),
    }
    failed_events = checks["outbox"].get("details", {}).get(outbox_service.STATUS_FAILED)
    if failed_events:
        checks["outbox"]["warning"] = f"{failed_events} sync events failed permanently"

    overall = max((check["status"] for check in checks.values()), key=_SEVERITY.__getitem__)
    body = {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }
    return body, (503 if overall == "unhealthy" else 200)


@system_bp.post("/reconcile/customers")
@handle_service_errors("reconcile customer financials")
def reconcile_customers_route():
    return jsonify(reconciliation_service.recalculate_customer_financials()), 200


@system_bp.post("/reconcile/ledger-balances")
@handle_service_errors("reconcile ledger balances")
def reconcile_ledger_route():
    return jsonify(reconciliation_service.recalculate_ledger_balances()), 200


@system_bp.get("/verify-ledger")
@handle_service_errors("verify ledger consistency")
def verify_ledger_route():
    return jsonify(reconciliation_service.verify_ledger_consistency()), 200


@system_bp.post("/outbox/process")
@handle_service_errors("process sync events")
def process_outbox_route():
    limit = request.args.get("limit", default=500, type=int)
    limit = max(1, min(limit, 5000))
    return jsonify(outbox_service.process_pending_events(limit=limit)), 200
