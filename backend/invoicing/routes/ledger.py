# Overview: Flask API routes for cross-customer ledger reports.

from flask import Blueprint, jsonify

from ..services import ledger_service
from ..decorators import handle_service_errors

"""
Balances exclude entries tied to cancelled invoices; the entries themselves
remain readable through /api/customers/<id>/ledger.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/outstanding")
@handle_service_errors("list outstanding balances")
def outstanding_route():
    rows = ledger_service.get_outstanding_by_customer()
    return jsonify({
        "customers": rows,
        "total_outstanding_cents": sum(row["balance_cents"] for row in rows),
    }), 200
