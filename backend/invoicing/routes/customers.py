# Overview: Flask API routes for customers, their ledger and balances.

from flask import Blueprint, jsonify

from ..services import customer_service, ledger_service
from ..decorators import handle_service_errors, json_body


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("/")
@handle_service_errors("create customer")
def create_customer_route():
    customer = customer_service.create_customer(json_body())
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@handle_service_errors("get customer")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.get("/<int:customer_id>/ledger")
@handle_service_errors("list customer ledger")
def customer_ledger_route(customer_id: int):
    """All entries in date order, cancelled invoices included for audit."""
    customer_service.get_customer(customer_id)
    entries = ledger_service.list_customer_entries(customer_id)
    return jsonify({
        "customer_id": customer_id,
        "entries": [entry.to_dict() for entry in entries],
        "totals": ledger_service.get_customer_totals(customer_id),
    }), 200


@customers_bp.get("/<int:customer_id>/balance")
@handle_service_errors("compute customer balance")
def customer_balance_route(customer_id: int):
    customer_service.get_customer(customer_id)
    return jsonify(ledger_service.get_customer_totals(customer_id)), 200
