# Overview: Flask API routes for invoices, quotations and their payments; parses input and returns JSON responses.

"""Invoice and quotation API routes"""

from flask import Blueprint, request, jsonify

from ..services import invoice_service
from ..services.invoice_state import VALID_DOCUMENT_TYPES
from ..decorators import current_actor, handle_service_errors, json_body


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("/")
@handle_service_errors("create invoice")
def create_invoice_route():
    """
    Create an invoice or quotation.

    Stock is deducted for invoices after the document is saved; check the
    returned stock_deducted flags for items that could not be fulfilled.
    """
    data = json_body()
    invoice = invoice_service.create_invoice(data, actor_id=current_actor(data))
    return jsonify({"invoice": invoice.to_dict()}), 201


@invoices_bp.get("/")
@handle_service_errors("list invoices")
def list_invoices_route():
    doc_type = request.args.get("type")
    if doc_type and doc_type not in VALID_DOCUMENT_TYPES:
        return jsonify({"error": f"type must be one of {VALID_DOCUMENT_TYPES}"}), 400

    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))

    invoices = invoice_service.list_invoices(
        doc_type=doc_type,
        status=request.args.get("status"),
        customer_id=request.args.get("customer_id", type=int),
        limit=limit,
    )
    return jsonify({"invoices": [inv.to_dict(include_lines=False) for inv in invoices]}), 200


@invoices_bp.get("/next-number")
@handle_service_errors("preview document number")
def next_number_route():
    doc_type = request.args.get("type", "invoice")
    return jsonify({"type": doc_type, "document_number": invoice_service.get_next_document_number(doc_type)}), 200


@invoices_bp.get("/stats")
@handle_service_errors("compute invoice stats")
def stats_route():
    return jsonify(invoice_service.get_invoice_stats()), 200


@invoices_bp.get("/<int:invoice_id>")
@handle_service_errors("get invoice")
def get_invoice_route(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id)
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.patch("/<int:invoice_id>")
@handle_service_errors("update invoice")
def update_invoice_route(invoice_id: int):
    invoice = invoice_service.update_invoice(invoice_id, json_body())
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.delete("/<int:invoice_id>")
@handle_service_errors("delete invoice")
def delete_invoice_route(invoice_id: int):
    invoice_service.delete_invoice(invoice_id)
    return jsonify({"deleted": True, "id": invoice_id}), 200


@invoices_bp.post("/<int:invoice_id>/cancel")
@handle_service_errors("cancel invoice")
def cancel_invoice_route(invoice_id: int):
    data = json_body()
    invoice = invoice_service.cancel_invoice(invoice_id, reason=data.get("reason"))
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.post("/<int:invoice_id>/status")
@handle_service_errors("update invoice status")
def update_status_route(invoice_id: int):
    """
    Manual status change.

    Payment statuses (pending/partial/paid) are rejected: they follow the
    payments recorded on the invoice.
    """
    data = json_body()
    status = data.get("status")
    if not status:
        return jsonify({"error": "status required"}), 400
    invoice = invoice_service.update_invoice_status(invoice_id, status)
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.post("/<int:invoice_id>/issue")
@handle_service_errors("issue invoice")
def issue_invoice_route(invoice_id: int):
    invoice = invoice_service.issue_invoice(invoice_id)
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.post("/<int:invoice_id>/convert")
@handle_service_errors("convert quotation")
def convert_quotation_route(invoice_id: int):
    data = json_body()
    invoice = invoice_service.convert_quotation_to_invoice(invoice_id, actor_id=current_actor(data))
    return jsonify({"invoice": invoice.to_dict()}), 201


@invoices_bp.post("/<int:invoice_id>/stock/deduct")
@handle_service_errors("deduct invoice stock")
def deduct_stock_route(invoice_id: int):
    result = invoice_service.deduct_invoice_stock(invoice_id)
    return jsonify(result), 200


@invoices_bp.post("/<int:invoice_id>/stock/restore")
@handle_service_errors("restore invoice stock")
def restore_stock_route(invoice_id: int):
    result = invoice_service.restore_invoice_stock(invoice_id)
    return jsonify(result), 200


# =============================================================================
# PAYMENTS
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments/")
@handle_service_errors("add payment")
def add_payment_route(invoice_id: int):
    data = json_body()
    invoice = invoice_service.add_payment(invoice_id, data, actor_id=current_actor(data))
    return jsonify({"invoice": invoice.to_dict()}), 201


@invoices_bp.put("/<int:invoice_id>/payments/<int:index>")
@handle_service_errors("update payment")
def update_payment_route(invoice_id: int, index: int):
    invoice = invoice_service.update_payment(invoice_id, index, json_body())
    return jsonify({"invoice": invoice.to_dict()}), 200


@invoices_bp.delete("/<int:invoice_id>/payments/<int:index>")
@handle_service_errors("delete payment")
def delete_payment_route(invoice_id: int, index: int):
    invoice = invoice_service.delete_payment(invoice_id, index)
    return jsonify({"invoice": invoice.to_dict()}), 200
