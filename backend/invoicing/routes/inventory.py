# Overview: Flask API routes for purchase lots, virtual products and ad-hoc stock moves.

from flask import Blueprint, request, jsonify

from ..services import purchase_service, stock_service
from ..decorators import handle_service_errors, json_body
from ..validation import ValidationError, coerce_quantity


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/purchases")
@handle_service_errors("create purchase")
def create_purchase_route():
    purchase = purchase_service.create_purchase(json_body())
    return jsonify({"purchase": purchase.to_dict()}), 201


@inventory_bp.get("/purchases")
@handle_service_errors("list purchases")
def list_purchases_route():
    in_stock_only = request.args.get("in_stock", "").lower() in ("1", "true", "yes")
    purchases = purchase_service.list_purchases(
        product_id=request.args.get("product_id"),
        variant_id=request.args.get("variant_id"),
        in_stock_only=in_stock_only,
    )
    return jsonify({"purchases": [p.to_dict() for p in purchases]}), 200


@inventory_bp.post("/virtual-products")
@handle_service_errors("create virtual product")
def create_virtual_product_route():
    vp = purchase_service.create_virtual_product(json_body())
    return jsonify({"virtual_product": vp.to_dict()}), 201


@inventory_bp.get("/virtual-products/<int:vp_id>")
@handle_service_errors("get virtual product")
def get_virtual_product_route(vp_id: int):
    vp = purchase_service.get_virtual_product(vp_id)
    return jsonify({"virtual_product": vp.to_dict()}), 200


@inventory_bp.get("/virtual-products/<int:vp_id>/availability")
@handle_service_errors("compute virtual product availability")
def virtual_product_availability_route(vp_id: int):
    purchase_service.get_virtual_product(vp_id)
    available = stock_service.get_virtual_product_availability(vp_id)
    return jsonify({"virtual_product_id": vp_id, "available": available}), 200


@inventory_bp.get("/virtual-products/<int:vp_id>/cost")
@handle_service_errors("compute virtual product cost")
def virtual_product_cost_route(vp_id: int):
    """FIFO cost preview for ?quantity=N bundles. Nothing is deducted."""
    purchase_service.get_virtual_product(vp_id)
    quantity = coerce_quantity(request.args.get("quantity", 1))
    return jsonify(stock_service.calculate_virtual_product_fifo_cost(vp_id, quantity)), 200


def _items_from_body() -> list:
    items = json_body().get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if not all(isinstance(item, dict) for item in items):
        raise ValidationError("each item must be an object")
    return items


@inventory_bp.post("/stock/deduct")
@handle_service_errors("deduct stock")
def deduct_stock_route():
    """
    Deduct stock for items not tied to an invoice.

    Each item is independent: the response lists per-item errors and the
    allocations of the items that succeeded.
    """
    result = stock_service.deduct_stock(_items_from_body())
    return jsonify(result), 200


@inventory_bp.post("/stock/restore")
@handle_service_errors("restore stock")
def restore_stock_route():
    result = stock_service.restore_stock(_items_from_body())
    return jsonify(result), 200
