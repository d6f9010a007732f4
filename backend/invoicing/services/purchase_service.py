# Overview: Purchase lots and virtual-product definitions consumed by the stock allocator.

from __future__ import annotations

from ..extensions import db
from ..models import Purchase, VirtualProduct, VirtualProductComponent, VirtualProductExpense
from invoicing.time_utils import utcnow
from invoicing.validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    coerce_amount_cents,
    coerce_quantity,
    coerce_optional_datetime,
    require_text,
    optional_text,
)
from .concurrency import run_with_retry
from .sequence_service import PREFIX_PURCHASE, next_id


EXPENSE_LABOR = "labor"
EXPENSE_MATERIALS = "materials"
EXPENSE_OVERHEAD = "overhead"
EXPENSE_PACKAGING = "packaging"
EXPENSE_SHIPPING = "shipping"
EXPENSE_OTHER = "other"

VALID_EXPENSE_CATEGORIES = [
    EXPENSE_LABOR,
    EXPENSE_MATERIALS,
    EXPENSE_OVERHEAD,
    EXPENSE_PACKAGING,
    EXPENSE_SHIPPING,
    EXPENSE_OTHER,
]


def _optional_cents(data: dict, key: str) -> int | None:
    if data.get(key) is None:
        return None
    return coerce_amount_cents(data[key], key)


def create_purchase(data: dict) -> Purchase:
    """
    Record a purchase lot. remaining starts equal to quantity.

    Request body keys: product_id, variant_id, quantity, unit_price_cents,
    purchase_date (optional, defaults to now), supplier, location,
    retail_price_cents, wholesale_price_cents, shipping_cost_cents, notes.
    """
    product_id = require_text(data, "product_id", max_length=64)
    variant_id = require_text(data, "variant_id", max_length=64)
    quantity = coerce_quantity(data.get("quantity"))
    if data.get("unit_price_cents") is None:
        raise ValidationError("unit_price_cents is required")
    unit_price = coerce_amount_cents(data["unit_price_cents"], "unit_price_cents")
    purchase_date = coerce_optional_datetime(data.get("purchase_date"), "purchase_date") or utcnow()

    def _op():
        purchase_number = next_id(PREFIX_PURCHASE, purchase_date.year)
        purchase = Purchase(
            purchase_number=purchase_number,
            product_id=product_id,
            variant_id=variant_id,
            supplier=optional_text(data, "supplier", max_length=255),
            location=optional_text(data, "location", max_length=128),
            quantity=quantity,
            remaining=quantity,
            unit_price_cents=unit_price,
            retail_price_cents=_optional_cents(data, "retail_price_cents"),
            wholesale_price_cents=_optional_cents(data, "wholesale_price_cents"),
            shipping_cost_cents=_optional_cents(data, "shipping_cost_cents") or 0,
            total_cost_cents=quantity * unit_price,
            purchase_date=purchase_date,
            notes=optional_text(data, "notes"),
        )
        db.session.add(purchase)
        db.session.commit()
        return purchase

    return run_with_retry(_op)


def list_purchases(
    *,
    product_id: str | None = None,
    variant_id: str | None = None,
    in_stock_only: bool = False,
) -> list[Purchase]:
    query = db.session.query(Purchase)
    if product_id:
        query = query.filter(Purchase.product_id == product_id)
    if variant_id:
        query = query.filter(Purchase.variant_id == variant_id)
    if in_stock_only:
        query = query.filter(Purchase.remaining > 0)
    return query.order_by(Purchase.purchase_date.asc(), Purchase.id.asc()).all()


def create_virtual_product(data: dict) -> VirtualProduct:
    """
    Define a bundle from components [{product_id, variant_id, quantity}] and
    custom expenses [{name, amount_cents, category, description}].
    """
    name = require_text(data, "name", max_length=255)
    sku = require_text(data, "sku", max_length=64)

    components = data.get("components") or []
    if not isinstance(components, list) or not components:
        raise ValidationError("components must be a non-empty list")
    expenses = data.get("custom_expenses") or []
    if not isinstance(expenses, list):
        raise ValidationError("custom_expenses must be a list")

    vp = VirtualProduct(
        name=name,
        sku=sku,
        description=optional_text(data, "description"),
        base_price_cents=_optional_cents(data, "base_price_cents"),
        is_disabled=bool(data.get("is_disabled", False)),
    )
    for position, raw in enumerate(components):
        if not isinstance(raw, dict):
            raise ValidationError("each component must be an object")
        vp.components.append(VirtualProductComponent(
            position=position,
            product_id=require_text(raw, "product_id", max_length=64),
            variant_id=require_text(raw, "variant_id", max_length=64),
            quantity=coerce_quantity(raw.get("quantity"), "component quantity"),
        ))
    for raw in expenses:
        if not isinstance(raw, dict):
            raise ValidationError("each custom expense must be an object")
        category = raw.get("category") or EXPENSE_OTHER
        if category not in VALID_EXPENSE_CATEGORIES:
            raise ValidationError(f"Invalid expense category: {category}. Must be one of {VALID_EXPENSE_CATEGORIES}")
        vp.expenses.append(VirtualProductExpense(
            name=require_text(raw, "name", max_length=128),
            amount_cents=coerce_amount_cents(raw.get("amount_cents"), "amount_cents"),
            category=category,
            description=optional_text(raw, "description"),
        ))

    def _op():
        if db.session.query(VirtualProduct).filter_by(sku=sku).first():
            raise ConflictError(f"Virtual product SKU {sku} already exists")
        db.session.add(vp)
        db.session.commit()
        return vp

    return run_with_retry(_op)


def get_virtual_product(virtual_product_id: int) -> VirtualProduct:
    vp = db.session.get(VirtualProduct, virtual_product_id)
    if vp is None:
        raise NotFoundError(f"Virtual product {virtual_product_id} not found")
    return vp
