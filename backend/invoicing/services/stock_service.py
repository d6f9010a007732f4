# Overview: FIFO stock allocation against purchase lots and virtual-product components.

from __future__ import annotations

import logging

from sqlalchemy import case, update

from ..extensions import db
from ..models import Purchase, VirtualProduct
from .concurrency import lock_for_update, run_with_retry
from .profit_service import calculate_expense_margin
"""
Stock Allocation Invariants (authoritative)

Lots:
- A lot is a Purchase row; 0 <= remaining <= quantity always.
- FIFO order is (purchase_date, id) ascending: oldest lot is consumed first.
- Every decrement is a conditional UPDATE ... WHERE remaining >= n, so two
  racing requests can never oversell a lot (the loser sees rowcount 0).
- Every increment is capped at the lot's original quantity.

Items:
- purchase_id items draw from exactly that lot.
- virtual_product_id items explode into components (component.quantity *
  ordered qty each), drawn FIFO across the component's lots.
- Per item, deduction is all-or-nothing: every component is checked before
  any lot is touched, and a lost race compensates what was already taken.
- Items without a lot or virtual reference carry no stock obligation.
- Batches are processed item by item; failures are collected, never raised.

Restoration:
- Uses the allocations recorded at deduction time (exact inverse).
- Without recorded allocations: the item's purchase lot, or newest-first
  across the variant's partially consumed lots.
"""

logger = logging.getLogger(__name__)


class StockError(Exception):
    """Raised when a stock deduction or restoration cannot be applied."""
    pass


def _get(item, key: str):
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def _item_label(item) -> str:
    return _get(item, "product_name") or _get(item, "variant_sku") or "Item"


def _item_allocations(item) -> list[dict]:
    if isinstance(item, dict):
        return item.get("allocations") or []
    return item.allocation_list


def _expire_lots(purchase_ids) -> None:
    """Bulk UPDATEs bypass the identity map; drop stale copies of touched lots."""
    wanted = set(purchase_ids)
    for obj in list(db.session.identity_map.values()):
        if isinstance(obj, Purchase) and obj.id in wanted:
            db.session.expire(obj)


# =============================================================================
# LOT PRIMITIVES
# =============================================================================

def get_fifo_lots(product_id: str, variant_id: str, *, lock: bool = False) -> list[Purchase]:
    """Lots with stock left for a variant, oldest first."""
    query = (
        db.session.query(Purchase)
        .filter(
            Purchase.product_id == product_id,
            Purchase.variant_id == variant_id,
            Purchase.remaining > 0,
        )
        .order_by(Purchase.purchase_date.asc(), Purchase.id.asc())
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def _decrement_lot(purchase_id: int, quantity: int) -> bool:
    stmt = (
        update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.remaining >= quantity)
        .values(remaining=Purchase.remaining - quantity)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    _expire_lots([purchase_id])
    return bool(result.rowcount)


def _increment_lot(purchase_id: int, quantity: int) -> bool:
    restored = Purchase.remaining + quantity
    stmt = (
        update(Purchase)
        .where(Purchase.id == purchase_id)
        .values(remaining=case((restored > Purchase.quantity, Purchase.quantity), else_=restored))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    _expire_lots([purchase_id])
    return bool(result.rowcount)


def _plan_fifo(lots: list[Purchase], quantity: int) -> list[dict] | None:
    """Split quantity across lots oldest first; None if they cannot cover it."""
    plan = []
    needed = quantity
    for lot in lots:
        if needed <= 0:
            break
        take = min(lot.remaining, needed)
        if take > 0:
            plan.append({"purchase_id": lot.id, "quantity": take})
            needed -= take
    if needed > 0:
        return None
    return plan


def _apply_plan(plan: list[dict]) -> None:
    applied = []
    for step in plan:
        if not _decrement_lot(step["purchase_id"], step["quantity"]):
            for done in applied:
                _increment_lot(done["purchase_id"], done["quantity"])
            raise StockError(
                f"Stock in purchase {step['purchase_id']} changed concurrently; nothing was deducted"
            )
        applied.append(step)


def _restore_allocations(allocations: list[dict]) -> None:
    for step in allocations:
        if not _increment_lot(step["purchase_id"], step["quantity"]):
            raise StockError(f"Purchase {step['purchase_id']} not found")


# =============================================================================
# VARIANT FIFO
# =============================================================================

def deduct_variant(product_id: str, variant_id: str, quantity: int) -> list[dict]:
    """
    Consume quantity of a variant across its lots, oldest first.

    Returns the allocations [{"purchase_id", "quantity"}]. Raises StockError
    without touching any lot when the lots cannot cover the request.
    """
    if quantity <= 0:
        raise StockError("Quantity must be greater than 0")
    lots = get_fifo_lots(product_id, variant_id, lock=True)
    plan = _plan_fifo(lots, quantity)
    if plan is None:
        available = sum(lot.remaining for lot in lots)
        raise StockError(
            f"Insufficient stock for {product_id}-{variant_id}. Available: {available}, Requested: {quantity}"
        )
    _apply_plan(plan)
    return plan


def restore_variant(product_id: str, variant_id: str, quantity: int) -> int:
    """
    Give quantity back to a variant's consumed lots, newest first, capped
    per lot. Returns how much was placed; any excess has nowhere to go.
    """
    lots = lock_for_update(
        db.session.query(Purchase)
        .filter(
            Purchase.product_id == product_id,
            Purchase.variant_id == variant_id,
            Purchase.remaining < Purchase.quantity,
        )
        .order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
    ).all()

    placed = 0
    for lot in lots:
        if placed >= quantity:
            break
        give = min(lot.quantity - lot.remaining, quantity - placed)
        if give > 0:
            _increment_lot(lot.id, give)
            placed += give
    return placed


# =============================================================================
# VIRTUAL PRODUCTS
# =============================================================================

def _load_virtual_product(virtual_product_id: int) -> VirtualProduct:
    vp = db.session.get(VirtualProduct, virtual_product_id)
    if vp is None:
        raise StockError(f"Virtual product {virtual_product_id} not found")
    return vp


def _component_requirements(vp: VirtualProduct, quantity: int) -> list[tuple[str, str, int]]:
    """Per-variant requirement; repeated components of one variant are merged."""
    merged: dict[tuple[str, str], int] = {}
    for component in vp.components:
        key = (component.product_id, component.variant_id)
        merged[key] = merged.get(key, 0) + component.quantity * quantity
    return [(pid, vid, need) for (pid, vid), need in merged.items()]


def get_virtual_product_availability(virtual_product_id: int) -> int:
    """How many bundles current component lots can fulfil."""
    vp = _load_virtual_product(virtual_product_id)
    if not vp.components:
        return 0
    available = None
    for product_id, variant_id, per_unit in _component_requirements(vp, 1):
        on_hand = sum(lot.remaining for lot in get_fifo_lots(product_id, variant_id))
        possible = on_hand // per_unit
        available = possible if available is None else min(available, possible)
    return available or 0


def calculate_virtual_product_fifo_cost(virtual_product_id: int, quantity: int) -> dict:
    """
    FIFO cost breakdown for quantity bundles, without deducting anything.

    Component cost is priced lot by lot in FIFO order; custom expenses are
    added per bundle.
    """
    vp = _load_virtual_product(virtual_product_id)
    breakdown = []
    errors = []
    can_fulfill = True

    for product_id, variant_id, need in _component_requirements(vp, quantity):
        lots = get_fifo_lots(product_id, variant_id)
        plan = _plan_fifo(lots, need)
        if plan is None:
            can_fulfill = False
            errors.append(
                f"Insufficient stock for component {product_id}-{variant_id}. "
                f"Need: {need}, Available: {sum(lot.remaining for lot in lots)}"
            )
            continue
        unit_costs = {lot.id: lot.unit_price_cents for lot in lots}
        for step in plan:
            breakdown.append({
                "product_id": product_id,
                "variant_id": variant_id,
                "purchase_id": step["purchase_id"],
                "quantity": step["quantity"],
                "unit_cost_cents": unit_costs[step["purchase_id"]],
                "total_cost_cents": unit_costs[step["purchase_id"]] * step["quantity"],
            })

    component_cost = sum(row["total_cost_cents"] for row in breakdown)
    expense_cost = calculate_expense_margin(vp.expenses, quantity)
    return {
        "virtual_product_id": vp.id,
        "quantity": quantity,
        "component_breakdown": breakdown,
        "custom_expenses": [
            {**expense.to_dict(), "amount_cents": expense.amount_cents * quantity}
            for expense in vp.expenses
        ],
        "total_component_cost_cents": component_cost,
        "total_custom_expenses_cents": expense_cost,
        "total_cost_cents": component_cost + expense_cost,
        "can_fulfill": can_fulfill,
        "errors": errors,
    }


def _deduct_virtual_item(virtual_product_id: int, quantity: int) -> list[dict]:
    vp = _load_virtual_product(virtual_product_id)
    if not vp.components:
        raise StockError(f"Virtual product {vp.sku} has no components")

    plan = []
    shortages = []
    for product_id, variant_id, need in _component_requirements(vp, quantity):
        lots = get_fifo_lots(product_id, variant_id, lock=True)
        component_plan = _plan_fifo(lots, need)
        if component_plan is None:
            shortages.append(
                f"Insufficient stock for component {product_id}-{variant_id}. "
                f"Need: {need}, Available: {sum(lot.remaining for lot in lots)}"
            )
            continue
        plan.extend(component_plan)

    if shortages:
        raise StockError("; ".join(shortages))

    _apply_plan(plan)
    return plan


# =============================================================================
# LINE ITEMS
# =============================================================================

def deduct_item(item) -> list[dict]:
    """
    Deduct stock for one line item; returns the lots drawn.

    Raises StockError without touching any lot on failure. Items that carry
    no stock reference return an empty allocation.
    """
    quantity = _get(item, "quantity") or 0
    purchase_id = _get(item, "purchase_id")
    virtual_product_id = _get(item, "virtual_product_id")

    if virtual_product_id is not None:
        if quantity <= 0:
            raise StockError("Quantity must be greater than 0")
        return _deduct_virtual_item(virtual_product_id, quantity)

    if purchase_id is None:
        return []

    if quantity <= 0:
        raise StockError("Quantity must be greater than 0")

    lot = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if lot is None:
        raise StockError(f"Purchase {purchase_id} not found")
    if lot.remaining < quantity or not _decrement_lot(lot.id, quantity):
        db.session.refresh(lot)
        raise StockError(
            f"Insufficient stock in purchase {lot.purchase_number}. "
            f"Available: {lot.remaining}, Requested: {quantity}"
        )
    return [{"purchase_id": lot.id, "quantity": quantity}]


def restore_item(item) -> None:
    """Exact inverse of deduct_item when allocations were recorded."""
    allocations = _item_allocations(item)
    if allocations:
        _restore_allocations(allocations)
        return

    quantity = _get(item, "quantity") or 0
    purchase_id = _get(item, "purchase_id")
    virtual_product_id = _get(item, "virtual_product_id")

    if virtual_product_id is not None:
        vp = _load_virtual_product(virtual_product_id)
        for product_id, variant_id, need in _component_requirements(vp, quantity):
            restore_variant(product_id, variant_id, need)
        return

    if purchase_id is None:
        return

    if not _increment_lot(purchase_id, quantity):
        raise StockError(f"Purchase {purchase_id} not found")


def deduct_items(items) -> dict:
    """
    Deduct every stock-bearing item independently, without committing.

    Returns {"success", "errors", "deductions"} where deductions holds one
    {"index", "allocations"} entry per item that drew stock.
    """
    errors = []
    deductions = []
    for index, item in enumerate(items):
        if _get(item, "purchase_id") is None and _get(item, "virtual_product_id") is None:
            continue
        try:
            allocations = deduct_item(item)
        except StockError as exc:
            logger.warning("Stock deduction failed for %s: %s", _item_label(item), exc)
            errors.append(f"{_item_label(item)}: {exc}")
            continue
        deductions.append({"index": index, "allocations": allocations})
    return {"success": not errors, "errors": errors, "deductions": deductions}


def restore_items(items) -> dict:
    """Restore every stock-bearing item independently, without committing."""
    errors = []
    for item in items:
        if _get(item, "purchase_id") is None and _get(item, "virtual_product_id") is None:
            continue
        try:
            restore_item(item)
        except StockError as exc:
            logger.warning("Stock restoration failed for %s: %s", _item_label(item), exc)
            errors.append(f"{_item_label(item)}: {exc}")
    return {"success": not errors, "errors": errors}


def deduct_stock(items) -> dict:
    """Deduct stock for a list of items and commit whatever succeeded."""
    def _op():
        result = deduct_items(items)
        db.session.commit()
        return result

    return run_with_retry(_op)


def restore_stock(items) -> dict:
    """Restore stock for a list of items and commit whatever succeeded."""
    def _op():
        result = restore_items(items)
        db.session.commit()
        return result

    return run_with_retry(_op)
