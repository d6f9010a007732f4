# Overview: Margin calculations for invoices and virtual-product items.

"""
Profit Calculator

WHY: Profit is stored on the invoice so reporting never has to re-derive
cost bases that may have changed since the sale.

Formula:
    profit = sum((unit_price - original_rate) * quantity) - invoice discount

- original_rate is the unit cost basis; missing means cost 0 (manual item).
- GST is excluded: it is collected on behalf of the tax authority.
- Result may be negative (selling at a loss).
"""

from __future__ import annotations

from typing import Iterable

# Prices within one cent are considered unchanged
CUSTOM_PRICE_TOLERANCE_CENTS = 1


def _get(item, key: str):
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def calculate_invoice_profit(items: Iterable, discount_cents: int) -> int:
    """
    Compute invoice profit in cents.

    Items may be InvoiceItem rows or dicts with unit_price_cents,
    original_rate_cents and quantity.
    """
    total = 0
    for item in items:
        cost = _get(item, "original_rate_cents") or 0
        total += (_get(item, "unit_price_cents") - cost) * _get(item, "quantity")
    return total - (discount_cents or 0)


def is_invoice_custom(items: Iterable) -> bool:
    """True if any item was priced by hand (no cost basis, or price moved off it)."""
    for item in items:
        original = _get(item, "original_rate_cents")
        if original is None:
            return True
        if abs(_get(item, "unit_price_cents") - original) > CUSTOM_PRICE_TOLERANCE_CENTS:
            return True
    return False


def calculate_expense_margin(expenses: Iterable, quantity: int) -> int:
    """Fixed custom expenses of a virtual product scaled to the ordered quantity."""
    return sum(_get(expense, "amount_cents") or 0 for expense in expenses) * quantity
