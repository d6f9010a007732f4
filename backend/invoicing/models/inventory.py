from __future__ import annotations

from ..extensions import db
from invoicing.time_utils import to_utc_z


class Purchase(db.Model):
    """
    Purchase lot for one product variant.

    INVARIANTS:
    - 0 <= remaining <= quantity
    - remaining only changes through conditional UPDATE statements in
      stock_service (never read-modify-write through the ORM).
    - FIFO order is (purchase_date, id) ascending.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("purchase_number", name="uq_purchases_purchase_number"),
        db.CheckConstraint("remaining >= 0", name="ck_purchases_remaining_non_negative"),
        db.CheckConstraint("remaining <= quantity", name="ck_purchases_remaining_capped"),
        db.Index("ix_purchases_variant_fifo", "product_id", "variant_id", "purchase_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(64), nullable=False)

    product_id = db.Column(db.String(64), nullable=False)
    variant_id = db.Column(db.String(64), nullable=False)
    supplier = db.Column(db.String(255), nullable=True)
    location = db.Column(db.String(128), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    remaining = db.Column(db.Integer, nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    retail_price_cents = db.Column(db.Integer, nullable=True)
    wholesale_price_cents = db.Column(db.Integer, nullable=True)
    shipping_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "supplier": self.supplier,
            "location": self.location,
            "quantity": self.quantity,
            "remaining": self.remaining,
            "unit_price_cents": self.unit_price_cents,
            "retail_price_cents": self.retail_price_cents,
            "wholesale_price_cents": self.wholesale_price_cents,
            "shipping_cost_cents": self.shipping_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "purchase_date": to_utc_z(self.purchase_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class VirtualProduct(db.Model):
    """
    Sellable bundle of component variants plus fixed custom expenses.

    WHY: Not stocked itself. Availability and cost are derived from the lots
    of its components at sale time.
    """
    __tablename__ = "virtual_products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_virtual_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=True)
    base_price_cents = db.Column(db.Integer, nullable=True)
    is_disabled = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    components = db.relationship(
        "VirtualProductComponent",
        backref="virtual_product",
        order_by="VirtualProductComponent.position",
        cascade="all, delete-orphan",
    )
    expenses = db.relationship(
        "VirtualProductExpense",
        backref="virtual_product",
        order_by="VirtualProductExpense.id",
        cascade="all, delete-orphan",
    )

    @property
    def expense_per_unit_cents(self) -> int:
        return sum(expense.amount_cents for expense in self.expenses)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "is_disabled": self.is_disabled,
            "components": [c.to_dict() for c in self.components],
            "custom_expenses": [e.to_dict() for e in self.expenses],
            "created_at": to_utc_z(self.created_at),
        }


class VirtualProductComponent(db.Model):
    """One component variant and how many units of it one bundle consumes."""
    __tablename__ = "virtual_product_components"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_vp_components_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    virtual_product_id = db.Column(db.Integer, db.ForeignKey("virtual_products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.String(64), nullable=False)
    variant_id = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
        }


class VirtualProductExpense(db.Model):
    __tablename__ = "virtual_product_expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    virtual_product_id = db.Column(db.Integer, db.ForeignKey("virtual_products.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(32), nullable=False, default="other")
    description = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
        }
