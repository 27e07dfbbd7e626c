from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z

PAYMENT_STATUSES = ("pending", "completed", "debt")
PAYMENT_METHODS = ("company_account", "personal_account", "cash")
ORDER_STATUSES = ("active", "cancelled")


class Order(db.Model):
    """
    Sales order.

    Totals are snapshots computed at creation time from the order's own lines:
        subtotal     = SUM(items.line_total)
        vat_amount   = round_half_up(subtotal * vat_rate_bps / 10000)
        total_amount = subtotal + vat_amount + shipping_fee
    They never follow later product price changes.

    Lifecycle: status moves only active -> cancelled. Cancelling reverses the
    stock exported when the order was created.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        db.Index("ix_orders_agent_status", "agent_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "DH000123")
    order_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("agents.id"), nullable=True, index=True)

    # Name snapshots (also used for walk-in customers without a record)
    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    agent_name = db.Column(db.String(100), nullable=True)

    # Amounts in whole currency units
    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # Basis points (e.g., 1000 = 10%)
    vat_amount = db.Column(db.BigInteger, nullable=False, default=0)
    shipping_fee = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    paid_amount = db.Column(db.BigInteger, nullable=False, default=0)
    debt_amount = db.Column(db.BigInteger, nullable=False, default=0)

    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_address = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.String(1000), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    agent = db.relationship("Agent", backref=db.backref("orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "agent_id": self.agent_id,
            "agent_name": self.agent_name,
            "subtotal": self.subtotal,
            "vat_rate": self.vat_rate_bps / 10000,
            "vat_rate_bps": self.vat_rate_bps,
            "vat_amount": self.vat_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "paid_amount": self.paid_amount,
            "debt_amount": self.debt_amount,
            "delivery_date": to_utc_z(self.delivery_date) if self.delivery_date else None,
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_by_name": self.created_by.full_name if self.created_by else None,
            "updated_by_user_id": self.updated_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Line item on an order. Name, price and line total are snapshots."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # 1-based line number within the order
    position = db.Column(db.Integer, nullable=False, default=1)

    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    line_total = db.Column(db.BigInteger, nullable=False)

    notes = db.Column(db.String(500), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "position": self.position,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "line_total": self.line_total,
            "notes": self.notes,
        }
