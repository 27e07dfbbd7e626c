from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Sales invoice issued for one active order.

    Amounts are copied from the order's stored totals when the invoice is
    issued; they are never re-priced. Customer and agent details are
    snapshots too, so later edits to the contact do not change a printed
    invoice.

    LIFECYCLE: issued (is_printed=False) -> printed. Printing again keeps the
    first printed_at and records the latest printer.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.UniqueConstraint("order_id", name="uq_invoices_order_id"),
        db.Index("ix_invoices_printed_date", "is_printed", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "HD000042")
    invoice_number = db.Column(db.String(32), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    order_number = db.Column(db.String(32), nullable=False, index=True)

    customer_name = db.Column(db.String(100), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)
    customer_address = db.Column(db.String(500), nullable=True)
    customer_tax_code = db.Column(db.String(13), nullable=True)
    agent_name = db.Column(db.String(100), nullable=True)

    issued_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    issued_by_name = db.Column(db.String(100), nullable=True)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Whole currency units, copied from the order
    subtotal = db.Column(db.BigInteger, nullable=False)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    vat_amount = db.Column(db.BigInteger, nullable=False)
    shipping_fee = db.Column(db.BigInteger, nullable=False)
    total_amount = db.Column(db.BigInteger, nullable=False)

    # Payment status of the order when the invoice was issued
    payment_status = db.Column(db.String(16), nullable=False, index=True)
    notes = db.Column(db.String(1000), nullable=True)

    is_printed = db.Column(db.Boolean, nullable=False, default=False)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    printed_by_name = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "order_status": self.order.status if self.order else None,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "customer_tax_code": self.customer_tax_code,
            "agent_name": self.agent_name,
            "issued_by_user_id": self.issued_by_user_id,
            "issued_by_name": self.issued_by_name,
            "invoice_date": to_utc_z(self.invoice_date),
            "subtotal": self.subtotal,
            "vat_rate": self.vat_rate_bps / 10000,
            "vat_amount": self.vat_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "is_printed": self.is_printed,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "printed_by_name": self.printed_by_name,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.order.items]
        return data
