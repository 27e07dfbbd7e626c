# Overview: Service-layer operations for invoices issued from orders.

"""
Invoices

- One invoice per order, issued only for an active order.
- Totals are copied from the order's stored snapshot (subtotal, VAT, shipping,
  total). verify_order_totals guards the copy, so an invoice never carries
  amounts that disagree with the order lines.
- invoice_number comes from the same atomic DocumentSequence as order numbers
  ("HD000001").
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_, case

from ..extensions import db
from ..models import Invoice, Order, User, PAYMENT_STATUSES
from ..validation import ValidationError, ConflictError, NotFoundError
from bizdesk.time_utils import utcnow, local_day_range
from .concurrency import lock_for_update, begin_write, run_with_retry
from .document_service import next_document_number
from .pagination import paginate, like_pattern
from .pricing import verify_order_totals


class InvoiceError(Exception):
    """Raised when an order cannot be invoiced."""


def create_from_order(*, order_number: str, user: User, notes: str | None = None) -> Invoice:
    """Issue the invoice for an active order identified by its number."""
    if not order_number or not str(order_number).strip():
        raise ValidationError("order_number is required")
    order_number = str(order_number).strip()
    if notes is not None:
        notes = str(notes).strip() or None
        if notes and len(notes) > 1000:
            raise ValidationError("notes exceeds max length 1000")

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(order_number=order_number)).first()
        if order is None:
            raise NotFoundError(f"Order not found: {order_number}")
        if order.status != "active":
            raise InvoiceError(f"Order {order_number} is cancelled and cannot be invoiced")

        existing = db.session.query(Invoice).filter_by(order_id=order.id).first()
        if existing is not None:
            raise ConflictError(f"Order {order_number} already has invoice {existing.invoice_number}")

        if not verify_order_totals(order):
            raise InvoiceError(f"Stored totals of order {order_number} do not match its lines")

        customer = order.customer
        invoice = Invoice(
            invoice_number=next_document_number(document_type="INVOICE", prefix="HD"),
            order_id=order.id,
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_address=(customer.address if customer else None) or order.delivery_address,
            customer_tax_code=customer.tax_code if customer else None,
            agent_name=order.agent_name,
            issued_by_user_id=user.id,
            issued_by_name=user.full_name,
            invoice_date=utcnow(),
            subtotal=order.subtotal,
            vat_rate_bps=order.vat_rate_bps,
            vat_amount=order.vat_amount,
            shipping_fee=order.shipping_fee,
            total_amount=order.total_amount,
            payment_status=order.payment_status,
            notes=notes,
            is_printed=False,
        )
        db.session.add(invoice)
        db.session.commit()
        current_app.logger.info("Invoice %s issued for order %s by %s", invoice.invoice_number, order_number, user.username)
        return invoice

    return run_with_retry(_op)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def get_by_order_number(order_number: str) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(order_number=order_number).first()
    if invoice is None:
        raise NotFoundError(f"No invoice for order: {order_number}")
    return invoice


def _date_filtered(query, start_date: str | None, end_date: str | None):
    try:
        start_dt, end_dt = local_day_range(start_date, end_date, current_app.config["REPORT_TIMEZONE"])
    except ValueError:
        raise ValidationError("start_date/end_date must be YYYY-MM-DD or ISO-8601")
    if start_dt:
        query = query.filter(Invoice.invoice_date >= start_dt)
    if end_dt:
        query = query.filter(Invoice.invoice_date < end_dt)
    return query


def list_invoices(
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    payment_status: str | None = None,
    is_printed: bool | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
) -> dict:
    query = db.session.query(Invoice)

    if search:
        pattern = like_pattern(search)
        query = query.filter(or_(
            Invoice.invoice_number.ilike(pattern, escape="\\"),
            Invoice.order_number.ilike(pattern, escape="\\"),
            Invoice.customer_name.ilike(pattern, escape="\\"),
            Invoice.customer_phone.ilike(pattern, escape="\\"),
            Invoice.agent_name.ilike(pattern, escape="\\"),
        ))
    if payment_status:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
        query = query.filter(Invoice.payment_status == payment_status)
    if is_printed is not None:
        query = query.filter(Invoice.is_printed.is_(is_printed))

    query = _date_filtered(query, start_date, end_date)
    query = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
    return paginate(query, page=page, limit=limit)


def mark_printed(invoice_id: int, *, user: User) -> Invoice:
    def _op():
        begin_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError("Invoice not found")
        if not invoice.is_printed:
            invoice.is_printed = True
            invoice.printed_at = utcnow()
        invoice.printed_by_user_id = user.id
        invoice.printed_by_name = user.full_name
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def print_payload(invoice_id: int) -> dict:
    """Everything a client needs to render the printed invoice."""
    invoice = get_invoice(invoice_id)
    config = current_app.config
    return {
        "invoice": invoice.to_dict(),
        "items": [
            {
                "position": item.position,
                "product_code": item.product_code,
                "product_name": item.product_name,
                "unit": item.product.unit if item.product else None,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "line_total": item.line_total,
            }
            for item in invoice.order.items
        ],
        "company": {
            "name": config.get("COMPANY_NAME"),
            "address": config.get("COMPANY_ADDRESS"),
            "phone": config.get("COMPANY_PHONE"),
            "email": config.get("COMPANY_EMAIL"),
            "tax_code": config.get("COMPANY_TAX_CODE"),
        },
    }


def invoice_stats(start_date: str | None = None, end_date: str | None = None) -> dict:
    query = _date_filtered(db.session.query(Invoice), start_date, end_date)
    row = query.with_entities(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.total_amount), 0),
        func.coalesce(func.sum(case((Invoice.payment_status == "completed", Invoice.total_amount), else_=0)), 0),
        func.coalesce(func.sum(case((Invoice.payment_status == "debt", Invoice.total_amount), else_=0)), 0),
        func.coalesce(func.sum(case((Invoice.is_printed.is_(True), 1), else_=0)), 0),
    ).one()
    return {
        "total_invoices": int(row[0]),
        "total_amount": int(row[1]),
        "total_paid": int(row[2]),
        "total_debt": int(row[3]),
        "printed_invoices": int(row[4]),
    }


def unprinted_invoices() -> list[Invoice]:
    return (
        db.session.query(Invoice)
        .filter(Invoice.is_printed.is_(False))
        .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .all()
    )
