"""Read side of orders: the searchable order list and the per-order detail rows.

Unit prices are resolved from the price history at read time and are not
stored with the order, so a later price record changes what an old order
displays.
"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import intents, models, pricing
from .errors import NotFoundError, StoreError, ValidationError
from .utils import like_pattern, round_amount, sanitize_input

logger = logging.getLogger(__name__)

SORT_COLUMNS = ("id", "date", "customer_id", "employee_id")
SORT_DIRECTIONS = ("asc", "desc")


def list_orders(db: Session, query: str = "", sort_column: str = "date", sort_direction: str = "desc") -> list[models.Order]:
    """Order headers matching `query` on id, customer, employee or date text.

    Ties on the sort column are broken by order id in the same direction, so
    an ascending listing is exactly the reverse of the descending one.
    """
    if sort_column not in SORT_COLUMNS:
        raise ValidationError(f"cannot sort by {sort_column!r}; choose one of {', '.join(SORT_COLUMNS)}")
    if sort_direction not in SORT_DIRECTIONS:
        raise ValidationError("sort direction must be 'asc' or 'desc'")

    stmt = db.query(models.Order)
    q = sanitize_input(query)
    if q:
        pattern = like_pattern(q)
        stmt = stmt.filter(or_(
            models.Order.id.ilike(pattern, escape="\\"),
            models.Order.customer_id.ilike(pattern, escape="\\"),
            models.Order.employee_id.ilike(pattern, escape="\\"),
            cast(models.Order.date, String).ilike(pattern, escape="\\"),
        ))

    column = getattr(models.Order, sort_column)
    if sort_direction == "asc":
        stmt = stmt.order_by(column.asc(), models.Order.id.asc())
    else:
        stmt = stmt.order_by(column.desc(), models.Order.id.desc())
    try:
        return stmt.all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("order listing failed") from e


def _employee_name(employee: Optional[models.Employee]) -> Optional[str]:
    if employee is None:
        return None
    return f"{employee.first_name or ''} {employee.last_name or ''}".strip() or None


def get_order_detail(db: Session, order_id: str, query: str = "") -> list[dict]:
    """One display row per line item, in insertion order.

    Returns an empty list for an unknown order; that case is logged so it can
    be told apart from an order that has no line items.
    """
    try:
        order = db.get(models.Order, order_id)
        if order is None:
            logger.warning("order detail requested for unknown order %s", order_id)
            return []
        items = db.query(models.LineItem).filter(models.LineItem.order_id == order_id).order_by(models.LineItem.id).all()
        product_ids = {item.product_id for item in items}
        products = {
            p.id: p for p in db.query(models.Product).filter(models.Product.id.in_(product_ids))
        } if product_ids else {}
        customer = db.get(models.Customer, order.customer_id) if order.customer_id else None
        employee = db.get(models.Employee, order.employee_id) if order.employee_id else None
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"detail lookup for order {order_id} failed") from e

    prices = pricing.current_prices(db, product_ids)
    customer_name = customer.name if customer is not None else order.customer_id
    employee_name = _employee_name(employee) or order.employee_id

    rows = []
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            logger.warning("product %s on order %s not found, showing its code", item.product_id, order_id)
        rows.append({
            "order_id": order.id,
            "product_id": item.product_id,
            "quantity": item.quantity,
            "product_description": product.description if product is not None else item.product_id,
            "product_unit": product.unit if product is not None else None,
            "unit_price": prices.get(item.product_id),
            "customer_name": customer_name,
            "employee_name": employee_name,
            "order_date": order.date,
        })

    q = sanitize_input(query).lower()
    if q:
        rows = [
            row for row in rows
            if q in row["product_id"].lower() or q in (row["product_description"] or "").lower()
        ]
    return rows


def order_total(rows: list[dict]) -> Decimal:
    """Sum of quantity x unit price; rows without a price count as zero."""
    total = sum(
        (Decimal(row["quantity"] or 0) * (row["unit_price"] or Decimal("0")) for row in rows),
        Decimal("0"),
    )
    return round_amount(total)


def get_order_report(db: Session, order_id: str, query: str = "") -> dict:
    try:
        order = db.get(models.Order, order_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("order lookup failed") from e
    if order is None:
        raise NotFoundError(f"order {order_id} not found")
    rows = get_order_detail(db, order_id, query)
    return {
        "id": order.id,
        "date": order.date,
        "customer_id": order.customer_id,
        "employee_id": order.employee_id,
        "line_items": rows,
        "total": order_total(rows),
        "incomplete_write": intents.has_pending(db, order_id),
    }


def sales_summary(db: Session) -> dict:
    try:
        order_count = db.query(func.count(models.Order.id)).scalar()
        active_customers = db.query(func.count(func.distinct(models.Order.customer_id))).filter(
            models.Order.customer_id.isnot(None)
        ).scalar()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("summary query failed") from e
    return {"order_count": order_count or 0, "active_customers": active_customers or 0}
