"""Read-only lookups over customers, employees, products and price history."""
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, models
from .errors import NotFoundError, StoreError, ValidationError
from .utils import like_pattern, round_amount, sanitize_input

logger = logging.getLogger(__name__)

# entity kind -> (model, searched columns)
SEARCHABLE = {
    "customer": (models.Customer, ("id", "name", "address")),
    "employee": (models.Employee, ("id", "first_name", "last_name")),
    "product": (models.Product, ("id", "description", "unit")),
    "price": (models.PriceRecord, ("product_id",)),
}


def _model_for(kind: str):
    try:
        return SEARCHABLE[kind]
    except KeyError:
        raise ValidationError(f"unknown entity kind: {kind}") from None


def search(db: Session, kind: str, query: str = "") -> list:
    """Case-insensitive substring search; a row matches if any searched column contains `query`."""
    model, columns = _model_for(kind)
    q = sanitize_input(query)
    stmt = db.query(model)
    if q:
        pattern = like_pattern(q)
        stmt = stmt.filter(or_(*(getattr(model, c).ilike(pattern, escape="\\") for c in columns)))
    if kind == "price":
        stmt = stmt.order_by(model.product_id, model.effective_date.desc())
    else:
        stmt = stmt.order_by(model.id)
    try:
        return stmt.limit(config.get().search_limit).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"{kind} search failed") from e


def get(db: Session, kind: str, entity_id):
    model, _ = _model_for(kind)
    try:
        return db.get(model, entity_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"{kind} lookup failed") from e


def missing_products(db: Session, product_ids) -> list[str]:
    wanted = set(product_ids)
    if not wanted:
        return []
    try:
        found = {row[0] for row in db.query(models.Product.id).filter(models.Product.id.in_(wanted))}
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("product lookup failed") from e
    return sorted(wanted - found)


def customer_exists(db: Session, customer_id: str) -> bool:
    return get(db, "customer", customer_id) is not None


def employee_exists(db: Session, employee_id: str) -> bool:
    return get(db, "employee", employee_id) is not None


def record_price(db: Session, product_id: str, effective_date: date, unit_price: Decimal) -> models.PriceRecord:
    """Append a price record. Existing records are never touched."""
    if get(db, "product", product_id) is None:
        raise NotFoundError(f"product {product_id} does not exist")
    if unit_price < 0:
        raise ValidationError("unit price must be non-negative")

    record = models.PriceRecord(product_id=product_id, effective_date=effective_date, unit_price=round_amount(unit_price))
    db.add(record)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError(f"a price for {product_id} effective {effective_date} already exists") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("price insert failed") from e
    db.refresh(record)
    logger.info("price recorded for %s: %s effective %s", product_id, record.unit_price, effective_date)
    return record
