"""Current unit price of a product, read from the append-only price history.

Two policies, picked with config.price_policy:

- ``latest``: the record with the greatest effective_date, whatever its date.
- ``effective``: the greatest effective_date on or before the reference day.

Nothing is cached, so a newly inserted record is visible on the next call.
"""
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import config, models
from .errors import StoreError
from .time_utils import today


def _cutoff(on: Optional[date]) -> Optional[date]:
    if config.get().price_policy == "effective":
        return on or today()
    return None


def current_price(db: Session, product_id: str, on: Optional[date] = None) -> Optional[Decimal]:
    stmt = db.query(models.PriceRecord.unit_price).filter(models.PriceRecord.product_id == product_id)
    cutoff = _cutoff(on)
    if cutoff is not None:
        stmt = stmt.filter(models.PriceRecord.effective_date <= cutoff)
    try:
        row = stmt.order_by(models.PriceRecord.effective_date.desc()).first()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"price lookup for {product_id} failed") from e
    return row[0] if row else None


def current_prices(db: Session, product_ids: Iterable[str], on: Optional[date] = None) -> dict[str, Optional[Decimal]]:
    """Resolve several products at once; products without a record map to None."""
    ids = set(product_ids)
    prices: dict[str, Optional[Decimal]] = {pid: None for pid in ids}
    if not ids:
        return prices

    record = models.PriceRecord
    latest = db.query(record.product_id, func.max(record.effective_date).label("effective_date")).filter(
        record.product_id.in_(ids)
    )
    cutoff = _cutoff(on)
    if cutoff is not None:
        latest = latest.filter(record.effective_date <= cutoff)
    latest = latest.group_by(record.product_id).subquery()

    try:
        rows = db.query(record.product_id, record.unit_price).join(
            latest,
            (record.product_id == latest.c.product_id) & (record.effective_date == latest.c.effective_date),
        ).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("price lookup failed") from e
    for product_id, unit_price in rows:
        prices[product_id] = unit_price
    return prices
