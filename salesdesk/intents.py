"""Write-intent log for multi-step order writes.

An intent row is committed before the first step of a create, replace or
delete and marked complete after the last one. A pending intent therefore
marks an order that may be mid-sequence or left partial by a failure. The
log does not undo anything by itself; `recover` rolls the recorded sequence
forward on request.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import access, models
from .errors import NotFoundError, StoreError, ValidationError
from .time_utils import utcnow

logger = logging.getLogger(__name__)

KINDS = ("create", "replace", "delete")


def begin(db: Session, kind: str, order_id: str, payload: dict, actor_id: Optional[int] = None) -> models.WriteIntent:
    if kind not in KINDS:
        raise ValidationError(f"unknown write kind: {kind}")
    intent = models.WriteIntent(kind=kind, order_id=order_id, payload=payload, status="pending", actor_id=actor_id)
    db.add(intent)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("could not record write intent") from e
    db.refresh(intent)
    return intent


def complete(db: Session, intent: models.WriteIntent):
    intent.status = "complete"
    intent.completed_at = utcnow()
    try:
        db.commit()
    except SQLAlchemyError as e:
        # every step already landed; the stale pending row is harmless to recover later
        db.rollback()
        logger.error("write intent %s applied but could not be marked complete", intent.id, exc_info=e)


def discard(db: Session, intent: models.WriteIntent):
    """Drop an intent whose first step never applied."""
    try:
        db.delete(intent)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("write intent %s could not be discarded", intent.id, exc_info=e)


def pending(db: Session, order_id: Optional[str] = None) -> list[models.WriteIntent]:
    stmt = db.query(models.WriteIntent).filter(models.WriteIntent.status == "pending")
    if order_id is not None:
        stmt = stmt.filter(models.WriteIntent.order_id == order_id)
    try:
        return stmt.order_by(models.WriteIntent.id).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("write intent lookup failed") from e


def has_pending(db: Session, order_id: str) -> bool:
    return bool(pending(db, order_id))


def _insert_missing_items(db: Session, order_id: str, items: list[dict]):
    present = {
        row[0] for row in db.query(models.LineItem.product_id).filter(models.LineItem.order_id == order_id)
    }
    for item in items:
        if item["product_id"] not in present:
            db.add(models.LineItem(order_id=order_id, product_id=item["product_id"], quantity=item["quantity"]))


def recover(db: Session, actor_id: int, intent_id: int) -> models.WriteIntent:
    """Finish the sequence recorded by a pending intent (admin only)."""
    access.require_admin(db, actor_id)
    try:
        intent = db.get(models.WriteIntent, intent_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("write intent lookup failed") from e
    if intent is None:
        raise NotFoundError("write intent not found")
    if intent.status != "pending":
        raise ValidationError("write intent is not pending")

    order_id = intent.order_id
    items = intent.payload.get("line_items", [])
    try:
        order = db.get(models.Order, order_id)
        if intent.kind == "create":
            if order is None:
                raise NotFoundError(f"order {order_id} header was never written")
            _insert_missing_items(db, order_id, items)
        elif intent.kind == "replace":
            if order is None:
                raise NotFoundError(f"order {order_id} no longer exists")
            db.query(models.LineItem).filter(models.LineItem.order_id == order_id).delete()
            _insert_missing_items(db, order_id, items)
        else:
            db.query(models.LineItem).filter(models.LineItem.order_id == order_id).delete()
            if order is not None:
                db.delete(order)
        intent.status = "complete"
        intent.completed_at = utcnow()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"recovery of write intent {intent_id} failed") from e
    db.expire_all()
    logger.info("principal %s recovered %s of order %s (intent %s)", actor_id, intent.kind, order_id, intent_id)
    return intent
