"""Order writes: create, update and delete orders and their line items.

Every function takes the acting principal id and authorizes it before
touching the store. Multi-step writes commit each step on its own; a failure
part-way leaves the earlier steps in place, raises PartialWriteError naming
the failed step and keeps the write intent pending so the order can be
found and recovered (see intents.py).
"""
import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import access, config, intents, models, reference, schemas
from .access import Action
from .errors import NotFoundError, PartialWriteError, StoreError, ValidationError

logger = logging.getLogger(__name__)

ORDER_ID_PREFIX = "TR"


def generate_order_id() -> str:
    # 8 characters: prefix + 6 hex digits
    return ORDER_ID_PREFIX + uuid.uuid4().hex[:6].upper()


def _new_order_id(db: Session) -> str:
    attempts = config.get().id_attempts
    for _ in range(attempts):
        candidate = generate_order_id()
        try:
            taken = db.get(models.Order, candidate) is not None
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError("order id lookup failed") from e
        if not taken:
            return candidate
        logger.info("order id %s already taken, regenerating", candidate)
    raise StoreError(f"could not generate a free order id in {attempts} attempts")


def _item_dicts(items: Iterable) -> list[dict]:
    out = []
    for item in items:
        if isinstance(item, dict):
            out.append({"product_id": item["product_id"], "quantity": item["quantity"]})
        else:
            out.append({"product_id": item.product_id, "quantity": item.quantity})
    return out


def validate_line_items(db: Session, items: list[dict]):
    if not items:
        raise ValidationError("an order needs at least one line item")
    seen = set()
    for item in items:
        if not isinstance(item["quantity"], int) or item["quantity"] < 1:
            raise ValidationError(f"quantity for {item['product_id']} must be at least 1")
        if item["product_id"] in seen:
            raise ValidationError(f"product {item['product_id']} appears more than once")
        seen.add(item["product_id"])
    missing = reference.missing_products(db, seen)
    if missing:
        raise ValidationError(f"unknown product(s): {', '.join(missing)}", details={"products": missing})


def validate_header(db: Session, header: schemas.OrderHeader):
    if header.customer_id and not reference.customer_exists(db, header.customer_id):
        raise ValidationError(f"unknown customer: {header.customer_id}")
    if header.employee_id and not reference.employee_exists(db, header.employee_id):
        raise ValidationError(f"unknown employee: {header.employee_id}")


def _get_order(db: Session, order_id: str) -> models.Order:
    try:
        order = db.get(models.Order, order_id)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("order lookup failed") from e
    if order is None:
        raise NotFoundError(f"order {order_id} not found")
    return order


# Single store steps. Each commits on its own and raises SQLAlchemyError on failure.

def _insert_header(db: Session, order_id: str, header: schemas.OrderHeader):
    db.add(models.Order(id=order_id, date=header.date, customer_id=header.customer_id, employee_id=header.employee_id))
    db.commit()


def _insert_line_items(db: Session, order_id: str, items: list[dict]):
    db.add_all(models.LineItem(order_id=order_id, **item) for item in items)
    db.commit()


def _delete_line_items(db: Session, order_id: str):
    db.query(models.LineItem).filter(models.LineItem.order_id == order_id).delete()
    db.commit()


def _delete_header(db: Session, order_id: str):
    db.query(models.Order).filter(models.Order.id == order_id).delete()
    db.commit()


def create_order(db: Session, actor_id: Optional[int], order: schemas.OrderCreate) -> str:
    """Create an order with its line items and return its generated id.

    Not idempotent: retrying after a failure may create a second order.
    """
    access.authorize(db, actor_id, Action.CREATE)
    items = _item_dicts(order.line_items)
    validate_line_items(db, items)
    validate_header(db, order)

    order_id = _new_order_id(db)
    intent = intents.begin(db, "create", order_id, {"line_items": items}, actor_id=actor_id)
    try:
        _insert_header(db, order_id, order)
    except SQLAlchemyError as e:
        db.rollback()
        intents.discard(db, intent)
        if isinstance(e, IntegrityError):
            raise StoreError(f"order id {order_id} collided, nothing was written") from e
        raise StoreError("order header write failed, nothing was written") from e
    try:
        _insert_line_items(db, order_id, items)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order %s created without its line items (intent %s)", order_id, intent.id, exc_info=e)
        raise PartialWriteError(
            f"order {order_id} was created but its line items were not saved",
            order_id=order_id, step="line_items", applied=["header"], intent_id=intent.id,
        ) from e
    intents.complete(db, intent)
    logger.info("principal %s created order %s with %d line item(s)", actor_id, order_id, len(items))
    return order_id


def update_order_header(db: Session, actor_id: Optional[int], order_id: str, header: schemas.OrderHeader) -> models.Order:
    """Overwrite date, customer and employee. Line items are untouched."""
    access.authorize(db, actor_id, Action.EDIT)
    order = _get_order(db, order_id)
    validate_header(db, header)
    order.date = header.date
    order.customer_id = header.customer_id
    order.employee_id = header.employee_id
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"header update of order {order_id} failed") from e
    db.refresh(order)
    logger.info("principal %s updated header of order %s", actor_id, order_id)
    return order


def replace_order_line_items(db: Session, actor_id: Optional[int], order_id: str, new_items: Iterable) -> None:
    """Swap all line items of an order for `new_items`.

    Not atomic: when the insert fails after the delete, the order is left
    with zero line items until recovered.
    """
    access.authorize(db, actor_id, Action.EDIT)
    items = _item_dicts(new_items)
    validate_line_items(db, items)
    _get_order(db, order_id)

    intent = intents.begin(db, "replace", order_id, {"line_items": items}, actor_id=actor_id)
    try:
        _delete_line_items(db, order_id)
    except SQLAlchemyError as e:
        db.rollback()
        intents.discard(db, intent)
        raise StoreError(f"could not clear line items of order {order_id}") from e
    try:
        _insert_line_items(db, order_id, items)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order %s left without line items (intent %s)", order_id, intent.id, exc_info=e)
        raise PartialWriteError(
            f"line items of order {order_id} were removed but the new ones were not saved",
            order_id=order_id, step="insert_line_items", applied=["delete_line_items"], intent_id=intent.id,
        ) from e
    intents.complete(db, intent)
    # drop stale LineItem objects from the identity map
    db.expire_all()
    logger.info("principal %s replaced line items of order %s (%d item(s))", actor_id, order_id, len(items))


def _get_line_item(db: Session, order_id: str, product_id: str) -> models.LineItem:
    try:
        item = db.query(models.LineItem).filter(
            models.LineItem.order_id == order_id, models.LineItem.product_id == product_id
        ).first()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("line item lookup failed") from e
    if item is None:
        raise NotFoundError(f"order {order_id} has no line item for {product_id}")
    return item


def update_line_item_quantity(db: Session, actor_id: Optional[int], order_id: str, product_id: str, quantity: int) -> models.LineItem:
    access.authorize(db, actor_id, Action.EDIT)
    if not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("quantity must be at least 1")
    item = _get_line_item(db, order_id, product_id)
    item.quantity = quantity
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("quantity update failed") from e
    db.refresh(item)
    logger.info("principal %s set quantity of %s in order %s to %d", actor_id, product_id, order_id, quantity)
    return item


def delete_line_item(db: Session, actor_id: Optional[int], order_id: str, product_id: str) -> None:
    access.authorize(db, actor_id, Action.DELETE)
    item = _get_line_item(db, order_id, product_id)
    try:
        db.delete(item)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError("line item delete failed") from e
    logger.info("principal %s removed %s from order %s", actor_id, product_id, order_id)


def delete_order(db: Session, actor_id: Optional[int], order_id: str) -> None:
    """Delete the line items, then the header."""
    access.authorize(db, actor_id, Action.DELETE)
    _get_order(db, order_id)

    intent = intents.begin(db, "delete", order_id, {}, actor_id=actor_id)
    try:
        _delete_line_items(db, order_id)
    except SQLAlchemyError as e:
        db.rollback()
        intents.discard(db, intent)
        raise StoreError(f"could not delete line items of order {order_id}") from e
    try:
        _delete_header(db, order_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("order %s left as an empty header (intent %s)", order_id, intent.id, exc_info=e)
        raise PartialWriteError(
            f"line items of order {order_id} were deleted but the order itself was not",
            order_id=order_id, step="delete_header", applied=["delete_line_items"], intent_id=intent.id,
        ) from e
    intents.complete(db, intent)
    db.expire_all()
    logger.info("principal %s deleted order %s", actor_id, order_id)
