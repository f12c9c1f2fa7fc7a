from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base
from .time_utils import utcnow

ROLES = ("admin", "user", "blocked")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String(16), primary_key=True)
    name = Column(String, nullable=False, index=True)
    address = Column(String, nullable=True)
    payment_term = Column(String, nullable=True)


class Employee(Base):
    __tablename__ = "employees"

    id = Column(String(16), primary_key=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    birth_date = Column(Date, nullable=True)
    gender = Column(String(1), nullable=True)
    hire_date = Column(Date, nullable=True)
    separation_date = Column(Date, nullable=True)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(16), primary_key=True)
    description = Column(String, nullable=False)
    unit = Column(String, nullable=True)

    prices = relationship("PriceRecord", back_populates="product")


class PriceRecord(Base):
    """Append-only; rows are inserted, never updated or deleted."""

    __tablename__ = "price_history"
    __table_args__ = (UniqueConstraint("product_id", "effective_date", name="uq_price_product_date"),)

    id = Column(Integer, primary_key=True)
    product_id = Column(String(16), ForeignKey("products.id"), nullable=False, index=True)
    effective_date = Column(Date, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    product = relationship("Product", back_populates="prices")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(8), primary_key=True)
    date = Column(Date, nullable=False, index=True)
    # No FK: reference rows may be purged upstream without touching orders.
    customer_id = Column(String(16), nullable=True, index=True)
    employee_id = Column(String(16), nullable=True, index=True)

    line_items = relationship("LineItem", back_populates="order", order_by="LineItem.id")


class LineItem(Base):
    __tablename__ = "line_items"
    __table_args__ = (UniqueConstraint("order_id", "product_id", name="uq_line_item_order_product"),)

    # surrogate key, only used to keep insertion order
    id = Column(Integer, primary_key=True)
    order_id = Column(String(8), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(16), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="line_items")


class Principal(Base):
    __tablename__ = "principals"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    # 'admin', 'user' or 'blocked'
    role = Column(String, nullable=False, default="user", index=True)
    password_hash = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_sign_in = Column(DateTime(timezone=True), nullable=True)

    permissions = relationship("FeaturePermissions", back_populates="principal", uselist=False)


class FeaturePermissions(Base):
    """Optional per-principal flags. A missing row means all flags are on."""

    __tablename__ = "feature_permissions"

    principal_id = Column(Integer, ForeignKey("principals.id", ondelete="CASCADE"), primary_key=True)
    can_create = Column(Boolean, nullable=False, default=True)
    can_edit = Column(Boolean, nullable=False, default=True)
    can_delete = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    principal = relationship("Principal", back_populates="permissions")


class WriteIntent(Base):
    """Log entry for a multi-step order write; pending until every step landed."""

    __tablename__ = "write_intents"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False)  # create | replace | delete
    order_id = Column(String(8), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String, nullable=False, default="pending", index=True)
    actor_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
