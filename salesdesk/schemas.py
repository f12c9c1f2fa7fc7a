import datetime as dt
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, PositiveInt
from pydantic.config import ConfigDict

Role = Literal["admin", "user", "blocked"]


# -------------------- reference data --------------------

class CustomerRead(BaseModel):
    id: str
    name: str
    address: Optional[str] = None
    payment_term: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class EmployeeRead(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[dt.date] = None
    gender: Optional[str] = None
    hire_date: Optional[dt.date] = None
    separation_date: Optional[dt.date] = None

    model_config = ConfigDict(from_attributes=True)


class ProductRead(BaseModel):
    id: str
    description: str
    unit: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PriceRecordCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=16)
    effective_date: dt.date
    unit_price: Decimal = Field(..., ge=Decimal("0"))


class PriceRecordRead(BaseModel):
    product_id: str
    effective_date: dt.date
    unit_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class CurrentPrice(BaseModel):
    product_id: str
    unit_price: Optional[Decimal] = None


# -------------------- orders --------------------

class LineItemIn(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=16)
    quantity: PositiveInt


class OrderHeader(BaseModel):
    date: dt.date
    customer_id: Optional[str] = None
    employee_id: Optional[str] = None


class OrderCreate(OrderHeader):
    line_items: list[LineItemIn]


class LineItemsReplace(BaseModel):
    line_items: list[LineItemIn]


class QuantityUpdate(BaseModel):
    quantity: PositiveInt


class OrderSummary(BaseModel):
    id: str
    date: dt.date
    customer_id: Optional[str] = None
    employee_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LineItemView(BaseModel):
    order_id: str
    product_id: str
    quantity: int
    product_description: str
    product_unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    customer_name: Optional[str] = None
    employee_name: Optional[str] = None
    order_date: dt.date


class OrderReport(OrderSummary):
    line_items: list[LineItemView] = []
    total: Decimal
    incomplete_write: bool = False


class OrderCreated(BaseModel):
    id: str


class SalesSummary(BaseModel):
    order_count: int
    active_customers: int


# -------------------- identity --------------------

class SignUp(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = Field(default=None, max_length=100)


class Login(BaseModel):
    email: str
    password: str


class PermissionsRead(BaseModel):
    can_create: bool = True
    can_edit: bool = True
    can_delete: bool = True
    explicit: bool = False


class PermissionsUpdate(BaseModel):
    can_create: Optional[bool] = None
    can_edit: Optional[bool] = None
    can_delete: Optional[bool] = None


class RoleUpdate(BaseModel):
    # validated by access.update_role so a bad value comes back as {success: false}
    role: str


class RoleChangeResult(BaseModel):
    success: bool
    error: Optional[str] = None


class PrincipalRead(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    role: Role = "user"
    created_at: dt.datetime
    last_sign_in: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Me(PrincipalRead):
    permissions: PermissionsRead


class WriteIntentRead(BaseModel):
    id: int
    kind: str
    order_id: str
    status: str
    payload: dict
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)
