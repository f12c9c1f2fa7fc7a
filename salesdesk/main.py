import logging
from typing import List, Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import access, config, crud, intents, order_views, pricing, reference, schemas
from .auth import create_access_token, principal_id_from_token
from .db import Base, SessionLocal, engine
from .errors import (
    AccessRevokedError,
    AuthorizationError,
    NotFoundError,
    PartialWriteError,
    SalesDeskError,
    StoreError,
    ValidationError,
)

config.configure_logging()
logger = logging.getLogger(__name__)

# Create tables if not existing. Existing v1 databases go through migration/.
Base.metadata.create_all(bind=engine)

app = FastAPI(title="SalesDesk")


# Dependency to get DB session per request

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal_id(authorization: Optional[str] = Header(default=None)) -> int:
    """Acting principal from the bearer token. Role and flags are checked per operation."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    token = authorization.split(None, 1)[1]
    try:
        return principal_id_from_token(token)
    except (jwt.PyJWTError, ValueError):
        raise HTTPException(status_code=401, detail="invalid token")


def get_reader(principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)) -> int:
    """Any signed-in, non-blocked principal may read orders, reports and reference data."""
    access.authorize(db, principal_id)
    return principal_id


# -------------------- error mapping --------------------

def _error_body(exc: SalesDeskError) -> dict:
    body = {"detail": str(exc), "type": type(exc).__name__}
    if exc.details:
        body["details"] = exc.details
    if exc.retryable:
        body["retryable"] = True
    return body


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=_error_body(exc))


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content=_error_body(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=_error_body(exc))


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content=_error_body(exc))


@app.exception_handler(PartialWriteError)
async def partial_write_handler(request: Request, exc: PartialWriteError):
    return JSONResponse(status_code=500, content=_error_body(exc))


@app.get("/health")
async def health():
    return {"status": "ok"}


# -------------------- identity --------------------

@app.post("/auth/signup", response_model=schemas.PrincipalRead, status_code=201)
def signup(payload: schemas.SignUp, db: Session = Depends(get_db)):
    return access.register(db, payload.email, payload.password, payload.display_name)


@app.post("/auth/login")
def login(payload: schemas.Login, db: Session = Depends(get_db)):
    session = access.AccessSession(db)
    try:
        principal = session.sign_in(payload.email, payload.password)
    except AccessRevokedError:
        raise
    except AuthorizationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    token = create_access_token(principal.id, principal.role)
    return {"access_token": token, "token_type": "bearer"}


@app.get("/auth/me", response_model=schemas.Me)
def me(principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    principal = access.authorize(db, principal_id)
    perms = access.load_permissions(db, principal_id)
    data = schemas.PrincipalRead.model_validate(principal).model_dump()
    return {**data, "permissions": perms._asdict()}


# -------------------- reference data --------------------

def _search_or_empty(db: Session, kind: str, q: str) -> list:
    try:
        return reference.search(db, kind, q)
    except StoreError as e:
        logger.warning("%s search for %r failed, returning no rows: %s", kind, q, e)
        return []


@app.get("/customers", response_model=List[schemas.CustomerRead])
def search_customers(q: str = Query("", max_length=100), principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return _search_or_empty(db, "customer", q)


@app.get("/employees", response_model=List[schemas.EmployeeRead])
def search_employees(q: str = Query("", max_length=100), principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return _search_or_empty(db, "employee", q)


@app.get("/products", response_model=List[schemas.ProductRead])
def search_products(q: str = Query("", max_length=100), principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return _search_or_empty(db, "product", q)


@app.get("/products/{product_id}/price", response_model=schemas.CurrentPrice)
def product_price(product_id: str, principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    if reference.get(db, "product", product_id) is None:
        raise HTTPException(status_code=404, detail="product not found")
    return {"product_id": product_id, "unit_price": pricing.current_price(db, product_id)}


@app.get("/price-history", response_model=List[schemas.PriceRecordRead])
def search_price_history(q: str = Query("", max_length=100), principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return _search_or_empty(db, "price", q)


@app.post("/price-history", response_model=schemas.PriceRecordRead, status_code=201)
def add_price_record(payload: schemas.PriceRecordCreate, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    access.require_admin(db, principal_id)
    return reference.record_price(db, payload.product_id, payload.effective_date, payload.unit_price)


# -------------------- orders --------------------

@app.get("/orders", response_model=List[schemas.OrderSummary])
def get_orders(
    q: str = Query("", max_length=100),
    sort: str = Query("date"),
    direction: str = Query("desc"),
    principal_id: int = Depends(get_reader),
    db: Session = Depends(get_db),
):
    return order_views.list_orders(db, q, sort, direction)


@app.post("/orders", response_model=schemas.OrderCreated, status_code=201)
def create_order(order: schemas.OrderCreate, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    return {"id": crud.create_order(db, principal_id, order)}


@app.get("/orders/{order_id}", response_model=schemas.OrderReport)
def get_order(order_id: str, q: str = Query("", max_length=100), principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return order_views.get_order_report(db, order_id, q)


@app.put("/orders/{order_id}", response_model=schemas.OrderSummary)
def update_order(order_id: str, header: schemas.OrderHeader, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    return crud.update_order_header(db, principal_id, order_id, header)


@app.put("/orders/{order_id}/items")
def replace_items(order_id: str, payload: schemas.LineItemsReplace, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    crud.replace_order_line_items(db, principal_id, order_id, payload.line_items)
    return {"updated": order_id}


@app.patch("/orders/{order_id}/items/{product_id}")
def update_item_quantity(order_id: str, product_id: str, payload: schemas.QuantityUpdate, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    item = crud.update_line_item_quantity(db, principal_id, order_id, product_id, payload.quantity)
    return {"order_id": item.order_id, "product_id": item.product_id, "quantity": item.quantity}


@app.delete("/orders/{order_id}/items/{product_id}")
def delete_item(order_id: str, product_id: str, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    crud.delete_line_item(db, principal_id, order_id, product_id)
    return {"deleted": product_id, "order_id": order_id}


@app.delete("/orders/{order_id}")
def delete_order(order_id: str, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    crud.delete_order(db, principal_id, order_id)
    return {"deleted": order_id}


@app.get("/reports/summary", response_model=schemas.SalesSummary)
def summary(principal_id: int = Depends(get_reader), db: Session = Depends(get_db)):
    return order_views.sales_summary(db)


# -------------------- administration --------------------

@app.get("/admin/principals", response_model=List[schemas.PrincipalRead])
def admin_list_principals(principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    return access.list_principals(db, principal_id)


@app.put("/admin/principals/{target_id}/role", response_model=schemas.RoleChangeResult)
def admin_update_role(target_id: int, payload: schemas.RoleUpdate, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    access.require_admin(db, principal_id)
    result = access.update_role(db, principal_id, target_id, payload.role)
    if not result["success"]:
        return JSONResponse(status_code=400, content=result)
    return result


@app.put("/admin/principals/{target_id}/permissions", response_model=schemas.PermissionsRead)
def admin_update_permissions(target_id: int, payload: schemas.PermissionsUpdate, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    perms = access.update_permissions(db, principal_id, target_id, **payload.model_dump())
    return perms._asdict()


@app.get("/admin/incomplete-writes", response_model=List[schemas.WriteIntentRead])
def admin_incomplete_writes(principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    access.require_admin(db, principal_id)
    return intents.pending(db)


@app.post("/admin/incomplete-writes/{intent_id}/recover", response_model=schemas.WriteIntentRead)
def admin_recover_write(intent_id: int, principal_id: int = Depends(get_principal_id), db: Session = Depends(get_db)):
    return intents.recover(db, principal_id, intent_id)
