import os
from datetime import date
from decimal import Decimal
from typing import Generator

# keep the module-level engine off disk; tests use their own engine below
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk import config, models
from salesdesk.auth import hash_password
from salesdesk.db import Base
from salesdesk.main import app, get_db


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def restore_config():
    saved = config.get()
    yield
    config.set_config(**saved._asdict())


@pytest.fixture
def seeded(db_session):
    """Reference data: three customers, two employees, three products, some prices."""
    db_session.add_all([
        models.Customer(id="C1", name="Acme Trading", address="12 Harbor Rd", payment_term="30D"),
        models.Customer(id="C2", name="Blue Sky Foods", address="4 Mill Lane", payment_term="COD"),
        models.Customer(id="C3", name="Harbor Supplies", address="9 Quay St", payment_term="30D"),
        models.Employee(id="E1", first_name="Jane", last_name="Doe", gender="F", hire_date=date(2019, 3, 1)),
        models.Employee(id="E2", first_name="Ravi", last_name="Kumar", gender="M", hire_date=date(2021, 7, 15)),
        models.Product(id="P1", description="Pencil", unit="box"),
        models.Product(id="P2", description="Paper ream", unit="pk"),
        models.Product(id="P3", description="Stapler", unit="pc"),
    ])
    db_session.flush()
    db_session.add_all([
        models.PriceRecord(product_id="P1", effective_date=date(2023, 6, 1), unit_price=Decimal("8.00")),
        models.PriceRecord(product_id="P1", effective_date=date(2024, 1, 1), unit_price=Decimal("10.00")),
        models.PriceRecord(product_id="P2", effective_date=date(2024, 1, 1), unit_price=Decimal("4.50")),
    ])
    db_session.commit()
    return db_session


def make_principal(db, email, role="user", password="secret", **perms):
    principal = models.Principal(email=email, display_name=email.split("@")[0], role=role,
                                 password_hash=hash_password(password))
    db.add(principal)
    db.commit()
    if perms:
        db.add(models.FeaturePermissions(principal_id=principal.id, **perms))
        db.commit()
    db.refresh(principal)
    return principal


@pytest.fixture
def admin(db_session):
    return make_principal(db_session, "admin@example.com", role="admin", password="adminpass")


@pytest.fixture
def user(db_session):
    return make_principal(db_session, "user@example.com", password="userpass")


def bearer(client, email, password):
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
