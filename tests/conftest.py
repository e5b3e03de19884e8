from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from auth import get_password_hash
from database import build_engine, get_db, init_db
from mailer import get_mailer
from main import app
from models import AdminUser, Product
from schemas import OrderCreate


class RecordingMailer:
    def __init__(self):
        self.sent = []

    def send_order_confirmation(self, settings, order):
        self.sent.append(("confirmation", order))
        return True

    def send_status_update(self, settings, order):
        self.sent.append(("status", order))
        return True


def make_cart(*lines, total, email="buyer@mail.com"):
    """Build an OrderCreate from (product_id, quantity) pairs."""
    return OrderCreate(
        customerEmail=email,
        items=[{"id": product_id, "quantity": quantity} for product_id, quantity in lines],
        total=Decimal(total),
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(session_factory, mailer):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(session_factory):
    def _make(name="Benchy", price="12.50", stock=5, category="Figures", **extra):
        with session_factory() as s:
            product = Product(name=name, price=Decimal(price), stock=stock, category=category, **extra)
            s.add(product)
            s.commit()
            return product.id

    return _make


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as s:
            return s.get(Product, product_id).stock

    return _stock


@pytest.fixture
def admin_headers(client, session_factory):
    with session_factory() as s:
        s.add(AdminUser(username="admin", password_hash=get_password_hash("s3cret")))
        s.commit()
    resp = client.post("/auth/login", json={"username": "admin", "password": "s3cret"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
