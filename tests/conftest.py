import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import get_db
from main import app


@pytest.fixture
def db():
    return mongomock.MongoClient()["shop_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def user_id():
    return str(ObjectId())


@pytest.fixture
def make_product(client):
    def _make(name="Widget", price=10.0, stock=5, **extra):
        resp = client.post("/api/products", json={"name": name, "price": price, "stock": stock, **extra})
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]
    return _make


@pytest.fixture
def make_cart(client):
    def _make(user_id, items):
        resp = client.post("/api/carts", json={"userId": user_id, "items": items})
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]
    return _make
