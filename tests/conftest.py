import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from auth import create_token
from config import Settings, get_settings
from database import get_db, utcnow
from main import app
from orders import OrderService
from schemas import OrderIn


@pytest.fixture
def settings():
    return Settings(database_url=None, database_name=None, jwt_secret="test-secret")


@pytest.fixture
def db():
    return mongomock.MongoClient()["marketplace_test"]


@pytest.fixture
def users(db):
    people = {
        "farmer": ("Asha Farms", "asha@example.com", "farmer"),
        "other_farmer": ("Green Acres", "green@example.com", "farmer"),
        "retailer": ("Corner Shop", "corner@example.com", "retailer"),
        "customer": ("Ravi", "ravi@example.com", "customer"),
        "other_customer": ("Meera", "meera@example.com", "customer"),
    }
    ids = {}
    for key, (name, email, role) in people.items():
        ids[key] = db.user.insert_one({
            "name": name,
            "email": email,
            "role": role,
            "phone": "555-0100",
            "location": "Pune",
        }).inserted_id
    return ids


@pytest.fixture
def make_product(db, users):
    def _make(name="Tomatoes", price=2.5, stock=5, farmer="farmer", **extra):
        doc = {
            "name": name,
            "description": None,
            "price": price,
            "unit": "kg",
            "stock": stock,
            "farmer_id": users[farmer],
            "buyers_count": 0,
            "buyers": [],
            "visible": True,
            "created_at": utcnow(),
        }
        doc.update(extra)
        return db.product.insert_one(doc).inserted_id
    return _make


@pytest.fixture
def service(db, settings):
    return OrderService(db, settings)


@pytest.fixture
def cart():
    def _cart(*lines, **fields):
        fields.setdefault("delivery_address", "12 Market Road, Pune")
        items = [{"product_id": str(pid), "quantity": qty} for pid, qty in lines]
        return OrderIn(items=items, **fields)
    return _cart


@pytest.fixture
def client(db, settings):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


ROLES = {"farmer": "farmer", "other_farmer": "farmer", "retailer": "retailer"}


@pytest.fixture
def auth_header(settings, users):
    """Bearer header for a seeded user key, or for ``admin`` (a fresh id with the admin role)."""
    def _header(user="customer"):
        if user == "admin":
            user_id, role = ObjectId(), "admin"
        else:
            user_id, role = users[user], ROLES.get(user, "customer")
        return {"Authorization": f"Bearer {create_token(str(user_id), role, settings)}"}
    return _header


@pytest.fixture
def stock(db):
    def _stock(product_id) -> int:
        return db.product.find_one({"_id": ObjectId(product_id)})["stock"]
    return _stock
