import pytest
from bson import ObjectId

from auth import CurrentUser
from errors import Forbidden, InsufficientStock, ProductNotFound, ValidationError
from inventory import InventoryStore
from schemas import Product, ProductUpdate


@pytest.fixture
def inventory(db):
    return InventoryStore(db)


def test_reserve_and_release(db, inventory, make_product):
    pid = make_product(price=4.0, stock=3)

    reservation = inventory.reserve(str(pid), 2)

    assert reservation.price == 4.0
    product = db.product.find_one({"_id": pid})
    assert (product["stock"], product["buyers_count"], product["buyers"]) == (1, 1, [])

    inventory.release(reservation)

    product = db.product.find_one({"_id": pid})
    assert (product["stock"], product["buyers_count"], product["buyers"]) == (3, 0, [])


def test_release_never_removes_a_buyer(db, inventory, users, make_product):
    buyer = users["customer"]
    pid = make_product(stock=3, buyers=[buyer], buyers_count=1)

    inventory.release(inventory.reserve(str(pid), 1))

    product = db.product.find_one({"_id": pid})
    assert product["buyers"] == [buyer]
    assert product["buyers_count"] == 1


def test_record_buyer_lists_each_buyer_once(db, inventory, users, make_product):
    a = make_product("Okra")
    b = make_product("Ginger", buyers=[users["other_customer"]])

    inventory.record_buyer([a, b, a], users["customer"])
    inventory.record_buyer([a], users["customer"])
    inventory.record_buyer([], users["customer"])

    assert db.product.find_one({"_id": a})["buyers"] == [users["customer"]]
    assert db.product.find_one({"_id": b})["buyers"] == [users["other_customer"], users["customer"]]


def test_reserve_refuses_more_than_stock(db, inventory, make_product):
    pid = make_product("Figs", stock=1)
    with pytest.raises(InsufficientStock) as exc:
        inventory.reserve(str(pid), 2)
    assert str(exc.value) == "Insufficient stock for Figs. Only 1 available."
    assert db.product.find_one({"_id": pid})["stock"] == 1


def test_get_unknown_or_malformed(inventory):
    with pytest.raises(ProductNotFound):
        inventory.get(str(ObjectId()))
    with pytest.raises(ValidationError):
        inventory.get("nope")


def test_ids_owned_by(inventory, users, make_product):
    a = make_product(farmer="farmer")
    b = make_product(farmer="farmer")
    make_product(farmer="other_farmer")
    assert sorted(inventory.ids_owned_by(str(users["farmer"]))) == sorted([a, b])


def test_create_and_update_product(inventory, users):
    owner = CurrentUser(id=str(users["farmer"]), role="farmer")
    created = inventory.create(owner, Product(name="Leeks", price=3.0, stock=8))

    assert created["farmer_id"] == users["farmer"]
    assert created["buyers"] == []

    updated = inventory.update(str(created["_id"]), ProductUpdate(price=3.5, description="Fresh"), owner)
    assert updated["price"] == 3.5
    assert updated["stock"] == 8

    admin = CurrentUser(id=str(ObjectId()), role="admin")
    assert inventory.update(str(created["_id"]), ProductUpdate(visible=False), admin)["visible"] is False

    stranger = CurrentUser(id=str(users["other_farmer"]), role="farmer")
    with pytest.raises(Forbidden):
        inventory.update(str(created["_id"]), ProductUpdate(price=1.0), stranger)


def test_listings(inventory, users, make_product):
    make_product("Shown")
    make_product("Hidden", visible=False)
    make_product("Elsewhere", farmer="other_farmer")

    assert {p["name"] for p in inventory.list_visible()} == {"Shown", "Elsewhere"}
    assert {p["name"] for p in inventory.list_by_farmer(str(users["farmer"]))} == {"Shown", "Hidden"}
