"""Tests for order assembly and cancellation at the service level."""

import pytest
from conftest import make_product, product_stock, size_stock

import database
import orders
from errors import ForbiddenError, InsufficientStock, InvalidTransition, NotFoundError, ProductNotFound, SizeNotFound
from order_status import transition
from schemas import LineItem


def _items(*lines):
    return [LineItem(**line) for line in lines]


def _caller(user_id="user-1", role="customer"):
    return {"id": user_id, "role": role}


def _order_count():
    return database.get_db().order.count_documents({})


class TestCreateOrder:
    def test_total_uses_current_product_price(self):
        tee = make_product("Basic Tee", price=120.0, stock=10)
        jacket = make_product("Denim Jacket", price=350.5, sizes={"L": 3})

        result = orders.create_order("user-1", _items(
            {"product_id": tee, "quantity": 2},
            {"product_id": jacket, "size": "L", "quantity": 1},
        ))

        assert result["total_price"] == pytest.approx(590.5)
        order = database.get_db().order.find_one({"_id": database.oid(result["order_id"])})
        assert order["status"] == "pending"
        assert order["user_id"] == "user-1"
        assert order["total_price"] == pytest.approx(590.5)
        assert [(i["product_id"], i["size"], i["quantity"], i["price"]) for i in order["items"]] == [
            (tee, None, 2, 120.0),
            (jacket, "L", 1, 350.5),
        ]

    def test_unit_price_is_frozen_at_order_time(self):
        tee = make_product("Basic Tee", price=100.0)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 1}))

        database.get_db().product.update_one({"_id": database.oid(tee)}, {"$set": {"price": 999.0}})

        order = database.get_db().order.find_one({"_id": database.oid(result["order_id"])})
        assert order["items"][0]["price"] == 100.0
        assert order["total_price"] == 100.0

    def test_stock_is_reserved(self):
        tee = make_product("Basic Tee", stock=10)
        jacket = make_product("Denim Jacket", sizes={"L": 3})

        orders.create_order("user-1", _items(
            {"product_id": tee, "quantity": 4},
            {"product_id": jacket, "size": "L", "quantity": 3},
        ))

        assert product_stock(tee) == 6
        assert size_stock(jacket, "L") == 0

    def test_insufficient_stock_persists_nothing(self):
        tee = make_product("Basic Tee", stock=10)
        jacket = make_product("Denim Jacket", stock=1)

        with pytest.raises(InsufficientStock):
            orders.create_order("user-1", _items(
                {"product_id": tee, "quantity": 2},
                {"product_id": jacket, "quantity": 2},
            ))

        assert _order_count() == 0
        assert product_stock(tee) == 10
        assert product_stock(jacket) == 1

    def test_sequential_orders_cannot_oversell(self):
        tee = make_product("Basic Tee", stock=5)

        orders.create_order("user-1", _items({"product_id": tee, "quantity": 3}))
        assert product_stock(tee) == 2

        with pytest.raises(InsufficientStock):
            orders.create_order("user-2", _items({"product_id": tee, "quantity": 3}))
        assert product_stock(tee) == 2
        assert _order_count() == 1

    def test_unknown_product(self):
        with pytest.raises(ProductNotFound):
            orders.create_order("user-1", _items({"product_id": "65a1b2c3d4e5f60718293a4b", "quantity": 1}))
        with pytest.raises(ProductNotFound):
            orders.create_order("user-1", _items({"product_id": "not-an-id", "quantity": 1}))

    def test_unknown_size(self):
        tee = make_product("Basic Tee", sizes={"M": 5})
        with pytest.raises(SizeNotFound):
            orders.create_order("user-1", _items({"product_id": tee, "size": "XL", "quantity": 1}))
        assert _order_count() == 0

    def test_failed_insert_releases_reservation(self, monkeypatch):
        from errors import InternalError

        tee = make_product("Basic Tee", stock=5)

        def failing_insert(collection_name, data):
            raise InternalError("Server error while creating order")

        monkeypatch.setattr(database, "create_document", failing_insert)

        with pytest.raises(InternalError):
            orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))
        assert product_stock(tee) == 5


class TestCancelOrder:
    def test_cancel_pending_restores_stock(self):
        tee = make_product("Basic Tee", stock=5)
        jacket = make_product("Denim Jacket", sizes={"M": 2})
        result = orders.create_order("user-1", _items(
            {"product_id": tee, "quantity": 3},
            {"product_id": jacket, "size": "M", "quantity": 2},
        ))

        cancelled = orders.cancel_order(result["order_id"], _caller())

        assert cancelled["status"] == "cancelled"
        assert product_stock(tee) == 5
        assert size_stock(jacket, "M") == 2

    def test_cancel_processing_is_allowed(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 1}))
        orders.update_order_status(result["order_id"], "processing")

        orders.cancel_order(result["order_id"], _caller())

        assert product_stock(tee) == 5

    def test_cancel_shipped_is_rejected(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))
        orders.update_order_status(result["order_id"], "processing")
        orders.update_order_status(result["order_id"], "shipped")

        with pytest.raises(InvalidTransition):
            orders.cancel_order(result["order_id"], _caller())

        assert product_stock(tee) == 3

    def test_cancel_twice_releases_once(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))
        orders.cancel_order(result["order_id"], _caller())

        with pytest.raises(InvalidTransition):
            orders.cancel_order(result["order_id"], _caller())
        assert product_stock(tee) == 5

    def test_concurrent_cancel_loses_the_race(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))
        snapshot = database.get_db().order.find_one({"_id": database.oid(result["order_id"])})

        orders.cancel_order(result["order_id"], _caller())
        with pytest.raises(InvalidTransition):
            transition(snapshot, "cancelled")
        assert product_stock(tee) == 5

    def test_other_customer_cannot_cancel(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))

        with pytest.raises(ForbiddenError):
            orders.cancel_order(result["order_id"], _caller("user-2"))
        assert product_stock(tee) == 3

    def test_admin_can_cancel_any_order(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 2}))

        orders.cancel_order(result["order_id"], _caller("admin-1", role="admin"))
        assert product_stock(tee) == 5

    def test_admin_status_cancel_restores_stock(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 4}))

        updated = orders.update_order_status(result["order_id"], "cancelled")

        assert updated["status"] == "cancelled"
        assert product_stock(tee) == 5

    def test_missing_order(self):
        with pytest.raises(NotFoundError):
            orders.cancel_order("65a1b2c3d4e5f60718293a4b", _caller())


class TestGetOrder:
    def test_customer_only_sees_own_orders(self):
        tee = make_product("Basic Tee", stock=5)
        result = orders.create_order("user-1", _items({"product_id": tee, "quantity": 1}))

        own = orders.get_order(result["order_id"], _caller("user-1"))
        assert own["id"] == result["order_id"]
        assert own["items"][0]["product"]["name"] == "Basic Tee"
        assert own["items"][0]["subtotal"] == 100.0

        with pytest.raises(NotFoundError):
            orders.get_order(result["order_id"], _caller("user-2"))

        assert orders.get_order(result["order_id"], _caller("admin-1", "admin"))["user_id"] == "user-1"


def test_admin_listing_attaches_owner(customer):
    tee = make_product("Basic Tee", stock=5)
    orders.create_order(customer["id"], _items({"product_id": tee, "quantity": 1}))
    orders.create_order("guest-1", _items({"product_id": tee, "quantity": 1}))

    listed, _ = orders.list_orders(1, 10)
    owners = {o["user_id"]: o["user"] for o in listed}
    assert owners[customer["id"]] == {"username": "alice", "email": "alice@example.com"}
    assert owners["guest-1"] is None

    own, _ = orders.list_orders(1, 10, user_id=customer["id"])
    assert "user" not in own[0]
