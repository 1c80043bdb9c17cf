import threading
from concurrent.futures import ThreadPoolExecutor

import mongomock
import pytest

import catalog
import orders
from errors import Conflict, Forbidden, NotFound, ValidationError
from schemas import ProductUpdatePayload


def product_status(db, product_id):
    return catalog.get_product(db, product_id, count_view=False)["status"]


# ---------- checkout ----------

def test_checkout_cod_product(db, buyer, seller, make_product):
    product = make_product(price=1000)
    order = orders.create_order(db, buyer[0], product["id"], "COD", "X")

    assert order["price"] == 1000
    assert order["payment_method"] == "COD"
    assert order["payment_status"] == "Pending"
    assert order["approval_status"] == "Pending"
    assert order["order_status"] == "Pending"
    assert order["shipping_address"] == "X"
    assert order["buyer_id"] == buyer[0].id
    assert order["seller_id"] == seller[0].id
    assert order["product"]["title"] == "Used bicycle"
    assert order["buyer"]["name"] == "bina"
    assert order["seller"]["email"] == "sagar@example.com"
    assert product_status(db, product["id"]) == "sold"
    assert catalog.get_product(db, product["id"], count_view=False)["sold_at"] is not None


@pytest.mark.parametrize("method", ["Visa", "MasterCard"])
def test_card_orders_settle_immediately(place_order, method):
    order = place_order(method=method)
    assert order["payment_status"] == "Completed"
    assert order["approval_status"] == "Pending"


def test_checkout_requires_available_product(db, buyer, make_product):
    product = make_product()
    orders.create_order(db, buyer[0], product["id"], "COD", "X")
    with pytest.raises(Conflict):
        orders.create_order(db, buyer[0], product["id"], "Visa", "Y")
    assert db["order"].count_documents({}) == 1


def test_second_checkout_of_same_product_conflicts(db, users, make_product):
    product = make_product()
    first, _ = users.make("buyer")
    second, _ = users.make("buyer")

    results = []
    for who in (first, second):
        try:
            results.append(orders.create_order(db, who, product["id"], "COD", "addr"))
        except Conflict:
            results.append(None)

    assert len([r for r in results if r is not None]) == 1
    assert db["order"].count_documents({"product_id": product["id"]}) == 1


@pytest.fixture
def atomic_find_one_and_update(monkeypatch):
    # mongomock runs find-then-update in two steps; the server applies it to one document atomically
    original = mongomock.collection.Collection.find_one_and_update
    lock = threading.Lock()

    def find_one_and_update(self, *args, **kwargs):
        with lock:
            return original(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "find_one_and_update", find_one_and_update)


def test_concurrent_checkouts_sell_the_product_once(db, users, make_product, atomic_find_one_and_update):
    product = make_product()
    buyers = [users.make("buyer")[0] for _ in range(8)]
    barrier = threading.Barrier(len(buyers))

    def attempt(who):
        barrier.wait()
        try:
            orders.create_order(db, who, product["id"], "COD", "addr")
            return "ok"
        except Conflict:
            return "conflict"

    with ThreadPoolExecutor(max_workers=len(buyers)) as pool:
        outcomes = list(pool.map(attempt, buyers))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == len(buyers) - 1
    assert db["order"].count_documents({"product_id": product["id"]}) == 1
    assert product_status(db, product["id"]) == "sold"


def test_checkout_missing_product(db, buyer):
    with pytest.raises(NotFound):
        orders.create_order(db, buyer[0], "64b7f0c2a1b2c3d4e5f60718", "COD", "X")


def test_checkout_malformed_product_id(db, buyer):
    with pytest.raises(ValidationError):
        orders.create_order(db, buyer[0], "not-an-id", "COD", "X")


def test_checkout_validates_input_before_touching_product(db, buyer, make_product):
    product = make_product()
    with pytest.raises(ValidationError):
        orders.create_order(db, buyer[0], product["id"], "Cheque", "X")
    with pytest.raises(ValidationError):
        orders.create_order(db, buyer[0], product["id"], "COD", "   ")
    assert product_status(db, product["id"]) == "available"


def test_only_buyers_check_out(db, seller, admin, make_product):
    product = make_product()
    for actor in (seller[0], admin[0]):
        with pytest.raises(Forbidden):
            orders.create_order(db, actor, product["id"], "COD", "X")
    assert product_status(db, product["id"]) == "available"


def test_checkout_leaves_cart_and_wishlist_alone(db, buyer, make_product):
    import cart
    import wishlist
    product = make_product()
    cart.add_to_cart(db, buyer[0].id, product["id"])
    wishlist.add_to_wishlist(db, buyer[0].id, product["id"])

    orders.create_order(db, buyer[0], product["id"], "COD", "X")

    lines = cart.get_cart(db, buyer[0].id)["items"]
    assert [(l["product_id"], l["available"]) for l in lines] == [(product["id"], False)]
    assert wishlist.get_wishlist(db, buyer[0].id)[0]["available"] is False


def test_price_snapshot_survives_product_edit(db, buyer, seller, make_product):
    product = make_product(price=1000)
    order = orders.create_order(db, buyer[0], product["id"], "COD", "X")
    catalog.update_product(db, seller[0], product["id"], ProductUpdatePayload(price=1500))

    assert orders.get_order(db, buyer[0], order["id"])["price"] == 1000
    assert catalog.get_product(db, product["id"], count_view=False)["price"] == 1500


# ---------- buyer edits ----------

def test_buyer_edits_pending_order(db, buyer, place_order):
    order = place_order(method="COD")
    edited = orders.edit_pending_order(db, buyer[0], order["id"], shipping_address="Lalitpur", payment_method="Visa")
    assert edited["shipping_address"] == "Lalitpur"
    assert edited["payment_method"] == "Visa"
    assert edited["payment_status"] == "Completed"

    back = orders.edit_pending_order(db, buyer[0], order["id"], payment_method="COD")
    assert back["payment_status"] == "Pending"
    assert back["shipping_address"] == "Lalitpur"


def test_edit_log_names_only_edited_fields(db, buyer, place_order, caplog):
    order = place_order()
    with caplog.at_level("INFO", logger="marketplace.orders"):
        orders.edit_pending_order(db, buyer[0], order["id"], shipping_address="Bhaktapur")
    assert "['shipping_address']" in caplog.text
    assert "updated_at" not in caplog.text


def test_guarded_write_leaves_callers_fields_alone(db, place_order):
    order = place_order()
    doc = db["order"].find_one({"_id": orders.to_object_id(order["id"])})
    fields = {"shipping_address": "Patan"}
    updated = orders._set(db, doc, fields)
    assert fields == {"shipping_address": "Patan"}
    assert updated["shipping_address"] == "Patan"
    assert updated["updated_at"] >= doc["updated_at"]


def test_other_users_cannot_edit(db, users, seller, admin, place_order):
    order = place_order()
    stranger, _ = users.make("buyer")
    for actor in (stranger, seller[0], admin[0]):
        with pytest.raises(Forbidden):
            orders.edit_pending_order(db, actor, order["id"], shipping_address="elsewhere")


@pytest.mark.parametrize("decision", ["Approved", "Rejected"])
def test_decided_orders_are_frozen_for_the_buyer(db, buyer, admin, place_order, decision):
    order = place_order()
    orders.set_approval(db, admin[0], order["id"], decision)
    with pytest.raises(Forbidden):
        orders.edit_pending_order(db, buyer[0], order["id"], shipping_address="late change")
    assert orders.get_order(db, buyer[0], order["id"])["shipping_address"] == "X"


def test_edit_lost_to_concurrent_approval(db, buyer, admin, place_order, monkeypatch):
    order = place_order()
    real_load = orders._load

    def stale_load(db_, order_id):
        doc = real_load(db_, order_id)
        # the admin decides after the buyer's read
        db_["order"].update_one({"_id": doc["_id"]}, {"$set": {"approval_status": "Approved"}})
        return doc

    monkeypatch.setattr(orders, "_load", stale_load)
    with pytest.raises(Forbidden):
        orders.edit_pending_order(db, buyer[0], order["id"], shipping_address="race")
    monkeypatch.undo()
    assert orders.get_order(db, admin[0], order["id"])["shipping_address"] == "X"


# ---------- approval ----------

def test_approval_completes_payment_and_confirms(db, buyer, admin, place_order):
    order = place_order(method="COD")
    approved = orders.set_approval(db, admin[0], order["id"], "Approved")
    assert approved["approval_status"] == "Approved"
    assert approved["payment_status"] == "Completed"
    assert approved["order_status"] == "Confirmed"


def test_approval_is_idempotent(db, admin, place_order):
    order = place_order(method="COD")
    once = orders.set_approval(db, admin[0], order["id"], "Approved")
    twice = orders.set_approval(db, admin[0], order["id"], "Approved")
    for key in ("approval_status", "payment_status", "order_status", "updated_at"):
        assert once[key] == twice[key]


@pytest.mark.parametrize("method,payment", [("COD", "Pending"), ("Visa", "Completed")])
def test_rejection_cancels_and_keeps_payment(db, admin, place_order, method, payment):
    order = place_order(method=method)
    rejected = orders.set_approval(db, admin[0], order["id"], "Rejected")
    assert rejected["approval_status"] == "Rejected"
    assert rejected["order_status"] == "Cancelled"
    assert rejected["payment_status"] == payment


def test_rejection_does_not_restock(db, admin, place_order):
    order = place_order()
    orders.set_approval(db, admin[0], order["id"], "Rejected")
    assert product_status(db, order["product_id"]) == "sold"


def test_decision_cannot_be_reversed(db, admin, place_order):
    order = place_order()
    orders.set_approval(db, admin[0], order["id"], "Approved")
    with pytest.raises(Conflict):
        orders.set_approval(db, admin[0], order["id"], "Rejected")


def test_only_admin_decides(db, buyer, seller, place_order):
    order = place_order()
    for actor in (buyer[0], seller[0]):
        with pytest.raises(Forbidden):
            orders.set_approval(db, actor, order["id"], "Approved")


def test_approval_of_missing_order(db, admin):
    with pytest.raises(NotFound):
        orders.set_approval(db, admin[0], "64b7f0c2a1b2c3d4e5f60718", "Approved")


# ---------- delivery ----------

def test_seller_marks_delivered(db, seller, admin, place_order):
    order = place_order(method="COD")
    orders.set_approval(db, admin[0], order["id"], "Approved")
    delivered = orders.mark_delivered(db, seller[0], order["id"])
    assert delivered["order_status"] == "Delivered"
    assert delivered["payment_status"] == "Completed"
    assert delivered["delivered_at"] is not None


def test_delivery_forces_payment_even_while_pending_approval(db, admin, place_order):
    order = place_order(method="COD")
    delivered = orders.mark_delivered(db, admin[0], order["id"])
    assert delivered["payment_status"] == "Completed"
    assert delivered["approval_status"] == "Pending"

    approved = orders.set_approval(db, admin[0], order["id"], "Approved")
    assert approved["order_status"] == "Delivered"
    with pytest.raises(Conflict):
        orders.set_approval(db, admin[0], order["id"], "Rejected")


def test_other_sellers_and_buyers_cannot_deliver(db, users, buyer, place_order):
    order = place_order()
    other_seller, _ = users.make("seller")
    for actor in (other_seller, buyer[0]):
        with pytest.raises(Forbidden):
            orders.mark_delivered(db, actor, order["id"])


def test_cancelled_order_cannot_be_delivered(db, seller, admin, place_order):
    order = place_order()
    orders.set_approval(db, admin[0], order["id"], "Rejected")
    with pytest.raises(Conflict):
        orders.mark_delivered(db, seller[0], order["id"])


# ---------- listing ----------

def test_listing_is_scoped_by_role(db, users, seller, admin, make_product):
    b1, _ = users.make("buyer")
    b2, _ = users.make("buyer")
    other_seller, _ = users.make("seller")
    o1 = orders.create_order(db, b1, make_product()["id"], "COD", "a")
    o2 = orders.create_order(db, b2, make_product()["id"], "COD", "b")
    o3 = orders.create_order(db, b1, make_product(owner=other_seller)["id"], "Visa", "c")

    assert {o["id"] for o in orders.list_orders(db, b1, "mine")} == {o1["id"], o3["id"]}
    assert {o["id"] for o in orders.list_orders(db, seller[0], "mine")} == {o1["id"], o2["id"]}
    assert {o["id"] for o in orders.list_orders(db, admin[0], "all")} == {o1["id"], o2["id"], o3["id"]}
    with pytest.raises(Forbidden):
        orders.list_orders(db, b1, "all")


def test_listing_is_newest_first(db, buyer, admin, place_order):
    placed = [place_order() for _ in range(3)]
    # identical timestamps fall back to id order
    db["order"].update_many({}, {"$set": {"created_at": placed[0]["created_at"]}})
    listed = orders.list_orders(db, admin[0], "all")
    assert [o["id"] for o in listed] == sorted((o["id"] for o in placed), reverse=True)


def test_get_order_visibility(db, users, buyer, seller, admin, place_order):
    order = place_order()
    for actor in (buyer[0], seller[0], admin[0]):
        assert orders.get_order(db, actor, order["id"])["id"] == order["id"]
    stranger, _ = users.make("buyer")
    with pytest.raises(Forbidden):
        orders.get_order(db, stranger, order["id"])


# ---------- update dispatch ----------

def test_dispatch_routes_buyer_fields(db, buyer, place_order):
    order = place_order()
    out = orders.apply_order_update(db, buyer[0], order["id"], {"payment_method": "MasterCard"})
    assert out["payment_status"] == "Completed"


def test_dispatch_rejects_mixed_privileges_without_writing(db, buyer, place_order):
    order = place_order()
    with pytest.raises(Forbidden):
        orders.apply_order_update(db, buyer[0], order["id"],
                                  {"shipping_address": "new", "approval_status": "Approved"})
    current = orders.get_order(db, buyer[0], order["id"])
    assert current["shipping_address"] == "X"
    assert current["approval_status"] == "Pending"


def test_dispatch_rejects_admin_editing_address(db, admin, place_order):
    order = place_order()
    with pytest.raises(Forbidden):
        orders.apply_order_update(db, admin[0], order["id"], {"shipping_address": "admin's"})


def test_dispatch_admin_payment_and_approval(db, admin, place_order):
    order = place_order(method="COD")
    out = orders.apply_order_update(db, admin[0], order["id"], {"payment_status": "Completed"})
    assert out["payment_status"] == "Completed"
    assert out["approval_status"] == "Pending"
    out = orders.apply_order_update(db, admin[0], order["id"], {"approval_status": "Rejected"})
    assert out["order_status"] == "Cancelled"


def test_dispatch_order_status(db, seller, place_order):
    order = place_order()
    with pytest.raises(ValidationError):
        orders.apply_order_update(db, seller[0], order["id"], {"order_status": "Processing"})
    out = orders.apply_order_update(db, seller[0], order["id"], {"order_status": "Delivered"})
    assert out["order_status"] == "Delivered"


def test_dispatch_rejects_reopening(db, admin, place_order):
    order = place_order()
    orders.set_approval(db, admin[0], order["id"], "Approved")
    with pytest.raises(Conflict):
        orders.apply_order_update(db, admin[0], order["id"], {"approval_status": "Pending"})


def test_dispatch_requires_fields(db, buyer, place_order):
    order = place_order()
    with pytest.raises(ValidationError):
        orders.apply_order_update(db, buyer[0], order["id"], {})
