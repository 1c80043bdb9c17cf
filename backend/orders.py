"""
Order lifecycle.

approval_status is the controlling field and only ever moves one way:

    Pending --Approved--> Approved
    Pending --Rejected--> Rejected

order_status follows it (Confirmed on approval, Cancelled on rejection)
except for Delivered, which the seller or an admin sets explicitly.
payment_status is Completed immediately for card methods and on approval
or delivery otherwise.

Each named operation checks its own preconditions and fails closed with one
of the errors in `errors`. `apply_order_update` is the dispatch used by the
single update endpoint: it maps the requested fields to those operations and
authorises all of them before writing anything.
"""
import logging
from typing import Optional

from pymongo import ReturnDocument

from catalog import find_product, mark_sold, product_summary, resolve_party
from database import create_document, serialize, to_object_id, utcnow
from errors import Conflict, Forbidden, NotFound, ValidationError
from schemas import CARD_METHODS, PAYMENT_METHODS, Actor, Order

logger = logging.getLogger("marketplace.orders")

EDIT_FIELDS = ("shipping_address", "payment_method")
APPROVAL_DECISIONS = ("Approved", "Rejected")
PAYMENT_STATUSES = ("Pending", "Completed")


def payment_status_for(method: str) -> str:
    return "Completed" if method in CARD_METHODS else "Pending"


def _check_method(method: str) -> None:
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method '{method}'")


def _load(db, order_id: str) -> dict:
    doc = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not doc:
        raise NotFound("Order not found")
    return doc


def render(db, doc: dict) -> dict:
    """Order with product, buyer and seller resolved for display."""
    order = serialize(doc)
    order["product"] = product_summary(find_product(db, doc["product_id"]))
    order["buyer"] = resolve_party(db, doc["buyer_id"])
    order["seller"] = resolve_party(db, doc["seller_id"])
    return order


def _set(db, doc: dict, fields: dict, guard: Optional[dict] = None) -> Optional[dict]:
    fields = dict(fields, updated_at=utcnow())
    query = {"_id": doc["_id"]}
    query.update(guard or {})
    return db["order"].find_one_and_update(
        query,
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )


# ---------- permission checks, shared by the operations and the dispatcher ----------

def _can_edit(actor: Actor, doc: dict) -> None:
    if actor.role != "buyer" or doc["buyer_id"] != actor.id:
        raise Forbidden("Only the buyer can edit this order")
    if doc["approval_status"] != "Pending":
        raise Forbidden(f"Order is already {doc['approval_status'].lower()} and can no longer be edited")


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin access required")


def _can_deliver(actor: Actor, doc: dict) -> None:
    if not actor.is_admin and not (actor.role == "seller" and doc["seller_id"] == actor.id):
        raise Forbidden("Only the seller or an admin can mark this order delivered")


# ---------- operations ----------

def create_order(db, buyer: Actor, product_id: str, payment_method: str, shipping_address: str) -> dict:
    if buyer.role != "buyer":
        raise Forbidden(f"User with role '{buyer.role}' cannot place orders")
    _check_method(payment_method)
    if not shipping_address or not shipping_address.strip():
        raise ValidationError("Shipping address is required")

    # the product flip is the only guard against double checkout
    product = mark_sold(db, product_id)

    order = Order(
        product_id=product_id,
        buyer_id=buyer.id,
        seller_id=product["seller_id"],
        price=product["price"],
        payment_method=payment_method,
        shipping_address=shipping_address.strip(),
        payment_status=payment_status_for(payment_method),
    )
    try:
        oid = create_document("order", order, database=db)
    except Exception:
        logger.error("Product %s was marked sold but its order could not be written", product_id)
        raise
    logger.info("Order %s created: product=%s buyer=%s method=%s", oid, product_id, buyer.id, payment_method)
    return render(db, _load(db, oid))


def edit_pending_order(db, actor: Actor, order_id: str, shipping_address: Optional[str] = None,
                       payment_method: Optional[str] = None) -> dict:
    doc = _load(db, order_id)
    _can_edit(actor, doc)

    fields = {}
    if shipping_address is not None:
        if not shipping_address.strip():
            raise ValidationError("Shipping address cannot be empty")
        fields["shipping_address"] = shipping_address.strip()
    if payment_method is not None:
        _check_method(payment_method)
        fields["payment_method"] = payment_method
        fields["payment_status"] = payment_status_for(payment_method)
    if not fields:
        return render(db, doc)

    updated = _set(db, doc, fields, guard={"approval_status": "Pending", "buyer_id": actor.id})
    if updated is None:
        # an approval decision landed between the read and the write
        logger.warning("Edit of order %s lost to an approval decision", order_id)
        raise Forbidden("Order can no longer be edited")
    logger.info("Order %s edited by buyer %s: %s", order_id, actor.id, sorted(fields))
    return render(db, updated)


def set_approval(db, actor: Actor, order_id: str, decision: str) -> dict:
    _require_admin(actor)
    if decision not in APPROVAL_DECISIONS:
        raise ValidationError(f"Invalid approval decision '{decision}'")
    doc = _load(db, order_id)

    current = doc["approval_status"]
    if current == decision:
        return render(db, doc)
    if current != "Pending":
        raise Conflict(f"Order is already {current.lower()}")

    delivered = doc["order_status"] == "Delivered"
    if decision == "Rejected" and delivered:
        raise Conflict("A delivered order cannot be rejected")

    if decision == "Approved":
        fields = {"approval_status": "Approved", "payment_status": "Completed"}
        if not delivered:
            fields["order_status"] = "Confirmed"
    else:
        fields = {"approval_status": "Rejected", "order_status": "Cancelled"}

    updated = _set(db, doc, fields, guard={"approval_status": "Pending", "order_status": doc["order_status"]})
    if updated is None:
        updated = _load(db, order_id)
        if updated["approval_status"] != decision:
            raise Conflict("Order was modified concurrently")
    # product stays sold on rejection
    logger.info("Order %s %s by admin %s", order_id, decision.lower(), actor.id)
    return render(db, updated)


def set_payment_status(db, actor: Actor, order_id: str, status: str) -> dict:
    _require_admin(actor)
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status '{status}'")
    doc = _load(db, order_id)
    if doc["payment_status"] == status:
        return render(db, doc)
    updated = _set(db, doc, {"payment_status": status})
    logger.info("Order %s payment set to %s by admin %s", order_id, status, actor.id)
    return render(db, updated)


def mark_delivered(db, actor: Actor, order_id: str) -> dict:
    doc = _load(db, order_id)
    _can_deliver(actor, doc)
    if doc["order_status"] == "Delivered":
        return render(db, doc)
    if doc["order_status"] == "Cancelled":
        raise Conflict("A cancelled order cannot be delivered")

    now = utcnow()
    updated = _set(
        db, doc,
        {"order_status": "Delivered", "delivered_at": now, "payment_status": "Completed"},
        guard={"order_status": {"$ne": "Cancelled"}},
    )
    if updated is None:
        raise Conflict("A cancelled order cannot be delivered")
    logger.info("Order %s delivered, marked by %s", order_id, actor.id)
    return render(db, updated)


def get_order(db, actor: Actor, order_id: str) -> dict:
    doc = _load(db, order_id)
    if not actor.is_admin and actor.id not in (doc["buyer_id"], doc["seller_id"]):
        raise Forbidden("Not authorized")
    return render(db, doc)


def list_orders(db, actor: Actor, scope: str = "mine") -> list:
    if scope == "all":
        _require_admin(actor)
        query = {}
    elif scope == "mine":
        if actor.role == "buyer":
            query = {"buyer_id": actor.id}
        elif actor.role == "seller":
            query = {"seller_id": actor.id}
        else:
            query = {}
    else:
        raise ValidationError(f"Invalid scope '{scope}'")

    docs = db["order"].find(query).sort([("created_at", -1), ("_id", -1)])
    return [render(db, d) for d in docs]


# ---------- update endpoint dispatch ----------

def apply_order_update(db, actor: Actor, order_id: str, changes: dict) -> dict:
    """Run the operations implied by the fields of one update request.

    `changes` holds snake_case keys with non-null values. Every requested
    group is authorised up front, so a request mixing allowed and forbidden
    fields writes nothing.
    """
    unknown = set(changes) - set(EDIT_FIELDS) - {"payment_status", "approval_status", "order_status"}
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValidationError("No updatable fields provided")

    doc = _load(db, order_id)
    edits = {k: changes[k] for k in EDIT_FIELDS if k in changes}
    if edits:
        _can_edit(actor, doc)
    if "payment_status" in changes or "approval_status" in changes:
        _require_admin(actor)
    decision = changes.get("approval_status")
    if decision is not None and decision != doc["approval_status"]:
        if doc["approval_status"] != "Pending" or decision == "Pending":
            raise Conflict(f"Order is already {doc['approval_status'].lower()}")
        if decision == "Rejected" and doc["order_status"] == "Delivered":
            raise Conflict("A delivered order cannot be rejected")
    if "order_status" in changes:
        if changes["order_status"] != "Delivered":
            raise ValidationError("Order status can only be set to Delivered")
        _can_deliver(actor, doc)
        if decision == "Rejected" or (doc["order_status"] == "Cancelled" and decision is None):
            raise Conflict("A cancelled order cannot be delivered")

    result = render(db, doc)
    if edits:
        result = edit_pending_order(db, actor, order_id, **edits)
    if "payment_status" in changes:
        result = set_payment_status(db, actor, order_id, changes["payment_status"])
    if decision in APPROVAL_DECISIONS:
        result = set_approval(db, actor, order_id, decision)
    if "order_status" in changes:
        result = mark_delivered(db, actor, order_id)
    return result
