"""
Per-user cart store.

Cart lines are independent of order state: selling a product does not prune
the lines that reference it, they are returned flagged `available: False`.
"""
import logging

from catalog import find_product, product_summary
from database import utcnow
from errors import Conflict, NotFound, ValidationError

logger = logging.getLogger("marketplace.cart")


def _load(db, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        db["cart"].update_one(
            {"user_id": user_id},
            {"$setOnInsert": {"items": [], "updated_at": utcnow()}},
            upsert=True,
        )
        cart = db["cart"].find_one({"user_id": user_id})
    return cart


def _save(db, user_id: str, items: list) -> None:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": utcnow()}},
        upsert=True,
    )


def _render(db, cart: dict) -> dict:
    lines = []
    for item in cart.get("items", []):
        product = find_product(db, item["product_id"])
        lines.append({
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            "product": product_summary(product),
            "available": bool(product) and product.get("status") == "available",
        })
    return {"user_id": cart["user_id"], "items": lines, "updated_at": cart.get("updated_at")}


def get_cart(db, user_id: str) -> dict:
    return _render(db, _load(db, user_id))


def add_to_cart(db, user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product = find_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    if product.get("status") != "available":
        raise Conflict("Product is not available")

    items = _load(db, user_id)["items"]
    for it in items:
        if it["product_id"] == product_id:
            it["quantity"] += quantity
            break
    else:
        items.append({"product_id": product_id, "quantity": quantity})
    _save(db, user_id, items)
    return get_cart(db, user_id)


def update_cart_item(db, user_id: str, product_id: str, quantity: int) -> dict:
    """Set a line's quantity; 0 removes the line."""
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    items = _load(db, user_id)["items"]
    if not any(it["product_id"] == product_id for it in items):
        raise NotFound("Item not found in cart")
    if quantity == 0:
        items = [it for it in items if it["product_id"] != product_id]
    else:
        for it in items:
            if it["product_id"] == product_id:
                it["quantity"] = quantity
    _save(db, user_id, items)
    return get_cart(db, user_id)


def remove_from_cart(db, user_id: str, product_id: str) -> dict:
    items = _load(db, user_id)["items"]
    remaining = [it for it in items if it["product_id"] != product_id]
    if len(remaining) == len(items):
        raise NotFound("Item not found in cart")
    _save(db, user_id, remaining)
    return get_cart(db, user_id)


def clear_cart(db, user_id: str) -> dict:
    logger.info("Cart cleared for %s", user_id)
    _save(db, user_id, [])
    return get_cart(db, user_id)
