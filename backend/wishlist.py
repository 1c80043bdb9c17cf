"""
Per-user wishlist store: one document per (user_id, product_id), kept unique
by a compound index.
"""
import logging

from pymongo.errors import DuplicateKeyError

from catalog import find_product, product_summary
from database import create_document
from errors import Conflict, NotFound
from schemas import Wishlist

logger = logging.getLogger("marketplace.wishlist")


def get_wishlist(db, user_id: str) -> list:
    entries = db["wishlist"].find({"user_id": user_id}).sort([("created_at", -1), ("_id", -1)])
    res = []
    for e in entries:
        product = find_product(db, e["product_id"])
        res.append({
            "product_id": e["product_id"],
            "added_at": e.get("created_at"),
            "product": product_summary(product),
            "available": bool(product) and product.get("status") == "available",
        })
    return res


def add_to_wishlist(db, user_id: str, product_id: str) -> list:
    if not find_product(db, product_id):
        raise NotFound("Product not found")
    if db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}):
        raise Conflict("Product already in wishlist")
    try:
        create_document("wishlist", Wishlist(user_id=user_id, product_id=product_id), database=db)
    except DuplicateKeyError:
        raise Conflict("Product already in wishlist")
    logger.info("Product %s wishlisted by %s", product_id, user_id)
    return get_wishlist(db, user_id)


def remove_from_wishlist(db, user_id: str, product_id: str) -> list:
    res = db["wishlist"].delete_one({"user_id": user_id, "product_id": product_id})
    if res.deleted_count == 0:
        raise NotFound("Product not in wishlist")
    return get_wishlist(db, user_id)
