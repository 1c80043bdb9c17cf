"""
Product catalog store.

The catalog is the source of truth for availability: a product leaves the
"available" listings only through `mark_sold`, which is the single atomic
compare-and-swap used by checkout.
"""
import logging
import re
from typing import Optional

from pymongo import ReturnDocument

from database import create_document, serialize, to_object_id, utcnow
from errors import Conflict, Forbidden, NotFound, ValidationError
from schemas import Actor, Product, ProductPayload, ProductUpdatePayload

logger = logging.getLogger("marketplace.catalog")

PARTY_FIELDS = {"name": 1, "email": 1}


def resolve_party(db, user_id: Optional[str]) -> Optional[dict]:
    """Look up the display fields (name, email) of a referenced user."""
    if not user_id:
        return None
    try:
        oid = to_object_id(user_id, "user id")
    except ValidationError:
        return {"id": user_id}
    doc = db["user"].find_one({"_id": oid}, PARTY_FIELDS)
    return serialize(doc) if doc else {"id": user_id}


def product_summary(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    return {
        "id": str(doc["_id"]),
        "title": doc.get("title"),
        "images": doc.get("images", []),
        "category": doc.get("category"),
        "price": doc.get("price"),
        "status": doc.get("status"),
    }


def find_product(db, product_id: str) -> Optional[dict]:
    """Raw product document or None; malformed ids count as missing."""
    try:
        oid = to_object_id(product_id, "product id")
    except ValidationError:
        return None
    return db["product"].find_one({"_id": oid})


def _out(db, doc: dict) -> dict:
    product = serialize(doc)
    product["seller"] = resolve_party(db, doc.get("seller_id"))
    return product


def list_products(db, category: Optional[str] = None, status: Optional[str] = None,
                  seller: Optional[str] = None, search: Optional[str] = None,
                  location: Optional[str] = None, limit: int = 200):
    query = {}
    if category:
        query["category"] = category
    if status:
        query["status"] = status
    if seller:
        query["seller_id"] = seller
    if location:
        query["location"] = {"$regex": re.escape(location), "$options": "i"}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"title": pattern},
            {"description": pattern},
            {"category": pattern},
            {"location": pattern},
        ]
    docs = db["product"].find(query).sort([("created_at", -1), ("_id", -1)]).limit(limit)
    return [_out(db, d) for d in docs]


def get_product(db, product_id: str, count_view: bool = True) -> dict:
    oid = to_object_id(product_id, "product id")
    if count_view:
        doc = db["product"].find_one_and_update(
            {"_id": oid},
            {"$inc": {"views": 1}},
            return_document=ReturnDocument.AFTER,
        )
    else:
        doc = db["product"].find_one({"_id": oid})
    if not doc:
        raise NotFound("Product not found")
    return _out(db, doc)


def create_product(db, actor: Actor, payload: ProductPayload) -> dict:
    if actor.role not in ("seller", "admin"):
        raise Forbidden(f"User with role '{actor.role}' is not authorized to create products")
    product = Product(**payload.model_dump(), seller_id=actor.id)
    pid = create_document("product", product, database=db)
    logger.info("Product %s listed by %s", pid, actor.id)
    return get_product(db, pid, count_view=False)


def _owned(db, actor: Actor, product_id: str) -> dict:
    oid = to_object_id(product_id, "product id")
    doc = db["product"].find_one({"_id": oid})
    if not doc:
        raise NotFound("Product not found")
    if not actor.is_admin and doc.get("seller_id") != actor.id:
        raise Forbidden("Not authorized")
    return doc


def update_product(db, actor: Actor, product_id: str, changes: ProductUpdatePayload) -> dict:
    doc = _owned(db, actor, product_id)
    # status, sold_at, seller_id and views are not part of the payload model
    update = changes.model_dump(exclude_unset=True, exclude_none=True)
    update["updated_at"] = utcnow()
    db["product"].update_one({"_id": doc["_id"]}, {"$set": update})
    return get_product(db, product_id, count_view=False)


def delete_product(db, actor: Actor, product_id: str) -> None:
    doc = _owned(db, actor, product_id)
    db["product"].delete_one({"_id": doc["_id"]})
    logger.info("Product %s deleted by %s", product_id, actor.id)


def mark_sold(db, product_id: str) -> dict:
    """Atomically flip a product from available to sold.

    Returns the product as it was before the flip. Raises NotFound when the
    product does not exist and Conflict when it is no longer available.
    """
    oid = to_object_id(product_id, "product id")
    now = utcnow()
    before = db["product"].find_one_and_update(
        {"_id": oid, "status": "available"},
        {"$set": {"status": "sold", "sold_at": now, "updated_at": now}},
        return_document=ReturnDocument.BEFORE,
    )
    if before is None:
        if db["product"].find_one({"_id": oid}, {"_id": 1}) is None:
            raise NotFound("Product not found")
        logger.warning("Product %s is not available for checkout", product_id)
        raise Conflict("Product is not available")
    logger.info("Product %s marked sold", product_id)
    return before
