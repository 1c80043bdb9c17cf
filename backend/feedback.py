"""
Feedback and seller ratings. Anyone may leave feedback; a signed-in caller is
recorded as its author, everyone else as a guest.
"""
import logging
from typing import Optional

from catalog import find_product, product_summary, resolve_party
from database import create_document, serialize, to_object_id
from errors import Forbidden, NotFound
from schemas import Actor, Feedback, FeedbackPayload

logger = logging.getLogger("marketplace.feedback")

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
RATINGS = (5, 4, 3, 2, 1)


def _out(db, doc: dict) -> dict:
    f = serialize(doc)
    f["user"] = resolve_party(db, doc.get("user_id"))
    f["seller"] = resolve_party(db, doc.get("seller_id"))
    f["product"] = product_summary(find_product(db, doc["product_id"])) if doc.get("product_id") else None
    return f


def submit_feedback(db, payload: FeedbackPayload, actor: Optional[Actor] = None) -> dict:
    seller_id = payload.seller_id
    if payload.product_id:
        product = find_product(db, payload.product_id)
        if not product:
            raise NotFound("Product not found")
        seller_id = seller_id or product["seller_id"]
    feedback = Feedback(
        name=payload.name.strip(),
        email=payload.email,
        message=payload.message.strip(),
        rating=payload.rating,
        user_role=actor.role if actor else "guest",
        user_id=actor.id if actor else None,
        seller_id=seller_id,
        product_id=payload.product_id,
    )
    fid = create_document("feedback", feedback, database=db)
    logger.info("Feedback %s submitted by %s, rating %s", fid, actor.id if actor else "guest", payload.rating)
    return _out(db, db["feedback"].find_one({"_id": to_object_id(fid)}))


def seller_ratings(db, seller_id: str) -> dict:
    docs = list(db["feedback"].find({"seller_id": seller_id}).sort(NEWEST_FIRST))
    ratings = [d["rating"] for d in docs if d.get("rating")]
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    return {
        "feedbacks": [_out(db, d) for d in docs],
        "average_rating": average,
        "total_ratings": len(ratings),
        "rating_distribution": {str(r): ratings.count(r) for r in RATINGS},
    }


def list_feedback(db, actor: Actor) -> list:
    if not actor.is_admin:
        raise Forbidden("Only administrators can view all feedback")
    return [_out(db, d) for d in db["feedback"].find().sort(NEWEST_FIRST)]


def delete_feedback(db, actor: Actor, feedback_id: str) -> None:
    if not actor.is_admin:
        raise Forbidden("Only administrators can delete feedback")
    res = db["feedback"].delete_one({"_id": to_object_id(feedback_id, "feedback id")})
    if res.deleted_count == 0:
        raise NotFound("Feedback not found")
    logger.info("Feedback %s deleted by admin %s", feedback_id, actor.id)
