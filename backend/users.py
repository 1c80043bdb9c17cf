"""
Admin user management: listing accounts, activating or deactivating them,
and deleting them. A deactivated account can neither log in nor use a token
it already holds.
"""
import logging

from auth import public_user
from database import get_documents, to_object_id, utcnow
from errors import Forbidden, NotFound
from schemas import Actor

logger = logging.getLogger("marketplace.users")


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Only administrators can manage users")


def _load(db, user_id: str) -> dict:
    doc = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not doc:
        raise NotFound("User not found")
    return doc


def list_users(db, actor: Actor) -> list:
    _require_admin(actor)
    docs = get_documents("user", database=db)
    docs.sort(key=lambda d: d["_id"], reverse=True)
    return [public_user(d) for d in docs]


def set_user_status(db, actor: Actor, user_id: str, is_active: bool) -> dict:
    _require_admin(actor)
    if user_id == actor.id:
        raise Forbidden("Cannot change your own status")
    doc = _load(db, user_id)
    db["user"].update_one({"_id": doc["_id"]}, {"$set": {"is_active": is_active, "updated_at": utcnow()}})
    logger.info("User %s %s by admin %s", user_id, "activated" if is_active else "deactivated", actor.id)
    return public_user(dict(doc, is_active=is_active))


def delete_user(db, actor: Actor, user_id: str) -> None:
    _require_admin(actor)
    if user_id == actor.id:
        raise Forbidden("Cannot delete your own account")
    doc = _load(db, user_id)
    if doc.get("role") == "admin":
        raise Forbidden("Cannot delete admin users")
    db["user"].delete_one({"_id": doc["_id"]})
    logger.info("User %s deleted by admin %s", user_id, actor.id)
