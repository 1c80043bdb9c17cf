"""
Credential store and bearer tokens.

Login is a plain lookup against the stored user: the role returned with the
token is the stored role, nothing else. The first admin account is created
out of band with `provision_admin.py`.
"""
import hashlib
import hmac
import logging
import os
import re
import secrets
from datetime import timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException

from database import create_document, get_db, serialize, to_object_id, utcnow
from errors import Conflict, Forbidden, Unauthorized, ValidationError
from schemas import Actor, RegisterPayload, User

logger = logging.getLogger("marketplace.auth")

TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "168"))
PBKDF2_ROUNDS = 120_000
PHONE_RE = re.compile(r"^\d{10}$")
PUBLIC_FIELDS = ("id", "name", "email", "role", "phone", "address", "location", "is_active")


def hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS).hex()


def verify_password(password: str, user: dict) -> bool:
    if not user.get("password_hash") or not user.get("salt"):
        return False
    return hmac.compare_digest(hash_password(password, user["salt"]), user["password_hash"])


def public_user(doc: dict) -> dict:
    u = serialize(doc)
    return {k: u.get(k) for k in PUBLIC_FIELDS}


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    if phone is None or not phone.strip():
        return None
    phone = phone.strip()
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone number must be exactly 10 digits (numbers only)")
    return phone


def new_user(name: str, email: str, password: str, role: str = "buyer", **extra) -> User:
    salt = secrets.token_hex(16)
    return User(
        name=name,
        email=email.lower().strip(),
        password_hash=hash_password(password, salt),
        salt=salt,
        role=role,
        **extra,
    )


def issue_token(db, user: dict) -> str:
    token = secrets.token_hex(32)
    now = utcnow()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "token": token,
            "token_expires_at": now + timedelta(hours=TOKEN_TTL_HOURS),
            "last_active": now,
        }},
    )
    return token


def register(db, payload: RegisterPayload) -> dict:
    if payload.role == "admin":
        raise Forbidden("Admin accounts cannot be self-registered")
    email = payload.email.lower().strip()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists")

    user = new_user(
        payload.name,
        email,
        payload.password,
        role=payload.role,
        phone=normalize_phone(payload.phone),
        address=payload.address,
        location=payload.location.strip() if payload.location else None,
    )
    uid = create_document("user", user, database=db)
    doc = db["user"].find_one({"_id": to_object_id(uid)})
    token = issue_token(db, doc)
    logger.info("Registered %s as %s", uid, payload.role)
    return {"token": token, "user": public_user(doc)}


def login(db, email: str, password: str) -> dict:
    if not email or not password:
        raise ValidationError("Please provide email and password")
    normalized = email.lower().strip()
    u = db["user"].find_one({"email": normalized})
    if not u or not verify_password(password, u):
        logger.warning("Login failed for %s", normalized)
        raise Unauthorized("Invalid credentials")
    if u.get("role") != "admin" and u.get("is_active") is False:
        logger.warning("Login refused for deactivated account %s", normalized)
        raise Forbidden("Your account has been deactivated. Please contact administrator.")
    token = issue_token(db, u)
    logger.info("Login successful for %s, role: %s", normalized, u.get("role"))
    return {"token": token, "user": public_user(u)}


def user_from_token(db, token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    user = db["user"].find_one({"token": token})
    if not user:
        return None
    if user.get("role") != "admin" and user.get("is_active") is False:
        return None
    expires = user.get("token_expires_at")
    if expires is not None:
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if expires <= utcnow():
            return None
    return user


# ---------- FastAPI dependencies ----------

def bearer_token(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1]
    return None


def current_user(db=Depends(get_db), token: Optional[str] = Depends(bearer_token)) -> dict:
    user = user_from_token(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def current_actor(user: dict = Depends(current_user)) -> Actor:
    return Actor(id=str(user["_id"]), role=user.get("role", "buyer"))


def require_role(*roles: str):
    def dependency(actor: Actor = Depends(current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"User role '{actor.role}' is not authorized to access this route",
            )
        return actor
    return dependency


def optional_actor(db=Depends(get_db), token: Optional[str] = Depends(bearer_token)) -> Optional[Actor]:
    """Caller if a valid token was sent, otherwise None (public routes)."""
    user = user_from_token(db, token)
    if not user:
        return None
    return Actor(id=str(user["_id"]), role=user.get("role", "buyer"))
