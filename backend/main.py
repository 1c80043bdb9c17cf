import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import auth
import cart as cart_store
import catalog
import feedback as feedback_store
import orders
import users as user_admin
import wishlist as wishlist_store
from auth import current_actor, current_user, optional_actor, require_role
from database import ensure_indexes, get_db
from errors import MarketplaceError
from schemas import (
    Actor,
    AuthOut,
    CartItemPayload,
    CartOut,
    CartQuantityPayload,
    CreateOrderPayload,
    FeedbackOut,
    FeedbackPayload,
    LoginPayload,
    OrderOut,
    OrderUpdatePayload,
    ProductOut,
    ProductPayload,
    ProductUpdatePayload,
    RegisterPayload,
    SellerRatingsOut,
    UserOut,
    UserStatusPayload,
    WishlistEntryOut,
    WishlistPayload,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("marketplace.api")

app = FastAPI(title="Second-hand Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.on_event("startup")
def prepare_database():
    from database import db as _db
    if _db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return
    ensure_indexes(_db)


@app.get("/")
def root():
    return {"status": "ok", "service": "Marketplace Backend"}


@app.get("/test")
def test_database():
    from database import db as _db
    ok = _db is not None
    return {
        "backend": "✅ Running",
        "database": "✅ Connected" if ok else "❌ Not Connected",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "-",
        "collections": (list(_db.list_collection_names()) if ok else []),
    }


# ========== AUTH ==========

@app.post("/api/auth/register", response_model=AuthOut, status_code=201)
def register(body: RegisterPayload, db=Depends(get_db)):
    return auth.register(db, body)


@app.post("/api/auth/login", response_model=AuthOut)
def login(body: LoginPayload, db=Depends(get_db)):
    return auth.login(db, body.email, body.password)


@app.get("/api/auth/me", response_model=UserOut)
def me(user: dict = Depends(current_user)):
    return auth.public_user(user)


# ========== PRODUCTS ==========

@app.get("/api/products", response_model=List[ProductOut])
def list_products(
    category: Optional[str] = None,
    status: Optional[str] = None,
    seller: Optional[str] = None,
    search: Optional[str] = Query(default=None, description="Search title, description, category, location"),
    location: Optional[str] = None,
    db=Depends(get_db),
):
    return catalog.list_products(db, category=category, status=status, seller=seller,
                                 search=search, location=location)


@app.get("/api/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db=Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(body: ProductPayload, actor: Actor = Depends(require_role("seller", "admin")), db=Depends(get_db)):
    return catalog.create_product(db, actor, body)


@app.put("/api/products/{product_id}", response_model=ProductOut)
def update_product(product_id: str, body: ProductUpdatePayload, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return catalog.update_product(db, actor, product_id, body)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    catalog.delete_product(db, actor, product_id)
    return {"deleted": True}


# ========== CART ==========

@app.get("/api/cart", response_model=CartOut)
def get_cart(actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return cart_store.get_cart(db, actor.id)


@app.post("/api/cart", response_model=CartOut)
def add_to_cart(body: CartItemPayload, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return cart_store.add_to_cart(db, actor.id, body.product_id, body.quantity)


@app.put("/api/cart/items/{product_id}", response_model=CartOut)
def update_cart_item(product_id: str, body: CartQuantityPayload, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return cart_store.update_cart_item(db, actor.id, product_id, body.quantity)


@app.delete("/api/cart/items/{product_id}", response_model=CartOut)
def remove_cart_item(product_id: str, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return cart_store.remove_from_cart(db, actor.id, product_id)


@app.delete("/api/cart", response_model=CartOut)
def clear_cart(actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return cart_store.clear_cart(db, actor.id)


# ========== WISHLIST ==========

@app.get("/api/wishlist", response_model=List[WishlistEntryOut])
def get_wishlist(actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return wishlist_store.get_wishlist(db, actor.id)


@app.post("/api/wishlist", response_model=List[WishlistEntryOut])
def add_wishlist(body: WishlistPayload, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return wishlist_store.add_to_wishlist(db, actor.id, body.product_id)


@app.delete("/api/wishlist/{product_id}", response_model=List[WishlistEntryOut])
def remove_wishlist(product_id: str, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return wishlist_store.remove_from_wishlist(db, actor.id, product_id)


# ========== ORDERS ==========

@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(body: CreateOrderPayload, actor: Actor = Depends(require_role("buyer")), db=Depends(get_db)):
    order = orders.create_order(db, actor, body.product_id, body.payment_method, body.shipping_address)
    if body.remove_from_cart:
        # best effort, the order stands whatever happens here
        try:
            cart_store.remove_from_cart(db, actor.id, body.product_id)
        except Exception:
            logger.warning("Post-checkout cart cleanup failed for order %s", order["id"], exc_info=True)
    return order


@app.get("/api/orders/mine", response_model=List[OrderOut])
def my_orders(actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return orders.list_orders(db, actor, scope="mine")


@app.get("/api/orders", response_model=List[OrderOut])
def all_orders(actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    return orders.list_orders(db, actor, scope="all")


@app.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    return orders.get_order(db, actor, order_id)


@app.api_route("/api/orders/{order_id}", methods=["PATCH", "PUT"], response_model=OrderOut)
def update_order(order_id: str, body: OrderUpdatePayload, actor: Actor = Depends(current_actor), db=Depends(get_db)):
    changes = body.model_dump(exclude_none=True)
    return orders.apply_order_update(db, actor, order_id, changes)


# ========== FEEDBACK ==========

@app.post("/api/feedback", response_model=FeedbackOut, status_code=201)
def submit_feedback(body: FeedbackPayload, actor: Optional[Actor] = Depends(optional_actor), db=Depends(get_db)):
    return feedback_store.submit_feedback(db, body, actor)


@app.get("/api/feedback/seller/{seller_id}", response_model=SellerRatingsOut)
def seller_ratings(seller_id: str, db=Depends(get_db)):
    return feedback_store.seller_ratings(db, seller_id)


@app.get("/api/feedback", response_model=List[FeedbackOut])
def all_feedback(actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    return feedback_store.list_feedback(db, actor)


@app.delete("/api/feedback/{feedback_id}")
def delete_feedback(feedback_id: str, actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    feedback_store.delete_feedback(db, actor, feedback_id)
    return {"deleted": True}


# ========== USERS (admin) ==========

@app.get("/api/users", response_model=List[UserOut])
def list_users(actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    return user_admin.list_users(db, actor)


@app.patch("/api/users/{user_id}/status", response_model=UserOut)
def set_user_status(user_id: str, body: UserStatusPayload, actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    return user_admin.set_user_status(db, actor, user_id, body.is_active)


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, actor: Actor = Depends(require_role("admin")), db=Depends(get_db)):
    user_admin.delete_user(db, actor, user_id)
    return {"deleted": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
