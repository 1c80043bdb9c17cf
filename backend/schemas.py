"""
Database Schemas for the Second-hand Marketplace
Each Pydantic model represents a MongoDB collection (collection name = class name lowercased).
Stored fields are snake_case; the API speaks camelCase through the *Out / *Payload models.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

Role = Literal["buyer", "seller", "admin"]
Condition = Literal["New", "Like New", "Good", "Fair", "Poor"]
ProductStatus = Literal["available", "sold"]
PaymentMethod = Literal["COD", "Visa", "MasterCard"]
PaymentStatus = Literal["Pending", "Completed"]
OrderStatus = Literal["Pending", "Processing", "Confirmed", "Cancelled", "Delivered"]
ApprovalStatus = Literal["Pending", "Approved", "Rejected"]

PAYMENT_METHODS = ("COD", "Visa", "MasterCard")
CARD_METHODS = ("Visa", "MasterCard")
MAX_IMAGES = 5


class Actor(BaseModel):
    """Authenticated caller as asserted by the auth layer."""
    model_config = ConfigDict(frozen=True)

    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Core users
class User(BaseModel):
    email: EmailStr
    password_hash: str
    salt: str
    name: str
    role: Role = Field(default="buyer", description="buyer | seller | admin")
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    is_active: bool = True
    token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    last_active: Optional[datetime] = None

# Products
class Product(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(ge=0)
    category: str
    condition: Condition = "Good"
    images: List[str] = Field(default_factory=list, max_length=MAX_IMAGES)
    location: Optional[str] = None
    status: ProductStatus = "available"
    seller_id: str
    views: int = 0
    sold_at: Optional[datetime] = None

# Cart lines, embedded in one cart document per user
class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)

class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)

# Wishlist, one document per (user, product)
class Wishlist(BaseModel):
    user_id: str
    product_id: str

# Feedback and seller ratings
class Feedback(BaseModel):
    name: str
    email: Optional[EmailStr] = None
    message: str
    rating: int = Field(default=5, ge=1, le=5)
    user_role: str = Field(default="guest", description="guest | buyer | seller | admin")
    user_id: Optional[str] = None
    seller_id: Optional[str] = None
    product_id: Optional[str] = None

# Orders
class Order(BaseModel):
    product_id: str
    buyer_id: str
    seller_id: str
    price: float = Field(ge=0, description="snapshot of product price at checkout")
    payment_method: PaymentMethod
    shipping_address: str
    payment_status: PaymentStatus = "Pending"
    order_status: OrderStatus = "Pending"
    approval_status: ApprovalStatus = "Pending"
    delivered_at: Optional[datetime] = None


# ---------- request payloads ----------

class RegisterPayload(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=4)
    role: Role = "buyer"
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None

class LoginPayload(CamelModel):
    email: str
    password: str

class ProductPayload(CamelModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(ge=0)
    category: str
    condition: Condition = "Good"
    images: List[str] = Field(default_factory=list, max_length=MAX_IMAGES)
    location: Optional[str] = None

class ProductUpdatePayload(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    condition: Optional[Condition] = None
    images: Optional[List[str]] = Field(None, max_length=MAX_IMAGES)
    location: Optional[str] = None

class CartItemPayload(CamelModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)

class CartQuantityPayload(CamelModel):
    quantity: int

class WishlistPayload(CamelModel):
    product_id: str

class FeedbackPayload(CamelModel):
    name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    message: str = Field(..., min_length=1)
    rating: int = Field(default=5, ge=1, le=5)
    seller_id: Optional[str] = None
    product_id: Optional[str] = None

class UserStatusPayload(CamelModel):
    is_active: bool

class CreateOrderPayload(CamelModel):
    product_id: str
    payment_method: PaymentMethod
    shipping_address: str = Field(..., min_length=1)
    remove_from_cart: bool = False

class OrderUpdatePayload(CamelModel):
    # fields outside these five (price, buyerId, ...) are rejected, not dropped
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    shipping_address: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[PaymentStatus] = None
    approval_status: Optional[ApprovalStatus] = None
    order_status: Optional[OrderStatus] = None


# ---------- responses ----------

class PartyOut(CamelModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None

class UserOut(CamelModel):
    id: str
    name: str
    email: str
    role: Role
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    is_active: bool = True

class AuthOut(CamelModel):
    token: str
    user: UserOut

class ProductOut(CamelModel):
    id: str
    title: str
    description: Optional[str] = None
    price: float
    category: str
    condition: Condition
    images: List[str] = []
    location: Optional[str] = None
    status: ProductStatus
    seller_id: str
    seller: Optional[PartyOut] = None
    views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sold_at: Optional[datetime] = None

class ProductSummaryOut(CamelModel):
    id: str
    title: Optional[str] = None
    images: List[str] = []
    category: Optional[str] = None
    price: Optional[float] = None
    status: Optional[ProductStatus] = None

class CartLineOut(CamelModel):
    product_id: str
    quantity: int
    product: Optional[ProductSummaryOut] = None
    available: bool

class CartOut(CamelModel):
    user_id: str
    items: List[CartLineOut] = []
    updated_at: Optional[datetime] = None

class WishlistEntryOut(CamelModel):
    product_id: str
    added_at: Optional[datetime] = None
    product: Optional[ProductSummaryOut] = None
    available: bool

class OrderOut(CamelModel):
    id: str
    product_id: str
    buyer_id: str
    seller_id: str
    product: Optional[ProductSummaryOut] = None
    buyer: Optional[PartyOut] = None
    seller: Optional[PartyOut] = None
    price: float
    payment_method: PaymentMethod
    shipping_address: str
    payment_status: PaymentStatus
    order_status: OrderStatus
    approval_status: ApprovalStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

class FeedbackOut(CamelModel):
    id: str
    name: str
    email: Optional[str] = None
    message: str
    rating: int
    user_role: str
    user_id: Optional[str] = None
    seller_id: Optional[str] = None
    product_id: Optional[str] = None
    user: Optional[PartyOut] = None
    seller: Optional[PartyOut] = None
    product: Optional[ProductSummaryOut] = None
    created_at: Optional[datetime] = None

class SellerRatingsOut(CamelModel):
    feedbacks: List[FeedbackOut] = []
    average_rating: float
    total_ratings: int
    rating_distribution: Dict[str, int]
