"""
API Schemas for FreshMart (Grocery Store)

Request bodies are validated with these Pydantic models; the *Out / *View
models are built from ORM rows (from_attributes) and are what the components
hand back to the HTTP layer.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------- Users ----------------------

class UserSummary(OrmModel):
    id: int
    full_name: str
    email: EmailStr
    role: str


class UserOut(OrmModel):
    """
    Users table, without credential columns.
    """
    id: int
    full_name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    role: str = Field("user", description="Role: user or admin")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegisterRequest(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6, max_length=72)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=72)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    role: str = "user"
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6, max_length=72)
    role: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserSummary


# ---------------------- Catalog ----------------------

class CategoryOut(OrmModel):
    id: int
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    product_count: Optional[int] = None
    created_at: Optional[datetime] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Category name")
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    image: Optional[str] = None


class ProductOut(OrmModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    original_price: Optional[float] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    image: Optional[str] = None
    unit: str = "each"
    stock: int
    featured: bool = False
    created_at: Optional[datetime] = None


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: float = Field(..., gt=0, description="Selling price")
    original_price: Optional[float] = Field(None, gt=0, description="List price shown struck through")
    category_id: int
    image: Optional[str] = None
    unit: str = Field("each", max_length=50)
    stock: int = Field(0, ge=0, description="Units in stock")
    featured: bool = Field(False, description="Whether featured on homepage")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    category_id: Optional[int] = None
    image: Optional[str] = None
    unit: Optional[str] = Field(None, max_length=50)
    stock: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None


class ProductPage(BaseModel):
    products: List[ProductOut]
    count: int
    total: int
    total_pages: int
    current_page: int


# ---------------------- Cart ----------------------

class CartItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    name: str
    price: float
    original_price: Optional[float] = None
    unit: Optional[str] = None
    image: Optional[str] = None


class CartView(BaseModel):
    cart_id: int
    items: List[CartItemOut] = Field(default_factory=list)
    item_count: int = 0
    subtotal: float = 0
    discount: float = 0


class CartAddRequest(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartQuantityUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


# ---------------------- Orders ----------------------

class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, ge=0, description="Unit price the client saw; must match the current price")


class OrderIn(BaseModel):
    shipping_address: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1, max_length=50)
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderStatusUpdate(BaseModel):
    status: str
    payment_status: Optional[str] = None


class OrderItemOut(BaseModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: float
    name: Optional[str] = None
    image: Optional[str] = None


class OrderCustomer(BaseModel):
    full_name: str
    email: EmailStr


class OrderOut(BaseModel):
    id: int
    user_id: int
    total_amount: float
    status: str = Field("pending", description="pending | processing | shipped | delivered | cancelled")
    payment_status: str = Field("pending", description="pending | completed | failed")
    shipping_address: str
    payment_method: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = Field(default_factory=list)
    user: Optional[OrderCustomer] = None


class TopProduct(BaseModel):
    id: int
    name: str
    price: float
    image: Optional[str] = None
    sales: int


class DashboardStats(BaseModel):
    total_products: int
    total_categories: int
    total_users: int
    total_orders: int
    recent_orders: List[OrderOut]
    top_products: List[TopProduct]


# ---------------------- Wishlist ----------------------

class WishlistAdd(BaseModel):
    product_id: int


class WishlistItemOut(BaseModel):
    id: int
    product_id: int
    name: str
    price: float
    original_price: Optional[float] = None
    unit: Optional[str] = None
    image: Optional[str] = None
    discount: int = Field(0, description="Percentage off the original price")
