"""
API Schemas for the PolyForm storefront

Each Pydantic model describes a request body or response of the HTTP API.
Field names are snake_case in Python and camelCase on the wire, matching the
storefront client.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderStatus(str, Enum):
    pending = "pending"
    shipped = "shipped"
    delivered = "delivered"


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True, protected_namespaces=())


# Products

class ProductIn(ApiModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    category: str = Field(..., min_length=1)
    image_url: str = Field("", alias="imageUrl")
    model_url: str = Field("", alias="modelUrl")
    gallery: List[str] = Field(default_factory=list)
    stock: int = Field(10, ge=0)


class Product(ProductIn):
    id: int


class InventoryItem(ApiModel):
    id: int
    name: str
    stock: int


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


# Orders

class CartItem(ApiModel):
    """A cart line as submitted at checkout."""
    id: int
    name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    quantity: int = Field(..., ge=1)


class OrderCreate(ApiModel):
    customer_email: EmailStr = Field(..., alias="customerEmail")
    items: List[CartItem] = Field(..., min_length=1)
    total: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    shipping_address: Optional[str] = Field(default=None, alias="shippingAddress")


class OrderItem(ApiModel):
    id: int
    name: str
    price: Decimal
    quantity: int


class Order(ApiModel):
    id: int
    customer_email: str = Field(..., alias="customerEmail")
    items: List[OrderItem]
    total: Decimal
    status: OrderStatus
    created_at: datetime = Field(..., alias="date")
    shipping_address: Optional[str] = Field(default=None, alias="shippingAddress")


class OrderCreated(BaseModel):
    id: int


class StatusChange(BaseModel):
    status: OrderStatus


# Wishlist

class WishlistAdd(ApiModel):
    product_id: int = Field(..., alias="productId")


# Settings

class StoreSettings(ApiModel):
    """Typed view over the key/value rows of the settings table."""
    store_name: str = Field("PolyForm Store", alias="storeName")
    smtp_host: Optional[str] = Field(default=None, alias="smtpHost")
    smtp_user: Optional[str] = Field(default=None, alias="smtpUser")
    smtp_pass: Optional[str] = Field(default=None, alias="smtpPass")
    admin_email: Optional[str] = Field(default=None, alias="adminEmail")
    stripe_publishable_key: Optional[str] = Field(default=None, alias="stripePublishableKey")
    stripe_secret_key: Optional[str] = Field(default=None, alias="stripeSecretKey")

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)


class StoreSettingsUpdate(ApiModel):
    store_name: Optional[str] = Field(default=None, alias="storeName")
    smtp_host: Optional[str] = Field(default=None, alias="smtpHost")
    smtp_user: Optional[str] = Field(default=None, alias="smtpUser")
    smtp_pass: Optional[str] = Field(default=None, alias="smtpPass")
    admin_email: Optional[str] = Field(default=None, alias="adminEmail")
    stripe_publishable_key: Optional[str] = Field(default=None, alias="stripePublishableKey")
    stripe_secret_key: Optional[str] = Field(default=None, alias="stripeSecretKey")


# Admin

class AdminCredentials(BaseModel):
    username: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Analytics(ApiModel):
    total_products: int = Field(..., alias="totalProducts")
    total_orders: int = Field(..., alias="totalOrders")
    total_revenue: Decimal = Field(..., alias="totalRevenue")
    orders_by_status: Dict[str, int] = Field(..., alias="ordersByStatus")
