"""
Database Schemas for the print shop

Each Pydantic model maps to a MongoDB collection (lowercased class name).

Collections:
- user
- product
- printsize
- cart
- order
- settings
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    is_admin: bool = Field(False, description="Admin user flag")


class Variant(BaseModel):
    size: str = Field(..., description="Variant label, e.g. 8x10")
    quantity: int = Field(0, ge=0)
    additional_price: float = Field(0, description="Price delta over the product base price")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"

    Stock is either a flat `quantity` or a list of `variants`, never both.
    """
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Base price in USD")
    category: str = Field("Other", description="Catalog category")
    images: List[str] = Field(default_factory=list, description="Image URLs, first is primary")
    quantity: Optional[int] = Field(None, ge=0, description="Flat stock when the product has no variants")
    variants: List[Variant] = Field(default_factory=list)


class PrintSize(BaseModel):
    """
    Print size templates
    Collection name: "printsize"
    """
    name: str = Field(..., description="Unique size name, e.g. 8x10")
    dimensions: str = Field(..., description="Human readable dimensions")
    order: int = Field(0, description="Display order")


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    additional_price: float = 0


class Cart(BaseModel):
    """
    Session carts
    Collection name: "cart"
    """
    session_id: str
    items: List[CartLine] = Field(default_factory=list)
    version: int = 0


class OrderItem(BaseModel):
    product_id: str
    name: str
    size: Optional[str] = None
    price: float
    quantity: int = Field(1, ge=1)


class ShippingAddress(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = ""

    model_config = ConfigDict(populate_by_name=True)


ORDER_STATUSES = ("processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "completed", "failed")


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_number: str
    customer_name: str
    customer_email: EmailStr
    items: List[OrderItem]
    total_amount: float
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    payment_status: str = Field("pending", description="pending | completed | failed")
    order_status: str = Field("processing", description="processing | shipped | delivered | cancelled")
    payment_id: Optional[str] = None


# Theme document. Keys are camelCase because the storefront consumes them as-is.

class _ThemeSection(BaseModel):
    model_config = ConfigDict(extra="allow")


class ThemeColors(_ThemeSection):
    primary: Optional[str] = None
    secondary: Optional[str] = None
    background: Optional[str] = None
    cardBackground: Optional[str] = None
    textPrimary: Optional[str] = None
    textSecondary: Optional[str] = None
    headerBg: Optional[str] = None
    footerBg: Optional[str] = None
    buttonBg: Optional[str] = None
    buttonText: Optional[str] = None
    borderColor: Optional[str] = None
    inStock: Optional[str] = None
    outOfStock: Optional[str] = None


class ThemeFonts(_ThemeSection):
    primary: Optional[str] = None
    heading: Optional[str] = None
    baseSize: Optional[str] = None
    h1Size: Optional[str] = None
    priceSize: Optional[str] = None


class ThemeSpacing(_ThemeSection):
    productGap: Optional[str] = None
    cardPadding: Optional[str] = None


class ThemeLayout(_ThemeSection):
    maxWidth: Optional[str] = None
    productMinWidth: Optional[str] = None
    productImageHeight: Optional[str] = None


class ThemeStyle(_ThemeSection):
    borderRadius: Optional[str] = None
    borderWidth: Optional[str] = None
    shadowIntensity: Optional[str] = Field(None, description="none | light | medium | strong")
    cardHoverEffect: Optional[str] = Field(None, description="none | lift | scale | both")


class ThemeHeader(_ThemeSection):
    logoSize: Optional[str] = None
    logoPosition: Optional[str] = Field(None, description="left | center | right")
    sticky: Optional[bool] = None


class ThemeFooter(_ThemeSection):
    padding: Optional[str] = None
    alignment: Optional[str] = None


class ThemeConfig(_ThemeSection):
    colors: Optional[ThemeColors] = None
    fonts: Optional[ThemeFonts] = None
    spacing: Optional[ThemeSpacing] = None
    layout: Optional[ThemeLayout] = None
    style: Optional[ThemeStyle] = None
    header: Optional[ThemeHeader] = None
    footer: Optional[ThemeFooter] = None
    # legacy flat fields
    headerColor: Optional[str] = None
    buttonColor: Optional[str] = None
    fontFamily: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Settings(BaseModel):
    """
    Shop settings singleton
    Collection name: "settings"
    """
    shop_name: str = "Our Store"
    shop_logo: Optional[str] = None
    footer_text: str = "© 2024. All rights reserved."
    stripe_publishable_key: str = ""
    stripe_secret_key: str = ""
    theme: Dict[str, Any] = Field(default_factory=dict)
