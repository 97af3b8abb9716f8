import json
import logging
import os
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, File, Form, Header, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

import cart as carts
import catalog
import checkout
import database
import storage
from database import collection, create_document, get_documents
from errors import NotFound, Unauthorized, ValidationFailure, register_error_handlers
from notifications import send_order_confirmation
from schemas import PrintSize, Product, Settings, ShippingAddress, ThemeConfig, User
from security import (
    TOKEN_COOKIE,
    TOKEN_TTL,
    create_token,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    verify_password,
)
from storefront import StorefrontState
from theme import PRESETS, PreviewSurface, ThemeEngine, merge_preset, render_stylesheet, resolve_theme

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

# App init
app = FastAPI(title="Print Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

storage.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount(storage.UPLOAD_URL_PREFIX, StaticFiles(directory=str(storage.UPLOAD_DIR)), name="uploads")

SESSION_COOKIE = "sid"
SESSION_TTL_SECONDS = 7 * 24 * 3600


# Utils
def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    # Convert datetime
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def get_session_id(request: Request, response: Response, x_session_id: Optional[str] = Header(None)) -> str:
    """Opaque cart session id: X-Session-Id header, else the sid cookie, else a new one."""
    if x_session_id:
        return x_session_id
    existing = request.cookies.get(SESSION_COOKIE)
    if existing:
        return existing
    new_sid = secrets.token_urlsafe(24)
    response.set_cookie(SESSION_COOKIE, new_sid, max_age=SESSION_TTL_SECONDS, httponly=True, samesite="lax")
    return new_sid


def parse_json_field(raw: Optional[str], field: str, default: Any = None) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationFailure(f"Invalid JSON in {field}")


def load_settings() -> Optional[dict]:
    return collection("settings").find_one({})


# Request models
class SignupRequest(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., min_length=6, alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)


class ChangeEmailRequest(BaseModel):
    new_email: EmailStr = Field(..., alias="newEmail")
    password: str

    model_config = ConfigDict(populate_by_name=True)


class AddToCartRequest(BaseModel):
    product_id: str = Field(..., alias="productId")
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    # accepted for compatibility, the catalog's variant price is what gets stored
    additional_price: Optional[float] = Field(None, alias="additionalPrice")

    model_config = ConfigDict(populate_by_name=True)


class UpdateCartRequest(BaseModel):
    quantity: int
    size: Optional[str] = None


class RemoveFromCartRequest(BaseModel):
    size: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    customer_name: str = Field(..., alias="customerName")
    customer_email: EmailStr = Field(..., alias="customerEmail")
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress, alias="shippingAddress")

    model_config = ConfigDict(populate_by_name=True)


class ConfirmOrderRequest(BaseModel):
    session_id: str = Field(..., alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class OrderStatusUpdate(BaseModel):
    order_status: str = Field(..., alias="orderStatus")

    model_config = ConfigDict(populate_by_name=True)


class PrintSizeCreate(BaseModel):
    name: str = Field(..., min_length=1)
    dimensions: str = Field(..., min_length=1)
    order: int = 0


class PrintSizeUpdate(BaseModel):
    name: Optional[str] = None
    dimensions: Optional[str] = None
    order: Optional[int] = None


class DesignUpdate(BaseModel):
    theme: ThemeConfig


class PreviewRequest(BaseModel):
    preset: Optional[str] = None
    theme: Optional[ThemeConfig] = None


# Routes
@app.get("/")
def root():
    return {"message": "Print Shop API running"}


@app.get("/health")
def health():
    return {"ok": True}


SHOP_COLLECTIONS = ("product", "printsize", "cart", "order", "settings", "user")


@app.get("/test")
def database_status():
    """Connection check for the shop's collections, with document counts."""
    db = database.db
    status: Dict[str, Any] = {"connected": False, "database_name": None, "counts": {}, "error": None}
    if db is None:
        status["error"] = "DATABASE_URL/DATABASE_NAME not set"
        return status
    status["database_name"] = db.name
    try:
        status["counts"] = {name: db[name].count_documents({}) for name in SHOP_COLLECTIONS}
        status["connected"] = True
    except PyMongoError as e:
        logger.error("Database status check failed: %s", e)
        status["error"] = str(e)[:100]
    return status


# Auth
def _login_response(response: Response, user: dict) -> dict:
    token = create_token(user)
    response.set_cookie(TOKEN_COOKIE, token, max_age=int(TOKEN_TTL.total_seconds()), httponly=True,
                        secure=os.getenv("ENV") == "production")
    return {"token": token, "user": public_user(user)}


@app.post("/api/auth/register", status_code=201)
def register(req: SignupRequest, response: Response):
    if collection("user").find_one({"email": req.email}):
        raise ValidationFailure("Email already registered")
    user = User(name=req.name, email=req.email, password_hash=hash_password(req.password), is_admin=False)
    user_id = create_document("user", user)
    created = collection("user").find_one({"_id": catalog.to_object_id(user_id)})
    return _login_response(response, created)


@app.post("/api/auth/login")
def login(req: LoginRequest, response: Response):
    user = collection("user").find_one({"email": req.email})
    if not user or not verify_password(req.password, user.get("password_hash", "")):
        raise Unauthorized("Invalid credentials")
    return _login_response(response, user)


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": public_user(user)}


@app.post("/api/auth/change-password")
def change_password(req: ChangePasswordRequest, user=Depends(get_current_user)):
    if not verify_password(req.current_password, user.get("password_hash", "")):
        raise ValidationFailure("Current password is incorrect")
    collection("user").update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(req.new_password), "updated_at": datetime.now(timezone.utc)}},
    )
    return {"message": "Password changed successfully"}


@app.post("/api/auth/change-email")
def change_email(req: ChangeEmailRequest, user=Depends(get_current_user)):
    if not verify_password(req.password, user.get("password_hash", "")):
        raise ValidationFailure("Password is incorrect")
    if collection("user").find_one({"email": req.new_email}):
        raise ValidationFailure("Email already in use")
    collection("user").update_one({"_id": user["_id"]}, {"$set": {"email": req.new_email}})
    return {"message": "Email changed successfully", "email": req.new_email}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out successfully"}


# Products
@app.get("/api/products")
def list_products(search: Optional[str] = None, category: Optional[str] = None):
    query: Dict[str, Any] = {}
    if search:
        query["$or"] = [
            {"name": {"$regex": re.escape(search), "$options": "i"}},
            {"description": {"$regex": re.escape(search), "$options": "i"}},
        ]
    if category and category.lower() != "all":
        query["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
    products = get_documents("product", query, limit=200)
    return [serialize_doc(p) for p in products]


@app.get("/api/products/meta/categories")
def list_categories():
    return catalog.CATEGORIES


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return serialize_doc(catalog.get_product(product_id))


# Storefront
def _storefront_state(session_id: str) -> StorefrontState:
    return StorefrontState(load_settings(), get_documents("product", limit=200), carts.find_cart(session_id))


@app.get("/api/storefront")
def storefront(session_id: str = Depends(get_session_id)):
    return _storefront_state(session_id).render()


@app.get("/api/storefront/products/{product_id}")
def storefront_product(product_id: str, session_id: str = Depends(get_session_id)):
    return _storefront_state(session_id).open_product(product_id)


# Cart
@app.get("/api/cart")
def get_cart(session_id: str = Depends(get_session_id)):
    return carts.cart_view(carts.load_cart(session_id))


@app.post("/api/cart/add")
def add_to_cart(req: AddToCartRequest, session_id: str = Depends(get_session_id)):
    cart = carts.add_item(session_id, req.product_id, req.quantity, req.size)
    return carts.cart_view(cart)


@app.put("/api/cart/update/{product_id}")
def update_cart_item(product_id: str, req: UpdateCartRequest, session_id: str = Depends(get_session_id)):
    cart = carts.update_item(session_id, product_id, req.quantity, req.size)
    return carts.cart_view(cart)


@app.delete("/api/cart/remove/{product_id}")
def remove_cart_item(
    product_id: str,
    req: Optional[RemoveFromCartRequest] = Body(None),
    size: Optional[str] = None,
    session_id: str = Depends(get_session_id),
):
    if req is not None and req.size is not None:
        size = req.size
    cart = carts.remove_item(session_id, product_id, size)
    return carts.cart_view(cart)


@app.delete("/api/cart/clear")
def clear_cart(session_id: str = Depends(get_session_id)):
    carts.clear_cart(session_id)
    return {"message": "Cart cleared"}


# Orders
@app.post("/api/orders/create-checkout-session")
def create_checkout_session(req: CheckoutSessionRequest, session_id: str = Depends(get_session_id)):
    payment_session = checkout.create_checkout_session(
        session_id, req.customer_name, req.customer_email, req.shipping_address
    )
    return {"sessionId": payment_session}


@app.post("/api/orders/confirm")
def confirm_order(req: ConfirmOrderRequest, background_tasks: BackgroundTasks, session_id: str = Depends(get_session_id)):
    order, created = checkout.confirm_order(session_id, req.session_id)
    if created:
        background_tasks.add_task(send_order_confirmation, order)
    return serialize_doc(order)


@app.get("/api/orders/my-orders")
def my_orders(email: str):
    orders = collection("order").find({"customer_email": email}).sort("created_at", -1)
    return [serialize_doc(o) for o in orders]


# Print sizes
@app.get("/api/print-sizes")
def list_print_sizes():
    return [serialize_doc(s) for s in catalog.print_size_templates()]


@app.post("/api/print-sizes", status_code=201)
def create_print_size(req: PrintSizeCreate, admin=Depends(require_admin)):
    try:
        size_id = create_document("printsize", PrintSize(**req.model_dump()))
    except DuplicateKeyError:
        raise ValidationFailure(f"Print size {req.name} already exists")
    return serialize_doc(collection("printsize").find_one({"_id": catalog.to_object_id(size_id)}))


@app.put("/api/print-sizes/{size_id}")
def update_print_size(size_id: str, req: PrintSizeUpdate, admin=Depends(require_admin)):
    updates = {k: v for k, v in req.model_dump().items() if v is not None and v != ""}
    oid = catalog.to_object_id(size_id)
    if not collection("printsize").find_one({"_id": oid}):
        raise NotFound("Print size not found")
    if updates:
        updates["updated_at"] = datetime.now(timezone.utc)
        try:
            collection("printsize").update_one({"_id": oid}, {"$set": updates})
        except DuplicateKeyError:
            raise ValidationFailure(f"Print size {updates.get('name')} already exists")
    return serialize_doc(collection("printsize").find_one({"_id": oid}))


@app.delete("/api/print-sizes/{size_id}")
def delete_print_size(size_id: str, admin=Depends(require_admin)):
    result = collection("printsize").delete_one({"_id": catalog.to_object_id(size_id)})
    if result.deleted_count == 0:
        raise NotFound("Print size not found")
    return {"message": "Print size deleted"}


# Admin: products
def _collect_images(image_urls: Optional[str], images: Optional[List[UploadFile]]) -> List[str]:
    urls = parse_json_field(image_urls, "imageUrls", default=[])
    if not isinstance(urls, list):
        raise ValidationFailure("imageUrls must be a list")
    for upload in images or []:
        if upload.filename:
            urls.append(storage.save_image(upload, "products"))
    return [str(u) for u in urls]


def _stock_fields(quantity: Optional[int], size_selections: Optional[str]) -> Optional[Dict[str, Any]]:
    """One stock representation from the submitted form, or None if neither was sent."""
    if size_selections is not None:
        payload = parse_json_field(size_selections, "sizeSelections", default=[])
        if not isinstance(payload, list):
            raise ValidationFailure("sizeSelections must be a list")
        selections = catalog.selections_from_payload(catalog.print_size_templates(), payload)
        variants = catalog.build_variants(selections)
        if variants:
            return {"variants": variants, "quantity": None}
    if quantity is not None:
        return {"variants": [], "quantity": quantity}
    if size_selections is not None:
        return {"variants": [], "quantity": 0}
    return None


@app.post("/api/admin/products", status_code=201)
def create_product(
    name: str = Form(...),
    price: float = Form(..., ge=0),
    description: str = Form(""),
    category: str = Form("Other"),
    quantity: Optional[int] = Form(None, ge=0),
    size_selections: Optional[str] = Form(None, alias="sizeSelections"),
    image_urls: Optional[str] = Form(None, alias="imageUrls"),
    images: Optional[List[UploadFile]] = File(None),
    admin=Depends(require_admin),
):
    stock = _stock_fields(quantity, size_selections) or {"variants": [], "quantity": 0}
    image_list = _collect_images(image_urls, images)
    if not image_list:
        raise ValidationFailure("At least one image is required")

    product = Product(name=name, description=description, price=price, category=category,
                      images=image_list, **stock)
    doc = product.model_dump()
    if product.variants:
        doc.pop("quantity")
    product_id = create_document("product", doc)
    logger.info("Product %s created with %d variants", product_id, len(product.variants))
    return serialize_doc(collection("product").find_one({"_id": catalog.to_object_id(product_id)}))


@app.get("/api/admin/products/all")
def admin_list_products(admin=Depends(require_admin)):
    products = collection("product").find({}).sort("created_at", -1)
    return [serialize_doc(p) for p in products]


@app.put("/api/admin/products/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    quantity: Optional[int] = Form(None, ge=0),
    size_selections: Optional[str] = Form(None, alias="sizeSelections"),
    image_urls: Optional[str] = Form(None, alias="imageUrls"),
    images: Optional[List[UploadFile]] = File(None),
    admin=Depends(require_admin),
):
    existing = catalog.get_product(product_id)
    updates: Dict[str, Any] = {
        k: v for k, v in {"name": name, "price": price, "description": description, "category": category}.items()
        if v is not None
    }
    change: Dict[str, Any] = {}

    if quantity is not None and size_selections is not None:
        raise ValidationFailure("Send either quantity or sizeSelections, not both")
    stock = _stock_fields(quantity, size_selections)
    if stock is not None:
        updates["variants"] = stock["variants"]
        if stock["variants"]:
            change["$unset"] = {"quantity": ""}
        else:
            updates["quantity"] = stock["quantity"]

    if image_urls is not None or images:
        image_list = _collect_images(image_urls, images)
        if image_list:
            updates["images"] = image_list

    if not updates:
        raise ValidationFailure("No updates provided")
    updates["updated_at"] = datetime.now(timezone.utc)
    change["$set"] = updates
    collection("product").update_one({"_id": existing["_id"]}, change)
    return serialize_doc(collection("product").find_one({"_id": existing["_id"]}))


@app.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin)):
    result = collection("product").delete_one({"_id": catalog.to_object_id(product_id)})
    if result.deleted_count == 0:
        raise NotFound("Product not found")
    return {"message": "Product deleted"}


@app.post("/api/admin/cleanup")
def cleanup(admin=Depends(require_admin)):
    return {"results": catalog.cleanup_catalog()}


# Admin: orders
@app.get("/api/admin/orders")
def admin_list_orders(status: Optional[str] = None, admin=Depends(require_admin)):
    query = {"order_status": status} if status else {}
    orders = collection("order").find(query).sort("created_at", -1)
    return [serialize_doc(o) for o in orders]


@app.put("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, req: OrderStatusUpdate, admin=Depends(require_admin)):
    return serialize_doc(checkout.update_order_status(order_id, req.order_status))


@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_admin)):
    return {
        "orders": collection("order").count_documents({}),
        "products": collection("product").count_documents({}),
        "print_sizes": collection("printsize").count_documents({}),
    }


# Settings
def _admin_settings_view(doc: dict) -> dict:
    view = serialize_doc(doc)
    view["stripe_secret_key_set"] = bool(view.pop("stripe_secret_key", ""))
    return view


@app.get("/api/settings/public")
def public_settings():
    settings = load_settings() or Settings().model_dump()
    return {
        "shopName": settings.get("shop_name"),
        "shopLogo": settings.get("shop_logo"),
        "theme": settings.get("theme") or {},
        "footerText": settings.get("footer_text"),
        "stripePublishableKey": settings.get("stripe_publishable_key") or "",
    }


@app.get("/api/settings/theme.css", response_class=PlainTextResponse)
def theme_stylesheet():
    settings = load_settings() or {}
    css = render_stylesheet(resolve_theme(settings.get("theme")))
    return PlainTextResponse(css, media_type="text/css")


@app.get("/api/settings/presets")
def list_presets():
    return list(PRESETS)


@app.get("/api/settings/presets/{name}")
def get_preset(name: str):
    theme = merge_preset(name)
    return {"name": name, "theme": theme, "stylesheet": render_stylesheet(theme)}


@app.post("/api/settings/preview")
def preview_design(req: PreviewRequest, admin=Depends(require_admin)):
    """Stylesheet for the design page preview frame; nothing is saved."""
    settings = load_settings() or {}
    engine = ThemeEngine(settings.get("theme"))
    surface = PreviewSurface()
    if req.preset:
        engine.apply_preset(req.preset, surface)
    engine.apply(req.theme.to_document() if req.theme else {}, surface)
    surface.mark_loaded()
    return {"theme": engine.current, "stylesheet": surface.stylesheet}


@app.get("/api/settings")
def get_settings(admin=Depends(require_admin)):
    settings = load_settings()
    if not settings:
        create_document("settings", Settings())
        settings = load_settings()
    return _admin_settings_view(settings)


def _merge_theme(stored: Optional[dict], incoming: Dict[str, Any]) -> dict:
    """Incoming namespaces replace stored ones; everything else is kept."""
    theme = dict(stored or {})
    theme.update(incoming)
    return theme


def _save_settings(updates: Dict[str, Any], theme_updates: Optional[Dict[str, Any]] = None) -> dict:
    settings = load_settings()
    if not settings:
        create_document("settings", Settings())
        settings = load_settings()
    if theme_updates:
        updates["theme"] = _merge_theme(settings.get("theme"), theme_updates)
    updates["updated_at"] = datetime.now(timezone.utc)
    collection("settings").update_one({"_id": settings["_id"]}, {"$set": updates})
    logger.info("Settings updated: %s", sorted(k for k in updates if k != "updated_at"))
    return load_settings()


@app.put("/api/settings")
def update_settings(
    shop_name: Optional[str] = Form(None, alias="shopName"),
    header_color: Optional[str] = Form(None, alias="headerColor"),
    button_color: Optional[str] = Form(None, alias="buttonColor"),
    font_family: Optional[str] = Form(None, alias="fontFamily"),
    footer_text: Optional[str] = Form(None, alias="footerText"),
    stripe_publishable_key: Optional[str] = Form(None, alias="stripePublishableKey"),
    stripe_secret_key: Optional[str] = Form(None, alias="stripeSecretKey"),
    theme: Optional[str] = Form(None),
    remove_logo: Optional[str] = Form(None, alias="removeLogo"),
    logo: Optional[UploadFile] = File(None),
    admin=Depends(require_admin),
):
    updates: Dict[str, Any] = {}
    for field, value in (
        ("shop_name", shop_name),
        ("footer_text", footer_text),
        ("stripe_publishable_key", stripe_publishable_key),
        ("stripe_secret_key", stripe_secret_key),
    ):
        if value is not None:
            updates[field] = value

    theme_updates: Dict[str, Any] = {}
    if theme is not None:
        raw = parse_json_field(theme, "theme", default={})
        try:
            theme_updates.update(ThemeConfig.model_validate(raw).to_document())
        except ValidationError:
            raise ValidationFailure("Invalid theme")
    for key, value in (("headerColor", header_color), ("buttonColor", button_color), ("fontFamily", font_family)):
        if value is not None:
            theme_updates[key] = value

    if logo is not None and logo.filename:
        updates["shop_logo"] = storage.save_image(logo, "shop-settings", max_bytes=storage.LOGO_LIMIT)
    if remove_logo in ("true", "1", "on"):
        updates["shop_logo"] = None

    return _admin_settings_view(_save_settings(updates, theme_updates))


@app.put("/api/settings/design")
def update_design(req: DesignUpdate, admin=Depends(require_admin)):
    return _admin_settings_view(_save_settings({}, req.theme.to_document()))


# Startup
@app.on_event("startup")
def prepare_database():
    if database.db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")
        return
    collection("printsize").create_index("name", unique=True)
    collection("cart").create_index("session_id", unique=True)
    collection("order").create_index("payment_id", unique=True, sparse=True)

    email = os.getenv("ADMIN_EMAIL", "admin@example.com")
    if not collection("user").find_one({"email": email}):
        admin = User(
            name="Admin User",
            email=email,
            password_hash=hash_password(os.getenv("ADMIN_PASSWORD", "admin123")),
            is_admin=True,
        )
        create_document("user", admin)
        logger.info("Admin user created: %s", email)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
