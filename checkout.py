"""
Checkout: Stripe hosted sessions and order creation.
"""
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple

import stripe
from pymongo.errors import DuplicateKeyError

from cart import clear_cart, find_cart, products_for
from catalog import has_variants, to_object_id
from database import collection, create_document
from errors import NotFound, UpstreamFailure, ValidationFailure
from schemas import ORDER_STATUSES, Order, OrderItem, ShippingAddress

logger = logging.getLogger("storefront.checkout")

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")


def _configure_stripe():
    settings = collection("settings").find_one({}) or {}
    key = settings.get("stripe_secret_key") or STRIPE_SECRET_KEY
    if not key:
        raise UpstreamFailure("Payments are not configured")
    stripe.api_key = key


def priced_lines(cart: dict) -> List[Dict[str, Any]]:
    """Cart lines joined with their products at current prices."""
    lines = cart.get("items") or []
    products = products_for(lines)
    priced = []
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            continue
        priced.append({
            "product": product,
            "size": line.get("size"),
            "quantity": line["quantity"],
            "unit_price": round(float(product.get("price") or 0) + float(line.get("additional_price") or 0), 2),
        })
    return priced


def build_stripe_line_items(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convert priced cart lines to Stripe Checkout line_items."""
    items = []
    for line in lines:
        product = line["product"]
        name = product.get("name", "Item")
        if line["size"]:
            name = f"{name} ({line['size']})"
        product_data: Dict[str, Any] = {"name": name}
        images = [url for url in product.get("images") or [] if url.startswith("http")]
        if images:
            product_data["images"] = images[:1]
        items.append({
            "price_data": {
                "currency": "usd",
                "product_data": product_data,
                "unit_amount": int(round(line["unit_price"] * 100)),
            },
            "quantity": line["quantity"],
        })
    return items


def create_checkout_session(session_id: str, customer_name: str, customer_email: str, shipping_address: ShippingAddress) -> str:
    cart = find_cart(session_id)
    lines = priced_lines(cart) if cart else []
    if not lines:
        raise ValidationFailure("Cart is empty")

    _configure_stripe()
    try:
        session = stripe.checkout.Session.create(
            payment_method_types=["card"],
            line_items=build_stripe_line_items(lines),
            mode="payment",
            success_url=f"{PUBLIC_BASE_URL}/checkout.html?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{PUBLIC_BASE_URL}/checkout.html?canceled=true",
            customer_email=customer_email,
            metadata={
                "customerName": customer_name,
                "customerEmail": customer_email,
                "shippingAddress": json.dumps(shipping_address.model_dump()),
            },
        )
    except stripe.StripeError as e:
        logger.error("Stripe session creation failed: %s", e)
        raise UpstreamFailure("Payment provider error")
    return session.id


def retrieve_paid_session(payment_session_id: str):
    _configure_stripe()
    try:
        session = stripe.checkout.Session.retrieve(payment_session_id)
    except stripe.StripeError as e:
        logger.error("Stripe session lookup failed: %s", e)
        raise UpstreamFailure("Payment provider error")
    if getattr(session, "payment_status", None) != "paid":
        raise ValidationFailure("Payment not completed")
    return session


def _decrement_stock(product: dict, size: Optional[str], quantity: int):
    products = collection("product")
    if has_variants(product):
        variants = [dict(v) for v in product["variants"]]
        for variant in variants:
            if variant.get("size") == size:
                variant["quantity"] = max(int(variant.get("quantity") or 0) - quantity, 0)
        products.update_one({"_id": product["_id"]}, {"$set": {"variants": variants}})
        product["variants"] = variants
    else:
        result = products.update_one(
            {"_id": product["_id"], "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity}},
        )
        if result.matched_count == 0:
            logger.warning("Stock for %s fell below %d before confirmation", product["_id"], quantity)
            products.update_one({"_id": product["_id"]}, {"$set": {"quantity": 0}})


def confirm_order(session_id: str, payment_session_id: str) -> Tuple[dict, bool]:
    """Turn a paid Stripe session and the session cart into an order.

    Returns (order, created). Confirming the same payment twice returns the
    existing order without touching stock again.
    """
    existing = collection("order").find_one({"payment_id": payment_session_id})
    if existing:
        return existing, False

    session = retrieve_paid_session(payment_session_id)
    cart = find_cart(session_id)
    if not cart:
        raise NotFound("Cart not found")
    lines = priced_lines(cart)
    if not lines:
        raise ValidationFailure("Cart is empty")

    metadata = getattr(session, "metadata", None) or {}
    try:
        address = ShippingAddress(**json.loads(metadata.get("shippingAddress") or "{}"))
    except (ValueError, TypeError):
        address = ShippingAddress()

    items = [
        OrderItem(
            product_id=str(line["product"]["_id"]),
            name=line["product"].get("name", "Item"),
            size=line["size"],
            price=line["unit_price"],
            quantity=line["quantity"],
        )
        for line in lines
    ]
    order = Order(
        order_number=f"ORD-{int(time.time() * 1000)}",
        customer_name=metadata.get("customerName") or "",
        customer_email=getattr(session, "customer_email", None) or metadata.get("customerEmail"),
        items=items,
        total_amount=round(sum(i.price * i.quantity for i in items), 2),
        shipping_address=address,
        payment_status="completed",
        payment_id=payment_session_id,
    )
    try:
        order_id = create_document("order", order)
    except DuplicateKeyError:
        # a concurrent confirm of the same payment inserted first
        logger.info("Payment %s already confirmed, returning existing order", payment_session_id)
        return collection("order").find_one({"payment_id": payment_session_id}), False

    for line in lines:
        _decrement_stock(line["product"], line["size"], line["quantity"])
    clear_cart(session_id)

    logger.info("Order %s confirmed for %s", order.order_number, order.customer_email)
    return collection("order").find_one({"_id": to_object_id(order_id)}), True


def update_order_status(order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationFailure(f"Invalid order status: {status}")
    result = collection("order").update_one({"_id": to_object_id(order_id)}, {"$set": {"order_status": status}})
    if result.matched_count == 0:
        raise NotFound("Order not found")
    return collection("order").find_one({"_id": to_object_id(order_id)})
