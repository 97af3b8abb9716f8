"""
Session carts.

A cart line is identified by (product_id, size): a flat-stock line and a
variant line of the same product are different lines, as are two sizes of
the same product. The pure functions below reconcile a list of lines against
a product snapshot; `add_item`/`update_item`/`remove_item` wrap them in a
read, reconcile, conditional write loop keyed on the cart's `version` so two
requests racing on one cart cannot both write on top of the same snapshot.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from catalog import available_stock, get_product, has_variants, price_delta, to_object_id
from database import collection, create_document
from errors import CapacityExceeded, Conflict, NotFound, ValidationFailure
from schemas import Cart

logger = logging.getLogger("storefront.cart")

MAX_WRITE_ATTEMPTS = 3


def find_line(lines: List[dict], product_id: str, size: Optional[str]) -> Optional[int]:
    for index, line in enumerate(lines):
        if line.get("product_id") == product_id and line.get("size") == size:
            return index
    return None


def _capacity_message(stock: int, size: Optional[str]) -> str:
    if size is not None:
        return f"Only {stock} available for this size"
    return f"Only {stock} available"


def add_line(lines: List[dict], product: dict, quantity: int, size: Optional[str] = None) -> List[dict]:
    """Merge `quantity` of (product, size) into `lines`, all or nothing."""
    if quantity < 1:
        raise ValidationFailure("Quantity must be at least 1")
    stock = available_stock(product, size)
    product_id = str(product["_id"])
    updated = [dict(line) for line in lines]

    index = find_line(updated, product_id, size)
    if index is not None:
        new_quantity = updated[index]["quantity"] + quantity
        if new_quantity > stock:
            raise CapacityExceeded(_capacity_message(stock, size))
        updated[index]["quantity"] = new_quantity
    else:
        if quantity > stock:
            raise CapacityExceeded(_capacity_message(stock, size))
        updated.append({
            "product_id": product_id,
            "quantity": quantity,
            "size": size,
            "additional_price": price_delta(product, size),
        })
    return updated


def set_line_quantity(lines: List[dict], product: dict, quantity: int, size: Optional[str] = None) -> List[dict]:
    """Set the absolute quantity of one line; zero or less removes it.

    Products with variants must name the size, so the call addresses exactly
    one line the same way `remove_line` does.
    """
    if has_variants(product) and size is None:
        raise ValidationFailure("Size is required for products with variants")
    product_id = str(product["_id"])
    index = find_line(lines, product_id, size)
    if index is None:
        raise NotFound("Item not in cart")

    if quantity <= 0:
        return remove_line(lines, product_id, size)

    updated = [dict(line) for line in lines]
    if quantity > updated[index]["quantity"]:
        stock = available_stock(product, size)
        if quantity > stock:
            raise CapacityExceeded(_capacity_message(stock, size))
    updated[index]["quantity"] = quantity
    return updated


def remove_line(lines: List[dict], product_id: str, size: Optional[str] = None) -> List[dict]:
    return [
        dict(line) for line in lines
        if not (line.get("product_id") == product_id and line.get("size") == size)
    ]


def cart_total(lines: List[dict], products: Dict[str, dict]) -> float:
    """Sum of (current base price + recorded delta) * quantity."""
    total = 0.0
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            continue
        unit = float(product.get("price") or 0) + float(line.get("additional_price") or 0)
        total += unit * line["quantity"]
    return round(total, 2)


# Persistence

def find_cart(session_id: str) -> Optional[dict]:
    return collection("cart").find_one({"session_id": session_id})


def load_cart(session_id: str) -> dict:
    cart = find_cart(session_id)
    if cart is None:
        try:
            create_document("cart", Cart(session_id=session_id))
            logger.info("Created cart for session %s", session_id[:8])
        except DuplicateKeyError:
            pass
        cart = find_cart(session_id)
    return cart


def _mutate(session_id: str, change: Callable[[List[dict]], List[dict]], create: bool = True) -> dict:
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        cart = load_cart(session_id) if create else find_cart(session_id)
        if cart is None:
            raise NotFound("Cart not found")
        items = change(cart.get("items") or [])
        result = collection("cart").update_one(
            {"_id": cart["_id"], "version": cart.get("version")},
            {"$set": {"items": items, "updated_at": datetime.now(timezone.utc)}, "$inc": {"version": 1}},
        )
        if result.matched_count:
            cart["items"] = items
            cart["version"] = (cart.get("version") or 0) + 1
            return cart
        logger.warning("Cart for session %s changed mid-update (attempt %d)", session_id[:8], attempt)
    raise Conflict("Cart was modified by another request, please retry")


def add_item(session_id: str, product_id: str, quantity: int, size: Optional[str] = None) -> dict:
    def change(lines):
        product = get_product(product_id)
        return add_line(lines, product, quantity, size)

    cart = _mutate(session_id, change)
    logger.info("Added %d x %s (%s) to cart %s", quantity, product_id, size or "-", session_id[:8])
    return cart


def update_item(session_id: str, product_id: str, quantity: int, size: Optional[str] = None) -> dict:
    def change(lines):
        product = get_product(product_id)
        return set_line_quantity(lines, product, quantity, size)

    return _mutate(session_id, change, create=False)


def remove_item(session_id: str, product_id: str, size: Optional[str] = None) -> dict:
    to_object_id(product_id)
    return _mutate(session_id, lambda lines: remove_line(lines, product_id, size), create=False)


def clear_cart(session_id: str):
    collection("cart").delete_one({"session_id": session_id})


def products_for(lines: List[dict]) -> Dict[str, dict]:
    ids = [to_object_id(line["product_id"]) for line in lines]
    if not ids:
        return {}
    return {str(p["_id"]): p for p in collection("product").find({"_id": {"$in": ids}})}


def cart_view(cart: dict) -> dict:
    """Cart as returned to the storefront, priced from the current catalog."""
    lines = cart.get("items") or []
    products = products_for(lines)
    items = []
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            logger.debug("Skipping cart line for deleted product %s", line["product_id"])
            continue
        base = float(product.get("price") or 0)
        extra = float(line.get("additional_price") or 0)
        images = product.get("images") or []
        items.append({
            "product_id": line["product_id"],
            "name": product.get("name"),
            "image": images[0] if images else None,
            "size": line.get("size"),
            "quantity": line["quantity"],
            "base_price": base,
            "additional_price": extra,
            "unit_price": round(base + extra, 2),
            "line_total": round((base + extra) * line["quantity"], 2),
        })
    return {
        "id": str(cart["_id"]) if cart.get("_id") is not None else None,
        "items": items,
        "item_count": sum(i["quantity"] for i in items),
        "total": cart_total(lines, products),
    }
