"""
Storefront view state.

Everything the shop page needs (settings, catalog, cart and the product
currently opened in the detail overlay) lives on one StorefrontState object
per request instead of in module globals.
"""
from typing import Any, Dict, List, Optional

from catalog import has_variants, total_stock
from errors import NotFound
from theme import StyleDocument, ThemeEngine

DEFAULT_SHOP_NAME = "Our Store"


class StorefrontState:
    def __init__(self, settings: Optional[dict], products: List[dict], cart: Optional[dict] = None):
        self.settings = settings or {}
        self.products = products
        self.cart = cart or {}
        self.current_product: Optional[dict] = None
        self.current_image_index = 0
        self.document = StyleDocument()
        self.theme = ThemeEngine()
        self.theme.apply(self.settings.get("theme"), self.document)

    def branding(self) -> Dict[str, Any]:
        name = self.settings.get("shop_name") or DEFAULT_SHOP_NAME
        return {
            "shop_name": name,
            "shop_logo": self.settings.get("shop_logo"),
            "page_title": name,
            "footer_text": self.settings.get("footer_text"),
        }

    def product_cards(self) -> List[Dict[str, Any]]:
        cards = []
        for product in self.products:
            images = product.get("images") or []
            stock = total_stock(product)
            cards.append({
                "id": str(product["_id"]),
                "name": product.get("name"),
                "image": images[0] if images else None,
                "price": float(product.get("price") or 0),
                "in_stock": stock > 0,
                "stock_label": "In Stock" if stock > 0 else "Out of Stock",
            })
        return cards

    def cart_count(self) -> int:
        return sum(int(line.get("quantity") or 0) for line in self.cart.get("items") or [])

    def open_product(self, product_id: str) -> Dict[str, Any]:
        product = next((p for p in self.products if str(p["_id"]) == product_id), None)
        if product is None:
            raise NotFound("Product not found")
        self.current_product = product
        self.current_image_index = 0
        return self.product_detail()

    def select_image(self, step: int) -> int:
        images = (self.current_product or {}).get("images") or []
        if images:
            self.current_image_index = (self.current_image_index + step) % len(images)
        return self.current_image_index

    def product_detail(self) -> Dict[str, Any]:
        product = self.current_product
        if product is None:
            raise NotFound("No product selected")
        base = float(product.get("price") or 0)
        detail: Dict[str, Any] = {
            "id": str(product["_id"]),
            "name": product.get("name"),
            "description": product.get("description"),
            "price": base,
            "images": product.get("images") or [],
            "current_image": self.current_image_index,
            "sizes": [],
            "stock_label": None,
        }
        if has_variants(product):
            # only sizes that can still be bought are offered
            detail["sizes"] = [
                {
                    "size": v["size"],
                    "additional_price": float(v.get("additional_price") or 0),
                    "price": round(base + float(v.get("additional_price") or 0), 2),
                    "available": int(v.get("quantity") or 0),
                }
                for v in product["variants"] if int(v.get("quantity") or 0) > 0
            ]
            if not detail["sizes"]:
                detail["stock_label"] = "Out of stock"
            else:
                detail["price"] = detail["sizes"][0]["price"]
        else:
            quantity = int(product.get("quantity") or 0)
            detail["stock_label"] = f"{quantity} in stock" if quantity > 0 else "Out of stock"
        return detail

    def render(self) -> Dict[str, Any]:
        return {
            "branding": self.branding(),
            "products": self.product_cards(),
            "cart_count": self.cart_count(),
            "theme": self.theme.current,
            "stylesheet": self.document.stylesheet,
        }
