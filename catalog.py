"""
Catalog helpers: stock lookups, print-size shaping and legacy document repair.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId

from database import collection
from errors import CapacityExceeded, NotFound, ValidationFailure

logger = logging.getLogger("storefront.catalog")

CATEGORIES = ["All", "Prints", "Originals", "Cards", "Posters", "Other"]


def to_object_id(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise ValidationFailure("Invalid ID format")
    return ObjectId(id_str)


def get_product(product_id: str) -> dict:
    product = collection("product").find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFound("Product not found")
    return product


def has_variants(product: dict) -> bool:
    return bool(product.get("variants"))


def total_stock(product: dict) -> int:
    if has_variants(product):
        return sum(int(v.get("quantity") or 0) for v in product["variants"])
    return int(product.get("quantity") or 0)


def find_variant(product: dict, size: Optional[str]) -> Optional[dict]:
    if size is None:
        return None
    return next((v for v in product.get("variants") or [] if v.get("size") == size), None)


def available_stock(product: dict, size: Optional[str]) -> int:
    """Stock for one cart line identity, after checking the identity is sellable.

    A size the product does not carry has no stock, so it is rejected the
    same way as a sold-out size.
    """
    if has_variants(product):
        if size is None:
            raise ValidationFailure("Please select a size")
        variant = find_variant(product, size)
        if variant is None:
            raise CapacityExceeded(f"Size {size} is not available for this product")
        stock = int(variant.get("quantity") or 0)
        if stock <= 0:
            raise CapacityExceeded("This size is out of stock")
        return stock
    if size is not None:
        raise CapacityExceeded(f"Size {size} is not available for this product")
    return int(product.get("quantity") or 0)


def price_delta(product: dict, size: Optional[str]) -> float:
    variant = find_variant(product, size)
    if variant is None:
        return 0.0
    return float(variant.get("additional_price") or 0)


# Print-size shaping

class SizeSelection:
    """Checkbox + quantity + extra price for one print size template.

    The checkbox and the quantity always agree about whether the size is
    included: checking defaults the quantity to 1, a positive quantity checks
    the box, and unchecking (or a quantity of zero) excludes it.
    """

    def __init__(self, size: str, dimensions: str = "", additional_price: float = 0):
        self.size = size
        self.dimensions = dimensions
        self.additional_price = additional_price
        self.checked = False
        self.quantity = 0

    def check(self):
        self.checked = True
        if self.quantity <= 0:
            self.quantity = 1

    def uncheck(self):
        self.checked = False
        self.quantity = 0

    def set_quantity(self, quantity: int):
        if quantity > 0:
            self.quantity = quantity
            self.checked = True
        else:
            self.uncheck()

    @property
    def included(self) -> bool:
        return self.checked and self.quantity > 0

    def as_variant(self) -> Dict[str, Any]:
        return {"size": self.size, "quantity": self.quantity, "additional_price": self.additional_price}


def selections_from_payload(templates: Iterable[dict], payload: List[dict]) -> List[SizeSelection]:
    """Replay submitted form state onto one SizeSelection per template.

    Each payload entry is `{size, checked?, quantity?, additionalPrice?}`.
    Entries naming no template are ignored.
    """
    by_size: Dict[str, dict] = {}
    for entry in payload:
        if not isinstance(entry, dict) or "size" not in entry:
            raise ValidationFailure("Each size selection needs a size")
        by_size[str(entry["size"])] = entry

    selections = []
    for template in sorted(templates, key=lambda t: t.get("order", 0)):
        entry = by_size.get(template["name"], {})
        try:
            extra = float(entry.get("additionalPrice", entry.get("additional_price", 0)) or 0)
            quantity = entry.get("quantity")
            quantity = int(quantity) if quantity not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationFailure(f"Invalid quantity or price for size {template['name']}")

        sel = SizeSelection(template["name"], template.get("dimensions", ""), extra)
        if entry.get("checked"):
            sel.check()
        if quantity is not None:
            sel.set_quantity(quantity)
        selections.append(sel)
    return selections


def build_variants(selections: Iterable[SizeSelection]) -> List[Dict[str, Any]]:
    return [s.as_variant() for s in selections if s.included]


def print_size_templates() -> List[dict]:
    return list(collection("printsize").find({}).sort("order", 1))


# Legacy document repair

def _as_int(value: Any) -> Optional[int]:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return None


def migrate_legacy_product(doc: dict, size_names: Dict[str, str]) -> Optional[Dict[str, Any]]:
    """Return the `$set`/`$unset` needed to bring `doc` to the current shape.

    Returns an empty dict when the document is already current and None when
    it cannot be repaired. `size_names` maps print size ids to names, for
    documents that still reference templates instead of copying them.
    """
    if not doc.get("name") or doc.get("price") is None:
        return None

    updates: Dict[str, Any] = {}
    unset: Dict[str, str] = {}

    if not doc.get("images") and doc.get("image"):
        updates["images"] = [doc["image"]]
    if "image" in doc:
        unset["image"] = ""
    if not doc.get("images") and "images" not in updates:
        return None

    if "printSizes" in doc:
        variants = []
        for entry in doc.get("printSizes") or []:
            label = entry.get("size")
            if isinstance(label, ObjectId) or (isinstance(label, str) and ObjectId.is_valid(label)):
                label = size_names.get(str(label))
            qty = _as_int(entry.get("quantity"))
            if not label or not qty:
                continue
            variants.append({
                "size": label,
                "quantity": qty,
                "additional_price": float(entry.get("additionalPrice") or 0),
            })
        unset["printSizes"] = ""
        if variants:
            updates["variants"] = variants
            unset["quantity"] = ""
        else:
            updates["variants"] = []
            updates["quantity"] = _as_int(doc.get("quantity")) or 0
    elif doc.get("variants"):
        if "quantity" in doc:
            unset["quantity"] = ""
    else:
        qty = _as_int(doc.get("quantity"))
        if qty is None or qty != doc.get("quantity"):
            updates["quantity"] = qty or 0
        if "variants" not in doc:
            updates["variants"] = []

    result: Dict[str, Any] = {}
    if updates:
        result["$set"] = updates
    if unset:
        result["$unset"] = unset
    return result


def cleanup_catalog() -> Dict[str, int]:
    """Repair legacy product documents and drop the ones beyond repair."""
    size_names = {str(s["_id"]): s.get("name") for s in collection("printsize").find({})}
    results = {"productsMigrated": 0, "productsDeleted": 0, "printSizesDeleted": 0}

    for doc in list(collection("product").find({})):
        change = migrate_legacy_product(doc, size_names)
        if change is None:
            collection("product").delete_one({"_id": doc["_id"]})
            results["productsDeleted"] += 1
        elif change:
            collection("product").update_one({"_id": doc["_id"]}, change)
            results["productsMigrated"] += 1

    for size in list(collection("printsize").find({})):
        if not str(size.get("name") or "").strip() or not str(size.get("dimensions") or "").strip():
            collection("printsize").delete_one({"_id": size["_id"]})
            results["printSizesDeleted"] += 1

    logger.info("Catalog cleanup finished: %s", results)
    return results
