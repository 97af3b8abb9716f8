import pytest
from bson import ObjectId

import cart as carts
from errors import CapacityExceeded, Conflict, NotFound, ValidationFailure


def _flat(quantity=5, price=20.0):
    return {"_id": ObjectId(), "name": "Flat", "price": price, "quantity": quantity, "variants": []}


def _sized():
    return {
        "_id": ObjectId(),
        "name": "Sized",
        "price": 30.0,
        "variants": [
            {"size": "8x10", "quantity": 2, "additional_price": 0.0},
            {"size": "11x14", "quantity": 4, "additional_price": 7.5},
        ],
    }


def test_repeated_adds_stop_at_stock():
    product = _flat(quantity=5)
    lines = []
    lines = carts.add_line(lines, product, 2)
    lines = carts.add_line(lines, product, 2)
    with pytest.raises(CapacityExceeded) as exc:
        carts.add_line(lines, product, 2)
    assert exc.value.message == "Only 5 available"
    assert len(lines) == 1
    assert lines[0]["quantity"] == 4


def test_rejected_add_leaves_lines_untouched():
    product = _flat(quantity=3)
    lines = carts.add_line([], product, 3)
    before = [dict(line) for line in lines]
    with pytest.raises(CapacityExceeded):
        carts.add_line(lines, product, 1)
    assert lines == before


def test_first_add_over_stock_is_rejected():
    with pytest.raises(CapacityExceeded):
        carts.add_line([], _flat(quantity=1), 2)


def test_different_sizes_are_separate_lines():
    product = _sized()
    lines = carts.add_line([], product, 1, "8x10")
    lines = carts.add_line(lines, product, 1, "11x14")
    assert [(l["size"], l["quantity"]) for l in lines] == [("8x10", 1), ("11x14", 1)]
    assert lines[1]["additional_price"] == 7.5


def test_variant_capacity_message_mentions_size():
    product = _sized()
    lines = carts.add_line([], product, 2, "8x10")
    with pytest.raises(CapacityExceeded) as exc:
        carts.add_line(lines, product, 1, "8x10")
    assert exc.value.message == "Only 2 available for this size"


def test_variant_product_needs_a_size():
    with pytest.raises(ValidationFailure):
        carts.add_line([], _sized(), 1)


def test_unknown_or_sold_out_size_is_rejected():
    product = _sized()
    with pytest.raises(CapacityExceeded):
        carts.add_line([], product, 1, "16x20")
    product["variants"][0]["quantity"] = 0
    with pytest.raises(CapacityExceeded):
        carts.add_line([], product, 1, "8x10")


def test_remove_only_touches_matching_size():
    product = _sized()
    pid = str(product["_id"])
    lines = carts.add_line([], product, 1, "8x10")
    lines = carts.add_line(lines, product, 1, "11x14")
    lines = carts.remove_line(lines, pid, "8x10")
    assert [(l["product_id"], l["size"]) for l in lines] == [(pid, "11x14")]


def test_remove_without_size_keeps_variant_lines():
    product = _sized()
    lines = carts.add_line([], product, 1, "8x10")
    assert carts.remove_line(lines, str(product["_id"])) == lines


def test_update_to_zero_matches_remove_for_flat_product():
    product = _flat()
    lines = carts.add_line([], product, 2)
    assert carts.set_line_quantity(lines, product, 0) == carts.remove_line(lines, str(product["_id"]))


def test_update_checks_stock_when_increasing():
    product = _flat(quantity=3)
    lines = carts.add_line([], product, 1)
    with pytest.raises(CapacityExceeded):
        carts.set_line_quantity(lines, product, 4)
    assert carts.set_line_quantity(lines, product, 3)[0]["quantity"] == 3


def test_update_can_shrink_below_current_stock():
    product = _flat(quantity=4)
    lines = carts.add_line([], product, 4)
    product["quantity"] = 1
    assert carts.set_line_quantity(lines, product, 2)[0]["quantity"] == 2


def test_update_requires_size_for_variant_products():
    product = _sized()
    lines = carts.add_line([], product, 1, "11x14")
    with pytest.raises(ValidationFailure):
        carts.set_line_quantity(lines, product, 2)
    assert carts.set_line_quantity(lines, product, 2, "11x14")[0]["quantity"] == 2


def test_update_missing_line_is_not_found():
    with pytest.raises(NotFound):
        carts.set_line_quantity([], _flat(), 1)


def test_total_uses_current_price_and_recorded_delta():
    product = _sized()
    pid = str(product["_id"])
    lines = carts.add_line([], product, 2, "11x14")

    product["price"] = 40.0
    product["variants"][1]["additional_price"] = 100.0
    assert carts.cart_total(lines, {pid: product}) == (40.0 + 7.5) * 2


def test_total_skips_deleted_products():
    product = _flat(price=10.0)
    lines = carts.add_line([], product, 1)
    assert carts.cart_total(lines, {}) == 0


def test_mutation_retries_when_cart_changes_underneath(db, make_product):
    pid = make_product(quantity=3)
    carts.add_item("racy", pid, 1)
    calls = []

    def change(lines):
        calls.append([dict(l) for l in lines])
        if len(calls) == 1:
            # another request lands between our read and our write
            db["cart"].update_one(
                {"session_id": "racy"},
                {"$set": {"items.0.quantity": 2}, "$inc": {"version": 1}},
            )
        return carts.add_line(lines, db["product"].find_one({"_id": ObjectId(pid)}), 1)

    cart = carts._mutate("racy", change)
    assert len(calls) == 2
    assert calls[1][0]["quantity"] == 2
    assert cart["items"][0]["quantity"] == 3
    assert db["cart"].find_one({"session_id": "racy"})["items"][0]["quantity"] == 3


def test_mutation_gives_up_after_repeated_conflicts(db, make_product):
    pid = make_product()
    carts.add_item("busy", pid, 1)

    def change(lines):
        db["cart"].update_one({"session_id": "busy"}, {"$inc": {"version": 1}})
        return lines

    with pytest.raises(Conflict):
        carts._mutate("busy", change)
