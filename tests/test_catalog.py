from bson import ObjectId

import catalog

TEMPLATES = [
    {"name": "11x14", "dimensions": "11 x 14 in", "order": 1},
    {"name": "8x10", "dimensions": "8 x 10 in", "order": 0},
]


def test_checking_defaults_quantity_to_one():
    sel = catalog.SizeSelection("8x10")
    sel.check()
    assert sel.quantity == 1
    assert sel.included


def test_entering_quantity_checks_the_box():
    sel = catalog.SizeSelection("8x10")
    sel.set_quantity(4)
    assert sel.checked
    assert sel.quantity == 4


def test_unchecking_or_zero_quantity_excludes():
    sel = catalog.SizeSelection("8x10")
    sel.set_quantity(3)
    sel.uncheck()
    assert not sel.included and sel.quantity == 0

    sel.check()
    sel.set_quantity(0)
    assert not sel.checked and not sel.included


def test_only_checked_sizes_with_stock_become_variants():
    selections = catalog.selections_from_payload(TEMPLATES, [
        {"size": "8x10", "checked": True, "quantity": 2, "additionalPrice": 0},
        {"size": "11x14", "checked": True, "quantity": 0, "additionalPrice": 5},
    ])
    assert catalog.build_variants(selections) == [
        {"size": "8x10", "quantity": 2, "additional_price": 0.0},
    ]


def test_variants_follow_template_order_and_ignore_unknown_sizes():
    selections = catalog.selections_from_payload(TEMPLATES, [
        {"size": "11x14", "quantity": 1, "additionalPrice": "5"},
        {"size": "8x10", "checked": True},
        {"size": "A0", "checked": True, "quantity": 9},
    ])
    assert [v["size"] for v in catalog.build_variants(selections)] == ["8x10", "11x14"]
    assert catalog.build_variants(selections)[1]["additional_price"] == 5.0


def test_total_stock():
    assert catalog.total_stock({"quantity": 4, "variants": []}) == 4
    assert catalog.total_stock({"variants": [{"size": "a", "quantity": 2}, {"size": "b", "quantity": 3}]}) == 5
    assert catalog.total_stock({}) == 0


def test_migrate_print_size_references():
    size_id = ObjectId()
    doc = {
        "_id": ObjectId(),
        "name": "Old",
        "price": 10,
        "image": "/uploads/old.jpg",
        "printSizes": [
            {"size": size_id, "quantity": "4"},
            {"size": ObjectId(), "quantity": "2"},
            {"size": "A4", "quantity": "0"},
        ],
    }
    change = catalog.migrate_legacy_product(doc, {str(size_id): "8x10"})
    assert change["$set"]["images"] == ["/uploads/old.jpg"]
    assert change["$set"]["variants"] == [{"size": "8x10", "quantity": 4, "additional_price": 0.0}]
    assert set(change["$unset"]) == {"image", "printSizes", "quantity"}


def test_migrate_leaves_current_documents_alone():
    doc = {"_id": ObjectId(), "name": "New", "price": 5, "images": ["a.jpg"], "quantity": 3, "variants": []}
    assert catalog.migrate_legacy_product(doc, {}) == {}


def test_migrate_rejects_unrepairable_documents():
    assert catalog.migrate_legacy_product({"_id": ObjectId(), "price": 5, "images": ["a"]}, {}) is None
    assert catalog.migrate_legacy_product({"_id": ObjectId(), "name": "x", "price": 5}, {}) is None


def test_cleanup_catalog(db):
    db["product"].insert_many([
        {"name": "Good", "price": 5, "images": ["a.jpg"], "quantity": 1, "variants": []},
        {"name": "Legacy", "price": 5, "image": "b.jpg", "quantity": "7"},
        {"price": 5},
    ])
    db["printsize"].insert_many([
        {"name": "8x10", "dimensions": "8 x 10 in", "order": 0},
        {"name": "", "dimensions": "", "order": 1},
    ])

    results = catalog.cleanup_catalog()

    assert results == {"productsMigrated": 1, "productsDeleted": 1, "printSizesDeleted": 1}
    legacy = db["product"].find_one({"name": "Legacy"})
    assert legacy["images"] == ["b.jpg"]
    assert legacy["quantity"] == 7
    assert "image" not in legacy
