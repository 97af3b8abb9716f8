import pytest
from bson import ObjectId

from errors import NotFound
from storefront import StorefrontState


def _products():
    return [
        {"_id": ObjectId(), "name": "Harbour", "price": 20.0, "images": ["a.jpg", "b.jpg", "c.jpg"], "quantity": 3, "variants": []},
        {"_id": ObjectId(), "name": "Empty", "price": 5.0, "images": [], "quantity": 0, "variants": []},
    ]


def test_image_stepping_wraps_around():
    products = _products()
    state = StorefrontState(None, products)
    state.open_product(str(products[0]["_id"]))
    assert state.select_image(-1) == 2
    assert state.select_image(1) == 0
    assert state.select_image(1) == 1
    assert state.product_detail()["current_image"] == 1


def test_opening_a_product_resets_the_image():
    products = _products()
    state = StorefrontState(None, products)
    state.open_product(str(products[0]["_id"]))
    state.select_image(1)
    detail = state.open_product(str(products[0]["_id"]))
    assert detail["current_image"] == 0
    assert detail["stock_label"] == "3 in stock"


def test_detail_requires_an_open_product():
    state = StorefrontState(None, _products())
    with pytest.raises(NotFound):
        state.product_detail()
    with pytest.raises(NotFound):
        state.open_product(str(ObjectId()))


def test_branding_defaults_and_theme():
    state = StorefrontState({"theme": {"headerColor": "#123123"}}, _products(), {"items": [{"quantity": 2}, {"quantity": 1}]})
    assert state.branding()["page_title"] == "Our Store"
    assert state.cart_count() == 3
    assert "--accent-primary: #123123;" in state.render()["stylesheet"]
    assert [c["in_stock"] for c in state.product_cards()] == [True, False]
