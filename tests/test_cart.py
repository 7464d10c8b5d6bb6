import json

from milko.cart import CartStore


def test_add_merges_same_line():
    cart = CartStore()
    cart.add(1, 2, variation_id=11)
    cart.add(1, 3, variation_id=11)
    cart.add(1, 1, variation_id=12)

    assert len(cart) == 2
    assert cart.count == 6
    assert cart.items[0].quantity == 5


def test_add_caps_at_maximum():
    cart = CartStore()
    cart.add(1, 90)
    cart.add(1, 90)

    assert cart.items[0].quantity == 99


def test_set_quantity_clamps():
    cart = CartStore()
    cart.add(1, 4)

    cart.set_quantity(1, 0)
    assert cart.items[0].quantity == 1

    cart.set_quantity(1, 500)
    assert cart.items[0].quantity == 99


def test_remove_and_clear():
    cart = CartStore()
    cart.add(1, variation_id=11)
    cart.add(2)

    cart.remove(1, variation_id=11)
    assert [item.product_id for item in cart.items] == [2]

    cart.clear()
    assert cart.count == 0


def test_items_is_a_copy():
    cart = CartStore()
    cart.add(1)
    cart.items.clear()

    assert len(cart) == 1


def test_json_uses_camel_case():
    cart = CartStore()
    cart.add(3, 2, variation_id=31)

    assert json.loads(cart.to_json()) == [{"productId": 3, "variationId": 31, "quantity": 2}]


def test_from_json_restores_cart():
    cart = CartStore()
    cart.add(3, 2, variation_id=31)
    cart.add(4)

    restored = CartStore.from_json(cart.to_json())
    assert restored.items == cart.items


def test_from_json_drops_malformed_entries():
    raw = json.dumps([
        {"productId": 1, "quantity": 2},
        {"productId": "abc", "quantity": 1},
        {"quantity": 3},
        {"productId": 2, "quantity": 0},
        "garbage",
        {"productId": "5", "variationId": "", "quantity": "4"},
        {"productId": 6, "quantity": float("inf")},
        {"productId": float("nan"), "quantity": 1},
    ])
    cart = CartStore.from_json(raw)

    assert [(i.product_id, i.variation_id, i.quantity) for i in cart.items] == [(1, None, 2), (5, None, 4)]


def test_from_json_skips_infinite_quantity_and_keeps_the_rest():
    cart = CartStore.from_json('[{"productId": 1, "quantity": Infinity}, {"productId": 2, "quantity": 1}]')

    assert [(i.product_id, i.quantity) for i in cart.items] == [(2, 1)]


def test_from_json_tolerates_garbage():
    assert len(CartStore.from_json(None)) == 0
    assert len(CartStore.from_json("{not json")) == 0
    assert len(CartStore.from_json('{"productId": 1}')) == 0
