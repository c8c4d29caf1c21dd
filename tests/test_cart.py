from decimal import Decimal

import pytest

from threadcart import crud
from threadcart.cart import CartStore, merge_session_cart, session_cart_key, user_cart_key
from threadcart.errors import NotFound, OutOfStock, ValidationError
from threadcart.models import Cart

from conftest import stock


@pytest.fixture
def store(db):
    return CartStore(db, user_cart_key("user-1"))


def test_add_item_creates_line_with_current_price(store, catalog):
    item = store.add_item(catalog.bolt.id, 4)

    assert item.quantity == 4
    assert item.unit_price_snapshot == Decimal("50.00")
    assert store.get_quantity(catalog.bolt.id) == 4
    assert store.is_in_cart(catalog.bolt.id)
    assert not store.is_in_cart(catalog.nut.id)


def test_adding_same_product_accumulates(store, catalog):
    store.add_item(catalog.bolt.id, 4)
    store.add_item(catalog.bolt.id, 3)

    assert store.get_quantity(catalog.bolt.id) == 7
    assert store.distinct_item_count() == 1


def test_add_beyond_stock_is_rejected(store, catalog):
    with pytest.raises(OutOfStock) as exc:
        store.add_item(catalog.bolt.id, 11)

    assert exc.value.fields["available"] == 10
    assert exc.value.fields["requested"] == 11
    assert not store.is_in_cart(catalog.bolt.id)


def test_add_counts_what_is_already_in_cart(store, catalog):
    store.add_item(catalog.bolt.id, 8)

    with pytest.raises(OutOfStock) as exc:
        store.add_item(catalog.bolt.id, 3)

    assert exc.value.fields["available"] == 2
    assert store.get_quantity(catalog.bolt.id) == 8


def test_add_does_not_touch_stock(db, store, catalog):
    store.add_item(catalog.bolt.id, 5)

    assert stock(db, catalog.bolt.id) == 10


def test_add_rejects_bad_quantity_and_unknown_product(store, catalog):
    with pytest.raises(ValidationError):
        store.add_item(catalog.bolt.id, 0)
    with pytest.raises(NotFound):
        store.add_item(9999, 1)


def test_set_quantity_is_absolute(store, catalog):
    store.add_item(catalog.bolt.id, 2)

    store.set_quantity(catalog.bolt.id, 9)

    assert store.get_quantity(catalog.bolt.id) == 9


def test_set_quantity_zero_removes_line(store, catalog):
    store.add_item(catalog.bolt.id, 2)

    assert store.set_quantity(catalog.bolt.id, 0) is None
    assert not store.is_in_cart(catalog.bolt.id)


def test_set_quantity_over_stock_keeps_old_quantity(store, catalog):
    store.add_item(catalog.bolt.id, 2)

    with pytest.raises(OutOfStock):
        store.set_quantity(catalog.bolt.id, 11)

    assert store.get_quantity(catalog.bolt.id) == 2


def test_set_quantity_requires_existing_line(store, catalog):
    with pytest.raises(NotFound):
        store.set_quantity(catalog.bolt.id, 1)


def test_remove_and_clear(store, catalog):
    store.add_item(catalog.bolt.id, 2)
    store.add_item(catalog.nut.id, 5)

    assert store.remove_item(catalog.bolt.id) is True
    assert store.remove_item(catalog.bolt.id) is False
    assert store.total_item_count() == 5

    store.clear()
    assert store.total_item_count() == 0
    assert store.items() == []


def test_total_item_count_sums_quantities(store, catalog):
    store.add_item(catalog.bolt.id, 2)
    store.add_item(catalog.nut.id, 5)

    assert store.total_item_count() == 7
    assert store.distinct_item_count() == 2


def test_validate_reports_stock_and_price_problems(db, store, catalog):
    store.add_item(catalog.bolt.id, 6)
    store.add_item(catalog.nut.id, 2)

    crud.update_product(db, catalog.bolt.id, {"quantity": 3})
    crud.update_product(db, catalog.nut.id, {"price": Decimal("6.00")})

    issues = {(i["product_id"], i["issue_type"]): i for i in store.validate()}

    assert issues[(catalog.bolt.id, "insufficient_stock")]["available_quantity"] == 3
    assert issues[(catalog.nut.id, "price_changed")]["new_price"] == Decimal("6.00")
    assert len(issues) == 2


def test_validate_out_of_stock(db, store, catalog):
    store.add_item(catalog.bolt.id, 1)
    crud.update_product(db, catalog.bolt.id, {"quantity": 0})

    issues = store.validate()

    assert [i["issue_type"] for i in issues] == ["out_of_stock"]


def test_acknowledge_prices_clears_price_issue(db, store, catalog):
    store.add_item(catalog.bolt.id, 1)
    crud.update_product(db, catalog.bolt.id, {"price": Decimal("55.00")})

    store.acknowledge_prices()

    assert store.validate() == []


def test_deleting_product_removes_it_from_carts(db, store, catalog):
    bolt_id = catalog.bolt.id
    store.add_item(bolt_id, 1)

    crud.delete_product(db, bolt_id)

    assert not store.is_in_cart(bolt_id)


def test_session_cart_key_requires_token():
    assert session_cart_key(" abc ") == "session:abc"
    with pytest.raises(ValidationError):
        session_cart_key("  ")


def test_merge_moves_session_lines_and_user_cart_wins(db, catalog):
    session_store = CartStore(db, session_cart_key("browser-1"))
    session_store.add_item(catalog.bolt.id, 5)
    session_store.add_item(catalog.nut.id, 3)

    user_store = CartStore(db, user_cart_key("user-1"))
    user_store.add_item(catalog.bolt.id, 2)

    merged, skipped = merge_session_cart(db, "browser-1", "user-1")

    assert merged == 1
    assert skipped == []
    assert user_store.get_quantity(catalog.bolt.id) == 2
    assert user_store.get_quantity(catalog.nut.id) == 3
    assert db.query(Cart).filter(Cart.owner_key == session_cart_key("browser-1")).first() is None


def test_merge_skips_lines_that_no_longer_fit(db, catalog):
    session_store = CartStore(db, session_cart_key("browser-1"))
    session_store.add_item(catalog.bolt.id, 8)
    crud.update_product(db, catalog.bolt.id, {"quantity": 4})

    merged, skipped = merge_session_cart(db, "browser-1", "user-1")

    assert merged == 0
    assert skipped[0]["issue_type"] == "insufficient_stock"
    assert skipped[0]["available_quantity"] == 4
    assert not CartStore(db, user_cart_key("user-1")).is_in_cart(catalog.bolt.id)


def test_merge_without_session_cart_is_noop(db, catalog):
    assert merge_session_cart(db, "never-used", "user-1") == (0, [])
