from decimal import Decimal

import pytest

from app.errors import EntityNotFoundError, InsufficientStockError, ValidationError
from app.models import Cart
from app.services import cart_service


def test_guest_cart_is_found_by_session(db):
    cart = cart_service.get_or_create_cart(db, session_id="sess-abc")
    assert cart.user_id is None
    assert cart.expires_at is not None
    assert cart_service.get_or_create_cart(db, session_id="sess-abc").id == cart.id


def test_user_cart_does_not_expire(db, test_user):
    cart = cart_service.get_or_create_cart(db, test_user)
    assert cart.expires_at is None
    assert cart_service.get_or_create_cart(db, test_user).id == cart.id


def test_adding_same_product_merges_lines(db, make_product):
    mate = make_product(stock=5)
    cart = cart_service.get_or_create_cart(db, session_id="s1")

    cart_service.add_item(db, cart, mate.id, 2)
    item = cart_service.add_item(db, cart, mate.id, 3)

    assert len(cart.items) == 1
    assert item.quantity == 5
    with pytest.raises(InsufficientStockError):
        cart_service.add_item(db, cart, mate.id, 1)


def test_add_item_validation(db, make_product):
    hidden = make_product(is_active=False)
    cart = cart_service.get_or_create_cart(db, session_id="s1")

    with pytest.raises(EntityNotFoundError):
        cart_service.add_item(db, cart, hidden.id, 1)
    with pytest.raises(ValidationError):
        cart_service.add_item(db, cart, make_product().id, 0)


def test_untracked_products_ignore_stock(db, make_product):
    gift_card = make_product(stock=0, track_stock=False)
    cart = cart_service.get_or_create_cart(db, session_id="s1")
    assert cart_service.add_item(db, cart, gift_card.id, 100).quantity == 100


def test_subtotal_uses_current_sale_price(db, make_product):
    mate = make_product(price="40.00", sale_price="30.00")
    cart = cart_service.get_or_create_cart(db, session_id="s1")
    cart_service.add_item(db, cart, mate.id, 3)
    assert cart.subtotal == Decimal("90.00")


def test_update_quantity_to_zero_removes_item(db, product):
    cart = cart_service.get_or_create_cart(db, session_id="s1")
    item = cart_service.add_item(db, cart, product.id, 1)

    assert cart_service.update_item_quantity(db, cart, item.id, 0) is None
    assert cart.is_empty
    with pytest.raises(EntityNotFoundError):
        cart_service.remove_item(db, cart, item.id)


def test_validate_cart_reports_stock_shortfall(db, product):
    cart = cart_service.get_or_create_cart(db, session_id="s1")
    item = cart_service.add_item(db, cart, product.id, 4)
    product.stock = 1
    db.commit()

    assert cart_service.validate_cart(cart) == [{"item_id": item.id, "error": "Insufficient stock", "available": 1}]

    product.is_active = False
    db.commit()
    assert cart_service.validate_cart(cart) == [{"item_id": item.id, "error": "Product no longer available"}]


def test_merge_guest_cart_into_user_cart(db, test_user, make_product):
    mate = make_product(stock=5)
    yerba = make_product(stock=5)
    user_cart = cart_service.get_or_create_cart(db, test_user)
    cart_service.add_item(db, user_cart, mate.id, 1)
    guest_cart = cart_service.get_or_create_cart(db, session_id="guest-xyz")
    cart_service.add_item(db, guest_cart, mate.id, 2)
    cart_service.add_item(db, guest_cart, yerba.id, 1)

    merged = cart_service.merge_guest_cart(db, test_user, "guest-xyz")

    assert merged.id == user_cart.id
    assert {item.product_id: item.quantity for item in merged.items} == {mate.id: 3, yerba.id: 1}
    assert db.query(Cart).filter(Cart.session_id == "guest-xyz", Cart.user_id.is_(None)).count() == 0
