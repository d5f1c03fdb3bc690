import pytest

import catalog
import wishlist
from errors import DuplicateWishlistEntry


def test_add_and_list(db, user, bananas):
    items = wishlist.add_item(db, user.id, bananas.id)

    assert len(items) == 1
    assert items[0].product_id == bananas.id
    assert items[0].name == "Organic Bananas"
    assert items[0].discount == 20
    assert wishlist.get_wishlist(db, user.id) == items


def test_duplicate_entry(db, user, bananas):
    wishlist.add_item(db, user.id, bananas.id)
    with pytest.raises(DuplicateWishlistEntry):
        wishlist.add_item(db, user.id, bananas.id)


def test_remove_is_scoped_to_user(db, make_user, bananas, milk):
    owner = make_user(email="owner@example.com")
    other = make_user(email="other@example.com")
    entry = wishlist.add_item(db, owner.id, bananas.id)[0]

    assert wishlist.remove_item(db, other.id, entry.id) == []
    assert len(wishlist.get_wishlist(db, owner.id)) == 1

    assert wishlist.remove_item(db, owner.id, entry.id) == []


def test_no_discount_without_original_price(db, user, category):
    product = catalog.create_product(db, {"name": "Water", "price": 1.0, "category_id": category.id})
    assert wishlist.add_item(db, user.id, product.id)[0].discount == 0
