import pytest

import cart
import catalog
import orders
from errors import InsufficientStock, InvalidTransition, InvalidValue, NotFound, PriceMismatch


def stock_of(db, product):
    return catalog.find_product(db, product.id).stock


def place(db, user, *lines):
    return orders.create_order(db, user.id, "12 Market Street", "cod", list(lines))


def test_create_order_prices_lines_and_empties_cart(db, user, bananas, milk):
    cart.add_item(db, user.id, bananas.id, 2)
    cart.add_item(db, user.id, milk.id, 1)

    order = place(
        db, user,
        {"product_id": bananas.id, "quantity": 2},
        {"product_id": milk.id, "quantity": 1},
    )

    assert order.status == orders.PENDING
    assert order.payment_status == "pending"
    assert order.total_amount == pytest.approx(7.47)
    assert sorted((i.product_id, i.quantity, i.price) for i in order.items) == sorted(
        [(bananas.id, 2, 1.99), (milk.id, 1, 3.49)]
    )
    assert stock_of(db, bananas) == 48
    assert stock_of(db, milk) == 29
    assert cart.get_or_create(db, user.id).items == []


def test_order_price_is_frozen_at_purchase(db, user, bananas):
    order = place(db, user, {"product_id": bananas.id, "quantity": 1})
    catalog.update_product(db, bananas.id, {"price": 9.99})

    again = orders.find_by_id(db, order.id, user.id)
    assert again.items[0].price == pytest.approx(1.99)
    assert again.total_amount == pytest.approx(1.99)


def test_failing_line_rolls_back_everything(db, user, bananas, milk):
    cart.add_item(db, user.id, bananas.id, 1)

    with pytest.raises(InsufficientStock):
        place(
            db, user,
            {"product_id": bananas.id, "quantity": 5},
            {"product_id": milk.id, "quantity": 31},
        )

    assert stock_of(db, bananas) == 50
    assert stock_of(db, milk) == 30
    assert orders.get_by_user_id(db, user.id) == []
    assert len(cart.get_or_create(db, user.id).items) == 1


def test_unknown_product_rolls_back(db, user, bananas):
    with pytest.raises(NotFound):
        place(db, user, {"product_id": bananas.id, "quantity": 1}, {"product_id": 9999, "quantity": 1})

    assert stock_of(db, bananas) == 50
    assert orders.order_total_count(db) == 0


def test_quoted_price_must_match(db, user, bananas):
    place(db, user, {"product_id": bananas.id, "quantity": 1, "price": 1.99})

    with pytest.raises(PriceMismatch):
        place(db, user, {"product_id": bananas.id, "quantity": 1, "price": 0.99})
    assert stock_of(db, bananas) == 49


def test_cancel_restores_stock(db, user, bananas, milk):
    order = place(
        db, user,
        {"product_id": bananas.id, "quantity": 3},
        {"product_id": milk.id, "quantity": 2},
    )

    cancelled = orders.cancel_order(db, order.id, user.id)

    assert cancelled.status == orders.CANCELLED
    assert stock_of(db, bananas) == 50
    assert stock_of(db, milk) == 30


@pytest.mark.parametrize("status", [orders.PENDING, orders.PROCESSING, orders.SHIPPED])
def test_open_orders_can_be_cancelled(db, user, bananas, status):
    order = place(db, user, {"product_id": bananas.id, "quantity": 4})
    if status != orders.PENDING:
        orders.update_status(db, order.id, status)
    assert stock_of(db, bananas) == 46

    cancelled = orders.cancel_order(db, order.id, user.id)

    assert cancelled.status == orders.CANCELLED
    assert stock_of(db, bananas) == 50


@pytest.mark.parametrize("status", [orders.DELIVERED, orders.CANCELLED])
def test_cannot_cancel_terminal_orders(db, user, bananas, status):
    order = place(db, user, {"product_id": bananas.id, "quantity": 2})
    orders.update_status(db, order.id, status)
    stock_before = stock_of(db, bananas)

    with pytest.raises(InvalidTransition):
        orders.cancel_order(db, order.id, user.id)
    assert stock_of(db, bananas) == stock_before
    assert orders.find_by_id(db, order.id).status == status


def test_cancel_is_scoped_to_owner(db, make_user, bananas):
    owner = make_user(email="owner@example.com")
    other = make_user(email="other@example.com")
    order = place(db, owner, {"product_id": bananas.id, "quantity": 1})

    with pytest.raises(NotFound):
        orders.cancel_order(db, order.id, other.id)
    assert orders.find_by_id(db, order.id, other.id) is None


def test_update_status_validates_values(db, user, bananas):
    order = place(db, user, {"product_id": bananas.id, "quantity": 1})

    with pytest.raises(InvalidValue):
        orders.update_status(db, order.id, "lost")
    with pytest.raises(InvalidValue):
        orders.update_status(db, order.id, orders.SHIPPED, "refunded")
    with pytest.raises(NotFound):
        orders.update_status(db, 9999, orders.SHIPPED)

    updated = orders.update_status(db, order.id, orders.SHIPPED, "completed")
    assert updated.status == orders.SHIPPED
    assert updated.payment_status == "completed"


def test_top_selling_ignores_cancelled_orders(db, user, bananas, milk):
    place(db, user, {"product_id": bananas.id, "quantity": 2})
    place(db, user, {"product_id": milk.id, "quantity": 1})
    big = place(db, user, {"product_id": milk.id, "quantity": 10})
    orders.cancel_order(db, big.id, user.id)

    top = orders.get_top_selling_products(db)

    assert [(p.id, p.sales) for p in top] == [(bananas.id, 2), (milk.id, 1)]


def test_dashboard_stats(db, user, admin, bananas):
    place(db, user, {"product_id": bananas.id, "quantity": 1})

    stats = orders.dashboard_stats(db)

    assert stats.total_products == 1
    assert stats.total_categories == 1
    assert stats.total_users == 2
    assert stats.total_orders == 1
    assert stats.recent_orders[0].user.email == user.email
    assert stats.top_products[0].id == bananas.id
