"""
Per-user shopping cart.

A user has at most one cart, created on first access, holding at most one
line per product. Totals are derived on every read from current product
prices.

The unique indexes on carts.user_id and (cart_id, product_id) decide races
between concurrent first inserts: the losing write transaction is rolled back
and run again, and on the second pass finds the row the winner created.
"""

import logging
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from database import Database
from errors import CartNotFound, ItemNotFound, ValidationError
from models import Cart, CartItem, Product
from schemas import CartItemOut, CartView

logger = logging.getLogger(__name__)

WRITE_ATTEMPTS = 2

T = TypeVar("T")


def _write(db: Database, work: Callable[..., T]) -> T:
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        try:
            with db.transaction() as session:
                return work(session)
        except IntegrityError:
            if attempt == WRITE_ATTEMPTS:
                raise
            logger.info("Cart write lost an insert race, retrying")


def _check_quantity(quantity: int) -> None:
    if quantity is None or quantity < 1:
        raise ValidationError("Please provide a valid quantity")


def _find_cart(session, user_id: int) -> Optional[Cart]:
    return session.scalars(select(Cart).where(Cart.user_id == user_id)).first()


def _require_cart(session, user_id: int) -> Cart:
    cart = _find_cart(session, user_id)
    if cart is None:
        raise CartNotFound()
    return cart


def _get_or_create(session, user_id: int) -> Cart:
    cart = _find_cart(session, user_id)
    if cart is None:
        cart = Cart(user_id=user_id)
        session.add(cart)
        session.flush()
        logger.info("Created cart %s for user %s", cart.id, user_id)
    return cart


def _find_item(session, cart: Cart, item_id: int) -> CartItem:
    item = session.scalars(
        select(CartItem).where(CartItem.id == item_id, CartItem.cart_id == cart.id)
    ).first()
    if item is None:
        raise ItemNotFound()
    return item


def _view(session, cart: Cart) -> CartView:
    rows = session.execute(
        select(CartItem, Product)
        .join(Product, CartItem.product_id == Product.id)
        .where(CartItem.cart_id == cart.id)
        .order_by(CartItem.id)
        .execution_options(populate_existing=True)
    ).all()

    items = []
    subtotal = Decimal("0")
    discount = Decimal("0")
    for item, product in rows:
        original = product.original_price if product.original_price is not None else product.price
        subtotal += product.price * item.quantity
        discount += (original - product.price) * item.quantity
        items.append(
            CartItemOut(
                id=item.id,
                product_id=product.id,
                quantity=item.quantity,
                name=product.name,
                price=float(product.price),
                original_price=float(product.original_price) if product.original_price is not None else None,
                unit=product.unit,
                image=product.image,
            )
        )

    return CartView(
        cart_id=cart.id,
        items=items,
        item_count=len(items),
        subtotal=float(subtotal),
        discount=float(discount),
    )


def get_or_create(db: Database, user_id: int) -> CartView:
    def work(session):
        return _view(session, _get_or_create(session, user_id))

    return _write(db, work)


def add_item(db: Database, user_id: int, product_id: int, quantity: int = 1) -> CartView:
    """
    Put `quantity` units of a product in the user's cart.

    An existing line for the same product is incremented in SQL rather than
    duplicated. The caller is expected to have checked that the product exists.
    """
    _check_quantity(quantity)

    def work(session):
        cart = _get_or_create(session, user_id)
        bumped = session.execute(
            update(CartItem)
            .where(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .values(quantity=CartItem.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount == 0:
            session.add(CartItem(cart_id=cart.id, product_id=product_id, quantity=quantity))
            session.flush()
        return _view(session, cart)

    return _write(db, work)


def update_item_quantity(db: Database, user_id: int, item_id: int, quantity: int) -> CartView:
    _check_quantity(quantity)
    with db.transaction() as session:
        cart = _require_cart(session, user_id)
        item = _find_item(session, cart, item_id)
        item.quantity = quantity
        session.flush()
        return _view(session, cart)


def remove_item(db: Database, user_id: int, item_id: int) -> CartView:
    with db.transaction() as session:
        cart = _require_cart(session, user_id)
        item = _find_item(session, cart, item_id)
        session.delete(item)
        session.flush()
        return _view(session, cart)


def clear_items(session, user_id: int) -> int:
    """Delete every line of the user's cart, if there is one. Returns the number removed."""
    cart_id = session.scalar(select(Cart.id).where(Cart.user_id == user_id))
    if cart_id is None:
        return 0
    result = session.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
    return result.rowcount


def clear(db: Database, user_id: int) -> CartView:
    with db.transaction() as session:
        cart = _require_cart(session, user_id)
        removed = clear_items(session, user_id)
        logger.info("Cleared %s items from cart %s", removed, cart.id)
        return CartView(cart_id=cart.id)
