import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from database import Database
from errors import DuplicateWishlistEntry
from models import Product, WishlistEntry
from schemas import WishlistItemOut

logger = logging.getLogger(__name__)


def _discount_percent(price, original_price) -> int:
    if original_price is None or original_price <= price:
        return 0
    return int(round((original_price - price) / original_price * 100))


def _items(session, user_id: int) -> List[WishlistItemOut]:
    rows = session.execute(
        select(WishlistEntry, Product)
        .join(Product, WishlistEntry.product_id == Product.id)
        .where(WishlistEntry.user_id == user_id)
        .order_by(WishlistEntry.id)
    ).all()
    return [
        WishlistItemOut(
            id=entry.id,
            product_id=product.id,
            name=product.name,
            price=float(product.price),
            original_price=float(product.original_price) if product.original_price is not None else None,
            unit=product.unit,
            image=product.image,
            discount=_discount_percent(product.price, product.original_price),
        )
        for entry, product in rows
    ]


def get_wishlist(db: Database, user_id: int) -> List[WishlistItemOut]:
    with db.session() as session:
        return _items(session, user_id)


def add_item(db: Database, user_id: int, product_id: int) -> List[WishlistItemOut]:
    with db.transaction() as session:
        existing = session.scalars(
            select(WishlistEntry.id).where(
                WishlistEntry.user_id == user_id, WishlistEntry.product_id == product_id
            )
        ).first()
        if existing is not None:
            raise DuplicateWishlistEntry()
        session.add(WishlistEntry(user_id=user_id, product_id=product_id))
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateWishlistEntry() from exc
        return _items(session, user_id)


def remove_item(db: Database, user_id: int, entry_id: int) -> List[WishlistItemOut]:
    with db.transaction() as session:
        session.execute(
            delete(WishlistEntry).where(WishlistEntry.id == entry_id, WishlistEntry.user_id == user_id)
        )
        return _items(session, user_id)
