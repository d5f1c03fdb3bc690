"""
Products and categories.

update_stock and restore_stock take an open session so the order workflow
can run them inside its own transaction.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import joinedload

from database import Database
from errors import CategoryInUse, InsufficientStock, NotFound
from models import Category, Product
from schemas import CategoryOut, ProductOut, ProductPage

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "id": Product.id,
    "name": Product.name,
    "price": Product.price,
    "discount": func.coalesce(Product.original_price, Product.price) - Product.price,
    "created_at": Product.created_at,
    "createdAt": Product.created_at,
}
SORT_ORDERS = ("asc", "desc")

PRODUCT_FIELDS = (
    "name",
    "description",
    "price",
    "original_price",
    "category_id",
    "image",
    "unit",
    "stock",
    "featured",
)
CATEGORY_FIELDS = ("name", "description", "image")
REQUIRED_PRODUCT_FIELDS = ("name", "price", "category_id", "unit", "stock", "featured")


def _product_out(product: Product) -> ProductOut:
    return ProductOut.model_validate(product)


def _product_filters(filters: Dict[str, Any]) -> list:
    clauses = []
    if filters.get("category"):
        clauses.append(Product.category_id == filters["category"])
    search = filters.get("search")
    if search:
        pattern = f"%{search}%"
        clauses.append(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if filters.get("min_price") is not None:
        clauses.append(Product.price >= filters["min_price"])
    if filters.get("max_price") is not None:
        clauses.append(Product.price <= filters["max_price"])
    return clauses


# ---------------------- Products ----------------------

def list_products(
    db: Database,
    filters: Optional[Dict[str, Any]] = None,
    sort: str = "id",
    order: str = "asc",
    page: int = 1,
    limit: int = 10,
) -> ProductPage:
    """
    Filtered, sorted, paginated product listing.

    Unknown sort columns fall back to id and unknown orders to asc.
    """
    clauses = _product_filters(filters or {})
    column = SORT_COLUMNS.get(sort, Product.id)
    direction = (order or "").lower()
    if direction not in SORT_ORDERS:
        direction = "asc"
    ordering = column.desc() if direction == "desc" else column.asc()
    page = max(1, page)
    limit = max(1, limit)

    with db.session() as session:
        total = session.scalar(select(func.count(Product.id)).where(*clauses))
        stmt = (
            select(Product)
            .options(joinedload(Product.category))
            .where(*clauses)
            .order_by(ordering, Product.id.asc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        products = [_product_out(p) for p in session.scalars(stmt).all()]

    return ProductPage(
        products=products,
        count=len(products),
        total=total,
        total_pages=math.ceil(total / limit),
        current_page=page,
    )


def find_product(db: Database, product_id: int) -> Optional[ProductOut]:
    with db.session() as session:
        product = session.get(Product, product_id, options=[joinedload(Product.category)])
        return _product_out(product) if product else None


def related_products(db: Database, category_id: Optional[int], product_id: int, limit: int = 4) -> List[ProductOut]:
    if category_id is None:
        return []
    with db.session() as session:
        stmt = (
            select(Product)
            .options(joinedload(Product.category))
            .where(Product.category_id == category_id, Product.id != product_id)
            .order_by(Product.id)
            .limit(limit)
        )
        return [_product_out(p) for p in session.scalars(stmt).all()]


def _ensure_category(session, category_id: Optional[int]) -> None:
    if category_id is not None and session.get(Category, category_id) is None:
        raise NotFound("Category not found")


def create_product(db: Database, data: Dict[str, Any]) -> ProductOut:
    values = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
    if values.get("original_price") is None:
        values["original_price"] = values.get("price")
    with db.transaction() as session:
        _ensure_category(session, values.get("category_id"))
        product = Product(**values)
        session.add(product)
        session.flush()
        session.refresh(product, ["category"])
        logger.info("Product %s created", product.id)
        return _product_out(product)


def update_product(db: Database, product_id: int, data: Dict[str, Any]) -> ProductOut:
    with db.transaction() as session:
        product = session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")
        if "category_id" in data:
            _ensure_category(session, data["category_id"])
        for field, value in data.items():
            if field not in PRODUCT_FIELDS:
                continue
            if value is None and field in REQUIRED_PRODUCT_FIELDS:
                continue
            setattr(product, field, value)
        session.flush()
        session.refresh(product, ["category"])
        return _product_out(product)


def delete_product(db: Database, product_id: int) -> None:
    # cart, wishlist and order-item rows go with it (ON DELETE CASCADE)
    with db.transaction() as session:
        result = session.execute(delete(Product).where(Product.id == product_id))
        if result.rowcount == 0:
            raise NotFound("Product not found")
    logger.info("Product %s deleted", product_id)


def update_stock(session, product_id: int, quantity: int) -> None:
    """Take `quantity` units out of stock, refusing to go below zero."""
    result = session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InsufficientStock(f"Insufficient stock for product {product_id}")


def restore_stock(session, product_id: int, quantity: int) -> None:
    session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity)
        .execution_options(synchronize_session=False)
    )


def count_by_category(db: Database, category_id: int) -> int:
    with db.session() as session:
        return session.scalar(select(func.count(Product.id)).where(Product.category_id == category_id))


def product_total_count(db: Database) -> int:
    with db.session() as session:
        return session.scalar(select(func.count(Product.id)))


# ---------------------- Categories ----------------------

def list_categories(db: Database) -> List[CategoryOut]:
    counts = (
        select(Product.category_id, func.count(Product.id).label("product_count"))
        .group_by(Product.category_id)
        .subquery()
    )
    stmt = (
        select(Category, func.coalesce(counts.c.product_count, 0))
        .outerjoin(counts, counts.c.category_id == Category.id)
        .order_by(Category.id)
    )
    with db.session() as session:
        categories = []
        for category, product_count in session.execute(stmt).all():
            out = CategoryOut.model_validate(category)
            out.product_count = product_count
            categories.append(out)
        return categories


def find_category(db: Database, category_id: int) -> Optional[CategoryOut]:
    with db.session() as session:
        category = session.get(Category, category_id)
        return CategoryOut.model_validate(category) if category else None


def category_products(db: Database, category_id: int) -> List[ProductOut]:
    with db.session() as session:
        stmt = (
            select(Product)
            .options(joinedload(Product.category))
            .where(Product.category_id == category_id)
            .order_by(Product.id)
        )
        return [_product_out(p) for p in session.scalars(stmt).all()]


def create_category(db: Database, data: Dict[str, Any]) -> CategoryOut:
    with db.transaction() as session:
        category = Category(**{k: v for k, v in data.items() if k in CATEGORY_FIELDS})
        session.add(category)
        session.flush()
        logger.info("Category %s created", category.id)
        return CategoryOut.model_validate(category)


def update_category(db: Database, category_id: int, data: Dict[str, Any]) -> CategoryOut:
    with db.transaction() as session:
        category = session.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found")
        for field, value in data.items():
            if field in CATEGORY_FIELDS:
                if field == "name" and not value:
                    continue
                setattr(category, field, value)
        session.flush()
        return CategoryOut.model_validate(category)


def delete_category(db: Database, category_id: int) -> None:
    with db.transaction() as session:
        category = session.get(Category, category_id)
        if category is None:
            raise NotFound("Category not found")
        in_use = session.scalar(select(func.count(Product.id)).where(Product.category_id == category_id))
        if in_use:
            raise CategoryInUse(
                f"Cannot delete category with {in_use} products. "
                "Please reassign or delete the products first."
            )
        session.delete(category)
    logger.info("Category %s deleted", category_id)


def category_total_count(db: Database) -> int:
    with db.session() as session:
        return session.scalar(select(func.count(Category.id)))
