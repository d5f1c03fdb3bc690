"""
Order workflow.

Order lifecycle:

    pending -> processing -> shipped -> delivered
    pending | processing | shipped -> cancelled

Placing an order turns the caller's line items into an order in a single
transaction: each line is priced from the current product row, stock is
taken with a conditional decrement, order and items are inserted, and the
user's cart is emptied. Any failure rolls all of it back. Cancelling by the
owner puts every item's quantity back into stock in one transaction. Admin
status updates only validate the values and may move an order anywhere.
"""

import logging
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from sqlalchemy import desc, func, select
from sqlalchemy.orm import joinedload, selectinload

import cart
import catalog
import identity
from database import Database
from errors import InvalidTransition, InvalidValue, NotFound, PriceMismatch, ValidationError
from models import Order, OrderItem, Product
from schemas import DashboardStats, OrderCustomer, OrderItemOut, OrderOut, TopProduct

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"

ORDER_STATUSES = (PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED)
PAYMENT_STATUSES = ("pending", "completed", "failed")
# statuses a customer can no longer cancel from
TERMINAL_STATUSES = (DELIVERED, CANCELLED)

CENT = Decimal("0.01")


def _hydrated():
    return (
        selectinload(Order.items).joinedload(OrderItem.product),
        joinedload(Order.user),
    )


def _item_out(item: OrderItem) -> OrderItemOut:
    return OrderItemOut(
        id=item.id,
        order_id=item.order_id,
        product_id=item.product_id,
        quantity=item.quantity,
        price=float(item.price),
        name=item.product.name if item.product else None,
        image=item.product.image if item.product else None,
    )


def _order_out(order: Order, include_user: bool = False) -> OrderOut:
    user = None
    if include_user and order.user is not None:
        user = OrderCustomer(full_name=order.user.full_name, email=order.user.email)
    return OrderOut(
        id=order.id,
        user_id=order.user_id,
        total_amount=float(order.total_amount),
        status=order.status,
        payment_status=order.payment_status,
        shipping_address=order.shipping_address,
        payment_method=order.payment_method,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[_item_out(item) for item in order.items],
        user=user,
    )


def _line_value(line: Any, name: str) -> Any:
    if isinstance(line, dict):
        return line.get(name)
    return getattr(line, name, None)


# ---------------------- Workflow ----------------------

def create_order(
    db: Database,
    user_id: int,
    shipping_address: str,
    payment_method: str,
    items: Sequence[Any],
) -> OrderOut:
    """
    Place an order for `user_id` from line items of product_id, quantity and
    an optional client-side price.

    Raises NotFound for an unknown product, PriceMismatch when a supplied
    price differs from the current one, and InsufficientStock when a line
    cannot be served. Nothing is persisted in any of those cases.
    """
    if not shipping_address or not payment_method or not items:
        raise ValidationError("Please provide shipping address, payment method, and items")

    lines = []
    for line in items:
        product_id = _line_value(line, "product_id")
        quantity = _line_value(line, "quantity")
        if product_id is None or quantity is None or int(quantity) < 1:
            raise ValidationError("Each item needs a product_id and a quantity of at least 1")
        lines.append((int(product_id), int(quantity), _line_value(line, "price")))

    with db.transaction() as session:
        order = Order(
            user_id=user_id,
            total_amount=Decimal("0"),
            shipping_address=shipping_address,
            payment_method=payment_method,
            status=PENDING,
            payment_status="pending",
        )
        session.add(order)
        session.flush()

        total = Decimal("0")
        for product_id, quantity, quoted_price in lines:
            product = session.scalars(
                select(Product).where(Product.id == product_id).with_for_update()
            ).first()
            if product is None:
                raise NotFound(f"Product {product_id} not found")

            unit_price = Decimal(product.price).quantize(CENT)
            if quoted_price is not None and Decimal(str(quoted_price)).quantize(CENT) != unit_price:
                raise PriceMismatch(
                    f"Price for {product.name} changed to {unit_price}; please review your cart"
                )

            catalog.update_stock(session, product_id, quantity)
            session.add(OrderItem(order_id=order.id, product_id=product_id, quantity=quantity, price=unit_price))
            total += unit_price * quantity

        order.total_amount = total
        removed = cart.clear_items(session, user_id)
        session.flush()
        order_id = order.id
        logger.info(
            "Order %s created for user %s: %s lines, total %s, %s cart items cleared",
            order_id, user_id, len(lines), total, removed,
        )

    return find_by_id(db, order_id)


def cancel_order(db: Database, order_id: int, user_id: int) -> OrderOut:
    with db.transaction() as session:
        order = session.scalars(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id, Order.user_id == user_id)
            .with_for_update()
        ).first()
        if order is None:
            raise NotFound("Order not found")
        if order.status in TERMINAL_STATUSES:
            logger.warning("Refusing to cancel order %s in status %s", order_id, order.status)
            raise InvalidTransition(f"Order cannot be cancelled as it is already {order.status}")

        order.status = CANCELLED
        for item in order.items:
            catalog.restore_stock(session, item.product_id, item.quantity)
        session.flush()
        logger.info("Order %s cancelled by user %s; stock restored for %s lines", order_id, user_id, len(order.items))

    return find_by_id(db, order_id)


def update_status(db: Database, order_id: int, status: str, payment_status: Optional[str] = None) -> OrderOut:
    if status not in ORDER_STATUSES:
        raise InvalidValue(f"Invalid status: {status}. Valid values are: {', '.join(ORDER_STATUSES)}")
    if payment_status and payment_status not in PAYMENT_STATUSES:
        raise InvalidValue(
            f"Invalid payment status: {payment_status}. Valid values are: {', '.join(PAYMENT_STATUSES)}"
        )

    with db.transaction() as session:
        order = session.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found")
        order.status = status
        if payment_status:
            order.payment_status = payment_status
    logger.info("Order %s set to %s (payment %s)", order_id, status, payment_status or "unchanged")

    return find_by_id(db, order_id)


# ---------------------- Reads ----------------------

def get_by_user_id(db: Database, user_id: int) -> List[OrderOut]:
    with db.session() as session:
        stmt = (
            select(Order)
            .options(*_hydrated())
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return [_order_out(o) for o in session.scalars(stmt).all()]


def find_by_id(db: Database, order_id: int, user_id: Optional[int] = None) -> Optional[OrderOut]:
    """Load one order with its items; restricted to `user_id` when given."""
    with db.session() as session:
        stmt = select(Order).options(*_hydrated()).where(Order.id == order_id)
        if user_id is not None:
            stmt = stmt.where(Order.user_id == user_id)
        order = session.scalars(stmt).first()
        return _order_out(order, include_user=True) if order else None


def get_all(db: Database) -> List[OrderOut]:
    with db.session() as session:
        stmt = select(Order).options(*_hydrated()).order_by(Order.created_at.desc(), Order.id.desc())
        return [_order_out(o, include_user=True) for o in session.scalars(stmt).all()]


def get_recent_orders(db: Database, limit: int = 5) -> List[OrderOut]:
    with db.session() as session:
        stmt = (
            select(Order)
            .options(*_hydrated())
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        return [_order_out(o, include_user=True) for o in session.scalars(stmt).all()]


def get_order_items(db: Database, order_id: int) -> List[OrderItemOut]:
    with db.session() as session:
        stmt = (
            select(OrderItem)
            .options(joinedload(OrderItem.product))
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.id)
        )
        return [_item_out(item) for item in session.scalars(stmt).all()]


def get_top_selling_products(db: Database, limit: int = 5) -> List[TopProduct]:
    sales = func.sum(OrderItem.quantity).label("sales")
    stmt = (
        select(Product.id, Product.name, Product.price, Product.image, sales)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, OrderItem.order_id == Order.id)
        .where(Order.status != CANCELLED)
        .group_by(Product.id, Product.name, Product.price, Product.image)
        .order_by(desc("sales"), Product.id)
        .limit(limit)
    )
    with db.session() as session:
        return [
            TopProduct(id=row.id, name=row.name, price=float(row.price), image=row.image, sales=int(row.sales))
            for row in session.execute(stmt).all()
        ]


def order_total_count(db: Database) -> int:
    with db.session() as session:
        return session.scalar(select(func.count(Order.id)))


def dashboard_stats(db: Database) -> DashboardStats:
    return DashboardStats(
        total_products=catalog.product_total_count(db),
        total_categories=catalog.category_total_count(db),
        total_users=identity.total_count(db),
        total_orders=order_total_count(db),
        recent_orders=get_recent_orders(db, 5),
        top_products=get_top_selling_products(db, 4),
    )