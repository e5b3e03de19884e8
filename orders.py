"""
Order placement and order status management.

place_order checks stock, decrements it and inserts the order in a single
transaction; nothing is committed unless every line can be fulfilled. Work
that must not affect the outcome (confirmation emails) runs through an
after-commit hook whose failures are only logged.
"""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models import Order, Product
from schemas import OrderCreate, OrderStatus

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

STATUS_RANK = {
    OrderStatus.pending: 0,
    OrderStatus.shipped: 1,
    OrderStatus.delivered: 2,
}

NOTIFY_STATUSES = {OrderStatus.shipped, OrderStatus.delivered}

OrderHook = Callable[[Order], None]


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderPlacementError(StoreError):
    # Surfaced as 500 to keep the storefront client's contract
    status_code = 500


class ProductNotFoundError(OrderPlacementError):
    def __init__(self, label):
        super().__init__(f"Product {label} not found")
        self.label = label


class InsufficientStockError(OrderPlacementError):
    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(f"Insufficient stock for {product_name}")
        self.product_name = product_name
        self.available = available
        self.requested = requested


class TotalMismatchError(StoreError):
    status_code = 400

    def __init__(self, submitted: Decimal, expected: Decimal):
        super().__init__(f"Order total {submitted} does not match {expected}")
        self.submitted = submitted
        self.expected = expected


class OrderNotFoundError(StoreError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__("Order not found")
        self.order_id = order_id


class InvalidStatusTransitionError(StoreError):
    status_code = 409

    def __init__(self, current: OrderStatus, requested: OrderStatus):
        super().__init__(f"Cannot move order from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


def _run_hook(hook: Optional[OrderHook], order: Order, what: str) -> None:
    if hook is None:
        return
    try:
        hook(order)
    except Exception:
        logger.exception("%s hook failed for order %s", what, order.id)


def _requested_quantities(payload: OrderCreate) -> "OrderedDict[int, int]":
    wanted = OrderedDict()
    for item in payload.items:
        wanted[item.id] = wanted.get(item.id, 0) + item.quantity
    return wanted


def place_order(session: Session, payload: OrderCreate, on_commit: Optional[OrderHook] = None) -> Order:
    wanted = _requested_quantities(payload)
    labels = {item.id: item.name or item.id for item in payload.items}

    try:
        # Lock rows in id order so concurrent orders cannot deadlock
        rows = session.scalars(
            select(Product).where(Product.id.in_(list(wanted))).order_by(Product.id).with_for_update()
        ).all()
        products = {p.id: p for p in rows}

        for product_id, quantity in wanted.items():
            product = products.get(product_id)
            if product is None:
                raise ProductNotFoundError(labels[product_id])
            if product.stock < quantity:
                raise InsufficientStockError(product.name, product.stock, quantity)

        snapshot = []
        expected = Decimal("0")
        for item in payload.items:
            product = products[item.id]
            expected += product.price * item.quantity
            snapshot.append({
                "id": product.id,
                "name": product.name,
                "price": str(product.price),
                "quantity": item.quantity,
            })
        expected = expected.quantize(CENTS)
        if payload.total.quantize(CENTS) != expected:
            raise TotalMismatchError(payload.total, expected)

        for product_id, quantity in wanted.items():
            session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(stock=Product.stock - quantity)
                .execution_options(synchronize_session=False)
            )

        order = Order(
            customer_email=payload.customer_email,
            total=expected,
            items=snapshot,
            status=OrderStatus.pending.value,
            shipping_address=payload.shipping_address,
        )
        session.add(order)
        session.commit()
    except InsufficientStockError as e:
        session.rollback()
        logger.warning(
            "Order for %s rejected: %s (requested %s, %s available)",
            payload.customer_email, e.message, e.requested, e.available,
        )
        raise
    except StoreError as e:
        session.rollback()
        logger.warning("Order for %s rejected: %s", payload.customer_email, e.message)
        raise
    except Exception:
        session.rollback()
        raise

    logger.info("Order %s placed by %s (total %s)", order.id, order.customer_email, order.total)
    _run_hook(on_commit, order, "Order placed")
    return order


def get_order(session: Session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def list_orders(session: Session) -> List[Order]:
    return list(session.scalars(select(Order).order_by(Order.created_at.desc(), Order.id.desc())))


def update_order_status(
    session: Session,
    order_id: int,
    status: OrderStatus,
    enforce_forward: bool = False,
    on_notify: Optional[OrderHook] = None,
) -> Order:
    """Set the status of an order.

    Backward moves are accepted unless enforce_forward is set. on_notify runs
    after commit when the order has just moved into shipped or delivered.
    """
    status = OrderStatus(status)
    try:
        order = session.get(Order, order_id, with_for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)
        current = OrderStatus(order.status)
        if enforce_forward and STATUS_RANK[status] < STATUS_RANK[current]:
            raise InvalidStatusTransitionError(current, status)
        order.status = status.value
        session.commit()
    except Exception:
        session.rollback()
        raise

    changed = current != status
    if changed:
        logger.info("Order %s moved from %s to %s", order_id, current.value, status.value)
        if status in NOTIFY_STATUSES:
            _run_hook(on_notify, order, "Status notification")
    return order


def order_counts_by_status(session: Session) -> dict:
    rows = session.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)).all()
    return {status: count for status, count in rows}
