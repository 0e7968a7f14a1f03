"""
Order workflow: checkout from the cart and the order status lifecycle.

    pending ──> confirmed ──> fulfilled
       └──────> rejected

Checkout runs as one database transaction: re-read stock, reserve every
line with a conditional decrement, insert the order with price/name
snapshots, clear the cart, commit. Any failure rolls all of it back, so a
caller never sees an order without its lines or a cleared cart without an
order.
"""
from collections import Counter
from enum import Enum
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.auth.session import AuthSession
from storefront.commerce.stock import find_shortages, reserve
from storefront.core.config import StorefrontConfig, get_config
from storefront.core.errors import (
    BackendError, InvalidTransition, NotFound, OutOfStock, PermissionDenied, StorefrontError, ValidationError,
)
from storefront.core.money import ZERO, to_money
from storefront.data.models import CartLine, Order, OrderLine, Product, Profile
from storefront.realtime.channel import UPDATE, ChangeEvent, ChangeFeed
from storefront.utils.logger import get_logger, kv

logger = get_logger("commerce.orders")


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"


TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.REJECTED},
    OrderStatus.CONFIRMED: {OrderStatus.FULFILLED},
    OrderStatus.REJECTED: set(),
    OrderStatus.FULFILLED: set(),
}


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown order status '{value}'", {"allowed": [s.value for s in OrderStatus]}
        ) from None


def can_transition(current, target) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def is_terminal(status) -> bool:
    return not TRANSITIONS[OrderStatus(status)]


def status_counts(orders: Iterable[Order]) -> Dict[str, int]:
    """Counts per status plus ``all``, for the order list filter chips."""
    counts = Counter(order.status for order in orders)
    result = {"all": sum(counts.values())}
    for status in OrderStatus:
        result[status.value] = counts.get(status.value, 0)
    return result


class OrderWorkflow:
    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None, config: Optional[StorefrontConfig] = None):
        self.db = db
        self.feed = feed
        self.config = config or get_config()

    def _contact(self, session: AuthSession) -> Dict[str, str]:
        profile = self.db.get(Profile, session.user_id)
        name = (profile.name if profile else None) or session.name
        phone = (profile.phone if profile else None) or session.phone
        email = (profile.email if profile else None) or session.email
        return {
            "customer_name": name or self.config.anonymous_name,
            "customer_phone": phone or self.config.not_provided,
            "customer_email": email or self.config.not_provided,
        }

    def checkout(self, session: AuthSession) -> Order:
        """Turn the caller's cart into a pending order, all or nothing."""
        session.require("can_purchase", "place orders")
        logger.info("orders: %s", kv(method="checkout", user_id=session.user_id))
        try:
            lines: List[CartLine] = (
                self.db.query(CartLine)
                .filter(CartLine.owner_id == session.user_id)
                .order_by(CartLine.created_at.asc())
                .all()
            )
            if not lines:
                raise ValidationError("Cart is empty")

            product_ids = [line.product_id for line in lines]
            products = {
                p.id: p
                for p in self.db.query(Product).filter(Product.id.in_(product_ids)).populate_existing().all()
            }
            shortages = find_shortages(lines, {pid: p.stock for pid, p in products.items()})
            if shortages:
                raise OutOfStock(
                    "Some items are out of stock",
                    {"sold_out": [s.as_dict() for s in shortages]},
                )

            order = Order(owner_id=session.user_id, status=OrderStatus.PENDING.value, **self._contact(session))
            total = ZERO
            for position, line in enumerate(lines):
                product = products[line.product_id]
                if not reserve(self.db, product.id, line.quantity):
                    # Another checkout took the stock between our read and the decrement
                    raise OutOfStock(
                        "Some items are out of stock",
                        {"sold_out": [{"product_id": product.id, "requested": line.quantity}]},
                    )
                price = to_money(product.price)
                order.lines.append(OrderLine(
                    product_id=product.id,
                    product_name=product.name,
                    seller_id=product.owner_id,
                    quantity=line.quantity,
                    price=price,
                    position=position,
                ))
                total += price * line.quantity
            order.total_amount = to_money(total)
            self.db.add(order)

            self.db.query(CartLine).filter(CartLine.owner_id == session.user_id).delete(synchronize_session=False)
            self.db.commit()
        except StorefrontError as e:
            self.db.rollback()
            logger.info("orders: %s", kv(method="checkout", user_id=session.user_id, result="rejected", code=e.code))
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("orders: %s", kv(method="checkout", user_id=session.user_id, result="error", error=e))
            raise BackendError(str(e)) from e

        self.db.refresh(order)
        logger.info("orders: %s", kv(method="checkout", user_id=session.user_id, order_id=order.id, total=order.total_amount, result="success"))
        if self.feed is not None:
            for product in products.values():
                self.db.refresh(product)
                self.feed.publish(ChangeEvent("products", UPDATE, product.to_record()))
        return order

    def _visible(self, session: AuthSession):
        q = self.db.query(Order)
        if not session.role.sees_all_orders:
            q = q.filter(Order.owner_id == session.user_id)
        return q

    def list_orders(self, session: AuthSession, status: Optional[str] = None) -> List[Order]:
        """Newest first. Customers only see their own orders."""
        q = self._visible(session)
        if status and status != "all":
            q = q.filter(Order.status == parse_status(status).value)
        try:
            return q.order_by(Order.created_at.desc()).all()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def get_order(self, session: AuthSession, order_id: str) -> Order:
        try:
            order = self._visible(session).filter(Order.id == order_id).first()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        if order is None:
            raise NotFound("Order not found", {"order_id": order_id})
        return order

    def transition(self, session: AuthSession, order_id: str, new_status: str) -> Order:
        """Move an order along the status machine. Only ``status`` changes."""
        session.require("can_manage_orders", "update orders")
        target = parse_status(new_status)
        logger.info("orders: %s", kv(method="transition", user_id=session.user_id, order_id=order_id, target=target.value))
        try:
            order = self.db.get(Order, order_id)
            if order is None:
                raise NotFound("Order not found", {"order_id": order_id})

            sells_item = (
                self.db.query(OrderLine.id)
                .filter(OrderLine.order_id == order_id, OrderLine.seller_id == session.user_id)
                .first()
            )
            if sells_item is None:
                raise PermissionDenied("You can only update orders for your own products", {"order_id": order_id})

            current = order.status
            if not can_transition(current, target):
                raise InvalidTransition(
                    f"Cannot change order from {current} to {target.value}",
                    {"order_id": order_id, "current": current, "requested": target.value},
                )
            # Guard on the status we validated against so concurrent updates cannot skip a state
            result = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == current)
                .values(status=target.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition(
                    "Order status changed, refresh and try again",
                    {"order_id": order_id, "current": current, "requested": target.value},
                )
            self.db.commit()
        except StorefrontError as e:
            self.db.rollback()
            logger.info("orders: %s", kv(method="transition", order_id=order_id, result="rejected", code=e.code))
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("orders: %s", kv(method="transition", order_id=order_id, result="error", error=e))
            raise BackendError(str(e)) from e

        self.db.refresh(order)
        logger.info("orders: %s", kv(method="transition", order_id=order_id, status=order.status, result="success"))
        return order
