"""
Cart aggregator for signed-in customers.

cart_lines schema:
  id, owner_id, product_id, quantity (>= 1), created_at
  UNIQUE (owner_id, product_id)

Every mutation re-reads the product so the quantity is validated against
live stock, not the value the caller last saw.
"""
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.auth.session import AuthSession
from storefront.commerce.stock import check_available
from storefront.core.errors import BackendError, InvalidQuantity, NotFound, SelfPurchase
from storefront.core.money import ZERO, to_money
from storefront.data.models import CartLine, Product
from storefront.utils.logger import get_logger, kv

logger = get_logger("commerce.cart")


def compute_total(lines: Iterable[CartLine]) -> Decimal:
    """Pre-checkout estimate at *current* prices. Lines without a product add nothing."""
    total = ZERO
    for line in lines:
        if line.product is not None:
            total += to_money(line.product.price) * line.quantity
    return to_money(total)


def item_count(lines: Iterable[CartLine]) -> int:
    return sum(line.quantity for line in lines)


class CartService:
    def __init__(self, db: Session):
        self.db = db

    def lines(self, session: AuthSession) -> List[CartLine]:
        """Cart rows for the caller, oldest first, with products joined."""
        session.require("can_purchase", "use the cart")
        try:
            return (
                self.db.query(CartLine)
                .filter(CartLine.owner_id == session.user_id)
                .order_by(CartLine.created_at.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def add_or_increment(self, session: AuthSession, product_id: str, by: int = 1, _retry: bool = True) -> CartLine:
        """
        Add ``by`` units of a product: creates the line or increments it.
        The resulting quantity must not exceed the product's stock.
        """
        session.require("can_purchase", "add items to the cart")
        logger.info("cart: %s", kv(method="add_or_increment", user_id=session.user_id, product_id=product_id, by=by))
        if by < 1:
            raise InvalidQuantity("Quantity must be at least 1", {"quantity": by})

        try:
            product = self.db.get(Product, product_id)
            if product is None:
                raise NotFound("Product not found", {"product_id": product_id})
            if session.owns(product.owner_id):
                raise SelfPurchase("You cannot buy your own listing", {"product_id": product_id})

            line = (
                self.db.query(CartLine)
                .filter(CartLine.owner_id == session.user_id, CartLine.product_id == product_id)
                .first()
            )
            current = line.quantity if line else 0
            check_available(current + by, product.stock, product_id)

            if line:
                line.quantity = current + by
            else:
                line = CartLine(owner_id=session.user_id, product_id=product_id, quantity=by)
                self.db.add(line)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            # Concurrent add created the row first; retry once as an increment
            if _retry:
                return self.add_or_increment(session, product_id, by, _retry=False)
            raise BackendError(str(e)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("cart: %s", kv(method="add_or_increment", user_id=session.user_id, product_id=product_id, result="error", error=e))
            raise BackendError(str(e)) from e

        self.db.refresh(line)
        logger.info("cart: %s", kv(method="add_or_increment", user_id=session.user_id, product_id=product_id, quantity=line.quantity, result="success"))
        return line

    def _own_line(self, session: AuthSession, line_id: str) -> CartLine:
        line = (
            self.db.query(CartLine)
            .filter(CartLine.id == line_id, CartLine.owner_id == session.user_id)
            .first()
        )
        if line is None:
            raise NotFound("Cart item not found", {"line_id": line_id})
        return line

    def set_quantity(self, session: AuthSession, line_id: str, quantity: int) -> CartLine:
        """Set a line's quantity. Removal is a separate operation, so 0 is rejected."""
        session.require("can_purchase", "change the cart")
        logger.info("cart: %s", kv(method="set_quantity", user_id=session.user_id, line_id=line_id, quantity=quantity))
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1", {"quantity": quantity})
        try:
            line = self._own_line(session, line_id)
            product = self.db.get(Product, line.product_id)
            if product is None:
                raise NotFound("Product not found", {"product_id": line.product_id})
            check_available(quantity, product.stock, product.id)
            line.quantity = quantity
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("cart: %s", kv(method="set_quantity", user_id=session.user_id, line_id=line_id, result="error", error=e))
            raise BackendError(str(e)) from e
        self.db.refresh(line)
        return line

    def remove(self, session: AuthSession, line_id: str) -> None:
        session.require("can_purchase", "change the cart")
        try:
            line = self._own_line(session, line_id)
            self.db.delete(line)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("cart: %s", kv(method="remove", user_id=session.user_id, line_id=line_id, result="error", error=e))
            raise BackendError(str(e)) from e
        logger.info("cart: %s", kv(method="remove", user_id=session.user_id, line_id=line_id, result="success"))
