"""
Stock validation.

One rule applies everywhere a quantity changes: ``requested <= stock``.
It is checked when a cart line changes and again inside the checkout
transaction, where ``reserve`` turns it into a conditional decrement so two
buyers cannot both take the last unit.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.core.errors import OutOfStock
from storefront.data.models import Product


@dataclass(frozen=True)
class Shortage:
    product_id: str
    requested: int
    available: int

    def as_dict(self) -> dict:
        return {"product_id": self.product_id, "requested": self.requested, "available": self.available}


def check_available(requested: int, stock: Optional[int], product_id: Optional[str] = None) -> None:
    """Raise OutOfStock unless ``requested`` units fit in ``stock``."""
    available = stock or 0
    if requested > available:
        raise OutOfStock(
            "Cannot add more items than available in stock",
            {"product_id": product_id, "requested": requested, "available": available},
        )


def find_shortages(lines: Iterable, stock_by_product: Dict[str, int]) -> List[Shortage]:
    """
    Compare cart lines (anything with ``product_id`` and ``quantity``) against
    a stock snapshot. Products missing from the snapshot have 0 available.
    """
    shortages = []
    for line in lines:
        available = stock_by_product.get(line.product_id, 0) or 0
        if line.quantity > available:
            shortages.append(Shortage(line.product_id, line.quantity, available))
    return shortages


def reserve(db: Session, product_id: str, quantity: int) -> bool:
    """
    Atomically take ``quantity`` units: decrement only if enough remain.
    Returns False when the row is missing or short. Caller owns the transaction.
    """
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
