"""
Catalog store.

Browse reads (any signed-in user) and seller inventory management (own
listings only). Product writes publish a change event on the products
table so open browse views can update without polling.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.auth.session import AuthSession
from storefront.core.config import StorefrontConfig, get_config
from storefront.core.errors import BackendError, NotFound, ValidationError
from storefront.core.money import ZERO, to_money
from storefront.data.models import CartLine, Product
from storefront.realtime.channel import DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed
from storefront.utils.logger import get_logger, kv

logger = get_logger("catalog.store")

SORT_OPTIONS = ("default", "price_low", "price_high", "rating")


@dataclass
class ProductForm:
    """Raw seller input; numbers may still be strings."""
    name: Optional[str] = None
    brand: Optional[str] = None
    price: Any = None
    stock: Any = None
    description: Optional[str] = None
    image: Optional[str] = None
    cost_price: Any = None


def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def parse_product_form(form: ProductForm, placeholder_image: str) -> Dict[str, Any]:
    """Validate a form and return column values for a Product row."""
    if _blank(form.name) or _blank(form.brand) or _blank(form.price) or _blank(form.stock):
        raise ValidationError("Please fill in all required fields")
    try:
        price = Decimal(str(form.price).strip())
        stock = Decimal(str(form.stock).strip())
        cost_price = ZERO if _blank(form.cost_price) else Decimal(str(form.cost_price).strip())
    except InvalidOperation:
        raise ValidationError("Price and stock must be valid numbers") from None
    if not (price.is_finite() and stock.is_finite() and cost_price.is_finite()):
        raise ValidationError("Price and stock must be valid numbers")
    if price < 0 or stock < 0 or cost_price < 0:
        raise ValidationError("Price and stock cannot be negative")
    if stock != stock.to_integral_value():
        raise ValidationError("Stock must be a whole number", {"stock": str(form.stock)})

    return {
        "name": form.name.strip(),
        "brand": form.brand.strip(),
        "price": to_money(price),
        "stock": int(stock),
        "cost_price": to_money(cost_price),
        "description": (form.description or "").strip(),
        "image": form.image or placeholder_image,
    }


@dataclass
class InventorySummary:
    product_count: int
    low_stock: List[Product]
    out_of_stock: List[Product]
    total_value: Decimal


class CatalogStore:
    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None, config: Optional[StorefrontConfig] = None):
        self.db = db
        self.feed = feed
        self.config = config or get_config()

    def _publish(self, type_: str, product: Product, old: Optional[dict] = None) -> None:
        if self.feed is not None:
            self.feed.publish(ChangeEvent("products", type_, product.to_record(), old))

    # -- browse --------------------------------------------------------------

    def browse(self, query: Optional[str] = None, brand: Optional[str] = None, sort: str = "default") -> List[Product]:
        """In-stock products matching ``query`` (name or brand) and ``brand``."""
        if sort not in SORT_OPTIONS:
            raise ValidationError(f"Unknown sort option '{sort}'", {"allowed": list(SORT_OPTIONS)})
        try:
            q = self.db.query(Product).filter(Product.stock >= 1)
            if query and query.strip():
                pattern = f"%{query.strip().lower()}%"
                q = q.filter(or_(func.lower(Product.name).like(pattern), func.lower(Product.brand).like(pattern)))
            if brand and brand != "All":
                q = q.filter(Product.brand == brand)
            products = q.order_by(Product.created_at.asc()).all()
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

        if sort == "price_low":
            products.sort(key=lambda p: p.price)
        elif sort == "price_high":
            products.sort(key=lambda p: p.price, reverse=True)
        elif sort == "rating":
            products.sort(key=lambda p: (p.rating is None, -(p.rating or 0)))
        return products

    def brands(self) -> List[str]:
        """Brand filter options: "All" then each browsable brand in first-seen order."""
        seen = []
        for product in self.browse():
            if product.brand not in seen:
                seen.append(product.brand)
        return ["All"] + seen

    def get(self, product_id: str) -> Product:
        try:
            product = self.db.get(Product, product_id)
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e
        if product is None:
            raise NotFound("Product not found", {"product_id": product_id})
        return product

    # -- seller inventory ----------------------------------------------------

    def seller_products(self, session: AuthSession) -> List[Product]:
        session.require("can_manage_catalog", "view inventory")
        try:
            return (
                self.db.query(Product)
                .filter(Product.owner_id == session.user_id)
                .order_by(Product.created_at.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise BackendError(str(e)) from e

    def _own_product(self, session: AuthSession, product_id: str) -> Product:
        product = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.owner_id == session.user_id)
            .first()
        )
        if product is None:
            raise NotFound("Product not found", {"product_id": product_id})
        return product

    def create_product(self, session: AuthSession, form: ProductForm) -> Product:
        session.require("can_manage_catalog", "add products")
        values = parse_product_form(form, self.config.placeholder_image)
        product = Product(owner_id=session.user_id, **values)
        try:
            self.db.add(product)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("catalog: %s", kv(method="create_product", user_id=session.user_id, result="error", error=e))
            raise BackendError(str(e)) from e
        self.db.refresh(product)
        logger.info("catalog: %s", kv(method="create_product", user_id=session.user_id, product_id=product.id, result="success"))
        self._publish(INSERT, product)
        return product

    def update_product(self, session: AuthSession, product_id: str, form: ProductForm) -> Product:
        session.require("can_manage_catalog", "edit products")
        values = parse_product_form(form, self.config.placeholder_image)
        try:
            product = self._own_product(session, product_id)
            old = product.to_record()
            for key, value in values.items():
                setattr(product, key, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("catalog: %s", kv(method="update_product", user_id=session.user_id, product_id=product_id, result="error", error=e))
            raise BackendError(str(e)) from e
        self.db.refresh(product)
        logger.info("catalog: %s", kv(method="update_product", user_id=session.user_id, product_id=product_id, result="success"))
        self._publish(UPDATE, product, old)
        return product

    def delete_product(self, session: AuthSession, product_id: str) -> None:
        """Remove a listing. Cart lines go with it; order lines keep their snapshot."""
        session.require("can_manage_catalog", "delete products")
        try:
            product = self._own_product(session, product_id)
            record = product.to_record()
            self.db.query(CartLine).filter(CartLine.product_id == product_id).delete(synchronize_session=False)
            self.db.delete(product)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("catalog: %s", kv(method="delete_product", user_id=session.user_id, product_id=product_id, result="error", error=e))
            raise BackendError(str(e)) from e
        logger.info("catalog: %s", kv(method="delete_product", user_id=session.user_id, product_id=product_id, result="success"))
        if self.feed is not None:
            self.feed.publish(ChangeEvent("products", DELETE, {"id": product_id}, record))

    def inventory_summary(self, session: AuthSession) -> InventorySummary:
        """Seller dashboard alerts and on-hand value (price x stock)."""
        products = self.seller_products(session)
        threshold = self.config.low_stock_threshold
        return InventorySummary(
            product_count=len(products),
            low_stock=[p for p in products if 0 < p.stock <= threshold],
            out_of_stock=[p for p in products if p.stock == 0],
            total_value=to_money(sum((to_money(p.price) * p.stock for p in products), ZERO)),
        )
