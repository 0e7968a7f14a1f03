"""
SQLAlchemy database models.
These map the hosted Postgres tables the storefront reads and writes.

- profiles:    one row per signed-up identity (username, role)
- products:    seller listings with live price and stock
- cart_lines:  per-customer pending selections, unique per (owner, product)
- orders:      committed purchases with a contact snapshot and status
- order_lines: immutable price/name snapshots attached to an order
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profile(Base):
    """Identity profile - maps to Supabase 'profiles' table (id = auth user id)."""
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=False, unique=True, index=True)
    role = Column(String(20), nullable=False, default="customer")
    phone = Column(String(50), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Product(Base):
    """Product catalog - one row per seller listing."""
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        CheckConstraint("price >= 0", name="ck_products_price_nonnegative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, index=True)
    brand = Column(String(100), nullable=False, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    # Unit cost for profit reporting; read live, never snapshotted
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    image = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    rating = Column(Numeric(3, 2), nullable=True)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def to_record(self) -> dict:
        """Plain dict used for change events and API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "price": self.price,
            "stock": self.stock,
            "image": self.image,
            "description": self.description,
            "owner_id": self.owner_id,
        }


class CartLine(Base):
    """Pending selection of one product by one customer."""
    __tablename__ = "cart_lines"
    __table_args__ = (
        UniqueConstraint("owner_id", "product_id", name="uq_cart_lines_owner_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_lines_quantity_positive"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    product = relationship("Product", lazy="joined")


class Order(Base):
    """Committed purchase. Only ``status`` changes after insert."""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(50), nullable=False)
    customer_email = Column(String(255), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
    )


class OrderLine(Base):
    """Immutable snapshot of one purchased product."""
    __tablename__ = "order_lines"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = Column(Text, nullable=False)
    # Listing owner at checkout; authorizes status changes after the product is deleted
    seller_id = Column(String(36), nullable=True, index=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="lines")
    # Live product row (None once the listing is deleted); analytics reads cost/stock from it
    product = relationship("Product", lazy="joined")
