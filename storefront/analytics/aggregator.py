"""
Sales analytics.

``build_report`` is a pure fold over orders (with their lines and each
line's live product). It reproduces the dashboard's figures exactly,
including two that are easy to misread:

- COGS uses each product's *current* cost_price, not a snapshot, so past
  profit moves when a cost is edited.
- ``inventory_value`` is the sum of per-product sales revenue, not the value
  of stock on hand. On-hand value lives in CatalogStore.inventory_summary.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.auth.session import AuthSession
from storefront.core.config import StorefrontConfig, get_config
from storefront.core.errors import BackendError, ValidationError
from storefront.core.money import ZERO, to_money
from storefront.data.models import Order
from storefront.utils.logger import get_logger, kv

logger = get_logger("analytics.aggregator")


class Timeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def window_start(timeframe, now: Optional[datetime] = None) -> datetime:
    """First instant included in the window; the window always ends at ``now``."""
    try:
        timeframe = Timeframe(timeframe)
    except ValueError:
        raise ValidationError(
            f"Unknown timeframe '{timeframe}'", {"allowed": [t.value for t in Timeframe]}
        ) from None
    now = _as_utc(now or datetime.now(timezone.utc))
    if timeframe is Timeframe.DAILY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe is Timeframe.WEEKLY:
        return now - timedelta(days=7)
    return now - timedelta(days=30)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class DailySales:
    date: str
    revenue: Decimal = ZERO
    orders: int = 0
    units: int = 0


@dataclass
class ProductSales:
    product_id: str
    name: str
    brand: str
    stock: int
    cost_price: Decimal
    units_sold: int = 0
    revenue: Decimal = ZERO
    cogs: Decimal = ZERO


@dataclass
class AnalyticsReport:
    daily: List[DailySales] = field(default_factory=list)
    products: List[ProductSales] = field(default_factory=list)
    total_revenue: Decimal = ZERO
    total_orders: int = 0
    total_units: int = 0
    average_order_value: Decimal = ZERO
    low_stock_count: int = 0
    inventory_value: Decimal = ZERO
    stock_turnover: float = 0.0
    total_cogs: Decimal = ZERO
    profit: Decimal = ZERO
    loss: Decimal = ZERO


def build_report(orders: Iterable[Order], low_stock_threshold: int = 3) -> AnalyticsReport:
    by_date: Dict[str, DailySales] = {}
    by_product: Dict[str, ProductSales] = {}

    for order in orders:
        day = _as_utc(order.created_at).date().isoformat()
        daily = by_date.setdefault(day, DailySales(date=day))
        daily.revenue += to_money(order.total_amount)
        daily.orders += 1

        for line in order.lines:
            daily.units += line.quantity
            product = line.product
            if product is None:
                continue
            sales = by_product.get(product.id)
            if sales is None:
                sales = by_product[product.id] = ProductSales(
                    product_id=product.id,
                    name=product.name,
                    brand=product.brand,
                    stock=product.stock,
                    cost_price=to_money(product.cost_price),
                )
            sales.units_sold += line.quantity
            sales.revenue += to_money(line.price) * line.quantity
            sales.cogs += sales.cost_price * line.quantity

    daily_rows = sorted(by_date.values(), key=lambda d: d.date, reverse=True)
    # sorted() is stable: ties keep first-seen order
    product_rows = sorted(by_product.values(), key=lambda p: p.units_sold, reverse=True)

    report = AnalyticsReport(daily=daily_rows, products=product_rows)
    report.total_revenue = to_money(sum((d.revenue for d in daily_rows), ZERO))
    report.total_orders = sum(d.orders for d in daily_rows)
    report.total_units = sum(d.units for d in daily_rows)
    if report.total_orders > 0:
        report.average_order_value = to_money(report.total_revenue / report.total_orders)
    report.low_stock_count = sum(1 for p in product_rows if p.stock <= low_stock_threshold)
    report.inventory_value = to_money(sum((p.revenue for p in product_rows), ZERO))

    units_sold = sum(p.units_sold for p in product_rows)
    stock_left = sum(p.stock for p in product_rows)
    if stock_left > 0:
        report.stock_turnover = units_sold / (units_sold + stock_left) * 100

    report.total_cogs = to_money(sum((p.cogs for p in product_rows), ZERO))
    report.profit = report.total_revenue - report.total_cogs
    report.loss = -report.profit if report.profit < 0 else ZERO
    return report


class AnalyticsService:
    def __init__(self, db: Session, config: Optional[StorefrontConfig] = None):
        self.db = db
        self.config = config or get_config()

    def report(self, session: AuthSession, timeframe="daily", now: Optional[datetime] = None) -> AnalyticsReport:
        session.require("can_view_analytics", "view analytics")
        start = window_start(timeframe, now)
        try:
            orders = (
                self.db.query(Order)
                .options(selectinload(Order.lines))
                .filter(Order.created_at >= start)
                .order_by(Order.created_at.asc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.error("analytics: %s", kv(method="report", timeframe=timeframe, result="error", error=e))
            raise BackendError(str(e)) from e
        report = build_report(orders, self.config.low_stock_threshold)
        logger.info("analytics: %s", kv(method="report", timeframe=Timeframe(timeframe).value, orders=report.total_orders))
        return report
