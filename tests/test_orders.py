"""
Tests for checkout and the order status workflow.

Run with: pytest tests/test_orders.py -v
"""
from decimal import Decimal

import pytest

from storefront.auth.session import AuthSession
from storefront.catalog.store import CatalogStore
from storefront.commerce import orders
from storefront.commerce.cart import CartService
from storefront.commerce.orders import (
    OrderStatus, OrderWorkflow, can_transition, is_terminal, parse_status, status_counts,
)
from storefront.commerce.stock import reserve
from storefront.core.errors import InvalidTransition, NotFound, OutOfStock, PermissionDenied, ValidationError
from storefront.data.models import CartLine, Order, OrderLine, Product, Profile
from storefront.realtime.channel import UPDATE


def _fill_cart(db, session, *items):
    cart = CartService(db)
    for product_id, quantity in items:
        cart.add_or_increment(session, product_id, quantity)


class TestStatusMachine:
    @pytest.mark.parametrize("current,target,allowed", [
        ("pending", "confirmed", True),
        ("pending", "rejected", True),
        ("confirmed", "fulfilled", True),
        ("pending", "fulfilled", False),
        ("confirmed", "rejected", False),
        ("rejected", "confirmed", False),
        ("rejected", "fulfilled", False),
        ("fulfilled", "pending", False),
    ])
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_terminal_states(self):
        assert is_terminal("rejected")
        assert is_terminal(OrderStatus.FULFILLED)
        assert not is_terminal("pending")

    def test_parse_status_rejects_unknown(self):
        with pytest.raises(ValidationError):
            parse_status("shipped")

    def test_status_counts(self):
        orders = [Order(status="pending"), Order(status="pending"), Order(status="fulfilled")]
        assert status_counts(orders) == {
            "all": 3, "pending": 2, "confirmed": 0, "rejected": 0, "fulfilled": 1,
        }


class TestCheckout:
    def test_creates_order_with_snapshots(self, db, customer, feed):
        _fill_cart(db, customer, ("prod-lamp", 2), ("prod-pen", 4))
        events = []
        feed.subscribe("products", events.append)

        order = OrderWorkflow(db, feed).checkout(customer)

        assert order.status == "pending"
        assert order.total_amount == Decimal("30.00")
        assert order.customer_name == "carol"
        assert order.customer_phone == "555-0100"
        assert order.customer_email == "carol@example.com"
        assert [(l.product_name, l.quantity, l.price) for l in order.lines] == [
            ("Desk Lamp", 2, Decimal("10.00")),
            ("Gel Pen", 4, Decimal("2.50")),
        ]
        assert db.query(CartLine).filter(CartLine.owner_id == customer.user_id).count() == 0
        assert db.get(Product, "prod-lamp").stock == 3
        assert db.get(Product, "prod-pen").stock == 36
        assert {(e.type, e.record["id"], e.record["stock"]) for e in events} == {
            (UPDATE, "prod-lamp", 3), (UPDATE, "prod-pen", 36),
        }

    def test_price_snapshot_survives_price_change(self, db, customer, seeded):
        _fill_cart(db, customer, ("prod-lamp", 1))
        order = OrderWorkflow(db).checkout(customer)
        seeded["lamp"].price = Decimal("99.00")
        db.commit()
        db.expire_all()
        assert db.get(Order, order.id).lines[0].price == Decimal("10.00")

    def test_empty_cart(self, db, customer):
        with pytest.raises(ValidationError) as exc:
            OrderWorkflow(db).checkout(customer)
        assert exc.value.message == "Cart is empty"
        assert db.query(Order).count() == 0

    def test_stock_dropped_after_add(self, db, customer, seeded):
        seeded["lamp"].stock = 2
        db.commit()
        _fill_cart(db, customer, ("prod-pen", 1), ("prod-lamp", 2))

        # Another buyer takes a unit before this customer checks out
        seeded["lamp"].stock = 1
        db.commit()

        with pytest.raises(OutOfStock) as exc:
            OrderWorkflow(db).checkout(customer)
        assert exc.value.details["sold_out"] == [
            {"product_id": "prod-lamp", "requested": 2, "available": 1},
        ]
        db.expire_all()
        assert db.query(Order).count() == 0
        assert db.query(OrderLine).count() == 0
        assert db.query(CartLine).filter(CartLine.owner_id == customer.user_id).count() == 2
        assert db.get(Product, "prod-pen").stock == 40
        assert db.get(Product, "prod-lamp").stock == 1

    def test_contact_fallbacks(self, db, seeded):
        db.add(Profile(id="cust-0002", email="dan@example.com", name="dan", role="customer"))
        db.commit()
        dan = AuthSession.from_profile(db.get(Profile, "cust-0002"))
        _fill_cart(db, dan, ("prod-pen", 1))
        order = OrderWorkflow(db).checkout(dan)
        assert order.customer_phone == "Not provided"
        assert order.customer_name == "dan"

    def test_sellers_cannot_checkout(self, db, seller):
        with pytest.raises(PermissionDenied):
            OrderWorkflow(db).checkout(seller)

    def test_lost_reservation_rolls_back_earlier_lines(self, db, customer, monkeypatch):
        _fill_cart(db, customer, ("prod-pen", 1), ("prod-lamp", 2))
        calls = []

        def reserve_then_lose(session, product_id, quantity):
            calls.append(product_id)
            # The second line loses the race to a concurrent buyer
            if len(calls) == 2:
                return False
            return reserve(session, product_id, quantity)

        monkeypatch.setattr(orders, "reserve", reserve_then_lose)
        with pytest.raises(OutOfStock):
            OrderWorkflow(db).checkout(customer)

        assert calls == ["prod-pen", "prod-lamp"]
        db.expire_all()
        assert db.get(Product, "prod-pen").stock == 40
        assert db.get(Product, "prod-lamp").stock == 5
        assert db.query(Order).count() == 0
        assert db.query(OrderLine).count() == 0
        assert db.query(CartLine).filter(CartLine.owner_id == customer.user_id).count() == 2


class TestListing:
    def test_customer_sees_only_own_orders(self, db, customer, seller, seeded):
        _fill_cart(db, customer, ("prod-pen", 1))
        mine = OrderWorkflow(db).checkout(customer)
        db.add(Order(owner_id="sell-0002", customer_name="olga", customer_phone="x", customer_email="o@x",
                     total_amount=Decimal("1.00")))
        db.commit()

        workflow = OrderWorkflow(db)
        assert [o.id for o in workflow.list_orders(customer)] == [mine.id]
        assert len(workflow.list_orders(seller)) == 2

    def test_status_filter(self, db, customer, seller):
        _fill_cart(db, customer, ("prod-lamp", 1))
        workflow = OrderWorkflow(db)
        order = workflow.checkout(customer)
        workflow.transition(seller, order.id, "confirmed")
        assert workflow.list_orders(seller, "pending") == []
        assert [o.id for o in workflow.list_orders(seller, "confirmed")] == [order.id]
        assert len(workflow.list_orders(seller, "all")) == 1

    def test_get_order_hidden_from_other_customers(self, db, customer, seeded):
        order = Order(owner_id="sell-0002", customer_name="olga", customer_phone="x", customer_email="o@x",
                      total_amount=Decimal("1.00"))
        db.add(order)
        db.commit()
        with pytest.raises(NotFound):
            OrderWorkflow(db).get_order(customer, order.id)


class TestTransition:
    @pytest.fixture
    def order(self, db, customer):
        _fill_cart(db, customer, ("prod-lamp", 1))
        return OrderWorkflow(db).checkout(customer)

    def test_happy_path(self, db, seller, order):
        workflow = OrderWorkflow(db)
        assert workflow.transition(seller, order.id, "confirmed").status == "confirmed"
        assert workflow.transition(seller, order.id, "fulfilled").status == "fulfilled"

    def test_rejected_cannot_be_fulfilled(self, db, seller, order):
        workflow = OrderWorkflow(db)
        workflow.transition(seller, order.id, "rejected")
        with pytest.raises(InvalidTransition) as exc:
            workflow.transition(seller, order.id, "fulfilled")
        assert exc.value.message == "Cannot change order from rejected to fulfilled"
        db.expire_all()
        assert db.get(Order, order.id).status == "rejected"

    def test_only_status_changes(self, db, seller, order):
        before = (order.total_amount, order.customer_name, order.created_at)
        updated = OrderWorkflow(db).transition(seller, order.id, "confirmed")
        assert (updated.total_amount, updated.customer_name, updated.created_at) == before

    def test_customer_cannot_transition(self, db, customer, order):
        with pytest.raises(PermissionDenied) as exc:
            OrderWorkflow(db).transition(customer, order.id, "confirmed")
        assert exc.value.message == "Only sellers can update orders"

    def test_order_lines_record_the_seller(self, order):
        assert [line.seller_id for line in order.lines] == ["sell-0001"]

    def test_seller_can_still_transition_after_deleting_product(self, db, seller, order):
        CatalogStore(db).delete_product(seller, "prod-lamp")
        db.expire_all()
        assert db.get(Order, order.id).lines[0].product_id is None

        workflow = OrderWorkflow(db)
        assert workflow.transition(seller, order.id, "confirmed").status == "confirmed"
        assert workflow.transition(seller, order.id, "fulfilled").status == "fulfilled"

    def test_seller_without_items_on_order(self, db, other_seller, order):
        with pytest.raises(PermissionDenied):
            OrderWorkflow(db).transition(other_seller, order.id, "confirmed")

    def test_unknown_order(self, db, seller):
        with pytest.raises(NotFound):
            OrderWorkflow(db).transition(seller, "no-such-order", "confirmed")
