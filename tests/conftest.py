"""Pytest configuration for storefront tests.

Every test gets a fresh in-memory SQLite database seeded with one customer,
two sellers and a small catalog. The hosted identity and storage services
are replaced by in-memory fakes.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api import server
from storefront.auth.identity import IdentityService, IdentityUser
from storefront.auth.session import AuthSession
from storefront.core.config import StorefrontConfig, set_config
from storefront.core.errors import BackendError
from storefront.data.database import Base, get_db
from storefront.data.models import Product, Profile
from storefront.realtime.channel import ChangeFeed

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

CUSTOMER_ID = "cust-0001"
SELLER_ID = "sell-0001"
OTHER_SELLER_ID = "sell-0002"


class FakeIdentity(IdentityService):
    """Identity service backed by dicts. Tokens are ``token-<user id>``."""

    def __init__(self):
        self.users = {}       # email -> (password, IdentityUser)
        self.revoked = []
        self.fail_sign_out = False
        self.outage = None

    def add_user(self, user_id, email, password="secret", confirmed=True):
        self.users[email] = (password, IdentityUser(id=user_id, email=email, confirmed=confirmed))

    def get_user(self, access_token):
        if self.outage:
            raise self.outage
        for _, user in self.users.values():
            if access_token == f"token-{user.id}" and access_token not in self.revoked:
                return user
        raise BackendError("invalid JWT", {"status_code": 401})

    def sign_in_with_password(self, email, password):
        if self.outage:
            raise self.outage
        if email not in self.users or self.users[email][0] != password:
            raise BackendError("Invalid login credentials", {"status_code": 400})
        user = self.users[email][1]
        return f"token-{user.id}", user

    def sign_up(self, email, password, metadata):
        if email in self.users:
            raise BackendError("User already registered")
        user = IdentityUser(id=f"user-{len(self.users) + 1:04d}", email=email, confirmed=False, metadata=metadata)
        self.users[email] = (password, user)
        return user

    def sign_out(self, access_token):
        if self.fail_sign_out:
            raise BackendError("network down")
        self.revoked.append(access_token)


class FakeBucket:
    """Stands in for StorageBucket."""

    def __init__(self):
        self.objects = {}

    def upload(self, path, content, content_type):
        self.objects[path] = (content, content_type)

    def public_url(self, path):
        return f"https://cdn.example.test/product-images/{path}"


@pytest.fixture(autouse=True)
def config():
    cfg = StorefrontConfig()
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(eng, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    """Profiles and products. Returns products keyed by short name."""
    db.add_all([
        Profile(id=CUSTOMER_ID, email="carol@example.com", name="carol", role="customer", phone="555-0100"),
        Profile(id=SELLER_ID, email="sam@example.com", name="sam", role="seller"),
        Profile(id=OTHER_SELLER_ID, email="olga@example.com", name="olga", role="seller"),
    ])
    # profiles first: products.owner_id references them and foreign keys are enforced
    db.flush()
    products = {
        "lamp": Product(id="prod-lamp", name="Desk Lamp", brand="Lumo", price=Decimal("10.00"),
                        cost_price=Decimal("4.00"), stock=5, rating=Decimal("4.50"), owner_id=SELLER_ID,
                        created_at=T0),
        "mug": Product(id="prod-mug", name="Coffee Mug", brand="Kiln", price=Decimal("15.00"),
                       cost_price=Decimal("6.00"), stock=1, rating=None, owner_id=SELLER_ID,
                       created_at=T0 + timedelta(minutes=1)),
        "chair": Product(id="prod-chair", name="Office Chair", brand="Lumo", price=Decimal("120.00"),
                         cost_price=Decimal("70.00"), stock=0, rating=Decimal("3.90"), owner_id=SELLER_ID,
                         created_at=T0 + timedelta(minutes=2)),
        "pen": Product(id="prod-pen", name="Gel Pen", brand="Inkwell", price=Decimal("2.50"),
                       cost_price=Decimal("1.00"), stock=40, rating=Decimal("4.80"), owner_id=OTHER_SELLER_ID,
                       created_at=T0 + timedelta(minutes=3)),
    }
    db.add_all(products.values())
    db.commit()
    return products


def _session(db, user_id, token=None):
    return AuthSession.from_profile(db.get(Profile, user_id), token or f"token-{user_id}")


@pytest.fixture
def customer(db, seeded):
    return _session(db, CUSTOMER_ID)


@pytest.fixture
def seller(db, seeded):
    return _session(db, SELLER_ID)


@pytest.fixture
def other_seller(db, seeded):
    return _session(db, OTHER_SELLER_ID)


@pytest.fixture
def identity():
    fake = FakeIdentity()
    fake.add_user(CUSTOMER_ID, "carol@example.com")
    fake.add_user(SELLER_ID, "sam@example.com")
    fake.add_user(OTHER_SELLER_ID, "olga@example.com")
    return fake


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def bucket():
    return FakeBucket()


@pytest.fixture
def client(session_factory, seeded, identity, bucket, feed):
    """TestClient with database, identity and storage dependencies overridden."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    server.app.dependency_overrides[get_db] = override_get_db
    server.app.dependency_overrides[server.get_identity] = lambda: identity
    server.app.dependency_overrides[server.get_storage] = lambda: bucket
    server.app.dependency_overrides[server.get_feed] = lambda: feed
    with TestClient(server.app) as test_client:
        yield test_client
    server.app.dependency_overrides.clear()


def auth_header(user_id):
    return {"Authorization": f"Bearer token-{user_id}"}
