"""
FastAPI server for the storefront.

Thin HTTP adapter over the catalog, cart, order and analytics services.
Every route resolves the caller's AuthSession from the Bearer token and
passes it explicitly to the service it calls.

Usage:
    uvicorn storefront.api.server:app --reload --port 8000
"""
import os
import traceback
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from storefront.analytics.aggregator import AnalyticsService
from storefront.api.models import (
    AddToCartRequest, AnalyticsOut, CartLineOut, CartOut, ConstraintDetail, Envelope, ImageOut,
    InventorySummaryOut, OrderListOut, OrderOut, ProductFormRequest, ProductOut, ProfileOut,
    ResponseStatus, SellerProductOut, SessionOut, SetQuantityRequest, SignInRequest, SignUpRequest,
    TransitionRequest,
)
from storefront.auth.identity import IdentityService, SupabaseIdentity
from storefront.auth.session import AuthSession, SessionManager
from storefront.catalog.images import ImageUploader, StorageBucket
from storefront.catalog.store import CatalogStore, ProductForm
from storefront.commerce.cart import CartService, compute_total, item_count
from storefront.commerce.orders import OrderWorkflow, status_counts
from storefront.core.config import get_config
from storefront.core.errors import (
    BackendError, InvalidTransition, NotFound, OutOfStock, PermissionDenied, StorefrontError, Unauthenticated,
    ValidationError,
)
from storefront.data import database
from storefront.data.database import Base, get_db
from storefront.realtime.channel import ChangeFeed
from storefront.utils.logger import get_logger
from storefront.utils.supabase_client import SupabaseClient

logger = get_logger("api.server")

# Checked in order; SelfPurchase and InvalidQuantity resolve through their parents
ERROR_STATUS = [
    (OutOfStock, 409, ResponseStatus.OUT_OF_STOCK),
    (InvalidTransition, 409, ResponseStatus.CONFLICT),
    (ValidationError, 400, ResponseStatus.INVALID),
    (PermissionDenied, 403, ResponseStatus.FORBIDDEN),
    (NotFound, 404, ResponseStatus.NOT_FOUND),
    (BackendError, 502, ResponseStatus.ERROR),
    (Unauthenticated, 401, ResponseStatus.UNAUTHORIZED),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = database.configure()
    # Hosted DB normally has the tables already
    if engine is not None:
        try:
            Base.metadata.create_all(bind=engine)
        except Exception as _e:
            logger.warning("Could not run Base.metadata.create_all: %s. Tables should already exist.", _e)
    yield
    if engine is not None:
        engine.dispose()


app = FastAPI(
    title="Storefront API",
    description="Catalog, cart, checkout, order workflow and sales analytics",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.feed = ChangeFeed()


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    http_status, status = 400, ResponseStatus.INVALID
    for error_type, code, mapped in ERROR_STATUS:
        if isinstance(exc, error_type):
            http_status, status = code, mapped
            break
    body = Envelope(
        status=status,
        constraints=[ConstraintDetail(code=exc.code, message=exc.message, details=exc.details or None)],
    )
    return JSONResponse(status_code=http_status, content=body.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unhandled exceptions and return 500."""
    logger.error("Unhandled exception: %s\n%s", exc, traceback.format_exc())
    is_dev = os.getenv("ENV", "development").lower() in ("development", "dev", "")
    detail = str(exc) if is_dev else "Internal server error"
    return JSONResponse(status_code=500, content={"detail": detail, "type": type(exc).__name__})


#
# Dependencies
#

_supabase: Optional[SupabaseClient] = None


def _supabase_client() -> SupabaseClient:
    global _supabase
    if _supabase is None:
        config = get_config()
        _supabase = SupabaseClient(config.supabase_url, config.supabase_key)
    return _supabase


def get_identity() -> IdentityService:
    return SupabaseIdentity(_supabase_client())


def get_storage() -> StorageBucket:
    return StorageBucket(_supabase_client(), get_config().image_bucket)


def get_feed(request: Request) -> ChangeFeed:
    return request.app.state.feed


def require_db(db: Optional[Session] = Depends(get_db)) -> Session:
    if db is None:
        raise BackendError("Database not configured")
    return db


def get_auth_session(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(require_db),
    identity: IdentityService = Depends(get_identity),
) -> AuthSession:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthenticated("Not signed in")
    session = SessionManager(db, identity).restore(token)
    if session is None:
        raise Unauthenticated("Session expired, please sign in again")
    return session


#
# Health
#

@app.get("/")
def root():
    return {"service": "Storefront API", "version": "0.1.0", "status": "operational"}


@app.get("/health")
def health_check(db: Optional[Session] = Depends(get_db)):
    health_status = {"service": "healthy", "database": "unknown"}
    if db is None:
        health_status["database"] = "not configured"
        health_status["service"] = "degraded"
        return health_status
    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "healthy"
    except Exception as e:
        health_status["database"] = f"unhealthy: {str(e)}"
        health_status["service"] = "degraded"
    return health_status


#
# Auth
#

@app.post("/auth/signup", response_model=Envelope[ProfileOut])
def sign_up(request: SignUpRequest, db: Session = Depends(require_db),
            identity: IdentityService = Depends(get_identity)):
    profile = SessionManager(db, identity).sign_up(
        request.name, request.email, request.password, request.role, request.phone
    )
    return Envelope(data=ProfileOut.model_validate(profile))


@app.post("/auth/signin", response_model=Envelope[SessionOut])
def sign_in(request: SignInRequest, db: Session = Depends(require_db),
            identity: IdentityService = Depends(get_identity)):
    session = SessionManager(db, identity).sign_in(request.name, request.password)
    profile = ProfileOut(
        id=session.user_id, email=session.email, name=session.name, role=session.role.tag, phone=session.phone,
    )
    return Envelope(data=SessionOut(access_token=session.access_token, profile=profile))


@app.post("/auth/signout", response_model=Envelope[dict])
def sign_out(session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db),
             identity: IdentityService = Depends(get_identity)):
    SessionManager(db, identity).sign_out(session)
    return Envelope(data={})


@app.get("/auth/me", response_model=Envelope[ProfileOut])
def me(session: AuthSession = Depends(get_auth_session)):
    return Envelope(data=ProfileOut(
        id=session.user_id, email=session.email, name=session.name, role=session.role.tag, phone=session.phone,
    ))


#
# Catalog
#

@app.get("/products", response_model=Envelope[List[ProductOut]])
def browse_products(
    q: Optional[str] = Query(default=None, description="Search name or brand"),
    brand: Optional[str] = None,
    sort: str = "default",
    _: AuthSession = Depends(get_auth_session),
    db: Session = Depends(require_db),
):
    products = CatalogStore(db).browse(q, brand, sort)
    return Envelope(data=[ProductOut.model_validate(p) for p in products])


@app.get("/products/brands", response_model=Envelope[List[str]])
def list_brands(_: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    return Envelope(data=CatalogStore(db).brands())


@app.get("/products/{product_id}", response_model=Envelope[ProductOut])
def get_product(product_id: str, _: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    return Envelope(data=ProductOut.model_validate(CatalogStore(db).get(product_id)))


@app.get("/seller/products", response_model=Envelope[List[SellerProductOut]])
def seller_products(session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    products = CatalogStore(db).seller_products(session)
    return Envelope(data=[SellerProductOut.model_validate(p) for p in products])


@app.post("/seller/products", response_model=Envelope[SellerProductOut])
def create_product(request: ProductFormRequest, session: AuthSession = Depends(get_auth_session),
                   db: Session = Depends(require_db), feed: ChangeFeed = Depends(get_feed)):
    product = CatalogStore(db, feed).create_product(session, ProductForm(**request.model_dump()))
    return Envelope(data=SellerProductOut.model_validate(product))


@app.put("/seller/products/{product_id}", response_model=Envelope[SellerProductOut])
def update_product(product_id: str, request: ProductFormRequest, session: AuthSession = Depends(get_auth_session),
                   db: Session = Depends(require_db), feed: ChangeFeed = Depends(get_feed)):
    product = CatalogStore(db, feed).update_product(session, product_id, ProductForm(**request.model_dump()))
    return Envelope(data=SellerProductOut.model_validate(product))


@app.delete("/seller/products/{product_id}", response_model=Envelope[dict])
def delete_product(product_id: str, session: AuthSession = Depends(get_auth_session),
                   db: Session = Depends(require_db), feed: ChangeFeed = Depends(get_feed)):
    CatalogStore(db, feed).delete_product(session, product_id)
    return Envelope(data={"id": product_id})


@app.get("/seller/inventory-summary", response_model=Envelope[InventorySummaryOut])
def inventory_summary(session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    summary = CatalogStore(db).inventory_summary(session)
    return Envelope(data=InventorySummaryOut.model_validate(summary))


@app.post("/seller/images", response_model=Envelope[ImageOut])
async def upload_image(request: Request, filename: str = Query(...),
                       session: AuthSession = Depends(get_auth_session),
                       storage: StorageBucket = Depends(get_storage)):
    """Raw image bytes in the body; returns the public URL to store on the product."""
    content = await request.body()
    url = ImageUploader(storage).upload_image(session, filename, content)
    return Envelope(data=ImageOut(url=url))


#
# Cart and checkout
#

def _cart_out(lines) -> CartOut:
    return CartOut(
        lines=[CartLineOut.model_validate(line) for line in lines],
        total=compute_total(lines),
        item_count=item_count(lines),
    )


@app.get("/cart", response_model=Envelope[CartOut])
def get_cart(session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    return Envelope(data=_cart_out(CartService(db).lines(session)))


@app.post("/cart/items", response_model=Envelope[CartOut])
def add_to_cart(request: AddToCartRequest, session: AuthSession = Depends(get_auth_session),
                db: Session = Depends(require_db)):
    cart = CartService(db)
    cart.add_or_increment(session, request.product_id, request.quantity)
    return Envelope(data=_cart_out(cart.lines(session)))


@app.patch("/cart/items/{line_id}", response_model=Envelope[CartOut])
def set_cart_quantity(line_id: str, request: SetQuantityRequest, session: AuthSession = Depends(get_auth_session),
                      db: Session = Depends(require_db)):
    cart = CartService(db)
    cart.set_quantity(session, line_id, request.quantity)
    return Envelope(data=_cart_out(cart.lines(session)))


@app.delete("/cart/items/{line_id}", response_model=Envelope[CartOut])
def remove_from_cart(line_id: str, session: AuthSession = Depends(get_auth_session),
                     db: Session = Depends(require_db)):
    cart = CartService(db)
    cart.remove(session, line_id)
    return Envelope(data=_cart_out(cart.lines(session)))


@app.post("/checkout", response_model=Envelope[OrderOut])
def checkout(session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db),
             feed: ChangeFeed = Depends(get_feed)):
    order = OrderWorkflow(db, feed).checkout(session)
    return Envelope(data=OrderOut.model_validate(order))


#
# Orders
#

@app.get("/orders", response_model=Envelope[OrderListOut])
def list_orders(status: Optional[str] = None, session: AuthSession = Depends(get_auth_session),
                db: Session = Depends(require_db)):
    workflow = OrderWorkflow(db)
    counts = status_counts(workflow.list_orders(session))
    orders = workflow.list_orders(session, status)
    return Envelope(data=OrderListOut(orders=[OrderOut.model_validate(o) for o in orders], counts=counts))


@app.get("/orders/{order_id}", response_model=Envelope[OrderOut])
def get_order(order_id: str, session: AuthSession = Depends(get_auth_session), db: Session = Depends(require_db)):
    return Envelope(data=OrderOut.model_validate(OrderWorkflow(db).get_order(session, order_id)))


@app.post("/orders/{order_id}/status", response_model=Envelope[OrderOut])
def transition_order(order_id: str, request: TransitionRequest, session: AuthSession = Depends(get_auth_session),
                     db: Session = Depends(require_db)):
    order = OrderWorkflow(db).transition(session, order_id, request.status)
    return Envelope(data=OrderOut.model_validate(order))


#
# Analytics
#

@app.get("/analytics", response_model=Envelope[AnalyticsOut])
def analytics(timeframe: str = "daily", session: AuthSession = Depends(get_auth_session),
              db: Session = Depends(require_db)):
    report = AnalyticsService(db).report(session, timeframe)
    return Envelope(data=AnalyticsOut.model_validate(report))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
