"""
Pydantic v2 models for storefront API requests and responses.

Request models use extra="forbid" to reject unknown fields.
Responses follow one envelope: status, data, constraints.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ResponseStatus(str, Enum):
    """Standard response status codes for all endpoints."""
    OK = "OK"
    INVALID = "INVALID"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    ERROR = "ERROR"


class ConstraintDetail(BaseModel):
    """Why a request was rejected, with enough detail for the client to recover."""
    code: str = Field(..., description="Machine-readable constraint code")
    message: str = Field(..., description="Human-readable explanation")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional structured data about the constraint")


class Envelope(BaseModel, Generic[T]):
    status: ResponseStatus = ResponseStatus.OK
    data: Optional[T] = None
    constraints: List[ConstraintDetail] = Field(default_factory=list)


#
# Requests
#

class SignUpRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str
    email: str
    password: str
    role: str = Field("customer", description="customer | seller")
    phone: Optional[str] = None


class SignInRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(..., description="Username")
    password: str


class ProductFormRequest(BaseModel):
    """Seller product form. Numbers are accepted as strings and validated server-side."""
    model_config = ConfigDict(extra="forbid")
    name: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[Union[str, int, float]] = None
    stock: Optional[Union[str, int, float]] = None
    cost_price: Optional[Union[str, int, float]] = None
    description: Optional[str] = None
    image: Optional[str] = None


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    product_id: str
    quantity: int = Field(1, description="Units to add")


class SetQuantityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    quantity: int


class TransitionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    status: str = Field(..., description="confirmed | rejected | fulfilled")


#
# Responses
#

class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    email: str
    name: str
    role: str
    phone: Optional[str] = None


class SessionOut(BaseModel):
    access_token: str
    profile: ProfileOut


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    brand: str
    price: float
    stock: int
    image: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    owner_id: str


class SellerProductOut(ProductOut):
    cost_price: float


class InventorySummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_count: int
    low_stock: List[SellerProductOut]
    out_of_stock: List[SellerProductOut]
    total_value: float


class ImageOut(BaseModel):
    url: str


class CartLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    product_id: str
    quantity: int
    product: Optional[ProductOut] = None


class CartOut(BaseModel):
    lines: List[CartLineOut]
    total: float
    item_count: int


class OrderLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    product_id: Optional[str] = None
    product_name: str
    seller_id: Optional[str] = None
    quantity: int
    price: float


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    owner_id: str
    customer_name: str
    customer_phone: str
    customer_email: str
    total_amount: float
    status: str
    created_at: datetime
    lines: List[OrderLineOut]


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    counts: Dict[str, int]


class DailySalesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    date: str
    revenue: float
    orders: int
    units: int


class ProductSalesOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_id: str
    name: str
    brand: str
    units_sold: int
    revenue: float
    stock: int
    cost_price: float
    cogs: float


class AnalyticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    daily: List[DailySalesOut]
    products: List[ProductSalesOut]
    total_revenue: float
    total_orders: int
    total_units: int
    average_order_value: float
    low_stock_count: int
    inventory_value: float
    stock_turnover: float
    total_cogs: float
    profit: float
    loss: float
