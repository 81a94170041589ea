"""
Database Schemas

Marketplace models for farmers' products and consumers' orders.
`Product`, `OrderItem` and `Order` are the documents stored in the MongoDB
collections of the same (lowercased) name. The `*Out` models and requests
are the camelCase shapes exchanged over HTTP.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from pricing import from_cents


class OrderStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class StockStatus(str, Enum):
    """Outcome of the stock decrement that follows an order write."""

    PENDING = "pending"      # order written, decrement not yet recorded
    APPLIED = "applied"
    FAILED = "failed"        # needs reconciliation
    RESOLVED = "resolved"    # corrected out of band


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----- Stored documents -----

class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    category: str = Field(..., description="Category, e.g. 'Vegetables', 'Dairy'")
    price: float = Field(..., ge=0, description="Unit price")
    quantity: int = Field(0, ge=0, description="Available quantity")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    farmer_id: str = Field(..., description="Owning farmer's user id")


class ShippingAddress(ApiModel):
    street: Optional[str] = Field(None, max_length=200)
    city: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)


class OrderItem(BaseModel):
    product_id: str
    name: str
    unit_price_cents: int = Field(..., ge=0, description="Unit price in cents, captured at order time")
    quantity: int = Field(..., ge=1)


class StockFailure(ApiModel):
    product_id: str
    quantity: int
    reason: str


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    consumer_id: str
    items: List[OrderItem]
    total_cents: int = Field(..., ge=0, description="Sum of unit price x quantity, in cents")
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    stock_status: StockStatus = StockStatus.PENDING
    stock_failures: List[StockFailure] = Field(default_factory=list)


# ----- Requests -----

class RequestedItem(ApiModel):
    product: str = Field(..., description="Product ObjectId as string")
    quantity: int = Field(..., ge=1, description="Quantity of the product")

    @field_validator("product")
    @classmethod
    def valid_object_id(cls, v: str) -> str:
        if not ObjectId.is_valid(v):
            raise ValueError("Each product must have a valid product ID")
        return v


class PlaceOrderRequest(ApiModel):
    products: List[RequestedItem] = Field(..., min_length=1)
    shipping_address: Optional[ShippingAddress] = None


class StatusUpdateRequest(ApiModel):
    status: OrderStatus


# ----- Responses -----

class ProductOut(ApiModel):
    id: str
    name: str
    description: str = ""
    category: str
    price: Decimal
    quantity: int
    images: List[str] = []
    farmer_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: dict) -> "ProductOut":
        d = dict(doc)
        d["id"] = str(d.pop("_id"))
        d["price"] = Decimal(str(d.get("price", 0)))
        return cls(**d)


class OrderItemOut(ApiModel):
    product: str
    name: str
    quantity: int
    price: Decimal


class OrderOut(ApiModel):
    id: str
    consumer_id: str
    items: List[OrderItemOut]
    total_amount: Decimal
    status: OrderStatus
    shipping_address: ShippingAddress
    stock_status: StockStatus
    stock_failures: List[StockFailure] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @computed_field(alias="stockReconciliationFailed")
    @property
    def stock_reconciliation_failed(self) -> bool:
        return self.stock_status == StockStatus.FAILED

    @classmethod
    def from_doc(cls, doc: dict) -> "OrderOut":
        return cls(
            id=str(doc["_id"]),
            consumer_id=doc["consumer_id"],
            items=[
                OrderItemOut(
                    product=i["product_id"],
                    name=i.get("name", ""),
                    quantity=i["quantity"],
                    price=from_cents(i["unit_price_cents"]),
                )
                for i in doc.get("items", [])
            ],
            total_amount=from_cents(doc["total_cents"]),
            status=doc.get("status", OrderStatus.PENDING),
            shipping_address=ShippingAddress(**(doc.get("shipping_address") or {})),
            stock_status=doc.get("stock_status", StockStatus.PENDING),
            stock_failures=[StockFailure(**f) for f in doc.get("stock_failures", [])],
            created_at=doc.get("created_at"),
            updated_at=doc.get("updated_at"),
        )


class ProductPage(ApiModel):
    products: List[ProductOut]
    page: int
    limit: int
    total_pages: int
    total_products: int


class OrderPage(ApiModel):
    orders: List[OrderOut]
    page: int
    limit: int
    total_pages: int
    total_orders: int
