"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the orders API
and the read schemas used to render orders back to clients.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .domain import Address, LineItemRequest, PaymentMethod, ShippingPaymentMethod

PAYMENT_METHOD_ALIASES = {"cod": PaymentMethod.CASH_ON_DELIVERY.value}
FLAT_ADDRESS_FIELDS = {
    "customer_name": "name",
    "customer_phone": "phone",
    "address": "address",
    "city": "city",
    "postal_code": "postal_code",
}


def _blank_to_none(v):
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class LineItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Catalog product identifier (``product`` is accepted too).
        quantity: Positive integer indicating units requested.
        size, color: Optional variant selection; ``selected_size`` and
            ``selected_color`` are accepted as aliases. Blank values mean
            no selection.
    """

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(default="", validation_alias=AliasChoices("product_id", "product"))
    quantity: int
    size: Optional[str] = Field(default=None, validation_alias=AliasChoices("size", "selected_size"))
    color: Optional[str] = Field(default=None, validation_alias=AliasChoices("color", "selected_color"))

    @field_validator("product_id", mode="before")
    @classmethod
    def validate_product_id(cls, v):
        return str(v).strip() if v is not None else v

    @field_validator("size", "color", mode="before")
    @classmethod
    def validate_variant(cls, v):
        return _blank_to_none(v)

    def to_domain(self) -> LineItemRequest:
        return LineItemRequest(product_id=self.product_id, quantity=self.quantity, size=self.size, color=self.color)


class AddressIn(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    city: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return v.strip()

    def to_domain(self) -> Address:
        return Address(name=self.name, phone=self.phone, address=self.address,
                       city=self.city, postal_code=self.postal_code)


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    The shipping address may be given as a ``shipping_address`` object or as
    flat ``customer_name``/``customer_phone``/``address``/``city``/
    ``postal_code`` fields. ``coupon_discount_cents`` is accepted for display
    purposes only; the discount is always recomputed from the coupon.
    """

    items: list[LineItemIn] = Field(default_factory=list)
    shipping_address: Optional[AddressIn] = None
    billing_address: Optional[AddressIn] = None
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    shipping_cents: int = Field(default=0, ge=0, validation_alias=AliasChoices("shipping_cents", "shipping_price_cents"))
    coupon_code: Optional[str] = None
    coupon_discount_cents: Optional[int] = None
    shipping_payment_method: Optional[ShippingPaymentMethod] = None
    notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def collect_flat_fields(cls, data: Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("shipping_address") and data.get("address"):
            data["shipping_address"] = {
                target: data.get(source)
                for source, target in FLAT_ADDRESS_FIELDS.items()
                if data.get(source) is not None
            }
        method = data.get("payment_method")
        if isinstance(method, str):
            method = method.strip().lower()
            data["payment_method"] = PAYMENT_METHOD_ALIASES.get(method, method)
        if not data.get("shipping_payment_method"):
            data["shipping_payment_method"] = None
        return data

    @field_validator("coupon_code", "notes", mode="before")
    @classmethod
    def validate_optional_text(cls, v):
        return _blank_to_none(v)


class UpdateOrderStatusDTO(BaseModel):
    """Admin status change. The status value itself is checked by the domain."""

    status: Optional[str] = Field(default=None, validation_alias=AliasChoices("status", "order_status"))
    tracking_number: Optional[str] = None
    cancellation_reason: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("cancellation_reason", "cancelled_reason")
    )

    @model_validator(mode="after")
    def require_change(self):
        if self.status is None and self.tracking_number is None:
            raise ValueError("status or tracking_number is required")
        return self


class UpdatePaymentStatusDTO(BaseModel):
    payment_status: str = Field(min_length=1)


class ValidateCouponDTO(BaseModel):
    code: Optional[str] = None
    order_amount_cents: Optional[int] = Field(default=None, ge=0)


class StockItemIn(BaseModel):
    """Lenient line item for the stock pre-flight; problems are reported per item."""

    product_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_id", "product"))
    quantity: Optional[int] = None
    size: Optional[str] = Field(default=None, validation_alias=AliasChoices("size", "selected_size"))
    color: Optional[str] = Field(default=None, validation_alias=AliasChoices("color", "selected_color"))

    @field_validator("product_id", "size", "color", mode="before")
    @classmethod
    def validate_text(cls, v):
        if v is not None and not isinstance(v, str):
            v = str(v)
        return _blank_to_none(v)

    def to_domain(self) -> LineItemRequest:
        return LineItemRequest(product_id=self.product_id or "", quantity=self.quantity,
                               size=self.size, color=self.color)


class ValidateStockDTO(BaseModel):
    items: list[StockItemIn] = Field(default_factory=list)


# ---- Read schemas ----
class OrderItemOut(BaseModel):
    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None


class AddressOut(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    city: Optional[str] = None
    postal_code: Optional[str] = None


class OrderReadDTO(BaseModel):
    """Order as returned to its owner and to admins."""

    id: UUID
    order_number: str
    user_id: Optional[str] = None
    status: str
    payment_status: str
    payment_method: str
    shipping_payment_method: Optional[str] = None
    items: list[OrderItemOut]
    shipping_address: Optional[AddressOut] = None
    billing_address: Optional[AddressOut] = None
    subtotal_cents: int
    shipping_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    coupon_code: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TrackingReadDTO(BaseModel):
    """Public tracking view: no customer data."""

    order_number: str
    status: str
    tracking_number: Optional[str] = None
    items: list[OrderItemOut]
    total_cents: int
    currency: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
