"""
Request and response models shared by the order routers.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class LineItemResponse(BaseModel):
    product_id: str
    product_name: str
    size: str
    quantity: int
    unit_price: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Order as shown on the confirmation page and in the admin panel."""
    id: str
    order_number: str
    version: int
    subtotal: Decimal
    shipping_cost: Decimal
    discount_total: Decimal
    total: Decimal
    payment_method: str
    payment_status: str
    fulfillment_status: str
    courier: Optional[str] = None
    tracking_id: Optional[str] = None
    carrier_status: Optional[str] = None
    invoice_number: Optional[str] = None
    created_at: datetime
    items: List[LineItemResponse] = []

    class Config:
        from_attributes = True


class StepResultResponse(BaseModel):
    name: str
    ok: bool
    detail: dict = {}
    error: Optional[str] = None


class CheckoutConfirmationResponse(BaseModel):
    created: bool
    order: OrderResponse
    steps: List[StepResultResponse] = []


class CartLineRequest(BaseModel):
    product_id: str
    size: str
    quantity: int = Field(..., gt=0)


class CashOnDeliveryOrderRequest(BaseModel):
    items: List[CartLineRequest]
    shipping_details_id: str
    user_id: Optional[str] = None
    discount_codes: List[str] = []


class AdminActionRequest(BaseModel):
    """Optional optimistic-concurrency token: the version the admin was looking at."""
    expected_version: Optional[int] = None


class TrackingResponse(BaseModel):
    order: OrderResponse
    status: Optional[str] = None
    operation_code: Optional[str] = None
