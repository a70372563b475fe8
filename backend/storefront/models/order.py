"""
Order models - the fulfillment saga's durable record.

Order is the aggregate root; line items are immutable price snapshots and
ShippingDetails is attached 1:1 at creation time.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin, VersionMixin


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"


class FulfillmentStatus(str, Enum):
    """
    pending -> shipment_provisioned | shipment_failed -> (admin only)
    fulfilled | cancelled | refunded
    """
    PENDING = "pending"
    SHIPMENT_PROVISIONED = "shipment_provisioned"
    SHIPMENT_FAILED = "shipment_failed"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_STATUSES = frozenset({
    FulfillmentStatus.FULFILLED.value,
    FulfillmentStatus.CANCELLED.value,
    FulfillmentStatus.REFUNDED.value,
})


class ShippingDetails(Base, UUIDMixin, TimestampMixin):
    """Postal, contact and optional company-billing details for one order."""
    __tablename__ = "shipping_details"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False)

    street: Mapped[str] = mapped_column(String(255), nullable=False)
    street_number: Mapped[Optional[str]] = mapped_column(String(20))
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    county: Mapped[str] = mapped_column(String(120), default="")
    postal_code: Mapped[str] = mapped_column(String(20), default="")
    country: Mapped[str] = mapped_column(String(120), default="Romania")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Company billing (optional)
    is_company: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    cui: Mapped[Optional[str]] = mapped_column(String(32))
    reg_com: Mapped[Optional[str]] = mapped_column(String(64))
    company_street: Mapped[Optional[str]] = mapped_column(String(255))
    company_city: Mapped[Optional[str]] = mapped_column(String(120))
    company_county: Mapped[Optional[str]] = mapped_column(String(120))

    order: Mapped[Optional["Order"]] = relationship("Order", back_populates="details", uselist=False)

    @property
    def one_line_address(self) -> str:
        """Human-readable address used in carrier notes and emails."""
        street = self.street.strip()
        if self.street_number and self.street_number not in street:
            street = f"{street} {self.street_number}"
        parts = [street, self.city, self.county, self.postal_code, self.country]
        return ", ".join(p for p in parts if p)


class Order(Base, UUIDMixin, TimestampMixin, VersionMixin):
    """A persisted customer order and its fulfillment state."""
    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Money
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    fulfillment_status: Mapped[str] = mapped_column(String(40), default=FulfillmentStatus.PENDING.value, nullable=False)

    # Idempotency key for card orders (payment processor checkout session id)
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    # Set once stock has been decremented for this order
    stock_committed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    shipping_details_id: Mapped[str] = mapped_column(
        ForeignKey("shipping_details.id"), unique=True, nullable=False
    )

    # Carrier
    courier: Mapped[Optional[str]] = mapped_column(String(50))
    tracking_id: Mapped[Optional[str]] = mapped_column(String(100))
    carrier_shipment_id: Mapped[Optional[str]] = mapped_column(String(100))
    carrier_status: Mapped[Optional[str]] = mapped_column(String(255))
    carrier_operation_code: Mapped[Optional[str]] = mapped_column(String(50))

    # Invoice
    invoice_id: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100))
    invoice_url: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    details: Mapped["ShippingDetails"] = relationship("ShippingDetails", back_populates="order")
    items: Mapped[List["OrderLineItem"]] = relationship(
        "OrderLineItem", back_populates="order", cascade="all, delete-orphan"
    )
    discount_codes: Mapped[List["OrderDiscountCode"]] = relationship(
        "OrderDiscountCode", back_populates="order", cascade="all, delete-orphan"
    )
    audit_logs: Mapped[List["OrderAuditLog"]] = relationship(
        "OrderAuditLog", cascade="all, delete-orphan"
    )

    @property
    def is_terminal(self) -> bool:
        return self.fulfillment_status in TERMINAL_STATUSES

    __table_args__ = (
        Index("idx_order_status_created", "fulfillment_status", "created_at"),
        Index("idx_order_user", "user_id"),
    )


class OrderLineItem(Base, UUIDMixin):
    """A line item: quantity and the price at order time. Never repriced."""
    __tablename__ = "order_line_items"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id"), nullable=False)
    variant_id: Mapped[str] = mapped_column(ForeignKey("size_variants.id"), nullable=False)

    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    __table_args__ = (
        Index("idx_lineitem_order", "order_id"),
        Index("idx_lineitem_variant", "variant_id"),
    )
