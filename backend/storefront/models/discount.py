"""
Discount code models.

DiscountCode rows are maintained by the storefront admin. The saga reads them
to evaluate totals and records which codes an order used.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, Integer, DateTime, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class DiscountKind(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class DiscountCode(Base, UUIDMixin, TimestampMixin):
    """A redeemable discount code."""
    __tablename__ = "discount_codes"

    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)  # percentage, fixed, free_shipping
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    # None means unlimited
    uses_left: Mapped[Optional[int]] = mapped_column(Integer)
    total_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    stackable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class OrderDiscountCode(Base, UUIDMixin):
    """Join row: which discount codes were applied to which order."""
    __tablename__ = "order_discount_codes"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    discount_code_id: Mapped[str] = mapped_column(ForeignKey("discount_codes.id"), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="discount_codes")
    discount_code: Mapped["DiscountCode"] = relationship("DiscountCode")

    __table_args__ = (
        UniqueConstraint("order_id", "discount_code_id", name="uq_order_discount"),
        Index("idx_order_discount_order", "order_id"),
    )
