"""
Catalog models - products and their size variants (the inventory unit).

Product CRUD lives in the storefront admin; the fulfillment saga only reads
prices/weights and mutates SizeVariant.stock through the InventoryLedger.
"""

from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Text, Boolean, Integer, Numeric, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.models.base import Base, UUIDMixin, TimestampMixin


class Product(Base, UUIDMixin, TimestampMixin):
    """A sellable product. Stock is tracked per size variant."""
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Shipping weight in kg; missing weights count as zero in shipment weight
    weight: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3))

    # Oversell switch: when set, stock may go negative
    allow_out_of_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    variants: Mapped[List["SizeVariant"]] = relationship(
        "SizeVariant", back_populates="product", cascade="all, delete-orphan"
    )


class SizeVariant(Base, UUIDMixin, TimestampMixin):
    """A (product, size) inventory unit with its own price and stock counter."""
    __tablename__ = "size_variants"

    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    size: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_variant_product_size"),
        Index("idx_variant_product", "product_id"),
    )
