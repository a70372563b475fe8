"""
SQLAlchemy Models for the Storefront fulfillment service.

This package is organized by domain:
- base.py: Base class and mixins
- product.py: Product and size-variant (inventory) models
- discount.py: Discount codes and order/code applications
- order.py: Order aggregate, line items and shipping details
- audit.py: Per-order audit trail

All models are re-exported from this module.
"""

# Base
from storefront.models.base import Base, UUIDMixin, TimestampMixin, VersionMixin

# Catalog and discounts
from storefront.models.product import Product, SizeVariant
from storefront.models.discount import DiscountCode, DiscountKind, OrderDiscountCode

# Orders
from storefront.models.order import (
    Order,
    OrderLineItem,
    ShippingDetails,
    PaymentStatus,
    PaymentMethod,
    FulfillmentStatus,
    TERMINAL_STATUSES,
)

# Audit
from storefront.models.audit import OrderAuditLog


__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "VersionMixin",

    # Catalog
    "Product",
    "SizeVariant",

    # Discounts
    "DiscountCode",
    "DiscountKind",
    "OrderDiscountCode",

    # Orders
    "Order",
    "OrderLineItem",
    "ShippingDetails",
    "PaymentStatus",
    "PaymentMethod",
    "FulfillmentStatus",
    "TERMINAL_STATUSES",

    # Audit
    "OrderAuditLog",
]
