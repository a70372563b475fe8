"""
Exception hierarchy for the Storefront fulfillment service.

Validation errors are raised before any mutation is committed and map to
4xx responses. Integration errors are raised by connectors and are caught at
the saga step boundary; they never reach the customer.
"""


class StorefrontError(Exception):
    """Base class for all storefront errors."""


# =============================================================================
# Validation (synchronous, no partial state)
# =============================================================================

class OrderValidationError(StorefrontError):
    """The request cannot produce a valid order (cart, details, codes, stock)."""


class InsufficientStockError(OrderValidationError):
    """A line item asks for more units than the variant has in stock."""

    def __init__(self, variant_id: str, requested: int, label: str | None = None):
        self.variant_id = variant_id
        self.requested = requested
        super().__init__(f"Insufficient stock for {label or variant_id} (requested {requested})")


class DiscountValidationError(OrderValidationError):
    """A discount code is unknown, expired, exhausted or not combinable."""


# =============================================================================
# Order store
# =============================================================================

class OrderNotFoundError(StorefrontError):
    """No order matches the given id or trigger key."""


class StaleOrderError(StorefrontError):
    """Optimistic concurrency check failed: the order changed underneath us."""

    def __init__(self, order_id: str, expected_version: int):
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(f"Order {order_id} was modified concurrently (expected version {expected_version})")


class InvalidTransitionError(StorefrontError):
    """An admin action is not allowed from the order's current status."""


# =============================================================================
# Payment triggers
# =============================================================================

class PaymentNotConfirmedError(StorefrontError):
    """The payment processor does not report the session as paid."""


class WebhookSignatureError(StorefrontError):
    """A payment callback failed signature verification."""


# =============================================================================
# External integrations (degradation, caught at step boundaries)
# =============================================================================

class IntegrationError(StorefrontError):
    """An external service call failed or returned an error payload."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CarrierError(IntegrationError):
    pass


class InvoicingError(IntegrationError):
    pass


class EmailDeliveryError(IntegrationError):
    pass


class PaymentProcessorError(IntegrationError):
    pass
