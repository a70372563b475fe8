"""
Fulfillment Saga Orchestration
==============================

Runs the post-commit steps for a freshly committed order:

    shipment -> invoice -> notification

ARCHITECTURE DECISION:
- The order row is the durable record; the saga itself holds no state
- Each step runs inside its own failure boundary and returns a StepResult,
  so a failed step never aborts the steps after it
- Every step outcome is written to the order's audit trail
- Only the shipment step moves the order's status; invoice and
  notification failures leave it untouched
- The saga runs once per created order (IdempotencyGuard decides), and is
  awaited inline by the triggering request
"""

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple

from storefront.models import Order
from storefront.services.audit_logger import AuditAction, log_order_event
from storefront.services.invoicing import InvoiceIssuer
from storefront.services.notifier import Notifier
from storefront.services.order_store import OrderStore
from storefront.services.shipment import ShipmentProvisioner

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    name: str
    ok: bool
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class SagaReport:
    order_id: str
    steps: List[StepResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None


# =============================================================================
# STEP BOUNDARY
# =============================================================================

def saga_step(name: str, on_success: AuditAction, on_failure: AuditAction):
    """
    Decorator for saga steps.

    The wrapped coroutine returns (ok, detail) or raises. Either way the
    wrapper returns a StepResult and records it; it never raises.
    """
    def decorator(func: Callable) -> Callable:

        @wraps(func)
        async def wrapper(self, order_id: str) -> StepResult:
            logger.info(f"Executing saga step: {name} for order {order_id}")
            try:
                ok, detail = await func(self, order_id)
                result = StepResult(name=name, ok=ok, detail=detail)
            except Exception as e:
                logger.error(f"Saga step failed: {name} for order {order_id} - {e}")
                result = StepResult(name=name, ok=False, error=f"{type(e).__name__}: {e}")

            metadata = dict(result.detail)
            if result.error:
                metadata["error"] = result.error
            await log_order_event(order_id, on_success if result.ok else on_failure, metadata)
            return result

        return wrapper
    return decorator


# =============================================================================
# SAGA
# =============================================================================

class FulfillmentSaga:

    def __init__(
        self,
        store: OrderStore,
        shipments: ShipmentProvisioner,
        invoices: InvoiceIssuer,
        notifier: Notifier,
    ):
        self.store = store
        self.shipments = shipments
        self.invoices = invoices
        self.notifier = notifier

    async def run(self, order_id: str) -> SagaReport:
        """Run every step once. Raises OrderNotFoundError only if the order does not exist."""
        await self.store.get(order_id)

        report = SagaReport(order_id=order_id)
        report.steps.append(await self.provision_shipment(order_id))
        report.steps.append(await self.issue_invoice(order_id))
        report.steps.append(await self.send_notifications(order_id))

        failed = [s.name for s in report.steps if not s.ok]
        if failed:
            logger.warning(f"⚠️ Saga for order {order_id} finished with failed steps: {', '.join(failed)}")
        else:
            logger.info(f"✅ Saga for order {order_id} completed")
        return report

    async def _load(self, order_id: str) -> Order:
        return await self.store.get(order_id)

    @saga_step("shipment", AuditAction.SHIPMENT_PROVISIONED, AuditAction.SHIPMENT_FAILED)
    async def provision_shipment(self, order_id: str) -> Tuple[bool, dict]:
        order = await self._load(order_id)
        outcome = await self.shipments.provision(order)
        detail = {
            "tier": outcome.tier,
            "tracking_id": outcome.tracking_id,
            "shipment_id": outcome.shipment_id,
            "needs_manual_handling": outcome.needs_manual_handling,
        }
        if outcome.error:
            detail["reason"] = outcome.error
        return outcome.ok, detail

    @saga_step("invoice", AuditAction.INVOICE_ISSUED, AuditAction.INVOICE_FAILED)
    async def issue_invoice(self, order_id: str) -> Tuple[bool, dict]:
        order = await self._load(order_id)
        result = await self.invoices.issue(order)
        return True, {"invoice_number": result.number, "skipped": result.skipped}

    @saga_step("notification", AuditAction.NOTIFICATION_SENT, AuditAction.NOTIFICATION_FAILED)
    async def send_notifications(self, order_id: str) -> Tuple[bool, dict]:
        order = await self._load(order_id)
        report = await self.notifier.notify(order)
        detail = {
            "customer_sent": report.customer_sent,
            "admin_sent": report.admin_sent,
            "attachment_included": report.attachment_included,
        }
        if report.errors:
            detail["errors"] = report.errors
        return report.customer_sent, detail
