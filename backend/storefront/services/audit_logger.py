"""
Audit Logging Service
=====================

Per-order audit trail of saga step outcomes and admin actions.

Usage:
    from storefront.services.audit_logger import AuditLogger, AuditAction

    await AuditLogger.log(
        order_id="uuid",
        action=AuditAction.SHIPMENT_PROVISIONED,
        metadata={"tracking_id": "8000123"},
    )

    await AuditLogger.log(
        order_id="uuid",
        action=AuditAction.CANCEL,
        actor_type="admin",
    )
"""

import logging
from enum import Enum
from typing import List, Optional

from sqlalchemy import select

from storefront.database import async_session_maker
from storefront.models import OrderAuditLog

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Standardized audit actions."""
    # Creation
    ORDER_CREATED = "order_created"
    STOCK_COMMITTED = "stock_committed"

    # Saga steps
    SHIPMENT_PROVISIONED = "shipment_provisioned"
    SHIPMENT_FAILED = "shipment_failed"
    SHIPMENT_ORPHANED = "shipment_orphaned"
    INVOICE_ISSUED = "invoice_issued"
    INVOICE_FAILED = "invoice_failed"
    NOTIFICATION_SENT = "notification_sent"
    NOTIFICATION_FAILED = "notification_failed"

    # Admin operations
    FULFILL = "fulfill"
    CANCEL = "cancel"
    REFUND = "refund"
    SHIPMENT_CANCELLED = "shipment_cancelled"
    TRACKING_REFRESHED = "tracking_refreshed"


class AuditLogger:
    """Centralized audit logging for orders."""

    @staticmethod
    async def log(
        order_id: str,
        action: AuditAction | str,
        actor_type: str = "system",
        metadata: Optional[dict] = None,
    ) -> OrderAuditLog:
        """
        Create an audit log entry in its own transaction.

        Args:
            order_id: The order the action was performed on
            action: The action or step outcome
            actor_type: "system" (saga) or "admin"
            metadata: Additional JSON-serializable context

        Returns:
            The created OrderAuditLog entry
        """
        async with async_session_maker() as session:
            audit_entry = OrderAuditLog(
                order_id=order_id,
                action=action.value if isinstance(action, Enum) else action,
                actor_type=actor_type,
                metadata_json=metadata,
            )

            session.add(audit_entry)
            await session.commit()
            await session.refresh(audit_entry)

            logger.debug(f"Audit logged: {audit_entry.action} on Order:{order_id} by {actor_type}")

            return audit_entry

    @staticmethod
    async def history(order_id: str) -> List[OrderAuditLog]:
        """Audit entries for an order, oldest first."""
        async with async_session_maker() as session:
            result = await session.execute(
                select(OrderAuditLog)
                .where(OrderAuditLog.order_id == order_id)
                .order_by(OrderAuditLog.created_at)
            )
            return list(result.scalars().all())


async def log_order_event(order_id: str, action: AuditAction, metadata: Optional[dict] = None) -> None:
    """
    System audit entry that never raises. Used after the order is committed,
    where a lost audit row must not stop the fulfillment that follows.
    """
    try:
        await AuditLogger.log(order_id=order_id, action=action, metadata=metadata)
    except Exception as e:
        logger.error(f"Audit write failed for order {order_id} ({action.value}): {e}")
