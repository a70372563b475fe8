"""
Audit model - per-order trail of saga step outcomes and admin actions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from storefront.models.base import Base, UUIDMixin


class OrderAuditLog(Base, UUIDMixin):
    """One entry per saga step outcome or admin action on an order."""
    __tablename__ = "order_audit_logs"

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_type: Mapped[str] = mapped_column(String(20), default="system", nullable=False)  # system, admin
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_order_audit_order_created", "order_id", "created_at"),
    )
