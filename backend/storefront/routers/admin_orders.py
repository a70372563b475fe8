"""
Admin Orders Router.

All routes require the X-Admin-Key header. Mutating routes accept an
optional `expected_version`; a concurrent change answers 409.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response

from storefront.routers.dependencies import get_admin_service, require_admin
from storefront.routers.schemas import (
    AdminActionRequest,
    OrderResponse,
    StepResultResponse,
    TrackingResponse,
)
from storefront.services.admin_orders import AdminOrderService

router = APIRouter(dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)


def _version(payload: Optional[AdminActionRequest]) -> Optional[int]:
    return payload.expected_version if payload else None


@router.post("/{order_id}/fulfill", response_model=OrderResponse)
async def fulfill_order(
    order_id: str,
    payload: Optional[AdminActionRequest] = None,
    admin: AdminOrderService = Depends(get_admin_service),
):
    return OrderResponse.model_validate(await admin.fulfill(order_id, _version(payload)))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    payload: Optional[AdminActionRequest] = None,
    admin: AdminOrderService = Depends(get_admin_service),
):
    return OrderResponse.model_validate(await admin.cancel(order_id, _version(payload)))


@router.post("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: str,
    payload: Optional[AdminActionRequest] = None,
    admin: AdminOrderService = Depends(get_admin_service),
):
    return OrderResponse.model_validate(await admin.refund(order_id, _version(payload)))


@router.delete("/{order_id}", status_code=204)
async def delete_order(order_id: str, admin: AdminOrderService = Depends(get_admin_service)):
    await admin.delete(order_id)
    return Response(status_code=204)


# =============================================================================
# Shipment
# =============================================================================

@router.post("/{order_id}/shipment", response_model=StepResultResponse)
async def retrigger_shipment(order_id: str, admin: AdminOrderService = Depends(get_admin_service)):
    result = await admin.retrigger_shipment(order_id)
    return StepResultResponse(name=result.name, ok=result.ok, detail=result.detail, error=result.error)


@router.delete("/{order_id}/shipment", response_model=OrderResponse)
async def cancel_shipment(
    order_id: str,
    payload: Optional[AdminActionRequest] = None,
    admin: AdminOrderService = Depends(get_admin_service),
):
    return OrderResponse.model_validate(await admin.cancel_shipment(order_id, _version(payload)))


@router.get("/{order_id}/tracking", response_model=TrackingResponse)
async def refresh_tracking(order_id: str, admin: AdminOrderService = Depends(get_admin_service)):
    order, status = await admin.refresh_tracking(order_id)
    return TrackingResponse(
        order=OrderResponse.model_validate(order),
        status=status.status if status else None,
        operation_code=status.operation_code if status else None,
    )


# =============================================================================
# Invoice
# =============================================================================

@router.post("/{order_id}/invoice", response_model=StepResultResponse)
async def retrigger_invoice(order_id: str, admin: AdminOrderService = Depends(get_admin_service)):
    result = await admin.retrigger_invoice(order_id)
    return StepResultResponse(name=result.name, ok=result.ok, detail=result.detail, error=result.error)


@router.get("/{order_id}/invoice")
async def download_invoice(order_id: str, admin: AdminOrderService = Depends(get_admin_service)):
    filename, content = await admin.download_invoice(order_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
