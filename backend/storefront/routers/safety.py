from fastapi import APIRouter, Depends, HTTPException

from storefront.integrations.circuit_breaker import (
    get_carrier_circuit_breaker,
    get_invoicing_circuit_breaker,
    get_email_circuit_breaker,
    get_all_circuit_statuses
)
from storefront.routers.dependencies import require_admin

router = APIRouter(prefix="/safety/circuit-breakers", tags=["Safety"], dependencies=[Depends(require_admin)])


@router.get("/status")
async def status():
    """Get status of all circuit breakers."""
    return get_all_circuit_statuses()


@router.post("/{service}/reset")
async def reset(service: str):
    """Manually reset a circuit breaker once the upstream is back."""
    breakers = {
        "carrier": get_carrier_circuit_breaker,
        "invoicing": get_invoicing_circuit_breaker,
        "email": get_email_circuit_breaker,
    }

    if service not in breakers:
        raise HTTPException(status_code=404, detail=f"Service {service} not found")

    breakers[service]().reset()
    return {"status": "success", "message": f"Circuit breaker for {service} reset"}
