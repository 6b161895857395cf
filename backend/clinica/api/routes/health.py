"""Health check API routes.

Provides:
- GET /health: liveness plus the state of the store circuit breaker
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, Response, status

from clinica.core.circuit_breaker import CircuitState
from clinica.db.clinic_repository import get_supabase_circuit_breaker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

_start_time = time.monotonic()
_VERSION = "0.1.0"


@router.get("", status_code=status.HTTP_200_OK)
async def health_check(response: Response) -> dict[str, Any]:
    """Report ``degraded`` with a 503 while the store circuit is open."""
    breaker = get_supabase_circuit_breaker()
    store = breaker.status()
    degraded = store["state"] == CircuitState.OPEN.value
    if degraded:
        logger.warning("Health check degraded", extra={"store": store})
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "degraded" if degraded else "healthy",
        "store": {breaker.service_name: store},
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "version": _VERSION,
    }
