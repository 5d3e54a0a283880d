"""
Monitoring Endpoints
====================
- GET /api/v1/monitoring/health - Breaker states, session count, job status
- POST /api/v1/monitoring/circuit-breaker/{name}/reset - Close a breaker
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.v1.dependencies import ServiceContainer, get_container
from app.conversation.models import utcnow
from services.resilience import CircuitState

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    breakers = container.breakers.states()
    open_breakers = [b["name"] for b in breakers if b["state"] != CircuitState.CLOSED.value]

    return {
        "status": "degraded" if open_breakers else "healthy",
        "timestamp": utcnow().isoformat(),
        "version": container.settings.VERSION,
        "circuit_breakers": breakers,
        "sessions": container.sessions.stats(),
        "scheduler": container.scheduler.status(),
    }


@router.post("/circuit-breaker/{name}/reset")
async def reset_circuit_breaker(
    name: str,
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    snapshot = container.breakers.reset(name)
    logger.info(f"[Monitoring] Circuit breaker '{name}' reset")
    return {"success": True, "circuit_breaker": snapshot}
