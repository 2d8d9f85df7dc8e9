"""
Health check route for load balancers and monitoring.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from agentpay.api.deps import AppSettings, Repository, Rpc
from agentpay.schemas.market import HealthChecks, HealthResponse, NetworkInfo


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


@router.get("", response_model=HealthResponse)
async def health_check(
    request: Request,
    settings: AppSettings,
    repository: Repository,
    rpc: Rpc,
) -> JSONResponse:
    """
    Database and blockchain connectivity.
    Healthy when both pass, degraded (still 200) when one fails,
    unhealthy (503) when both fail.
    """
    database_ok = await repository.ping()

    try:
        chain_id = await rpc.chain_id()
        blockchain_ok = chain_id == settings.chain_id
        if not blockchain_ok:
            logger.warning(f"RPC reports chain id {chain_id}, expected {settings.chain_id}")
    except Exception as e:
        logger.warning(f"Blockchain health check failed: {type(e).__name__}: {e}")
        blockchain_ok = False

    if database_ok and blockchain_ok:
        status = "healthy"
    elif database_ok or blockchain_ok:
        status = "degraded"
    else:
        status = "unhealthy"

    health = HealthResponse(
        status=status,
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
        network=NetworkInfo(name=settings.network, chain_id=settings.chain_id),
        checks=HealthChecks(database=database_ok, blockchain=blockchain_ok),
    )
    return JSONResponse(
        content=health.model_dump(mode="json", by_alias=True),
        status_code=503 if status == "unhealthy" else 200,
    )


@router.head("")
async def health_head() -> Response:
    return Response(status_code=200)
