"""Health check endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from stakerelay import __version__
from stakerelay.api.dependencies import get_services
from stakerelay.services import RelayServices

router = APIRouter()


@router.get("/health")
async def health_check(services: RelayServices = Depends(get_services)):
    """Basic health check endpoint."""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": services.settings.environment,
        "version": __version__,
    }


@router.get("/health/detailed")
async def detailed_health(services: RelayServices = Depends(get_services)):
    """Detailed health check with configuration and relayer info."""
    submitter = services.submitter
    signer_healthy = await services.signer.health_check() if services.signer else False
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "config": services.settings.get_safe_dict(),
        "relayer": submitter.account.to_dict() if submitter else None,
        "signerHealthy": signer_healthy,
        "replayStoreDurable": services.replay_guard.store.durable,
    }
