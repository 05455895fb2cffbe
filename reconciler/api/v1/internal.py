"""Internal API endpoints - protected by shared secret, not user auth.

These endpoints are called by cron jobs / external schedulers. They
validate a shared secret via the X-Cron-Secret header.
"""

import logging
from typing import Any

from fastapi import APIRouter, Header, HTTPException, status

from reconciler.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


def _verify_cron_secret(x_cron_secret: str) -> None:
    """Validate the X-Cron-Secret header against the configured secret."""
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron secret not configured",
        )
    if x_cron_secret != settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid cron secret",
        )


@router.post("/reconcile")
async def trigger_reconcile(
    x_cron_secret: str = Header(...),
) -> dict[str, Any]:
    """
    Run the provider sweep and the correlation purge now.

    Either job reports None when another instance already holds its lock.
    """
    _verify_cron_secret(x_cron_secret)

    from reconciler.services.scheduler import scheduler

    logger.info("Manual reconcile triggered")
    return {
        "provider_sweep": await scheduler.trigger_now("provider_sweep"),
        "correlation_purge": await scheduler.trigger_now("correlation_purge"),
    }
