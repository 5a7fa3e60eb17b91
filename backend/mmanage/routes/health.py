"""
MManage Backend — Health Check Route
=====================================

What:  Health endpoint for monitoring and load balancer probes.
How:   Runs SELECT 1 against the primary store and reads the backup
       service's in-memory status (no Cassandra round trip).

Status levels:
    - healthy:   primary store reachable, backup store connected or disabled
    - degraded:  primary store reachable, backup store not connected
                 (records are being buffered or dropped)
    - unhealthy: primary store unreachable
"""

import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from mmanage import __version__
from mmanage.backup.service import BackupService
from mmanage.database import get_db_session
from mmanage.dependencies import get_backup_service
from mmanage.schemas.user import BackupHealth, HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the status of the backend, its primary database and the "
        "backup replication pipeline."
    ),
)
async def health_check(
    db: AsyncSession = Depends(get_db_session),
    backup: BackupService = Depends(get_backup_service),
) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    # ── Check Database ────────────────────────────────────────────────────
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", e)

    # ── Backup pipeline ───────────────────────────────────────────────────
    backup_status = backup.status()
    if backup_status.state not in ("connected", "disabled") and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        backup=BackupHealth(**backup_status.as_dict()),
        uptime_seconds=round(time.time() - _start_time, 2),
    )
