"""
FastAPI dependencies for objects owned by the application lifespan.

Endpoints declare ``backup: BackupService = Depends(get_backup_service)``;
tests swap the instance through ``app.dependency_overrides``.
"""

from fastapi import Request

from mmanage.backup.service import BackupService


def get_backup_service(request: Request) -> BackupService:
    """The ``BackupService`` created in the lifespan and stored on app.state."""
    return request.app.state.backup_service
