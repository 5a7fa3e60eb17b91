"""
MManage Backend — Users Route Handlers
=======================================

What:  CRUD endpoints for /users.
How:   Validate input with the Pydantic schemas, delegate to UserService,
       set status codes and headers. Errors raised by the service are turned
       into JSON responses by the handlers registered in main.py.

The create endpoint is the one place a request feeds the backup pipeline:
the service calls ``BackupService.backup()`` after the commit and the
response is returned without waiting for Cassandra.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mmanage.backup.service import BackupService
from mmanage.database import get_db_session
from mmanage.dependencies import get_backup_service
from mmanage.schemas.user import (
    ErrorResponse,
    MessageResponse,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from mmanage.services.user_service import user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Email already registered", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Create a user",
)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db_session),
    backup: BackupService = Depends(get_backup_service),
) -> UserResponse:
    """Create a user and schedule its copy into ``backup_users``."""
    return await user_service.create_user(db=db, data=payload, backup=backup)


@router.get(
    "",
    response_model=UserListResponse,
    responses={500: {"description": "Server error", "model": ErrorResponse}},
    summary="List users with pagination",
)
async def list_users(
    response: Response,
    page: int = Query(default=1, ge=1, description="1-based page number"),
    limit: int = Query(default=20, ge=1, le=100, description="Items per page (max 100)"),
    db: AsyncSession = Depends(get_db_session),
) -> UserListResponse:
    result = await user_service.list_users(db=db, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
    summary="Get a user by ID",
)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await user_service.get_user(db=db, user_id=user_id)


@router.patch(
    "/{user_id}",
    response_model=UserResponse,
    responses={
        404: {"description": "User not found", "model": ErrorResponse},
        409: {"description": "Email already registered", "model": ErrorResponse},
    },
    summary="Update a user's name or email",
)
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db_session),
) -> UserResponse:
    return await user_service.update_user(db=db, user_id=user_id, data=payload)


@router.delete(
    "/{user_id}",
    response_model=MessageResponse,
    responses={404: {"description": "User not found", "model": ErrorResponse}},
    summary="Delete a user",
)
async def delete_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await user_service.delete_user(db=db, user_id=user_id)
    return MessageResponse(message="User deleted successfully")
