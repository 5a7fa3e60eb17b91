"""
MManage Backend — User Service
===============================

What:  Business logic for the users resource.
How:   Plain async methods taking a session; SQLAlchemy errors are translated
       into application exceptions before they leave this module.
Who:   Called by the /users route handlers.

Create Flow (POST /users):
    ┌──────────┐    ┌─────────────┐    ┌──────────────┐    ┌─────────────────┐
    │  Email   │───▶│  Hash       │───▶│  INSERT +    │───▶│  backup()       │
    │  unique? │    │  password   │    │  COMMIT      │    │  backup_users   │
    └──────────┘    └─────────────┘    └──────────────┘    └─────────────────┘
         │ taken                                 fire-and-forget, never raises
         ▼
    ConflictError (409)

    The backup call happens only after the commit succeeded, so Cassandra
    never receives a user the primary store rejected.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mmanage.backup.service import BackupService
from mmanage.config import settings
from mmanage.exceptions import ConflictError, DatabaseError, NotFoundError
from mmanage.models.user import User
from mmanage.schemas.user import (
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from mmanage.security import hash_password

logger = logging.getLogger(__name__)

BACKUP_USERS_TABLE = "backup_users"


class UserService:
    """
    Users CRUD.

    Error Handling Strategy:
        Duplicate email (checked up front, or caught as IntegrityError on a
        race) becomes ConflictError. Any other SQLAlchemy failure becomes
        DatabaseError with a generic message; details go to the log only.
    """

    async def create_user(
        self,
        db: AsyncSession,
        data: UserCreate,
        backup: Optional[BackupService] = None,
    ) -> UserResponse:
        """
        Insert a user, commit, then hand a copy to the backup service.

        Raises:
            ConflictError: email already registered (→ 409)
            DatabaseError: insert or commit failed (→ 500)
        """
        await self._ensure_email_free(db, data.email)

        # bcrypt is CPU-bound; keep it off the event loop
        password_hash = await asyncio.to_thread(
            hash_password, data.password, settings.password_hash_rounds
        )
        now = datetime.now(timezone.utc)
        user = User(
            id=uuid4(),
            name=data.name,
            email=data.email,
            password_hash=password_hash,
            role=data.role,
            created_at=now,
            updated_at=now,
        )

        try:
            db.add(user)
            await db.flush()
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                message="A user with this email already exists",
                field="email",
            ) from e
        except SQLAlchemyError as e:
            logger.error("Database error creating user: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not create the user. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        logger.info("User created: %s", user.id)

        if backup is not None:
            backup.backup(
                BACKUP_USERS_TABLE,
                {
                    "id": str(user.id),
                    "email": user.email,
                    "name": user.name,
                    "created_at": user.created_at,
                },
            )

        return UserResponse.model_validate(user)

    async def get_user(self, db: AsyncSession, user_id: UUID) -> UserResponse:
        user = await self._load(db, user_id)
        return UserResponse.model_validate(user)

    async def list_users(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
    ) -> UserListResponse:
        """
        One page of users, newest first.

        Offset pagination: page N covers rows ``(N-1)*limit .. N*limit-1``.
        """
        try:
            count_result = await db.execute(select(func.count(User.id)))
            total_count = count_result.scalar() or 0

            result = await db.execute(
                select(User)
                .order_by(desc(User.created_at), User.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            users = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing users: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not retrieve users. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        return UserListResponse(
            users=[UserResponse.model_validate(u) for u in users],
            total_count=total_count,
            page=page,
            limit=limit,
            has_more=page * limit < total_count,
        )

    async def update_user(
        self,
        db: AsyncSession,
        user_id: UUID,
        data: UserUpdate,
    ) -> UserResponse:
        """
        Apply the fields present in ``data``.

        Raises:
            NotFoundError: no such user (→ 404)
            ConflictError: new email belongs to another user (→ 409)
        """
        user = await self._load(db, user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)

        if "email" in changes and changes["email"] != user.email:
            await self._ensure_email_free(db, changes["email"])

        for field, value in changes.items():
            setattr(user, field, value)
        user.updated_at = datetime.now(timezone.utc)

        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(
                message="A user with this email already exists",
                field="email",
            ) from e
        except SQLAlchemyError as e:
            logger.error("Database error updating user %s: %s", user_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not update the user. Please try again.",
                context={"user_id": str(user_id)},
            ) from e

        logger.info("User updated: %s (%s)", user_id, ", ".join(sorted(changes)) or "no fields")
        return UserResponse.model_validate(user)

    async def delete_user(self, db: AsyncSession, user_id: UUID) -> None:
        user = await self._load(db, user_id)
        try:
            await db.delete(user)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error deleting user %s: %s", user_id, e, exc_info=True)
            raise DatabaseError(
                message="Could not delete the user. Please try again.",
                context={"user_id": str(user_id)},
            ) from e
        logger.info("User deleted: %s", user_id)

    # ── Helpers ───────────────────────────────────────────────────────────

    async def _load(self, db: AsyncSession, user_id: UUID) -> User:
        try:
            result = await db.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error fetching user %s: %s", user_id, e)
            raise DatabaseError(
                message="Could not retrieve the user. Please try again.",
                context={"user_id": str(user_id)},
            ) from e

        if user is None:
            raise NotFoundError(resource="user", resource_id=str(user_id))
        return user

    async def _ensure_email_free(self, db: AsyncSession, email: str) -> None:
        try:
            result = await db.execute(select(User.id).where(User.email == email))
            taken = result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(
                message="Could not validate the email. Please try again.",
                context={"error_type": type(e).__name__},
            ) from e

        if taken:
            raise ConflictError(
                message="A user with this email already exists",
                field="email",
            )


# ── Singleton Instance ────────────────────────────────────────────────────
user_service = UserService()
