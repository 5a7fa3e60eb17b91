"""
MManage Backend — User SQLAlchemy Model
========================================

What:  ORM model for the `users` table in the primary store.
Who:   UserService for CRUD; Alembic for schema management.
When:  Created by POST /users, then mirrored into Cassandra's backup_users.

Table Design:
    - UUID primary key generated in Python, so the id is known before flush
      and can be handed to the backup service without a refresh
    - email: unique, stored lowercased by the service layer
    - password_hash: bcrypt hash, never returned by the API
    - role: 'admin' | 'user'
    - created_at / updated_at: timezone-aware UTC, also set in Python
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mmanage.database import Base

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    A person allowed to use the pharmacy back office.

    Query Patterns:
        - List: ORDER BY created_at DESC LIMIT/OFFSET → idx_users_created_at
        - Lookup by email (uniqueness check) → uq_users_email
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Login identifier, lowercased",
    )

    password_hash: Mapped[str] = mapped_column(String(60), nullable=False)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="user",
        server_default="user",
        comment="admin | user",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
        Index("idx_users_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
