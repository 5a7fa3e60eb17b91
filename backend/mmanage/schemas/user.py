"""
MManage Backend — Pydantic Request/Response Schemas
====================================================

What:  The API contract for the users resource, errors and health.
How:   FastAPI validates request bodies against these models and serializes
       responses through them; OpenAPI docs are generated from them.

Schemas are separate from the ORM model so that password hashes never leave
the service layer and request validation can be stricter than the table.
"""

import re
import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

# Pragmatic address check: something@something.tld, no whitespace
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

Role = Literal["admin", "user"]


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValueError("Invalid email address")
    return email


def _normalize_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValueError("Name must not be blank")
    return name


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class UserCreate(BaseModel):
    """
    Body of POST /users.

    Password length is capped at 72 bytes' worth of characters since bcrypt
    ignores anything beyond that.
    """

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255)
    password: str = Field(min_length=6, max_length=72)
    role: Role = Field(default="user")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _normalize_name(v)


class UserUpdate(BaseModel):
    """Body of PATCH /users/{id}; omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _normalize_email(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _normalize_name(v)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """A user as returned by the API (no password hash)."""

    id: uuid.UUID
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserListResponse(BaseModel):
    """
    Page of users for GET /users.

    Offset pagination: ``page`` is 1-based, ``total_count`` counts all users
    and is also sent as the X-Total-Count header.
    """

    users: List[UserResponse]
    total_count: int
    page: int
    limit: int
    has_more: bool


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """
    Standardized error body for all API errors.

    Example:
        {
            "error": "conflict",
            "message": "A user with this email already exists",
            "details": {"field": "email"},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class BackupHealth(BaseModel):
    state: str = Field(description="connected, connecting, disconnected or disabled")
    queue_depth: int
    queue_capacity: int
    sent: int
    queued: int
    dropped: int
    failed: int


class HealthResponse(BaseModel):
    """
    Returned by GET /health.

    status is 'unhealthy' when the primary database is unreachable and
    'degraded' when only the backup store is.
    """

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="Primary store: connected, disconnected")
    backup: BackupHealth
    uptime_seconds: float
