"""Create users table

Revision ID: 001
Revises: None
Create Date: 2025-01-20 00:00:00.000000+00:00

What:  Creates the `users` table of the primary store.
How:   Portable column types (UUID, TIMESTAMP WITH TIME ZONE on PostgreSQL);
       ids and timestamps are generated by the application.

Rollback: downgrade() drops the table (destructive). The Cassandra copies in
backup_users are unaffected and expire on their own TTL.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "email",
            sa.String(255),
            nullable=False,
            comment="Login identifier, lowercased",
        ),
        sa.Column("password_hash", sa.String(60), nullable=False),
        sa.Column(
            "role",
            sa.String(20),
            nullable=False,
            server_default="user",
            comment="admin | user",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.CheckConstraint("role IN ('admin', 'user')", name="ck_users_role"),
    )

    # Serves the default listing order (newest first)
    op.create_index(
        "idx_users_created_at",
        "users",
        [sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_table("users")
