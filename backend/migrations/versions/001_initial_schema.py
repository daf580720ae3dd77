"""Initial database schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum types
    op.execute("CREATE TYPE user_type AS ENUM ('student', 'lecturer', 'assistant', 'admin')")
    op.execute("CREATE TYPE token_kind AS ENUM ('refresh', 'verification', 'password_reset')")

    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("middle_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("login_id", sa.String(50), nullable=True),
        sa.Column("campus_user_id", sa.Integer(), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "user_type",
            sa.Enum(
                "student", "lecturer", "assistant", "admin", name="user_type", create_type=False
            ),
            nullable=False,
            server_default="student",
        ),
        sa.Column("is_active", sa.Boolean(), server_default="true", nullable=True),
        sa.Column("verified", sa.Boolean(), server_default="false", nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("login_id"),
        sa.UniqueConstraint("campus_user_id"),
    )
    op.create_index("idx_users_user_type", "users", ["user_type"])

    # Create tokens table
    op.create_table(
        "tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "refresh", "verification", "password_reset", name="token_kind", create_type=False
            ),
            nullable=False,
            server_default="refresh",
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_tokens_user_id", "tokens", ["user_id"])
    op.create_index("idx_tokens_expires_at", "tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_tokens_expires_at", table_name="tokens")
    op.drop_index("ix_tokens_user_id", table_name="tokens")
    op.drop_table("tokens")
    op.drop_index("idx_users_user_type", table_name="users")
    op.drop_table("users")

    op.execute("DROP TYPE token_kind")
    op.execute("DROP TYPE user_type")
