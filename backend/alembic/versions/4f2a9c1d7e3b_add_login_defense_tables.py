"""add users and login defense tables

Revision ID: 4f2a9c1d7e3b
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4f2a9c1d7e3b"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)

    op.create_table(
        "login_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("identifier_kind", sa.String(length=16), nullable=False),
        sa.Column("origin_address", sa.String(length=64), nullable=False),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("succeeded", sa.Boolean(), nullable=False),
        sa.Column("attempted_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_login_attempts_attempted_at"), "login_attempts", ["attempted_at"], unique=False)
    op.create_index(
        "ix_login_attempts_kind_identifier_attempted_at",
        "login_attempts",
        ["identifier_kind", "identifier", "attempted_at"],
        unique=False,
    )
    op.create_index(
        "ix_login_attempts_origin_attempted_at",
        "login_attempts",
        ["origin_address", "attempted_at"],
        unique=False,
    )

    op.create_table(
        "account_lockouts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_identifier", sa.String(length=255), nullable=False),
        sa.Column("failed_attempts", sa.Integer(), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=False),
        sa.Column("locked_until", sa.DateTime(), nullable=False),
        sa.Column("locked_by", sa.String(length=160), nullable=False),
        sa.CheckConstraint("failed_attempts >= 0", name="ck_account_lockouts_failed_attempts_ge_0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_account_lockouts_account_identifier"), "account_lockouts", ["account_identifier"], unique=True
    )
    op.create_index(op.f("ix_account_lockouts_locked_until"), "account_lockouts", ["locked_until"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_account_lockouts_locked_until"), table_name="account_lockouts")
    op.drop_index(op.f("ix_account_lockouts_account_identifier"), table_name="account_lockouts")
    op.drop_table("account_lockouts")
    op.drop_index("ix_login_attempts_origin_attempted_at", table_name="login_attempts")
    op.drop_index("ix_login_attempts_kind_identifier_attempted_at", table_name="login_attempts")
    op.drop_index(op.f("ix_login_attempts_attempted_at"), table_name="login_attempts")
    op.drop_table("login_attempts")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_table("users")
