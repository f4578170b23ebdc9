import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory.db.base import Base


class IdentifierKind(str, enum.Enum):
    ACCOUNT = "account"
    ORIGIN = "origin"


class LoginAttempt(Base):
    """One authentication attempt. Rows are append-only."""

    __tablename__ = "login_attempts"

    id: Mapped[int] = mapped_column(primary_key=True)
    identifier: Mapped[str] = mapped_column(String(255))
    identifier_kind: Mapped[str] = mapped_column(String(16), default=IdentifierKind.ACCOUNT.value)
    origin_address: Mapped[str] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    succeeded: Mapped[bool] = mapped_column(Boolean, default=False)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, index=True)

    __table_args__ = (
        Index("ix_login_attempts_kind_identifier_attempted_at", "identifier_kind", "identifier", "attempted_at"),
        Index("ix_login_attempts_origin_attempted_at", "origin_address", "attempted_at"),
    )
