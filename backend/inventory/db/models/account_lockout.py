from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory.db.base import Base

LOCKED_BY_AUTOMATIC = "AUTOMATIC"
ADMIN_PROVENANCE_PREFIX = "ADMIN:"


def admin_provenance(actor: str) -> str:
    return f"{ADMIN_PROVENANCE_PREFIX}{actor}"


class AccountLockout(Base):
    """At most one row per account; "locked" means ``locked_until > now``."""

    __tablename__ = "account_lockouts"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_identifier: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    failed_attempts: Mapped[int] = mapped_column(Integer, default=0)
    locked_at: Mapped[datetime] = mapped_column(DateTime)
    locked_until: Mapped[datetime] = mapped_column(DateTime, index=True)
    locked_by: Mapped[str] = mapped_column(String(160), default=LOCKED_BY_AUTOMATIC)

    __table_args__ = (
        CheckConstraint("failed_attempts >= 0", name="ck_account_lockouts_failed_attempts_ge_0"),
    )