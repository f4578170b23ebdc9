import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from inventory.core.clock import Clock, seconds_until, utc_now
from inventory.core.config import DefenseSettings
from inventory.core.errors import StorageError
from inventory.core.metrics import increment_counter
from inventory.db.models.account_lockout import LOCKED_BY_AUTOMATIC, AccountLockout, admin_provenance
from inventory.db.models.login_attempt import IdentifierKind
from inventory.defense.identifiers import normalize_account_identifier
from inventory.defense.ledger import AttemptLedger
from inventory.defense.tolerant import storage_guard, tolerant_call

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    locked_until: datetime | None = None
    failed_attempts: int = 0
    locked_by: str | None = None

    def retry_after_seconds(self, now: datetime) -> int:
        if not self.locked or self.locked_until is None:
            return 0
        return seconds_until(self.locked_until, now)


OPEN = LockStatus(locked=False)


class LockoutStateMachine:
    """Per-account OPEN/LOCKED state kept in ``account_lockouts``.

    LOCKED is purely ``locked_until > now``: expiry needs no write, and an
    administrator can release a lock early by deleting the row.
    """

    def __init__(
        self,
        db: Session,
        ledger: AttemptLedger,
        settings: DefenseSettings,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._settings = settings
        self._clock = clock

    def status(self, account_identifier: str) -> LockStatus:
        """Strict read used by admin views; raises ``StorageError``."""
        key = normalize_account_identifier(account_identifier)
        now = self._clock()
        with storage_guard(self._db, "lockout.status"):
            row = (
                self._db.query(AccountLockout)
                .filter(AccountLockout.account_identifier == key, AccountLockout.locked_until > now)
                .first()
            )
        if row is None:
            return OPEN
        return LockStatus(
            locked=True,
            locked_until=row.locked_until,
            failed_attempts=row.failed_attempts,
            locked_by=row.locked_by,
        )

    def is_locked(self, account_identifier: str) -> LockStatus:
        return tolerant_call("lockout.is_locked", lambda: self.status(account_identifier), OPEN)

    def on_failed_attempt(self, account_identifier: str) -> bool:
        """Re-evaluate the account window after a failed attempt was appended.

        Returns True when this call armed a new lock.
        """
        return tolerant_call("lockout.on_failed_attempt", lambda: self._evaluate(account_identifier), False)

    def _evaluate(self, account_identifier: str) -> bool:
        key = normalize_account_identifier(account_identifier)
        now = self._clock()
        since = now - timedelta(minutes=self._settings.window_minutes)
        failed = self._ledger.count_failed_since(key, IdentifierKind.ACCOUNT, since)
        if failed < self._settings.max_attempts_per_account:
            return False
        locked_until = now + timedelta(minutes=self._settings.lockout_duration_minutes)
        armed = self._arm(key, failed, now, locked_until, LOCKED_BY_AUTOMATIC, replace_active=False)
        if armed:
            increment_counter("lockout_armed_total", locked_by="automatic")
            logger.warning(
                "Account locked account=%s failed_attempts=%s locked_until=%s",
                key,
                failed,
                locked_until.isoformat(),
            )
        return armed

    def _arm(
        self,
        key: str,
        failed_attempts: int,
        now: datetime,
        locked_until: datetime,
        locked_by: str,
        *,
        replace_active: bool,
    ) -> bool:
        # Single INSERT .. ON CONFLICT statement. Without replace_active the
        # update only fires over an expired row, so racing arms collapse into
        # one lock window and an active lock is never extended.
        dialect = self._db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise StorageError("lockout.arm", RuntimeError(f"no atomic upsert for dialect {dialect}"))
        stmt = insert(AccountLockout).values(
            account_identifier=key,
            failed_attempts=failed_attempts,
            locked_at=now,
            locked_until=locked_until,
            locked_by=locked_by,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AccountLockout.account_identifier],
            set_={
                "failed_attempts": stmt.excluded.failed_attempts,
                "locked_at": stmt.excluded.locked_at,
                "locked_until": stmt.excluded.locked_until,
                "locked_by": stmt.excluded.locked_by,
            },
            where=None if replace_active else AccountLockout.locked_until <= now,
        )
        with storage_guard(self._db, "lockout.arm"):
            result = self._db.execute(stmt)
            self._db.commit()
        return (result.rowcount or 0) > 0

    def admin_lock(self, account_identifier: str, actor: str, minutes: int | None = None) -> LockStatus:
        """Lock an account on behalf of an administrator, replacing any current lock."""
        key = normalize_account_identifier(account_identifier)
        now = self._clock()
        duration = minutes or self._settings.lockout_duration_minutes
        since = now - timedelta(minutes=self._settings.window_minutes)
        failed = self._ledger.count_failed_since(key, IdentifierKind.ACCOUNT, since)
        locked_until = now + timedelta(minutes=duration)
        locked_by = admin_provenance(actor)
        self._arm(key, failed, now, locked_until, locked_by, replace_active=True)
        increment_counter("lockout_armed_total", locked_by="admin")
        logger.warning("Account locked by admin account=%s actor=%s locked_until=%s", key, actor, locked_until.isoformat())
        return LockStatus(locked=True, locked_until=locked_until, failed_attempts=failed, locked_by=locked_by)

    def admin_unlock(self, account_identifier: str, actor: str) -> bool:
        """Delete the account's lockout row. Returns True if a live lock was released."""
        key = normalize_account_identifier(account_identifier)
        now = self._clock()
        with storage_guard(self._db, "lockout.admin_unlock"):
            released = (
                self._db.query(AccountLockout)
                .filter(AccountLockout.account_identifier == key, AccountLockout.locked_until > now)
                .delete(synchronize_session=False)
            )
            # Expired history for the key goes too, so the next arm starts clean.
            self._db.query(AccountLockout).filter(AccountLockout.account_identifier == key).delete(
                synchronize_session=False
            )
            self._db.commit()
        if released:
            increment_counter("lockout_released_total")
            logger.info("Account unlocked account=%s actor=%s", key, actor)
        return bool(released)

    def purge_expired(self) -> int:
        now = self._clock()
        with storage_guard(self._db, "lockout.purge_expired"):
            removed = (
                self._db.query(AccountLockout)
                .filter(AccountLockout.locked_until <= now)
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return int(removed or 0)
