from datetime import datetime

from sqlalchemy.orm import Session

from inventory.core.clock import Clock, utc_now
from inventory.db.models.login_attempt import IdentifierKind, LoginAttempt
from inventory.defense.identifiers import normalize_account_identifier
from inventory.defense.tolerant import storage_guard


class AttemptLedger:
    """Append-only log of authentication attempts.

    Pure storage: no thresholds live here. Window checks are full
    scan-and-count queries so the table stays the single source of truth.
    """

    def __init__(self, db: Session, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    def append(
        self,
        identifier: str,
        identifier_kind: IdentifierKind,
        origin_address: str,
        user_agent: str | None,
        succeeded: bool,
    ) -> LoginAttempt:
        if identifier_kind == IdentifierKind.ACCOUNT:
            identifier = normalize_account_identifier(identifier)
        row = LoginAttempt(
            identifier=identifier,
            identifier_kind=identifier_kind.value,
            origin_address=origin_address,
            user_agent=user_agent,
            succeeded=succeeded,
            attempted_at=self._clock(),
        )
        with storage_guard(self._db, "ledger.append"):
            self._db.add(row)
            self._db.commit()
        return row

    def count_failed_since(self, identifier: str, identifier_kind: IdentifierKind, since: datetime) -> int:
        query = self._db.query(LoginAttempt).filter(
            LoginAttempt.succeeded.is_(False),
            LoginAttempt.attempted_at >= since,
        )
        if identifier_kind == IdentifierKind.ACCOUNT:
            query = query.filter(
                LoginAttempt.identifier_kind == IdentifierKind.ACCOUNT.value,
                LoginAttempt.identifier == normalize_account_identifier(identifier),
            )
        else:
            # Every attempt row carries its origin, whatever kind it was keyed by.
            query = query.filter(LoginAttempt.origin_address == identifier)
        with storage_guard(self._db, "ledger.count_failed_since"):
            return query.count()

    def purge_older_than(self, cutoff: datetime) -> int:
        with storage_guard(self._db, "ledger.purge_older_than"):
            removed = (
                self._db.query(LoginAttempt)
                .filter(LoginAttempt.attempted_at < cutoff)
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return int(removed or 0)
