from dataclasses import dataclass
from datetime import datetime, timedelta

from inventory.core.clock import Clock, utc_now
from inventory.core.config import DefenseSettings
from inventory.db.models.login_attempt import IdentifierKind
from inventory.defense.ledger import AttemptLedger
from inventory.defense.tolerant import tolerant_call


@dataclass(frozen=True)
class OriginCheck:
    limited: bool
    attempts: int
    max_attempts: int
    window_minutes: int

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


@dataclass(frozen=True)
class AttemptCounts:
    """Failed attempts in the current window on both axes."""

    account_attempts: int
    account_max_attempts: int
    origin_attempts: int
    origin_max_attempts: int
    window_minutes: int
    reset_at: datetime

    @property
    def account_remaining(self) -> int:
        return max(0, self.account_max_attempts - self.account_attempts)

    @property
    def origin_remaining(self) -> int:
        return max(0, self.origin_max_attempts - self.origin_attempts)


class OriginRateLimiter:
    """Sliding-window limit on failed attempts per network origin.

    Advisory only: it never writes, and it is consulted before credentials
    are verified.
    """

    def __init__(self, ledger: AttemptLedger, settings: DefenseSettings, clock: Clock = utc_now) -> None:
        self._ledger = ledger
        self._settings = settings
        self._clock = clock

    def window_start(self) -> datetime:
        return self._clock() - timedelta(minutes=self._settings.window_minutes)

    def check_origin(self, origin_address: str) -> OriginCheck:
        fallback = OriginCheck(
            limited=False,
            attempts=0,
            max_attempts=self._settings.max_attempts_per_origin,
            window_minutes=self._settings.window_minutes,
        )
        return tolerant_call("rate_limiter.check_origin", lambda: self._evaluate(origin_address), fallback)

    def _evaluate(self, origin_address: str) -> OriginCheck:
        attempts = self._ledger.count_failed_since(origin_address, IdentifierKind.ORIGIN, self.window_start())
        return OriginCheck(
            limited=attempts >= self._settings.max_attempts_per_origin,
            attempts=attempts,
            max_attempts=self._settings.max_attempts_per_origin,
            window_minutes=self._settings.window_minutes,
        )

    def attempt_counts(self, account_identifier: str, origin_address: str) -> AttemptCounts:
        now = self._clock()

        def _counts(account: int, origin: int) -> AttemptCounts:
            return AttemptCounts(
                account_attempts=account,
                account_max_attempts=self._settings.max_attempts_per_account,
                origin_attempts=origin,
                origin_max_attempts=self._settings.max_attempts_per_origin,
                window_minutes=self._settings.window_minutes,
                reset_at=now + timedelta(minutes=self._settings.window_minutes),
            )

        def _read() -> AttemptCounts:
            since = now - timedelta(minutes=self._settings.window_minutes)
            return _counts(
                self._ledger.count_failed_since(account_identifier, IdentifierKind.ACCOUNT, since),
                self._ledger.count_failed_since(origin_address, IdentifierKind.ORIGIN, since),
            )

        return tolerant_call("rate_limiter.attempt_counts", _read, _counts(0, 0))
