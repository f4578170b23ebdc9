from dataclasses import dataclass

from sqlalchemy.orm import Session

from inventory.core.clock import Clock, utc_now
from inventory.core.config import DefenseSettings
from inventory.db.models.login_attempt import IdentifierKind
from inventory.defense.identifiers import normalize_account_identifier
from inventory.defense.ledger import AttemptLedger
from inventory.defense.lockout import OPEN, LockoutStateMachine, LockStatus
from inventory.defense.rate_limiter import AttemptCounts, OriginCheck, OriginRateLimiter
from inventory.defense.tolerant import tolerant_call

BLOCKED_ACCOUNT_LOCKED = "account_locked"
BLOCKED_ORIGIN_LIMITED = "origin_limited"


@dataclass(frozen=True)
class Precheck:
    lock: LockStatus
    origin: OriginCheck | None = None

    @property
    def blocked_reason(self) -> str | None:
        if self.lock.locked:
            return BLOCKED_ACCOUNT_LOCKED
        if self.origin is not None and self.origin.limited:
            return BLOCKED_ORIGIN_LIMITED
        return None


class LoginDefense:
    """Wires ledger, origin limiter and lockout around one login request.

    Order: lockout check, origin check, (caller verifies credentials),
    record attempt, re-check lockout for the response.
    """

    def __init__(self, db: Session, settings: DefenseSettings, clock: Clock = utc_now) -> None:
        self.settings = settings
        self.clock = clock
        self.ledger = AttemptLedger(db, clock)
        self.rate_limiter = OriginRateLimiter(self.ledger, settings, clock)
        self.lockout = LockoutStateMachine(db, self.ledger, settings, clock)

    def precheck(self, account_identifier: str, origin_address: str) -> Precheck:
        lock = self.lockout.is_locked(account_identifier)
        if lock.locked:
            return Precheck(lock=lock)
        return Precheck(lock=lock, origin=self.rate_limiter.check_origin(origin_address))

    def record_attempt(
        self,
        account_identifier: str,
        origin_address: str,
        user_agent: str | None,
        succeeded: bool,
    ) -> LockStatus:
        """Append the attempt and, on failure, let the lockout re-evaluate.

        Returns the account's lock state after recording.
        """
        account = normalize_account_identifier(account_identifier)

        def _append() -> bool:
            self.ledger.append(account, IdentifierKind.ACCOUNT, origin_address, user_agent, succeeded)
            return True

        appended = tolerant_call("ledger.append", _append, False)
        if succeeded:
            return OPEN
        if appended:
            self.lockout.on_failed_attempt(account)
        return self.lockout.is_locked(account)

    def attempt_counts(self, account_identifier: str, origin_address: str) -> AttemptCounts:
        return self.rate_limiter.attempt_counts(account_identifier, origin_address)
