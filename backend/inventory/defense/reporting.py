from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import case, distinct, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory.core.clock import Clock, utc_now
from inventory.core.config import DefenseSettings
from inventory.core.errors import ReportingError
from inventory.db.models.account_lockout import AccountLockout
from inventory.db.models.login_attempt import IdentifierKind, LoginAttempt


@contextmanager
def _reporting_guard(db: Session, operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        raise ReportingError(operation, exc) from exc


def _success_rate(successful: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(successful / total * 100, 2)


class SecurityReporter:
    """Read-only aggregates over the attempt ledger and lockout table."""

    def __init__(self, db: Session, settings: DefenseSettings, clock: Clock = utc_now) -> None:
        self._db = db
        self._settings = settings
        self._clock = clock

    def current_stats(self) -> dict:
        now = self._clock()
        with _reporting_guard(self._db, "current_stats"):
            active_lockouts = (
                self._db.query(func.count(AccountLockout.id))
                .filter(AccountLockout.locked_until > now)
                .scalar()
            )
            total, successful = (
                self._db.query(
                    func.count(LoginAttempt.id),
                    func.coalesce(func.sum(case((LoginAttempt.succeeded.is_(True), 1), else_=0)), 0),
                )
                .filter(LoginAttempt.attempted_at >= now - timedelta(hours=1))
                .one()
            )
        total = int(total or 0)
        successful = int(successful or 0)
        return {
            "active_lockouts": int(active_lockouts or 0),
            "last_hour": {
                "total": total,
                "successful": successful,
                "failed": total - successful,
            },
        }

    def report(self, hours: int = 24) -> dict:
        if hours < 1 or hours > self._settings.report_max_hours:
            raise ValueError(f"hours must be between 1 and {self._settings.report_max_hours}")
        end = self._clock()
        start = end - timedelta(hours=hours)
        limit = self._settings.top_threats_limit
        failed_count = func.count(LoginAttempt.id).label("failed_count")

        with _reporting_guard(self._db, "report"):
            total, successful, unique_origins, unique_accounts = (
                self._db.query(
                    func.count(LoginAttempt.id),
                    func.coalesce(func.sum(case((LoginAttempt.succeeded.is_(True), 1), else_=0)), 0),
                    func.count(distinct(LoginAttempt.origin_address)),
                    func.count(
                        distinct(
                            case(
                                (LoginAttempt.identifier_kind == IdentifierKind.ACCOUNT.value, LoginAttempt.identifier),
                            )
                        )
                    ),
                )
                .filter(LoginAttempt.attempted_at >= start)
                .one()
            )
            failed_origins = (
                self._db.query(LoginAttempt.origin_address, failed_count)
                .filter(LoginAttempt.attempted_at >= start, LoginAttempt.succeeded.is_(False))
                .group_by(LoginAttempt.origin_address)
                .order_by(failed_count.desc(), LoginAttempt.origin_address.asc())
                .limit(limit)
                .all()
            )
            targeted_accounts = (
                self._db.query(LoginAttempt.identifier, failed_count)
                .filter(
                    LoginAttempt.attempted_at >= start,
                    LoginAttempt.succeeded.is_(False),
                    LoginAttempt.identifier_kind == IdentifierKind.ACCOUNT.value,
                )
                .group_by(LoginAttempt.identifier)
                .order_by(failed_count.desc(), LoginAttempt.identifier.asc())
                .limit(limit)
                .all()
            )

        total = int(total or 0)
        successful = int(successful or 0)
        return {
            "period": {
                "hours": hours,
                "start_time": start.isoformat(),
                "end_time": end.isoformat(),
            },
            "summary": {
                "total_attempts": total,
                "successful_logins": successful,
                "failed_attempts": total - successful,
                "unique_origins": int(unique_origins or 0),
                "unique_accounts": int(unique_accounts or 0),
                "success_rate": _success_rate(successful, total),
            },
            "current": self.current_stats(),
            "top_threats": {
                "failed_origins": [
                    {"origin": origin, "failed_count": int(count)} for origin, count in failed_origins
                ],
                "targeted_accounts": [
                    {"account_identifier": account, "attempt_count": int(count)}
                    for account, count in targeted_accounts
                ],
            },
        }
