import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from inventory.core.api_response import success_response_payload
from inventory.core.export_utils import (
    THREAT_EXPORT_HEADER,
    csv_attachment_response,
    threat_export_rows,
    xlsx_attachment_response,
)
from inventory.core.observability import log_business_event
from inventory.core.security import require_permission
from inventory.db.models.user import User
from inventory.defense.dependencies import get_login_defense, get_security_reporter
from inventory.defense.guard import LoginDefense
from inventory.defense.identifiers import normalize_account_identifier
from inventory.defense.lockout import LockStatus
from inventory.defense.reporting import SecurityReporter

router = APIRouter(prefix="/admin/security", tags=["security"])
logger = logging.getLogger(__name__)


class AccountIn(BaseModel):
    username: str = Field(min_length=1, max_length=150)


class AdminLockIn(AccountIn):
    minutes: int | None = Field(default=None, ge=1, le=7 * 24 * 60)
    reason: str | None = Field(default=None, max_length=255)


def _account(raw: str) -> str:
    username = normalize_account_identifier(raw)
    if not username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")
    return username


def _lock_payload(username: str, lock: LockStatus, defense: LoginDefense) -> dict:
    return {
        "username": username,
        "locked": lock.locked,
        "locked_until": f"{lock.locked_until.isoformat()}Z" if lock.locked_until else None,
        "failed_attempts": lock.failed_attempts,
        "locked_by": lock.locked_by,
        "retry_after_seconds": lock.retry_after_seconds(defense.clock()),
    }


def _report_or_400(reporter: SecurityReporter, hours: int) -> dict:
    try:
        return reporter.report(hours)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/stats")
def security_stats(
    request: Request,
    reporter: SecurityReporter = Depends(get_security_reporter),
    _: User = Depends(require_permission("security.view")),
):
    return success_response_payload(request, data=reporter.current_stats())


@router.get("/report")
def security_report(
    request: Request,
    hours: int = Query(default=24),
    reporter: SecurityReporter = Depends(get_security_reporter),
    _: User = Depends(require_permission("security.view")),
):
    return success_response_payload(request, data=_report_or_400(reporter, hours))


@router.get("/report/export.csv")
def export_report_csv(
    hours: int = Query(default=24),
    reporter: SecurityReporter = Depends(get_security_reporter),
    _: User = Depends(require_permission("security.view")),
):
    report = _report_or_400(reporter, hours)
    return csv_attachment_response(
        filename=f"security-threats-{hours}h.csv",
        header=THREAT_EXPORT_HEADER,
        rows=threat_export_rows(report),
    )


@router.get("/report/export.xlsx")
def export_report_xlsx(
    hours: int = Query(default=24),
    reporter: SecurityReporter = Depends(get_security_reporter),
    _: User = Depends(require_permission("security.view")),
):
    report = _report_or_400(reporter, hours)
    return xlsx_attachment_response(
        filename=f"security-threats-{hours}h.xlsx",
        sheet_name="Top threats",
        header=THREAT_EXPORT_HEADER,
        rows=threat_export_rows(report),
    )


@router.get("/attempts")
def attempt_counts(
    request: Request,
    username: str = Query(min_length=1, max_length=150),
    origin: str = Query(min_length=1, max_length=64),
    defense: LoginDefense = Depends(get_login_defense),
    _: User = Depends(require_permission("security.view")),
):
    counts = defense.attempt_counts(_account(username), origin)
    return success_response_payload(
        request,
        data={
            "account": {"attempts": counts.account_attempts, "max_attempts": counts.account_max_attempts},
            "origin": {"attempts": counts.origin_attempts, "max_attempts": counts.origin_max_attempts},
            "window_minutes": counts.window_minutes,
        },
    )


@router.get("/lockouts/{username}")
def lockout_status(
    username: str,
    request: Request,
    defense: LoginDefense = Depends(get_login_defense),
    _: User = Depends(require_permission("security.view")),
):
    account = _account(username)
    return success_response_payload(request, data=_lock_payload(account, defense.lockout.status(account), defense))


@router.post("/unlock")
def unlock_account(
    payload: AccountIn,
    request: Request,
    defense: LoginDefense = Depends(get_login_defense),
    current_user: User = Depends(require_permission("security.manage")),
):
    account = _account(payload.username)
    unlocked = defense.lockout.admin_unlock(account, actor=current_user.username)
    log_business_event(
        logger, request, event="security.unlock", username=account, actor=current_user.username, unlocked=unlocked
    )
    return success_response_payload(request, data={"username": account, "unlocked": unlocked})


@router.post("/lock")
def lock_account(
    payload: AdminLockIn,
    request: Request,
    defense: LoginDefense = Depends(get_login_defense),
    current_user: User = Depends(require_permission("security.manage")),
):
    account = _account(payload.username)
    lock = defense.lockout.admin_lock(account, actor=current_user.username, minutes=payload.minutes)
    log_business_event(
        logger,
        request,
        event="security.lock",
        username=account,
        actor=current_user.username,
        minutes=payload.minutes or defense.settings.lockout_duration_minutes,
        reason=payload.reason or "-",
    )
    return success_response_payload(request, data=_lock_payload(account, lock, defense))
