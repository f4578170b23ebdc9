import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from inventory.core.api_response import success_response_payload
from inventory.core.metrics import increment_counter
from inventory.core.observability import log_business_event
from inventory.core.permissions import permissions_matrix_payload
from inventory.core.request_context import request_user_agent, resolve_origin
from inventory.core.security import authenticate_user, create_access_token, get_current_user, get_user_role
from inventory.db.models.user import User
from inventory.db.session import get_db
from inventory.defense.dependencies import get_login_defense
from inventory.defense.guard import BLOCKED_ACCOUNT_LOCKED, LoginDefense
from inventory.defense.identifiers import normalize_account_identifier
from inventory.defense.lockout import LockStatus
from inventory.defense.rate_limiter import OriginCheck

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginIn(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=256)


def _rate_limit_headers(defense: LoginDefense, username: str, origin: str) -> dict[str, str]:
    counts = defense.attempt_counts(username, origin)
    return {
        "X-RateLimit-Account-Remaining": str(counts.account_remaining),
        "X-RateLimit-Origin-Remaining": str(counts.origin_remaining),
        "X-RateLimit-Reset": f"{counts.reset_at.isoformat()}Z",
    }


def _account_locked(lock: LockStatus, now: datetime, headers: dict[str, str]) -> HTTPException:
    retry_after = lock.retry_after_seconds(now)
    return HTTPException(
        status_code=status.HTTP_423_LOCKED,
        detail={
            "code": "account_locked",
            "message": "Account temporarily locked due to multiple failed login attempts. Try again later.",
            "locked_until": f"{lock.locked_until.isoformat()}Z" if lock.locked_until else None,
            "retry_after_seconds": retry_after,
        },
        headers={**headers, "Retry-After": str(retry_after)},
    )


def _origin_limited(check: OriginCheck, headers: dict[str, str]) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "origin_rate_limited",
            "message": "Too many login attempts from this address. Try again later.",
            "attempts": check.attempts,
            "max_attempts": check.max_attempts,
            "window_minutes": check.window_minutes,
        },
        headers=headers,
    )


@router.post("/login")
def login(
    payload: LoginIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    defense: LoginDefense = Depends(get_login_defense),
):
    username = normalize_account_identifier(payload.username)
    if not username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")
    origin = resolve_origin(request)
    user_agent = request_user_agent(request)

    precheck = defense.precheck(username, origin)
    blocked_reason = precheck.blocked_reason
    if blocked_reason:
        # Rejected requests still count as failures; they cannot extend an active lock.
        defense.record_attempt(username, origin, user_agent, succeeded=False)
        increment_counter("login_blocked_total", reason=blocked_reason)
        log_business_event(
            logger, request, event="auth.login", result=blocked_reason, username=username, origin=origin
        )
        headers = _rate_limit_headers(defense, username, origin)
        if blocked_reason == BLOCKED_ACCOUNT_LOCKED:
            raise _account_locked(precheck.lock, defense.clock(), headers)
        raise _origin_limited(precheck.origin, headers)

    user = authenticate_user(db, username, payload.password)
    lock = defense.record_attempt(username, origin, user_agent, succeeded=user is not None)
    headers = _rate_limit_headers(defense, username, origin)

    if user is None:
        increment_counter("login_attempt_total", result="invalid_credentials")
        log_business_event(
            logger,
            request,
            event="auth.login",
            result="invalid_credentials",
            username=username,
            origin=origin,
            locked=lock.locked,
        )
        if lock.locked:
            raise _account_locked(lock, defense.clock(), headers)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials", headers=headers)

    role = get_user_role(user)
    token = create_access_token({"sub": user.username, "role": role})
    response.headers.update(headers)
    increment_counter("login_attempt_total", result="success")
    log_business_event(logger, request, event="auth.login", result="success", username=username, role=role)
    return success_response_payload(
        request,
        data={"access_token": token, "token_type": "bearer", "role": role},
    )


@router.get("/me")
def me(request: Request, current_user: User = Depends(get_current_user)):
    return success_response_payload(
        request,
        data={"username": current_user.username, "role": get_user_role(current_user)},
    )


@router.get("/permissions-matrix")
def permissions_matrix(request: Request, _: User = Depends(get_current_user)):
    return success_response_payload(request, data=permissions_matrix_payload())
