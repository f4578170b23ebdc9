import os
import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from inventory.core.clock import utc_now
from inventory.core.security import hash_password
from inventory.db.models.user import User
from inventory.defense.identifiers import normalize_account_identifier

USERNAME_RE = re.compile(r"^[a-z0-9][a-z0-9._@-]{2,149}$")


def parse_admin_usernames(raw: str) -> list[str]:
    names = [normalize_account_identifier(x) for x in raw.split(",") if x.strip()]
    return sorted(set(names))


def get_runtime_admin_usernames() -> list[str]:
    return parse_admin_usernames(os.getenv("ADMIN_USERNAMES", ""))


def validate_admin_usernames(usernames: list[str]) -> None:
    invalid = [name for name in usernames if not USERNAME_RE.match(name)]
    if invalid:
        raise ValueError(f"Invalid usernames: {', '.join(invalid)}")


@dataclass
class AdminSyncResult:
    created: int = 0
    promoted: int = 0
    demoted: int = 0
    skipped_create_without_password: int = 0


def sync_admin_users(db: Session, admin_usernames: list[str], admin_password: str | None) -> AdminSyncResult:
    """Make exactly the configured usernames admins, creating missing ones."""
    validate_admin_usernames(admin_usernames)
    result = AdminSyncResult()
    target = set(admin_usernames)

    by_username = {u.username: u for u in db.query(User).all()}

    for username, user in by_username.items():
        if user.role == "admin" and username not in target:
            user.role = "viewer"
            result.demoted += 1

    for username in admin_usernames:
        existing = by_username.get(username)
        if existing:
            if existing.role != "admin" or not existing.is_active:
                existing.role = "admin"
                existing.is_active = True
                result.promoted += 1
            continue

        if not admin_password:
            result.skipped_create_without_password += 1
            continue

        db.add(
            User(
                username=username,
                hashed_password=hash_password(admin_password),
                role="admin",
                is_active=True,
                created_at=utc_now(),
            )
        )
        result.created += 1

    db.commit()
    return result
