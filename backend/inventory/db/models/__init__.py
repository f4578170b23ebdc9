from inventory.db.models.account_lockout import AccountLockout
from inventory.db.models.login_attempt import IdentifierKind, LoginAttempt
from inventory.db.models.user import User

__all__ = ["AccountLockout", "IdentifierKind", "LoginAttempt", "User"]
