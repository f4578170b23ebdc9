class LoginDefenseError(Exception):
    """Base class for failures raised by the login-defense core."""


class StorageError(LoginDefenseError):
    """The attempt/lockout store failed or timed out.

    Callers on the authentication path log it and fall back to their
    fail-open default; it must never reach the end user as a login failure.
    """

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        reason = f": {cause}" if cause is not None else ""
        super().__init__(f"storage operation {operation} failed{reason}")


class ConfigurationError(LoginDefenseError):
    """Invalid thresholds, windows or database settings detected at startup."""


class ReportingError(LoginDefenseError):
    """An aggregate security query could not be completed."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"security report {operation} unavailable")
