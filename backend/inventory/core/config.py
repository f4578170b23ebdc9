import os
from dataclasses import dataclass
from functools import lru_cache

from inventory.core.errors import ConfigurationError

SUPPORTED_DATABASE_DIALECTS = ("sqlite", "postgresql")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def database_dialect(url: str) -> str:
    scheme = url.split(":", 1)[0]
    return scheme.split("+", 1)[0].strip().lower()


@dataclass(frozen=True)
class DefenseSettings:
    """Thresholds and timings shared by every login-defense component.

    Built once at startup and handed to components explicitly; tests build
    their own instances with tightened values.
    """

    database_url: str = "sqlite:///./inventory.db"
    max_attempts_per_account: int = 5
    max_attempts_per_origin: int = 10
    window_minutes: int = 15
    lockout_duration_minutes: int = 15
    retention_hours: int = 24
    maintenance_enabled: bool = True
    maintenance_initial_delay_seconds: float = 5 * 60
    maintenance_interval_seconds: float = 60 * 60
    storage_timeout_seconds: float = 5
    report_max_hours: int = 720
    top_threats_limit: int = 10

    def __post_init__(self) -> None:
        positive = {
            "max_attempts_per_account": self.max_attempts_per_account,
            "max_attempts_per_origin": self.max_attempts_per_origin,
            "window_minutes": self.window_minutes,
            "lockout_duration_minutes": self.lockout_duration_minutes,
            "retention_hours": self.retention_hours,
            "maintenance_interval_seconds": self.maintenance_interval_seconds,
            "storage_timeout_seconds": self.storage_timeout_seconds,
            "report_max_hours": self.report_max_hours,
            "top_threats_limit": self.top_threats_limit,
        }
        invalid = sorted(name for name, value in positive.items() if value <= 0)
        if invalid:
            raise ConfigurationError(f"Settings must be positive: {', '.join(invalid)}")
        if self.maintenance_initial_delay_seconds < 0:
            raise ConfigurationError("maintenance_initial_delay_seconds must not be negative")
        if self.retention_hours * 60 < self.window_minutes:
            raise ConfigurationError("retention_hours must cover at least one rate-limit window")
        dialect = database_dialect(self.database_url)
        if dialect not in SUPPORTED_DATABASE_DIALECTS:
            raise ConfigurationError(
                f"Unsupported database dialect {dialect!r}; expected one of {', '.join(SUPPORTED_DATABASE_DIALECTS)}"
            )

    @property
    def dialect(self) -> str:
        return database_dialect(self.database_url)

    @classmethod
    def from_env(cls) -> "DefenseSettings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            max_attempts_per_account=_env_int("LOGIN_MAX_ATTEMPTS_PER_ACCOUNT", cls.max_attempts_per_account),
            max_attempts_per_origin=_env_int("LOGIN_MAX_ATTEMPTS_PER_ORIGIN", cls.max_attempts_per_origin),
            window_minutes=_env_int("LOGIN_WINDOW_MINUTES", cls.window_minutes),
            lockout_duration_minutes=_env_int("LOGIN_LOCKOUT_MINUTES", cls.lockout_duration_minutes),
            retention_hours=_env_int("ATTEMPT_RETENTION_HOURS", cls.retention_hours),
            maintenance_enabled=_env_bool("MAINTENANCE_ENABLED", cls.maintenance_enabled),
            maintenance_initial_delay_seconds=_env_int("MAINTENANCE_INITIAL_DELAY_SECONDS", 5 * 60),
            maintenance_interval_seconds=_env_int("MAINTENANCE_INTERVAL_SECONDS", 60 * 60),
            storage_timeout_seconds=_env_int("STORAGE_TIMEOUT_SECONDS", 5),
            report_max_hours=_env_int("REPORT_MAX_HOURS", cls.report_max_hours),
        )


@lru_cache(maxsize=1)
def get_settings() -> DefenseSettings:
    return DefenseSettings.from_env()
