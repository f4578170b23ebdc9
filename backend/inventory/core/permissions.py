from typing import Literal

Permission = Literal[
    "security.view",
    "security.manage",
    "metrics.view",
]

ROLE_ORDER = ["viewer", "manager", "admin"]

PERMISSIONS_BY_ROLE: dict[str, set[Permission]] = {
    "viewer": set(),
    "manager": {"security.view", "metrics.view"},
    "admin": {"security.view", "security.manage", "metrics.view"},
}

PERMISSION_LABELS: dict[Permission, str] = {
    "security.view": "View login security statistics and reports",
    "security.manage": "Lock and unlock accounts",
    "metrics.view": "View service metrics",
}


def normalize_role(role: str | None) -> str:
    value = (role or "").strip().lower()
    if value in PERMISSIONS_BY_ROLE:
        return value
    return "viewer"


def has_permission(role: str | None, permission: Permission) -> bool:
    return permission in PERMISSIONS_BY_ROLE[normalize_role(role)]


def permissions_matrix_payload() -> dict:
    return {
        "roles": [
            {"role": role, "permissions": sorted(PERMISSIONS_BY_ROLE[role])}
            for role in ROLE_ORDER
        ],
        "permission_labels": PERMISSION_LABELS,
    }
