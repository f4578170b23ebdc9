def normalize_account_identifier(value: str | None) -> str:
    """Canonical account key used for ledger rows, lockouts and user lookup."""
    return (value or "").strip().casefold()
