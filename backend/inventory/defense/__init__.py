"""Login-attempt defense: attempt ledger, origin rate limiting, account lockout,
security reporting and background maintenance."""
