from inventory.core.metrics import counter_value
from inventory.defense.guard import BLOCKED_ACCOUNT_LOCKED, BLOCKED_ORIGIN_LIMITED, LoginDefense


def test_precheck_reports_lock_before_origin(db_session, settings, clock):
    defense = LoginDefense(db_session, settings, clock)
    for i in range(10):
        defense.record_attempt("alice" if i < 5 else f"user{i}", "203.0.113.7", None, succeeded=False)

    locked = defense.precheck("alice", "203.0.113.7")
    assert locked.blocked_reason == BLOCKED_ACCOUNT_LOCKED
    assert locked.origin is None

    limited = defense.precheck("bob", "203.0.113.7")
    assert limited.blocked_reason == BLOCKED_ORIGIN_LIMITED
    assert limited.origin.attempts == 10


def test_record_attempt_returns_lock_state_after_recording(db_session, settings, clock):
    defense = LoginDefense(db_session, settings, clock)

    states = [defense.record_attempt("alice", "198.51.100.4", None, succeeded=False) for _ in range(5)]

    assert [state.locked for state in states] == [False, False, False, False, True]
    assert defense.record_attempt("alice", "198.51.100.4", None, succeeded=True).locked is False


def test_precheck_passes_when_limits_are_not_reached(db_session, settings, clock):
    defense = LoginDefense(db_session, settings, clock)
    defense.record_attempt("alice", "198.51.100.4", None, succeeded=False)

    check = defense.precheck("alice", "198.51.100.4")

    assert check.blocked_reason is None
    assert check.origin.remaining == 9


def test_login_defense_fails_open_when_storage_is_down(broken_session, settings, clock):
    defense = LoginDefense(broken_session, settings, clock)

    check = defense.precheck("alice", "203.0.113.7")
    state = defense.record_attempt("alice", "203.0.113.7", "pytest", succeeded=False)

    assert check.blocked_reason is None
    assert state.locked is False
    assert counter_value("defense_fail_open_total", operation="lockout.is_locked") == 2
    assert counter_value("defense_fail_open_total", operation="rate_limiter.check_origin") == 1
    assert counter_value("defense_fail_open_total", operation="ledger.append") == 1
