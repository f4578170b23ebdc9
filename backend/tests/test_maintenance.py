import asyncio
from dataclasses import replace

from inventory.core.metrics import counter_value
from inventory.db.models.account_lockout import AccountLockout
from inventory.db.models.login_attempt import IdentifierKind, LoginAttempt
from inventory.defense.ledger import AttemptLedger
from inventory.defense.lockout import LockoutStateMachine
from inventory.defense.maintenance import MaintenanceScheduler


def _seed_history(session_factory, settings, clock) -> None:
    db = session_factory()
    try:
        ledger = AttemptLedger(db, clock)
        lockout = LockoutStateMachine(db, ledger, settings, clock)
        ledger.append("old", IdentifierKind.ACCOUNT, "10.0.0.1", None, False)
        lockout.admin_lock("old", actor="root", minutes=30)
        clock.advance(hours=25)
        ledger.append("fresh", IdentifierKind.ACCOUNT, "10.0.0.2", None, False)
        lockout.admin_lock("fresh", actor="root", minutes=30)
    finally:
        db.close()


def test_purge_removes_expired_rows_only(session_factory, settings, clock):
    _seed_history(session_factory, settings, clock)
    scheduler = MaintenanceScheduler(settings, session_factory, clock)

    result = asyncio.run(scheduler.run_once())

    assert result is not None
    assert result.attempts_removed == 1
    assert result.lockouts_removed == 1
    assert counter_value("maintenance_run_total", status="ok") == 1
    db = session_factory()
    try:
        assert [row.identifier for row in db.query(LoginAttempt).all()] == ["fresh"]
        assert [row.account_identifier for row in db.query(AccountLockout).all()] == ["fresh"]
    finally:
        db.close()


def test_failed_run_is_reported_and_not_raised(broken_session_factory, settings, clock):
    scheduler = MaintenanceScheduler(settings, broken_session_factory, clock)

    assert asyncio.run(scheduler.run_once()) is None
    assert counter_value("maintenance_run_total", status="failed") == 1


def test_loop_keeps_running_after_a_failed_tick(broken_session_factory, settings, clock):
    fast = replace(settings, maintenance_initial_delay_seconds=0, maintenance_interval_seconds=1)
    scheduler = MaintenanceScheduler(fast, broken_session_factory, clock)
    calls: list[int] = []

    def crashing_purge():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler.purge = crashing_purge

    async def scenario() -> bool:
        scheduler.start()
        await asyncio.sleep(0.2)
        alive = scheduler.running
        await scheduler.stop(timeout=1.0)
        return alive

    assert asyncio.run(scenario()) is True
    assert calls == [1]
    assert scheduler.running is False


def test_stop_before_first_run_skips_work(session_factory, settings, clock):
    scheduler = MaintenanceScheduler(settings, session_factory, clock)
    calls: list[int] = []
    scheduler.purge = lambda: calls.append(1)

    async def scenario() -> None:
        scheduler.start()
        assert scheduler.running is True
        await scheduler.stop(timeout=1.0)

    asyncio.run(scenario())

    assert calls == []
    assert scheduler.running is False
