from fastapi import Depends
from sqlalchemy.orm import Session

from inventory.core.clock import Clock, utc_now
from inventory.core.config import DefenseSettings, get_settings
from inventory.db.session import get_db
from inventory.defense.guard import LoginDefense
from inventory.defense.reporting import SecurityReporter


def get_clock() -> Clock:
    return utc_now


def get_login_defense(
    db: Session = Depends(get_db),
    settings: DefenseSettings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> LoginDefense:
    return LoginDefense(db, settings, clock)


def get_security_reporter(
    db: Session = Depends(get_db),
    settings: DefenseSettings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> SecurityReporter:
    return SecurityReporter(db, settings, clock)
