import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory.core.errors import StorageError
from inventory.core.metrics import increment_counter

T = TypeVar("T")

logger = logging.getLogger(__name__)


@contextmanager
def storage_guard(db: Session, operation: str) -> Iterator[None]:
    """Translate driver failures into ``StorageError`` and leave the session usable."""
    try:
        yield
    except SQLAlchemyError as exc:
        try:
            db.rollback()
        except SQLAlchemyError:
            logger.debug("Rollback after failed %s also failed", operation, exc_info=True)
        raise StorageError(operation, exc) from exc


def tolerant_call(operation: str, func: Callable[[], T], default: T) -> T:
    """Run a storage-backed check, returning ``default`` when storage fails.

    This is the single fail-open policy for the authentication path.
    """
    try:
        return func()
    except StorageError as exc:
        increment_counter("defense_fail_open_total", operation=operation)
        logger.warning("Login defense failing open operation=%s error=%s", operation, exc)
        return default
