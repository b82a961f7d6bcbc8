# control-plane/core/store.py
"""
Record store helpers - insert/overwrite records and translate failures
"""

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)


def save(db: Session, *records, action: str = "save record") -> None:
    """
    Add records to the session and commit

    On failure the session is rolled back so no partial write survives.

    Raises:
        PersistenceError: If the commit fails
    """
    try:
        for record in records:
            db.add(record)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise PersistenceError(f"Failed to {action}", details={"reason": str(e)}) from e


def remove(db: Session, record, action: str = "delete record") -> None:
    """Delete a record and commit, rolling back on failure"""
    try:
        db.delete(record)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise PersistenceError(f"Failed to {action}", details={"reason": str(e)}) from e
