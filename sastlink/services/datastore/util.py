"""Helpers and Flask application integration."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Generator

from flask import Flask
from pytz import UTC
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.session import Session

from .models import db

logger = logging.getLogger(__name__)


def now() -> datetime:
    """Get the current time in UTC, as stored in the database."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


@contextmanager
def transaction() -> Generator[Session, None, None]:
    """Context manager for database transaction."""
    try:
        yield db.session
        # Callers may have committed already.
        if db.session.new or db.session.dirty or db.session.deleted:
            db.session.commit()
    except SQLAlchemyError as e:
        logger.error('Commit failed, rolling back: %s', str(e))
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        raise


def init_app(app: Flask) -> None:
    """Attach the database session to the application."""
    db.init_app(app)


def create_all() -> None:
    """Create all tables in the database."""
    db.create_all()


def drop_all() -> None:
    """Drop all tables in the database."""
    db.drop_all()
