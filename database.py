# database.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy.orm import Session, sessionmaker


def get_session_factory() -> sessionmaker:
    """The session factory injected into the running app by create_app()."""
    return current_app.extensions["session_factory"]


@contextmanager
def db_session(factory: sessionmaker = None) -> Iterator[Session]:
    """
    Yield a session that commits on success and rolls back on error.
    Falls back to the current app's factory when none is passed.
    """
    db = (factory or get_session_factory())()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
