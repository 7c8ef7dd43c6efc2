"""Shared test fixtures and configuration.

Sets a signing secret before any project import, and builds the Flask app
against a throwaway SQLite file with mocked LLM and Google clients.
"""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

os.environ.setdefault("JWT_SECRET", "test-secret-key-for-tests-only-0123456789")
os.environ.setdefault("LLM_API_KEY", "")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import uuid
from datetime import datetime

import pytest


@pytest.fixture
def settings(tmp_path):
    from config import load_settings
    return load_settings(
        DATABASE_URL=f"sqlite:///{(tmp_path / 'test.db').as_posix()}",
        JWT_SECRET="test-secret-key-for-tests-only-0123456789",
        LLM_API_KEY="",
        GOOGLE_CLIENT_ID="client-id",
        GOOGLE_CLIENT_SECRET="client-secret",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def session_factory(settings):
    from models import init_db, make_engine, make_session_factory
    engine = make_engine(settings.DATABASE_URL)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    """A session for arranging and inspecting data directly."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def llm_client():
    client = MagicMock()
    client.configured = True
    return client


@pytest.fixture
def google_client():
    return MagicMock()


@pytest.fixture
def app(settings, session_factory, llm_client, google_client):
    from app import create_app
    app = create_app(settings, session_factory, llm_client=llm_client, google_client=google_client)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_id():
    return str(uuid.uuid4())


@pytest.fixture
def make_token(settings):
    from auth import issue_token

    def _make(subject, ttl=3600, **claims):
        return issue_token(settings, subject, ttl, **claims)
    return _make


@pytest.fixture
def auth_headers(make_token, user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def add_contact(db, user_id):
    """Insert a contact for the test user and return it."""
    from models import Contact

    def _add(first_name, last_name=None, owner=None, **fields):
        contact = Contact(user_id=owner or user_id, first_name=first_name, last_name=last_name, **fields)
        db.add(contact)
        db.commit()
        return contact
    return _add


@pytest.fixture
def add_event(db, user_id):
    """Insert a calendar event for the test user and return it."""
    from models import CalendarEvent

    def _add(title, start, end, owner=None, **fields):
        event = CalendarEvent(
            user_id=owner or user_id,
            title=title,
            start_time=start if isinstance(start, datetime) else datetime.fromisoformat(start),
            end_time=end if isinstance(end, datetime) else datetime.fromisoformat(end),
            **fields,
        )
        db.add(event)
        db.commit()
        return event
    return _add
