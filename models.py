# models.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    JSON,
    ForeignKey,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class UserAccount(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=True, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    # Free-form settings document (profile, notifications, privacy, ...)
    user_metadata = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserAccount(id={self.id!r}, email={self.email!r})>"


class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    event_id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)

    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False, index=True)
    is_all_day = Column(Boolean, nullable=False, default=False)

    google_event_id = Column(String(255), nullable=True)
    zoom_meeting_id = Column(String(255), nullable=True)

    # --- Recurrence descriptor (only meaningful when is_recurring) ---
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(String(20), nullable=True)    # daily|weekly|monthly|yearly
    recurrence_interval = Column(Integer, nullable=True)
    recurrence_day_of_week = Column(JSON, nullable=True)      # ISO weekdays, 1=Mon .. 7=Sun
    recurrence_day_of_month = Column(Integer, nullable=True)
    recurrence_month = Column(Integer, nullable=True)
    recurrence_end_date = Column(DateTime, nullable=True)
    recurrence_count = Column(Integer, nullable=True)
    recurrence_rule = Column(String(255), nullable=True)      # iCal RRULE, informational
    recurrence_timezone = Column(String(64), nullable=True)

    # --- Exceptions to a series ---
    parent_event_id = Column(String(36), nullable=True, index=True)
    series_id = Column(String(36), nullable=True, index=True)
    is_exception = Column(Boolean, nullable=False, default=False)
    exception_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<CalendarEvent(event_id={self.event_id!r}, title={self.title!r}, "
            f"start={self.start_time!r}, end={self.end_time!r})>"
        )

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "is_all_day": bool(self.is_all_day),
            "google_event_id": self.google_event_id,
            "zoom_meeting_id": self.zoom_meeting_id,
            "is_recurring": bool(self.is_recurring),
            "recurrence_pattern": self.recurrence_pattern,
            "recurrence_interval": self.recurrence_interval,
            "recurrence_day_of_week": self.recurrence_day_of_week,
            "recurrence_day_of_month": self.recurrence_day_of_month,
            "recurrence_month": self.recurrence_month,
            "recurrence_end_date": _iso(self.recurrence_end_date),
            "recurrence_count": self.recurrence_count,
            "recurrence_rule": self.recurrence_rule,
            "recurrence_timezone": self.recurrence_timezone,
            "parent_event_id": self.parent_event_id,
            "series_id": self.series_id,
            "is_exception": bool(self.is_exception),
            "exception_date": _iso(self.exception_date),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


CONTACT_FIELDS = (
    "first_name", "middle_name", "last_name", "nickname",
    "email", "phone", "mobile_phone", "work_phone", "website",
    "company", "job_title", "department",
    "street_address", "street_address_2", "city", "state_province",
    "postal_code", "country", "formatted_address",
    "social_linkedin", "social_twitter", "tags",
    "preferred_contact_method", "timezone", "language",
    "birthday", "notes",
    "import_source", "import_batch_id", "google_contact_id",
)


class Contact(Base):
    __tablename__ = "contacts"

    contact_id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)

    # --- Personal ---
    first_name = Column(String(100), nullable=False, index=True)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True, index=True)
    nickname = Column(String(100), nullable=True)
    birthday = Column(String(10), nullable=True)              # YYYY-MM-DD

    # --- Reachability ---
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    mobile_phone = Column(String(50), nullable=True)
    work_phone = Column(String(50), nullable=True)
    website = Column(String(255), nullable=True)
    preferred_contact_method = Column(String(50), nullable=True)
    timezone = Column(String(64), nullable=True)
    language = Column(String(50), nullable=True)

    # --- Professional ---
    company = Column(String(255), nullable=True, index=True)
    job_title = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)

    # --- Address ---
    street_address = Column(String(255), nullable=True)
    street_address_2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state_province = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    formatted_address = Column(Text, nullable=True)

    # --- Social / misc ---
    social_linkedin = Column(String(255), nullable=True)
    social_twitter = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    # --- Provenance ---
    import_source = Column(String(50), nullable=True)
    import_batch_id = Column(String(36), nullable=True, index=True)
    google_contact_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Contact(contact_id={self.contact_id!r}, name={self.display_name!r})>"

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p).strip()

    def to_dict(self) -> dict:
        out = {"contact_id": self.contact_id, "user_id": self.user_id}
        for name in CONTACT_FIELDS:
            out[name] = getattr(self, name)
        out["created_at"] = _iso(self.created_at)
        out["updated_at"] = _iso(self.updated_at)
        return out


class OAuthConnection(Base):
    __tablename__ = "oauth_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default="google")
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    scopes = Column(Text, nullable=True)
    provider_user_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class ImportHistory(Base):
    __tablename__ = "import_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    import_batch_id = Column(String(36), nullable=False, unique=True)
    source = Column(String(50), nullable=False, default="google")
    total_requested = Column(Integer, nullable=False, default=0)
    total_processed = Column(Integer, nullable=False, default=0)
    successful_imports = Column(Integer, nullable=False, default=0)
    failed_imports = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="in_progress")  # in_progress|completed

    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)


class ImportQueueItem(Base):
    __tablename__ = "import_processing_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    import_batch_id = Column(String(36), ForeignKey("import_history.import_batch_id"), nullable=False)
    resource_names = Column(JSON, nullable=False)
    batch_size = Column(Integer, nullable=False, default=10)
    status = Column(String(20), nullable=False, default="pending")  # pending|processing|completed|failed
    processed_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)


class PendingConfirmation(Base):
    """A destructive intent awaiting explicit confirmation."""

    __tablename__ = "pending_confirmations"

    confirmation_id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    resource = Column(String(20), nullable=False)       # contact|event
    action = Column(String(20), nullable=False)         # delete
    target_id = Column(String(36), nullable=False)
    state = Column(String(30), nullable=False, default="proposed")  # proposed|executed

    created_at = Column(DateTime, nullable=False, default=utcnow)
    executed_at = Column(DateTime, nullable=True)


# ----------------------------
# Utilities
# ----------------------------
def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Creates tables if they don't exist."""
    Base.metadata.create_all(bind=engine)
