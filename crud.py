# crud.py
"""
Store access for contacts and calendar events.

Every function takes the session and the owning user_id explicitly; rows
belonging to other users are never returned or touched. Updates go through
typed change dicts applied attribute-by-attribute (bound parameters only).
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, or_
from sqlalchemy.orm import Session

from models import CalendarEvent, Contact, utcnow

CONTACT_SEARCH_COLUMNS = (
    Contact.first_name,
    Contact.last_name,
    Contact.email,
    Contact.company,
    Contact.phone,
    Contact.mobile_phone,
    Contact.work_phone,
)

# Escape character for LIKE patterns built by _like/_prefix
_LIKE_ESCAPE = "\\"


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _prefix(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"{escaped}%"


# ------------------------
# Contacts
# ------------------------

def get_contact(db: Session, user_id: str, contact_id: str) -> Optional[Contact]:
    """Fetch a single contact owned by user_id."""
    return (
        db.query(Contact)
        .filter(Contact.user_id == user_id, Contact.contact_id == contact_id)
        .one_or_none()
    )


def get_contacts(db: Session, user_id: str, contact_ids: Iterable[str]) -> List[Contact]:
    return (
        db.query(Contact)
        .filter(Contact.user_id == user_id, Contact.contact_id.in_(list(contact_ids)))
        .all()
    )


def list_contacts(db: Session, user_id: str, limit: int = 500) -> List[Contact]:
    return (
        db.query(Contact)
        .filter(Contact.user_id == user_id)
        .order_by(Contact.first_name, Contact.last_name)
        .limit(limit)
        .all()
    )


def search_contacts(
    db: Session, user_id: str, term: str, limit: int = 100, offset: int = 0
) -> List[Contact]:
    """
    Case-insensitive search across name, email, company and phone columns.

    Each whitespace-separated word must match at least one column, so
    "jane doe" finds first_name=Jane, last_name=Doe. Contacts whose first
    or last name starts with the first word sort ahead of the rest.
    """
    words = [w for w in (term or "").split() if w]
    if not words:
        return []

    clauses = [
        or_(*[col.ilike(_like(w), escape=_LIKE_ESCAPE) for col in CONTACT_SEARCH_COLUMNS])
        for w in words
    ]
    prefix = _prefix(words[0])
    rank = case(
        (or_(Contact.first_name.ilike(prefix, escape=_LIKE_ESCAPE),
             Contact.last_name.ilike(prefix, escape=_LIKE_ESCAPE)), 0),
        else_=1,
    )
    return (
        db.query(Contact)
        .filter(Contact.user_id == user_id, and_(*clauses))
        .order_by(rank, Contact.first_name, Contact.last_name)
        .offset(offset)
        .limit(limit)
        .all()
    )


def create_contact(db: Session, user_id: str, values: Dict[str, Any]) -> Contact:
    contact = Contact(user_id=user_id, **values)
    db.add(contact)
    db.flush()
    return contact


def create_contacts(db: Session, user_id: str, rows: Iterable[Dict[str, Any]]) -> List[Contact]:
    """Insert many contacts in one flush."""
    contacts = [Contact(user_id=user_id, **row) for row in rows]
    db.add_all(contacts)
    db.flush()
    return contacts


def update_contact(db: Session, contact: Contact, changes: Dict[str, Any]) -> Contact:
    for name, value in changes.items():
        setattr(contact, name, value)
    contact.updated_at = utcnow()
    db.flush()
    return contact


def delete_contact(db: Session, contact: Contact) -> None:
    db.delete(contact)
    db.flush()


# ------------------------
# Calendar events
# ------------------------

def get_event(db: Session, user_id: str, event_id: str) -> Optional[CalendarEvent]:
    """Fetch a single event owned by user_id."""
    return (
        db.query(CalendarEvent)
        .filter(CalendarEvent.user_id == user_id, CalendarEvent.event_id == event_id)
        .one_or_none()
    )


def get_events(db: Session, user_id: str, event_ids: Iterable[str]) -> List[CalendarEvent]:
    return (
        db.query(CalendarEvent)
        .filter(CalendarEvent.user_id == user_id, CalendarEvent.event_id.in_(list(event_ids)))
        .order_by(CalendarEvent.start_time)
        .all()
    )


def split_search_terms(raw: Optional[str]) -> List[str]:
    """'standup, 1:1/review' -> ['standup', '1:1', 'review']"""
    return [t for t in re.split(r"[\s/,]+", raw or "") if t]


def list_events(
    db: Session,
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    terms: Optional[List[str]] = None,
    include_recurring_masters: bool = False,
    limit: Optional[int] = None,
) -> List[CalendarEvent]:
    """
    Events overlapping [start, end), optionally filtered by title words (OR'd).

    With include_recurring_masters, recurring series that began before `end`
    are returned even when the master's own span lies outside the range, so
    the caller can expand them.
    """
    q = db.query(CalendarEvent).filter(CalendarEvent.user_id == user_id)

    window = []
    if end is not None:
        window.append(CalendarEvent.start_time < end)
    if start is not None:
        window.append(CalendarEvent.end_time > start)
    if window:
        overlap = and_(*window)
        if include_recurring_masters:
            series = CalendarEvent.is_recurring.is_(True)
            if end is not None:
                series = and_(series, CalendarEvent.start_time < end)
            overlap = or_(overlap, series)
        q = q.filter(overlap)

    if terms:
        q = q.filter(or_(*[CalendarEvent.title.ilike(_like(t), escape=_LIKE_ESCAPE) for t in terms]))

    q = q.order_by(CalendarEvent.start_time)
    if limit:
        q = q.limit(limit)
    return q.all()


def find_events(
    db: Session,
    user_id: str,
    term: Optional[str] = None,
    event_id: Optional[str] = None,
    location: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> List[CalendarEvent]:
    """Lookup used by assistant operations: by id, or by title/location/date range."""
    if event_id:
        event = get_event(db, user_id, event_id)
        return [event] if event else []

    q = db.query(CalendarEvent).filter(CalendarEvent.user_id == user_id)
    if term:
        q = q.filter(CalendarEvent.title.ilike(_like(term.strip()), escape=_LIKE_ESCAPE))
    if location:
        q = q.filter(CalendarEvent.location.ilike(_like(location.strip()), escape=_LIKE_ESCAPE))
    if start is not None:
        q = q.filter(CalendarEvent.end_time > start)
    if end is not None:
        q = q.filter(CalendarEvent.start_time < end)
    q = q.order_by(CalendarEvent.start_time)
    if limit:
        q = q.limit(limit)
    return q.all()


def create_event(db: Session, user_id: str, values: Dict[str, Any]) -> CalendarEvent:
    event = CalendarEvent(user_id=user_id, **values)
    db.add(event)
    db.flush()
    return event


def update_event(db: Session, event: CalendarEvent, changes: Dict[str, Any]) -> CalendarEvent:
    """
    Apply a partial update. Raises ValueError, before touching the row, when
    the merged event would end before it starts or recur without a pattern.
    """
    start = changes.get("start_time", event.start_time)
    end = changes.get("end_time", event.end_time)
    if start is not None and end is not None and not (end > start):
        raise ValueError("end_time must be after start_time")
    recurring = changes.get("is_recurring", event.is_recurring)
    if recurring and not changes.get("recurrence_pattern", event.recurrence_pattern):
        raise ValueError("recurrence_pattern is required for recurring events")

    for name, value in changes.items():
        setattr(event, name, value)
    if event.is_recurring and event.recurrence_pattern and not event.recurrence_interval:
        event.recurrence_interval = 1
    event.updated_at = utcnow()
    db.flush()
    return event


def delete_event(db: Session, event: CalendarEvent) -> None:
    db.delete(event)
    db.flush()
