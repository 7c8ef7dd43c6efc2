# schemas.py

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_validator, model_validator

from scheduler.recurrence import parse_datetime, parse_pattern

UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


# -----------------------------
# Contacts
# -----------------------------
class ContactFields(BaseModel):
    """Every optional contact attribute; shared by create, update and intents."""

    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile_phone: Optional[str] = None
    work_phone: Optional[str] = None
    website: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    street_address: Optional[str] = None
    street_address_2: Optional[str] = None
    city: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    formatted_address: Optional[str] = None
    social_linkedin: Optional[str] = None
    social_twitter: Optional[str] = None
    tags: Optional[List[str]] = None
    preferred_contact_method: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    birthday: Optional[str] = None
    notes: Optional[str] = None
    import_source: Optional[str] = None
    google_contact_id: Optional[str] = None

    model_config = {"from_attributes": True, "extra": "ignore"}

    @field_validator("birthday")
    @classmethod
    def _birthday_is_date(cls, v):
        if v is None:
            return v
        try:
            return datetime.strptime(v.strip(), "%Y-%m-%d").date().isoformat()
        except ValueError:
            raise ValueError("birthday must be YYYY-MM-DD") from None

    def non_empty(self) -> Dict[str, Any]:
        """Only the fields carrying a value (None, '' and [] dropped)."""
        return {k: v for k, v in self.model_dump().items() if v not in (None, "", [])}


class ContactCreate(ContactFields):
    """Payload for creating a contact; first_name is mandatory."""

    first_name: str

    @field_validator("first_name")
    @classmethod
    def _first_name_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("first_name is required")
        return v.strip()


class ContactUpdate(ContactFields):
    """Typed partial update: only keys present in the payload are applied."""

    @field_validator("first_name")
    @classmethod
    def _first_name_not_blank(cls, v):
        if v is not None and not v.strip():
            raise ValueError("first_name cannot be empty")
        return v.strip() if v else v

    @model_validator(mode="after")
    def _first_name_not_null(self):
        if "first_name" in self.model_fields_set and self.first_name is None:
            raise ValueError("first_name cannot be empty")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# -----------------------------
# Calendar events
# -----------------------------
_EVENT_REQUIRED = ("start_time", "end_time", "is_all_day", "is_recurring", "is_exception")


class _EventFields(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: Optional[bool] = None
    google_event_id: Optional[str] = None
    zoom_meeting_id: Optional[str] = None

    is_recurring: Optional[bool] = None
    recurrence_pattern: Optional[str] = None
    recurrence_interval: Optional[int] = None
    recurrence_day_of_week: Optional[List[int]] = None
    recurrence_day_of_month: Optional[int] = None
    recurrence_month: Optional[int] = None
    recurrence_end_date: Optional[datetime] = None
    recurrence_count: Optional[int] = None
    recurrence_rule: Optional[str] = None
    recurrence_timezone: Optional[str] = None

    parent_event_id: Optional[str] = None
    series_id: Optional[str] = None
    is_exception: Optional[bool] = None
    exception_date: Optional[datetime] = None

    model_config = {"from_attributes": True, "extra": "ignore"}

    @field_validator("start_time", "end_time", "recurrence_end_date", "exception_date", mode="before")
    @classmethod
    def _iso_datetime(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        try:
            return parse_datetime(v)
        except (ValueError, OverflowError, TypeError):
            raise ValueError("must be a valid ISO 8601 date/time") from None

    @field_validator("recurrence_pattern", mode="before")
    @classmethod
    def _known_pattern(cls, v):
        v = _blank_to_none(v)
        if v is None:
            return None
        return parse_pattern(v).value

    @field_validator("recurrence_day_of_week")
    @classmethod
    def _iso_weekdays(cls, v):
        if v is not None and any(d < 1 or d > 7 for d in v):
            raise ValueError("recurrence_day_of_week values must be 1 (Mon) .. 7 (Sun)")
        return v

    @field_validator("parent_event_id", "series_id", mode="before")
    @classmethod
    def _uuid_refs(cls, v):
        v = _blank_to_none(v)
        if v is not None and not is_valid_uuid(v):
            raise ValueError("must be a valid UUID")
        return v


class EventCreate(_EventFields):
    """Payload for creating an event."""

    title: str
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _validate_event(self):
        if not self.title.strip():
            raise ValueError("title is required")
        if not (self.end_time > self.start_time):
            raise ValueError("end_time must be after start_time")

        # Recurrence fields only travel with a recurring event
        if self.is_recurring:
            if not self.recurrence_pattern:
                raise ValueError("recurrence_pattern is required for recurring events")
            if not self.recurrence_interval or self.recurrence_interval < 1:
                self.recurrence_interval = 1
        else:
            for name in (
                "recurrence_pattern", "recurrence_interval", "recurrence_day_of_week",
                "recurrence_day_of_month", "recurrence_month", "recurrence_end_date",
                "recurrence_count", "recurrence_rule", "recurrence_timezone",
            ):
                setattr(self, name, None)
        if not self.is_exception:
            self.exception_date = None
        return self

    def values(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["is_all_day"] = bool(self.is_all_day)
        data["is_recurring"] = bool(self.is_recurring)
        data["is_exception"] = bool(self.is_exception)
        return data


class EventUpdate(_EventFields):
    """Typed partial update for an event."""

    @model_validator(mode="after")
    def _validate_window(self):
        if self.start_time and self.end_time and not (self.end_time > self.start_time):
            raise ValueError("end_time must be after start_time")
        if "title" in self.model_fields_set and not (self.title or "").strip():
            raise ValueError("title cannot be empty")
        return self

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        # Required columns cannot be nulled by a partial update
        return {k: v for k, v in data.items() if v is not None or k not in _EVENT_REQUIRED}


# -----------------------------
# LLM tool-call arguments
# -----------------------------
class ContactIntentArgs(BaseModel):
    user_request: str = ""
    intended_action: str
    search_term: Optional[str] = None
    contact_updates: Optional[ContactFields] = None
    confirmation_provided: bool = False
    confirmation_id: Optional[str] = None

    @field_validator("intended_action", mode="before")
    @classmethod
    def _lower_action(cls, v):
        return str(v or "").strip().lower()


class DateRange(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _iso(cls, v):
        v = _blank_to_none(v)
        return parse_datetime(v) if v is not None else None


class SearchCriteria(BaseModel):
    search_term: Optional[str] = None
    date_range: Optional[DateRange] = None
    event_id: Optional[str] = None
    location: Optional[str] = None


class IntentEventData(BaseModel):
    """Event fields as the assistant supplies them (all optional)."""

    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    is_all_day: Optional[bool] = None
    is_recurring: Optional[bool] = None
    recurrence_pattern: Optional[str] = None
    recurrence_interval: Optional[int] = None
    recurrence_days_of_week: Optional[List[int]] = None
    recurrence_day_of_month: Optional[int] = None
    recurrence_end_date: Optional[str] = None
    recurrence_count: Optional[int] = None

    def as_event_payload(self) -> Dict[str, Any]:
        """Set fields renamed to the stored column names."""
        data = self.model_dump(exclude_unset=True)
        if "recurrence_days_of_week" in data:
            data["recurrence_day_of_week"] = data.pop("recurrence_days_of_week")
        return data


class CalendarIntentArgs(BaseModel):
    user_request: str = ""
    intended_action: str
    search_criteria: SearchCriteria = SearchCriteria()
    event_data: Optional[IntentEventData] = None
    operation_scope: Optional[str] = None
    confirmation_provided: bool = False
    confirmation_id: Optional[str] = None

    @field_validator("intended_action", mode="before")
    @classmethod
    def _lower_action(cls, v):
        return str(v or "").strip().lower()

    @field_validator("search_criteria", mode="before")
    @classmethod
    def _none_criteria(cls, v):
        return v or {}


def first_error(exc) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
    msg = err.get("msg", "Invalid input")
    msg = msg.replace("Value error, ", "")
    return f"{loc}: {msg}" if loc else msg
