from datetime import datetime

import pytest
from pydantic import ValidationError

from schemas import (
    CalendarIntentArgs,
    ContactCreate,
    ContactIntentArgs,
    ContactUpdate,
    EventCreate,
    EventUpdate,
    IntentEventData,
    first_error,
    is_valid_uuid,
)


class TestContactSchemas:
    def test_create_requires_first_name(self):
        with pytest.raises(ValidationError):
            ContactCreate(last_name="Doe")
        with pytest.raises(ValidationError) as exc:
            ContactCreate(first_name="   ")
        assert "first_name" in first_error(exc.value)

    def test_create_strips_name_and_ignores_unknown_keys(self):
        payload = ContactCreate(first_name=" Jane ", user_id="someone-else", contact_id="x")
        assert payload.first_name == "Jane"
        assert "user_id" not in payload.model_dump()

    def test_birthday_format(self):
        assert ContactCreate(first_name="A", birthday="1990-02-03").birthday == "1990-02-03"
        with pytest.raises(ValidationError):
            ContactCreate(first_name="A", birthday="03/02/1990")

    def test_update_changes_only_sent_fields(self):
        update = ContactUpdate(email="j@example.com", notes=None)
        assert update.changes() == {"email": "j@example.com", "notes": None}

    def test_update_rejects_blank_first_name(self):
        with pytest.raises(ValidationError):
            ContactUpdate(first_name="")

    def test_update_rejects_null_first_name(self):
        with pytest.raises(ValidationError):
            ContactUpdate(first_name=None)

    def test_non_empty_drops_blank_values(self):
        fields = ContactCreate(first_name="A", email="", tags=[], company="Acme")
        assert fields.non_empty() == {"first_name": "A", "company": "Acme"}


class TestEventSchemas:
    def test_create_parses_iso_and_defaults(self):
        ev = EventCreate(title="Standup", start_time="2025-01-06T10:00:00Z", end_time="2025-01-06T10:30:00Z")
        values = ev.values()
        assert values["start_time"] == datetime(2025, 1, 6, 10, 0)
        assert values["is_all_day"] is False
        assert values["is_recurring"] is False
        assert values["is_exception"] is False

    def test_create_rejects_inverted_window(self):
        with pytest.raises(ValidationError) as exc:
            EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T10:00:00")
        assert "end_time must be after start_time" in first_error(exc.value)

    def test_create_rejects_bad_datetime(self):
        with pytest.raises(ValidationError):
            EventCreate(title="x", start_time="tomorrow", end_time="2025-01-06T10:00:00")

    def test_recurring_requires_pattern_and_defaults_interval(self):
        with pytest.raises(ValidationError):
            EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                        is_recurring=True)
        ev = EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                         is_recurring=True, recurrence_pattern="WEEKLY", recurrence_interval=0)
        assert ev.recurrence_pattern == "weekly"
        assert ev.recurrence_interval == 1

    def test_unknown_pattern_rejected(self):
        with pytest.raises(ValidationError) as exc:
            EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                        is_recurring=True, recurrence_pattern="custom")
        assert "Unknown recurrence pattern" in first_error(exc.value)

    def test_non_recurring_clears_recurrence_fields(self):
        ev = EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                         recurrence_pattern="daily", recurrence_count=3)
        assert ev.recurrence_pattern is None
        assert ev.recurrence_count is None

    def test_weekday_range(self):
        with pytest.raises(ValidationError):
            EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                        is_recurring=True, recurrence_pattern="weekly", recurrence_day_of_week=[0])

    def test_series_id_must_be_uuid(self):
        with pytest.raises(ValidationError):
            EventCreate(title="x", start_time="2025-01-06T10:00:00", end_time="2025-01-06T11:00:00",
                        series_id="not-a-uuid")

    def test_update_drops_null_required_columns(self):
        update = EventUpdate(start_time=None, location=None, title="New")
        assert update.changes() == {"location": None, "title": "New"}

    def test_update_rejects_empty_title(self):
        with pytest.raises(ValidationError):
            EventUpdate(title="  ")


class TestIntentArgs:
    def test_action_lowercased(self):
        assert ContactIntentArgs(intended_action=" Search ").intended_action == "search"

    def test_calendar_criteria_defaults(self):
        args = CalendarIntentArgs(intended_action="search", search_criteria=None)
        assert args.search_criteria.search_term is None

    def test_event_data_renames_weekdays(self):
        data = IntentEventData(title="Gym", recurrence_days_of_week=[1, 3])
        assert data.as_event_payload() == {"title": "Gym", "recurrence_day_of_week": [1, 3]}


def test_is_valid_uuid():
    assert is_valid_uuid("123e4567-e89b-12d3-a456-426614174000")
    assert not is_valid_uuid("123e4567")
    assert not is_valid_uuid(None)
