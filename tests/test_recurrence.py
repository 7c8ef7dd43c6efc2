"""Tests for occurrence generation over a view window."""

from datetime import datetime, timedelta

import pytest

from scheduler.recurrence import (
    MAX_OCCURRENCES,
    RecurrencePattern,
    UnknownRecurrencePattern,
    expand_series,
    extract_recurrence_info,
    format_recurrence_summary,
    generate_occurrences,
)

MONDAY = datetime(2025, 1, 6, 10, 0)


def _event(start=MONDAY, duration=timedelta(hours=1), **fields):
    event = {
        "event_id": "11111111-1111-1111-1111-111111111111",
        "user_id": "u1",
        "title": "Standup",
        "description": None,
        "location": "Room 1",
        "start_time": start.isoformat(),
        "end_time": (start + duration).isoformat(),
        "is_all_day": False,
        "created_at": "2025-01-01T00:00:00",
        "updated_at": None,
    }
    event.update(fields)
    return event


class TestNonRecurring:
    def test_overlapping_event_returned_without_identity(self):
        out = generate_occurrences(_event(), MONDAY - timedelta(days=1), MONDAY + timedelta(days=1))
        assert len(out) == 1
        for key in ("event_id", "user_id", "created_at", "updated_at"):
            assert key not in out[0]
        assert out[0]["title"] == "Standup"
        assert out[0]["start_time"] == MONDAY

    def test_outside_window_returns_nothing(self):
        out = generate_occurrences(_event(), MONDAY + timedelta(days=1), MONDAY + timedelta(days=2))
        assert out == []

    def test_window_is_half_open(self):
        # Event ends exactly where the window starts, and a window ending at the event start
        assert generate_occurrences(_event(), MONDAY + timedelta(hours=1), MONDAY + timedelta(days=1)) == []
        assert generate_occurrences(_event(), MONDAY - timedelta(days=1), MONDAY) == []

    def test_partial_overlap_of_multi_day_event(self):
        event = _event(duration=timedelta(days=3))
        out = generate_occurrences(event, MONDAY + timedelta(days=1), MONDAY + timedelta(days=2))
        assert len(out) == 1

    def test_recurring_flag_without_pattern_is_single(self):
        event = _event(is_recurring=True, recurrence_pattern=None)
        out = generate_occurrences(event, MONDAY - timedelta(days=1), MONDAY + timedelta(days=30))
        assert len(out) == 1


class TestRecurring:
    def test_biweekly_over_ten_weeks(self):
        event = _event(is_recurring=True, recurrence_pattern="weekly", recurrence_interval=2)
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(weeks=10))
        assert len(out) == 5
        starts = [o["start_time"] for o in out]
        assert all(b - a == timedelta(days=14) for a, b in zip(starts, starts[1:]))
        assert all(o["end_time"] - o["start_time"] == timedelta(hours=1) for o in out)
        assert all(o["is_recurring"] is True for o in out)

    def test_occurrences_carry_series_id_and_no_event_id(self):
        event = _event(is_recurring=True, recurrence_pattern="daily", recurrence_interval=1)
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=3))
        assert len(out) == 3
        assert all(o["series_id"] == event["event_id"] for o in out)
        assert all("event_id" not in o for o in out)

    def test_explicit_series_id_kept(self):
        event = _event(is_recurring=True, recurrence_pattern="daily", series_id="s-1")
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=2))
        assert {o["series_id"] for o in out} == {"s-1"}

    def test_monthly_count_limits_occurrences(self):
        event = _event(is_recurring=True, recurrence_pattern="monthly", recurrence_interval=1,
                       recurrence_count=3)
        out = generate_occurrences(event, MONDAY - timedelta(days=365), MONDAY + timedelta(days=3650))
        assert len(out) == 3

    def test_count_counts_occurrences_before_window(self):
        event = _event(is_recurring=True, recurrence_pattern="daily", recurrence_count=5)
        out = generate_occurrences(event, MONDAY + timedelta(days=3), MONDAY + timedelta(days=30))
        assert len(out) == 2

    def test_until_date_stops_series(self):
        event = _event(is_recurring=True, recurrence_pattern="daily",
                       recurrence_end_date=(MONDAY + timedelta(days=4)).isoformat())
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=30))
        assert len(out) == 5

    def test_monthly_on_31st_clamps_without_drift(self):
        start = datetime(2025, 1, 31, 9, 0)
        event = _event(start=start, is_recurring=True, recurrence_pattern="monthly")
        out = generate_occurrences(event, start, datetime(2025, 5, 1))
        days = [o["start_time"].date().isoformat() for o in out]
        assert days == ["2025-01-31", "2025-02-28", "2025-03-31", "2025-04-30"]

    def test_yearly_step(self):
        event = _event(is_recurring=True, recurrence_pattern="yearly", recurrence_interval=1)
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=365 * 3 + 1))
        assert [o["start_time"].year for o in out] == [2025, 2026, 2027, 2028]

    def test_non_positive_interval_treated_as_one(self):
        for interval in (0, -3):
            event = _event(is_recurring=True, recurrence_pattern="daily", recurrence_interval=interval)
            out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=4))
            assert len(out) == 4

    @pytest.mark.parametrize("count", [0, -1])
    def test_non_positive_count_defers_to_cap(self, count):
        event = _event(is_recurring=True, recurrence_pattern="daily", recurrence_count=count)
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=10))
        assert len(out) == 10

    def test_safety_cap(self):
        event = _event(is_recurring=True, recurrence_pattern="daily",
                       recurrence_end_date=(MONDAY + timedelta(days=5000)).isoformat())
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=5000))
        assert len(out) == MAX_OCCURRENCES

    def test_open_ended_series_stops_after_five_years(self):
        event = _event(is_recurring=True, recurrence_pattern="monthly")
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(days=365 * 20))
        assert len(out) == 61
        assert out[-1]["start_time"] == datetime(2030, 1, 6, 10, 0)

    def test_duration_preserved(self):
        event = _event(duration=timedelta(minutes=95), is_recurring=True, recurrence_pattern="weekly")
        out = generate_occurrences(event, MONDAY, MONDAY + timedelta(weeks=8))
        assert all(o["end_time"] - o["start_time"] == timedelta(minutes=95) for o in out)

    def test_timezone_aware_input_normalised_to_utc(self):
        event = _event(is_recurring=True, recurrence_pattern="daily")
        event["start_time"] = "2025-01-06T12:00:00+02:00"
        event["end_time"] = "2025-01-06T13:00:00+02:00"
        out = generate_occurrences(event, "2025-01-06T00:00:00Z", "2025-01-07T00:00:00Z")
        assert out[0]["start_time"] == MONDAY


class TestUnknownPattern:
    def test_unknown_pattern_raises(self):
        event = _event(is_recurring=True, recurrence_pattern="fortnightly")
        with pytest.raises(UnknownRecurrencePattern) as exc:
            generate_occurrences(event, MONDAY, MONDAY + timedelta(days=30))
        assert exc.value.pattern == "fortnightly"

    def test_expand_series_passes_bad_master_through(self):
        event = _event(is_recurring=True, recurrence_pattern="custom")
        out = expand_series([event], MONDAY, MONDAY + timedelta(days=30))
        assert len(out) == 1
        assert out[0]["event_id"] == event["event_id"]


class TestExpandSeries:
    def test_synthetic_ids_and_sorting(self):
        master = _event(is_recurring=True, recurrence_pattern="daily")
        single = _event(start=MONDAY + timedelta(hours=3), event_id="22222222-2222-2222-2222-222222222222",
                        title="Lunch")
        out = expand_series([master, single], MONDAY, MONDAY + timedelta(days=2))
        assert [o["title"] for o in out] == ["Standup", "Lunch", "Standup"]
        assert out[0]["event_id"] == f"{master['event_id']}_instance_2025-01-06T10:00:00"
        assert out[0]["master_event_id"] == master["event_id"]
        assert out[1]["event_id"] == single["event_id"]


class TestRecurrenceInfo:
    def test_extract_prefers_count_over_until(self):
        info = extract_recurrence_info(_event(
            is_recurring=True, recurrence_pattern="Weekly", recurrence_count=4,
            recurrence_end_date="2025-06-01T00:00:00", recurrence_day_of_week=[1, 3],
        ))
        assert info.pattern is RecurrencePattern.WEEKLY
        assert info.end.type == "count"
        assert info.end.count == 4
        assert info.days_of_week == [1, 3]

    def test_extract_not_recurring(self):
        assert extract_recurrence_info(_event()) is None

    def test_summary(self):
        info = extract_recurrence_info(_event(
            is_recurring=True, recurrence_pattern="weekly", recurrence_interval=2,
            recurrence_day_of_week=[1, 3], recurrence_count=3,
        ))
        assert format_recurrence_summary(info) == "Repeats every 2 weeks on Mon, Wed, 3 times"

    def test_summary_until(self):
        info = extract_recurrence_info(_event(
            is_recurring=True, recurrence_pattern="monthly", recurrence_day_of_month=15,
            recurrence_end_date="2025-12-31T00:00:00",
        ))
        assert format_recurrence_summary(info) == "Repeats every month on day 15, until 2025-12-31"

    def test_summary_not_recurring(self):
        assert format_recurrence_summary(None) == "Not recurring"
