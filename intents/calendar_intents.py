# intents/calendar_intents.py
"""Assistant-driven calendar operations: search, create, update, delete."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from intents import confirmations
from intents.results import ErrorKind, IntentResult, ItemResult
from models import CalendarEvent
from scheduler.recurrence import expand_series
from schemas import CalendarIntentArgs, EventCreate, EventUpdate, first_error

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
DELETE_MATCH_LIMIT = 5

EVENT_ID_IN_TEXT = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
QUOTED_DELETE_TITLE = re.compile(r"Delete calendar event [\"']([^\"']+)[\"']", re.IGNORECASE)
BARE_DELETE_TITLE = re.compile(r"Delete calendar event (.+)$", re.IGNORECASE)


def _match(event: CalendarEvent) -> Dict[str, Any]:
    return {
        "event_id": event.event_id,
        "title": event.title,
        "start_time": event.start_time.isoformat(),
        "location": event.location,
    }


def normalize_args(args: CalendarIntentArgs) -> Optional[str]:
    """
    Fill missing lookup criteria from the free-text request where possible.
    Returns a validation message when the intent still cannot run.
    """
    action = args.intended_action
    crit = args.search_criteria
    has_lookup = bool((crit.search_term or "").strip() or crit.event_id)

    if action == "search":
        if not (has_lookup or crit.date_range or crit.location):
            return "Search requires a search term, date range, event id or location."
    elif action == "create":
        data = args.event_data
        if data is None or not data.title or not data.start_time or not data.end_time:
            return "Title, start time and end time are required to create an event."
    elif action == "update":
        if not has_lookup:
            found = EVENT_ID_IN_TEXT.search(args.user_request or "")
            if not found:
                return "Update operations require a search term or event id to identify events."
            crit.event_id = found.group(0)
        if args.event_data is None:
            return "Event data is required for update operations."
    elif action == "delete":
        if not has_lookup and not args.confirmation_id:
            found = QUOTED_DELETE_TITLE.search(args.user_request or "") or \
                BARE_DELETE_TITLE.search(args.user_request or "")
            if not found:
                return "Delete operations require search criteria to identify events."
            crit.search_term = found.group(1).strip()
            crit.event_id = None
            crit.date_range = None
            crit.location = None
    return None


class CalendarIntentHandler:
    """Runs one calendar intent for one user against an open session."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def handle(self, args: CalendarIntentArgs) -> IntentResult:
        action = args.intended_action
        dispatch = {
            "search": self.search,
            "create": self.create,
            "update": self.update,
            "delete": self.delete,
        }
        op = dispatch.get(action)
        if op is None:
            return IntentResult.fail(action or "unknown", ErrorKind.UNKNOWN_ACTION,
                                     f"Unknown action: {action}", args.user_request)

        problem = normalize_args(args)
        if problem:
            return IntentResult.fail(action, ErrorKind.VALIDATION, problem, args.user_request)

        try:
            return op(args)
        except Exception as e:
            logger.exception("Calendar %s failed for user_id=%s", action, self.user_id)
            self.db.rollback()
            return IntentResult.fail(action, ErrorKind.UNEXPECTED, f"Operation failed: {e}", args.user_request)

    def _lookup(self, args: CalendarIntentArgs, limit: Optional[int] = None) -> List[CalendarEvent]:
        crit = args.search_criteria
        rng = crit.date_range
        return crud.find_events(
            self.db, self.user_id,
            term=crit.search_term,
            event_id=crit.event_id,
            location=crit.location,
            start=rng.start_date if rng else None,
            end=rng.end_date if rng else None,
            limit=limit,
        )

    def search(self, args: CalendarIntentArgs) -> IntentResult:
        crit = args.search_criteria
        rng = crit.date_range
        if rng and rng.start_date and rng.end_date and not crit.event_id:
            terms = [crit.search_term.strip()] if (crit.search_term or "").strip() else None
            events = crud.list_events(self.db, self.user_id, rng.start_date, rng.end_date,
                                      terms=terms, include_recurring_masters=True)
            if crit.location:
                loc = crit.location.lower()
                events = [e for e in events if loc in (e.location or "").lower()]
            found = expand_series([e.to_dict() for e in events], rng.start_date, rng.end_date)[:SEARCH_LIMIT]
        else:
            found = [e.to_dict() for e in self._lookup(args, SEARCH_LIMIT)]

        n = len(found)
        message = f'Found {n} event{"s" if n != 1 else ""}' if n else "No events found matching your criteria"
        return IntentResult(True, "search", message, user_request=args.user_request,
                            payload={"events": found, "total_found": n})

    def create(self, args: CalendarIntentArgs) -> IntentResult:
        try:
            payload = EventCreate(**args.event_data.as_event_payload())
        except ValidationError as e:
            return IntentResult.fail("create", ErrorKind.INVALID_DATA, first_error(e), args.user_request)

        try:
            event = crud.create_event(self.db, self.user_id, payload.values())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Create event failed for user_id=%s: %s", self.user_id, e)
            return IntentResult.fail("create", ErrorKind.DATABASE, f"Failed to create event: {e}", args.user_request)

        return IntentResult(True, "create", f"Successfully created event: {event.title}",
                            user_request=args.user_request, trigger_refresh=True,
                            payload={"event": event.to_dict(), "event_id": event.event_id})

    def update(self, args: CalendarIntentArgs) -> IntentResult:
        try:
            changes = EventUpdate(**args.event_data.as_event_payload()).changes()
        except ValidationError as e:
            return IntentResult.fail("update", ErrorKind.INVALID_DATA, first_error(e), args.user_request)
        changes = {k: v for k, v in changes.items() if v is not None}

        events = self._lookup(args)
        if not events:
            return IntentResult.fail("update", ErrorKind.NOT_FOUND,
                                     "No events found matching your criteria to update.", args.user_request)
        if not changes:
            n = len(events)
            return IntentResult(True, "update",
                                f'No changes specified for the {n} matching event{"s" if n > 1 else ""}.',
                                user_request=args.user_request, payload={"events_found": n})

        results: List[ItemResult] = []
        for event in events:
            event_id, title = event.event_id, event.title
            try:
                crud.update_event(self.db, event, changes)
                self.db.commit()
            except (SQLAlchemyError, ValueError) as e:
                self.db.rollback()
                logger.warning("Update of event_id=%s failed: %s", event_id, e)
                results.append(ItemResult(event_id, title, updated=False, message="Update failed", error=str(e)))
                continue
            results.append(ItemResult(event_id, event.title, updated=True, changes=_jsonable(changes),
                                      message=f"Updated: {', '.join(changes)}", data=event.to_dict()))

        updated = sum(1 for r in results if r.updated)
        message = (
            f"Successfully updated {updated} of {len(results)} events."
            if updated else f"Found {len(results)} events but no updates were applied."
        )
        return IntentResult(True, "update", message, user_request=args.user_request, results=results,
                            trigger_refresh=updated > 0,
                            payload={"total_events": len(results), "updated_events": updated})

    def delete(self, args: CalendarIntentArgs) -> IntentResult:
        if args.confirmation_provided:
            if not args.confirmation_id:
                return IntentResult.fail("delete", ErrorKind.VALIDATION,
                                         "confirmation_id is required to confirm a delete.", args.user_request)
            return self.execute_delete(args.confirmation_id, args.user_request)

        events = self._lookup(args, DELETE_MATCH_LIMIT)
        if not events:
            return IntentResult.fail("delete", ErrorKind.NOT_FOUND,
                                     "No events found matching your criteria to delete.", args.user_request)
        if len(events) > 1:
            return IntentResult.fail(
                "delete", ErrorKind.MULTIPLE_MATCHES,
                f"Found {len(events)} events. Please be more specific about which event to delete.",
                args.user_request, matches=[_match(e) for e in events],
            )

        event = events[0]
        pending = confirmations.propose(self.db, self.user_id, "event", "delete", event.event_id)
        self.db.commit()
        when = event.start_time.strftime("%Y-%m-%d %H:%M")
        return IntentResult.fail(
            "delete", ErrorKind.CONFIRMATION_REQUIRED,
            f'Found event "{event.title}" scheduled for {when}. Are you sure you want to delete this event? '
            "Please confirm to proceed.",
            args.user_request, event=_match(event), confirmation_id=pending.confirmation_id,
        )

    def execute_delete(self, confirmation_id: str, user_request: str = "") -> IntentResult:
        """Carry out a previously proposed event delete."""
        try:
            pending = confirmations.get_proposed(self.db, self.user_id, confirmation_id, "event", "delete")
        except confirmations.ConfirmationError as e:
            return IntentResult.fail("delete", ErrorKind.INVALID_CONFIRMATION, str(e), user_request)

        event = crud.get_event(self.db, self.user_id, pending.target_id)
        if event is None:
            confirmations.mark_executed(self.db, pending)
            self.db.commit()
            return IntentResult.fail("delete", ErrorKind.NOT_FOUND, "That event no longer exists.", user_request)

        title, event_id = event.title, event.event_id
        try:
            crud.delete_event(self.db, event)
            confirmations.mark_executed(self.db, pending)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Delete of event_id=%s failed: %s", event_id, e)
            return IntentResult.fail("delete", ErrorKind.DATABASE, f"Failed to delete event: {e}", user_request)

        return IntentResult(True, "delete", f'Event "{title}" has been deleted successfully.',
                            user_request=user_request, trigger_refresh=True,
                            payload={"event_id": event_id, "deleted_event_title": title})


def _jsonable(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in changes.items()}


def handle_calendar_intent(db: Session, user_id: str, args: CalendarIntentArgs) -> Dict[str, Any]:
    """Run one calendar intent and return its JSON-ready result."""
    result = CalendarIntentHandler(db, user_id).handle(args)
    logger.info("Calendar intent %s for user_id=%s -> %s", result.operation, user_id,
                result.error.value if result.error else "ok")
    return result.to_dict(id_key="event_id")
