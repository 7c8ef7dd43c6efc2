# handlers/calendar.py
import logging

from flask import Blueprint, g, jsonify, request

import crud
from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body, not_found, require_uuid, truthy
from scheduler.recurrence import expand_series, parse_datetime
from schemas import EventCreate, EventUpdate

logger = logging.getLogger(__name__)

bp = Blueprint("calendar", __name__)


@bp.route("/api/calendar", methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
@require_user
def calendar():
    if request.method == "OPTIONS":
        return ("", 204)

    user_id = g.user_id
    if request.method == "GET":
        return _get(user_id)
    if request.method == "POST":
        return _create(user_id)
    if request.method == "PUT":
        return _update(user_id)
    return _delete(user_id)


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_datetime(raw)
    except (ValueError, OverflowError):
        raise BadRequest(f"Invalid {name}; expected an ISO 8601 date") from None


def _get(user_id):
    event_id = request.args.get("id")
    with db_session() as db:
        if event_id:
            require_uuid(event_id, "event id")
            event = crud.get_event(db, user_id, event_id)
            if event is None:
                return not_found("Event not found")
            return jsonify({"event": event.to_dict()})

        start = _date_arg("start_date")
        end = _date_arg("end_date")
        if start and end and not (end > start):
            raise BadRequest("end_date must be after start_date")
        terms = crud.split_search_terms(request.args.get("search_term"))
        expand = truthy(request.args.get("expand_recurring")) and start is not None and end is not None

        events = crud.list_events(db, user_id, start, end, terms=terms, include_recurring_masters=expand)
        rows = [e.to_dict() for e in events]

    if expand:
        rows = expand_series(rows, start, end)
    return jsonify({"events": rows, "total": len(rows)})


def _create(user_id):
    body = json_body()
    missing = [f for f in ("title", "start_time", "end_time") if not body.get(f)]
    if missing:
        raise BadRequest(f"Missing required fields: {', '.join(missing)}")

    payload = EventCreate(**body)
    with db_session() as db:
        event = crud.create_event(db, user_id, payload.values())
        data = event.to_dict()
    logger.info("Created event_id=%s for user_id=%s", data["event_id"], user_id)
    return jsonify({"event": data}), 201


def _update(user_id):
    event_id = require_uuid(request.args.get("id"), "event id")
    body = json_body()
    body.pop("update_scope", None)
    changes = EventUpdate(**body).changes()
    if not changes:
        raise BadRequest("No updatable fields provided")

    with db_session() as db:
        event = crud.get_event(db, user_id, event_id)
        if event is None:
            return not_found("Event not found")
        try:
            crud.update_event(db, event, changes)
        except ValueError as e:
            raise BadRequest(str(e)) from None
        data = event.to_dict()
    return jsonify({"event": data})


def _delete(user_id):
    event_id = require_uuid(request.args.get("id"), "event id")
    with db_session() as db:
        event = crud.get_event(db, user_id, event_id)
        if event is None:
            return not_found("Event not found")
        title = event.title
        crud.delete_event(db, event)
    return jsonify({
        "success": True,
        "message": "Event deleted successfully",
        "event_id": event_id,
        "deleted_event_title": title,
    })
