# handlers/batch.py
"""
Batched contact and calendar writes.

Body: {"operations": [{"type": "create|update|delete|get", "data": {...}}, ...]}.
Operations run in order and each one commits on its own, so one failure
never undoes the others. The response lists a result per operation plus
totals.
"""

import logging

from flask import Blueprint, g, jsonify, request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

import crud
from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body, search_cache
from schemas import ContactCreate, ContactUpdate, EventCreate, EventUpdate, first_error, is_valid_uuid

logger = logging.getLogger(__name__)

bp = Blueprint("batch", __name__)

MAX_OPERATIONS = 100
WRITE_TYPES = ("create", "update", "delete")


class OperationError(Exception):
    """One operation in the batch failed; the rest still run."""


def _uuid(data, *names):
    for name in names:
        value = data.get(name)
        if value:
            if not is_valid_uuid(value):
                raise OperationError(f"Invalid {name} format")
            return value
    raise OperationError(f"Missing {names[0]}")


def _uuid_list(data, *names):
    for name in names:
        values = data.get(name)
        if values is not None:
            if not isinstance(values, list) or not all(isinstance(v, str) and is_valid_uuid(v) for v in values):
                raise OperationError(f"{name} must be an array of UUIDs")
            return values
    raise OperationError(f"Missing {names[0]}")


def _without(data, *names):
    return {k: v for k, v in data.items() if k not in names}


# ------------------------
# Contacts
# ------------------------
def _contact_create(db, user_id, data):
    contact = crud.create_contact(db, user_id, ContactCreate(**data).model_dump(exclude_none=True))
    return contact.to_dict()


def _contact_update(db, user_id, data):
    contact_id = _uuid(data, "contact_id")
    changes = ContactUpdate(**_without(data, "contact_id")).changes()
    if not changes:
        raise OperationError("No updatable fields provided")
    contact = crud.get_contact(db, user_id, contact_id)
    if contact is None:
        raise OperationError("Contact not found")
    return crud.update_contact(db, contact, changes).to_dict()


def _contact_delete(db, user_id, data):
    contact = crud.get_contact(db, user_id, _uuid(data, "contact_id"))
    if contact is None:
        raise OperationError("Contact not found")
    crud.delete_contact(db, contact)
    return None


def _contact_get(db, user_id, data):
    return [c.to_dict() for c in crud.get_contacts(db, user_id, _uuid_list(data, "contact_ids"))]


CONTACT_OPERATIONS = {
    "create": _contact_create,
    "update": _contact_update,
    "delete": _contact_delete,
    "get": _contact_get,
}


# ------------------------
# Calendar events
# ------------------------
def _event_create(db, user_id, data):
    missing = [f for f in ("title", "start_time", "end_time") if not data.get(f)]
    if missing:
        raise OperationError(f"Missing required fields: {', '.join(missing)}")
    return crud.create_event(db, user_id, EventCreate(**data).values()).to_dict()


def _event_update(db, user_id, data):
    event_id = _uuid(data, "event_id", "id")
    changes = EventUpdate(**_without(data, "event_id", "id", "update_scope")).changes()
    if not changes:
        raise OperationError("No updatable fields provided")
    event = crud.get_event(db, user_id, event_id)
    if event is None:
        raise OperationError("Event not found")
    try:
        crud.update_event(db, event, changes)
    except ValueError as e:
        raise OperationError(str(e)) from None
    return event.to_dict()


def _event_delete(db, user_id, data):
    event = crud.get_event(db, user_id, _uuid(data, "event_id", "id"))
    if event is None:
        raise OperationError("Event not found")
    crud.delete_event(db, event)
    return None


def _event_get(db, user_id, data):
    return [e.to_dict() for e in crud.get_events(db, user_id, _uuid_list(data, "event_ids", "ids"))]


EVENT_OPERATIONS = {
    "create": _event_create,
    "update": _event_update,
    "delete": _event_delete,
    "get": _event_get,
}


# ------------------------
# Runner
# ------------------------
def _operations():
    operations = json_body().get("operations")
    if not isinstance(operations, list) or not operations:
        raise BadRequest("Operations array is required")
    if len(operations) > MAX_OPERATIONS:
        raise BadRequest(f"At most {MAX_OPERATIONS} operations per request")
    return operations


def run_operations(db, user_id, operations, handlers):
    results = []
    for index, op in enumerate(operations):
        op_type = op.get("type") if isinstance(op, dict) else None
        if not isinstance(op_type, str):
            op_type = None
        result = {"index": index, "operation": op_type}
        try:
            fn = handlers.get(op_type)
            if fn is None:
                raise OperationError(f"Unknown operation type: {op_type}")
            data = op.get("data")
            if not isinstance(data, dict):
                raise OperationError("Operation data must be an object")
            result["data"] = fn(db, user_id, data)
            db.commit()
            result["success"] = True
        except OperationError as e:
            db.rollback()
            result.update(success=False, error=str(e))
        except ValidationError as e:
            db.rollback()
            result.update(success=False, error=first_error(e))
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Batch %s #%d failed for user_id=%s: %s", op_type, index, user_id, e)
            result.update(success=False, error=f"Database error: {e}")
        results.append(result)

    successful = sum(1 for r in results if r["success"])
    return {
        "results": results,
        "statistics": {"total": len(results), "successful": successful, "failed": len(results) - successful},
    }


@bp.route("/api/contacts-batch", methods=["POST", "OPTIONS"])
@require_user
def contacts_batch():
    if request.method == "OPTIONS":
        return ("", 204)

    operations = _operations()
    with db_session() as db:
        out = run_operations(db, g.user_id, operations, CONTACT_OPERATIONS)
    if any(r["success"] and r["operation"] in WRITE_TYPES for r in out["results"]):
        search_cache().clear_user_cache(g.user_id)
    logger.info("Contacts batch for user_id=%s: %s", g.user_id, out["statistics"])
    return jsonify(out)


@bp.route("/api/calendar-batch", methods=["POST", "OPTIONS"])
@require_user
def calendar_batch():
    if request.method == "OPTIONS":
        return ("", 204)

    operations = _operations()
    with db_session() as db:
        out = run_operations(db, g.user_id, operations, EVENT_OPERATIONS)
    logger.info("Calendar batch for user_id=%s: %s", g.user_id, out["statistics"])
    return jsonify(out)
