# handlers/contacts.py
import logging

from flask import Blueprint, g, jsonify, request

import crud
from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body, not_found, require_uuid, search_cache
from schemas import ContactCreate, ContactUpdate
from search_cache import SearchCache

logger = logging.getLogger(__name__)

bp = Blueprint("contacts", __name__)

SEARCH_LIMIT = 100
LIST_LIMIT = 500


@bp.route("/api/contacts", methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])
@require_user
def contacts():
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


def _get(user_id):
    contact_id = request.args.get("id")
    term = (request.args.get("search") or "").strip()

    with db_session() as db:
        if contact_id:
            require_uuid(contact_id, "contact id")
            contact = crud.get_contact(db, user_id, contact_id)
            if contact is None:
                return not_found("Contact not found")
            return jsonify({"contact": contact.to_dict()})

        if term:
            cache = search_cache()
            key = SearchCache.key(user_id, term, SEARCH_LIMIT)
            found = cache.get(key)
            if found is None:
                found = [c.to_dict() for c in crud.search_contacts(db, user_id, term, limit=SEARCH_LIMIT)]
                cache.set(key, found)
            return jsonify({"contacts": found, "total": len(found)})

        found = [c.to_dict() for c in crud.list_contacts(db, user_id, limit=LIST_LIMIT)]
        return jsonify({"contacts": found, "total": len(found)})


def _create(user_id):
    payload = ContactCreate(**json_body())
    with db_session() as db:
        contact = crud.create_contact(db, user_id, payload.model_dump(exclude_none=True))
        data = contact.to_dict()
    search_cache().clear_user_cache(user_id)
    logger.info("Created contact_id=%s for user_id=%s", data["contact_id"], user_id)
    return jsonify({"contact": data}), 201


def _update(user_id):
    contact_id = require_uuid(request.args.get("id"), "contact id")
    changes = ContactUpdate(**json_body()).changes()
    if not changes:
        raise BadRequest("No updatable fields provided")

    with db_session() as db:
        contact = crud.get_contact(db, user_id, contact_id)
        if contact is None:
            return not_found("Contact not found")
        crud.update_contact(db, contact, changes)
        data = contact.to_dict()
    search_cache().clear_user_cache(user_id)
    return jsonify({"contact": data})


def _delete(user_id):
    contact_id = require_uuid(request.args.get("id"), "contact id")
    with db_session() as db:
        contact = crud.get_contact(db, user_id, contact_id)
        if contact is None:
            return not_found("Contact not found")
        crud.delete_contact(db, contact)
    search_cache().clear_user_cache(user_id)
    return jsonify({"success": True, "message": "Contact deleted successfully", "contact_id": contact_id})
