# handlers/assistant.py
import logging

from flask import Blueprint, current_app, g, jsonify, request

from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body, search_cache
from intents.calendar_intents import CalendarIntentHandler
from intents.contact_intents import ContactIntentHandler
from llm_handler import LLMUnavailable, run_assistant_turn
from models import PendingConfirmation

logger = logging.getLogger(__name__)

bp = Blueprint("assistant", __name__)


@bp.route("/api/assistant", methods=["POST", "OPTIONS"])
@require_user
def assistant():
    if request.method == "OPTIONS":
        return ("", 204)

    body = json_body()
    message = str(body.get("message") or "").strip()
    if not message:
        raise BadRequest("Missing 'message'")

    llm = current_app.extensions["llm_client"]
    if not llm.configured:
        return jsonify({"error": "Assistant is not configured (LLM_API_KEY missing)."}), 503

    with db_session() as db:
        try:
            out = run_assistant_turn(db, g.user_id, message, llm,
                                     history=body.get("history"), cache=search_cache())
        except LLMUnavailable:
            return jsonify({"error": "The assistant service is unavailable. Please try again."}), 502
    return jsonify(out)


@bp.route("/api/assistant/confirm", methods=["POST", "OPTIONS"])
@require_user
def confirm():
    """Execute a destructive action the assistant proposed earlier."""
    if request.method == "OPTIONS":
        return ("", 204)

    confirmation_id = str(json_body().get("confirmation_id") or "").strip()
    if not confirmation_id:
        raise BadRequest("Missing 'confirmation_id'")

    user_id = g.user_id
    with db_session() as db:
        pending = db.get(PendingConfirmation, confirmation_id)
        resource = pending.resource if pending is not None and pending.user_id == user_id else None
        if resource == "event":
            result = CalendarIntentHandler(db, user_id).execute_delete(confirmation_id)
            data = result.to_dict(id_key="event_id")
        else:
            # Unknown ids fall through here and are rejected by the state machine
            result = ContactIntentHandler(db, user_id, search_cache()).execute_delete(confirmation_id)
            data = result.to_dict(id_key="contact_id")

    status = 200 if result.success else (404 if result.error and result.error.value == "NotFound" else 409)
    return jsonify(data), status
