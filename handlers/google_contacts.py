# handlers/google_contacts.py
import logging
import re

import requests
from flask import Blueprint, current_app, g, jsonify, request

import google_people
from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body, search_cache

logger = logging.getLogger(__name__)

bp = Blueprint("google_contacts", __name__)

NOT_CONNECTED = "Google account not connected or token refresh failed. Please reconnect your account."


def _client() -> google_people.GooglePeopleClient:
    return current_app.extensions["google_client"]


def _api_failure(db, user_id, err: google_people.GoogleApiError, what: str):
    """Map a People API error onto the response the client expects."""
    if google_people.is_api_not_enabled_error(err.message):
        return jsonify({
            "message": "Google People API is not enabled for this project. Please enable it in Google Cloud Console.",
            "setup_required": True,
            "error": err.message,
        }), 503

    if google_people.is_insufficient_scope_error(err.message):
        match = re.search(r'scope="([^"]+)"', err.www_authenticate or "")
        suggested = match.group(1).split(" ") if match else google_people.GOOGLE_REQUIRED_SCOPES
        removed = google_people.delete_connection(db, user_id)
        logger.info("Cleared %d Google connection(s) for user_id=%s after scope error", removed, user_id)
        return jsonify({
            "message": "Insufficient permissions to access Google contacts. Please reconnect your Google account.",
            "reauth_required": True,
            "required_scopes": google_people.GOOGLE_REQUIRED_SCOPES,
            "suggested_scopes": suggested,
            "error": err.message,
        }), 401

    if err.status == 401:
        return jsonify({"message": NOT_CONNECTED, "reauth_required": True}), 401

    logger.error("Google People API error for user_id=%s: %s", user_id, err.message)
    return jsonify({"message": f"Failed to {what} Google contacts", "error": err.message}), 500


@bp.route("/api/google-contacts", methods=["GET", "POST", "OPTIONS"])
@require_user
def google_contacts():
    if request.method == "OPTIONS":
        return ("", 204)

    user_id = g.user_id
    client = _client()

    if request.method == "POST":
        body = json_body()
        names = body.get("contactsToImport")
        if not isinstance(names, list) or not names or not all(isinstance(n, str) and n for n in names):
            raise BadRequest("The 'contactsToImport' field must be a non-empty array of Google contact resource names.")

    with db_session() as db:
        try:
            token = google_people.get_valid_access_token(db, user_id, client)
        except google_people.GoogleAuthRequired:
            return jsonify({"message": NOT_CONNECTED}), 401
        db.commit()

        try:
            if request.method == "GET":
                page = client.list_connections(token, request.args.get("pageToken"))
                return jsonify({
                    "contacts": page.get("connections", []),
                    "nextPageToken": page.get("nextPageToken"),
                    "totalCount": page.get("totalPeople", page.get("totalItems", 0)),
                })

            result = google_people.import_contacts(db, user_id, names, client, token)
        except google_people.GoogleApiError as e:
            return _api_failure(db, user_id, e, "fetch" if request.method == "GET" else "import")
        except requests.RequestException as e:
            logger.error("Google People API unreachable for user_id=%s: %s", user_id, e)
            return jsonify({"message": "Failed to reach Google People API", "error": str(e)}), 502

    if result["successfulImports"]:
        search_cache().clear_user_cache(user_id)
    return jsonify(result)
