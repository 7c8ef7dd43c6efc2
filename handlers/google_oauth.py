# handlers/google_oauth.py
"""
Google account connection.

initiate-auth hands the client a consent URL whose `state` is a short-lived
token signed with our own secret (user id + popup origin). Google redirects
the popup to /callback, where the code is exchanged and the tokens stored in
oauth_connections. The popup reports back to its opener with postMessage.
"""

import logging

import requests
from flask import Blueprint, current_app, g, jsonify, make_response, render_template_string, request
from sqlalchemy.exc import SQLAlchemyError

import google_people
from auth import AuthError, decode_token, issue_token, require_user
from database import db_session
from handlers.common import json_body

logger = logging.getLogger(__name__)

bp = Blueprint("google_oauth", __name__)

STATE_PURPOSE = "google_oauth_state"
DEFAULT_FEATURE = "contacts"

PROVIDER_ERRORS = {
    "access_denied": "The user denied access",
    "invalid_scope": "One or more requested scopes are invalid or not permitted",
    "server_error": "Google encountered an internal error",
    "temporarily_unavailable": "Google sign-in is temporarily unavailable",
}

POPUP_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ title }}</title>
  <script>
    (function () {
      var message = {{ message|tojson }};
      try {
        if (window.opener && window.opener.postMessage) {
          window.opener.postMessage(message, {{ origin|tojson }});
        }
      } finally {
        setTimeout(function () { window.close(); }, 500);
      }
    })();
  </script>
</head>
<body>
  <p>{{ text }}</p>
</body>
</html>
"""


def _settings():
    return current_app.config["SETTINGS"]


def _popup(message, origin, title, text, status):
    resp = make_response(render_template_string(POPUP_PAGE, message=message, origin=origin,
                                                title=title, text=text), status)
    resp.headers["Content-Type"] = "text/html; charset=utf-8"
    resp.headers["Cache-Control"] = "no-store, max-age=0"
    return resp


def _fail(error, message, origin, status=400):
    logger.warning("Google OAuth callback failed: %s (%s)", error, message)
    payload = {"type": "google-oauth-error", "provider": "google", "error": error, "errorMessage": message}
    return _popup(payload, origin, "Authorization Error",
                  f"Authorization failed: {message}. You can close this window.", status)


@bp.route("/api/google-oauth/initiate-auth", methods=["POST", "OPTIONS"])
@require_user
def initiate_auth():
    if request.method == "OPTIONS":
        return ("", 204)

    settings = _settings()
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        return jsonify({"error": "Google sign-in is not configured on this server."}), 503

    body = json_body(required=False)
    origin = body.get("origin") or request.headers.get("Origin") or settings.FRONTEND_URL
    feature = body.get("feature")
    if feature not in google_people.FEATURE_SCOPES:
        feature = DEFAULT_FEATURE

    state = issue_token(settings, g.user_id, settings.GOOGLE_STATE_TTL, purpose=STATE_PURPOSE, origin=origin)
    url = current_app.extensions["google_client"].authorization_url(state, google_people.FEATURE_SCOPES[feature])
    logger.info("Google OAuth started for user_id=%s feature=%s", g.user_id, feature)
    return jsonify({"authUrl": url})


@bp.route("/api/google-oauth/callback", methods=["GET"])
def callback():
    settings = _settings()
    origin = settings.FRONTEND_URL
    state = request.args.get("state")
    if not state:
        return _fail("state_missing", "State parameter missing from callback", origin)
    try:
        claims = decode_token(state, settings, purpose=STATE_PURPOSE)
    except AuthError as e:
        return _fail("invalid_state", f"State is invalid or expired ({e.reason})", origin)
    origin = claims.get("origin") or origin
    user_id = str(claims["sub"])

    google_error = request.args.get("error")
    if google_error:
        message = PROVIDER_ERRORS.get(google_error, "Google authentication failed")
        return _fail("google_error", message, origin)

    code = request.args.get("code")
    if not code:
        return _fail("code_missing", "Authorization code missing from callback", origin)

    try:
        tokens = current_app.extensions["google_client"].exchange_code(code)
    except (google_people.GoogleApiError, requests.RequestException) as e:
        logger.error("Google code exchange failed for user_id=%s: %s", user_id, e)
        return _fail("token_exchange_failed",
                     "Failed to exchange the authorization code; it may have expired or already been used",
                     origin)
    if not tokens.get("access_token"):
        return _fail("token_exchange_failed", "Google returned no access token", origin, 500)

    try:
        with db_session() as db:
            google_people.save_connection(db, user_id, tokens)
    except SQLAlchemyError as e:
        logger.error("Storing Google tokens failed for user_id=%s: %s", user_id, e)
        return _fail("database_error", "Failed to store tokens", origin, 500)

    return _popup({"type": "google-oauth-success", "provider": "google"}, origin,
                  "Authorization Success", "Authorization successful. You can close this window.", 200)


@bp.route("/api/google-oauth", methods=["GET", "DELETE", "OPTIONS"])
@require_user
def connection():
    if request.method == "OPTIONS":
        return ("", 204)

    with db_session() as db:
        if request.method == "DELETE":
            removed = google_people.delete_connection(db, g.user_id)
            logger.info("Disconnected Google for user_id=%s (%d row(s))", g.user_id, removed)
            return jsonify({"success": True, "removed": removed})

        conn = google_people.get_connection(db, g.user_id)
        if conn is None:
            return jsonify({"connected": False})
        return jsonify({
            "connected": True,
            "scopes": (conn.scopes or "").split(),
            "expires_at": conn.expires_at.isoformat() if conn.expires_at else None,
            "has_refresh_token": bool(conn.refresh_token),
        })
