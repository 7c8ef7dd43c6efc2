# handlers/settings.py
"""
User settings, stored as one JSON document on the user's account row.

Every update re-reads the stored document, overlays only the keys the action
maps, and writes the merged result back.
"""

import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy.orm import Session

from auth import require_user
from database import db_session
from handlers.common import BadRequest, json_body
from models import UserAccount

logger = logging.getLogger(__name__)

bp = Blueprint("settings", __name__)

# action -> (client key -> stored metadata keys)
SETTINGS_MAPPINGS = {
    "update_notification_preferences": {
        "notifications_general": ["notifications_general"],
        "notifications_marketing_emails": ["notifications_marketing_emails"],
        "notifications_in_app": ["notifications_in_app"],
        "notifications_reminders": ["notifications_reminders"],
    },
    "update_privacy_settings": {
        # Written under both the prefixed and the legacy unprefixed name
        "profile_visibility": ["privacy_profile_visibility", "profile_visibility"],
        "share_activity_with_contacts": ["privacy_share_activity", "share_activity_with_contacts"],
        "allow_contact_requests": ["privacy_allow_contact_requests", "allow_contact_requests"],
    },
    "update_security_settings": {
        "activity_log_retention_preference": ["security_activity_log_retention_preference"],
        "share_login_status_preference": ["security_share_login_status_preference"],
    },
    "update_contact_organization_settings": {
        "default_sort_order": ["contacts_default_sort_order"],
        "view_density": ["contacts_view_density"],
    },
    "update_integration_settings": {
        "google_calendar_sync_enabled": ["integrations_google_calendar_sync_enabled"],
        "zoom_default_meeting_type": ["integrations_zoom_default_meeting_type"],
    },
}

ACTION_ALIASES = {"UpdateNotificationPreferences": "update_notification_preferences"}

UPDATE_MESSAGES = {
    "update_notification_preferences": "Notification preferences updated successfully.",
    "update_privacy_settings": "User privacy settings updated successfully.",
    "update_security_settings": "Security settings updated successfully.",
    "update_contact_organization_settings": "Contact organization settings updated successfully.",
    "update_integration_settings": "Integration settings updated successfully.",
}


def map_settings(action: str, client_settings: dict) -> dict:
    """Translate a client settings object into stored metadata keys."""
    mapped = {}
    for client_key, stored_keys in SETTINGS_MAPPINGS[action].items():
        if client_key in client_settings:
            for stored in stored_keys:
                mapped[stored] = client_settings[client_key]
    return mapped


def _account(db: Session, user_id: str, email=None) -> UserAccount:
    account = db.get(UserAccount, user_id)
    if account is None:
        account = UserAccount(id=user_id, email=email, user_metadata={})
        db.add(account)
        db.flush()
    return account


def merge_metadata(db: Session, user_id: str, updates: dict) -> dict:
    """Overlay `updates` on the freshly loaded metadata and persist it."""
    account = _account(db, user_id)
    db.refresh(account)
    merged = {**(account.user_metadata or {}), **updates}
    # Assign a new dict so the JSON column is flagged dirty
    account.user_metadata = merged
    db.flush()
    return merged


@bp.route("/api/settings", methods=["POST", "OPTIONS"])
@require_user
def settings():
    if request.method == "OPTIONS":
        return ("", 204)

    body = json_body()
    raw_action = body.get("action")
    action = ACTION_ALIASES.get(raw_action, raw_action)
    user_id = g.user_id

    if action == "get_settings":
        with db_session() as db:
            account = db.get(UserAccount, user_id)
            metadata = dict(account.user_metadata or {}) if account else {}
            email = account.email if account else None
        return jsonify({
            "message": "User settings retrieved.",
            "user_metadata": metadata,
            "profile": {
                "first_name": metadata.get("first_name"),
                "last_name": metadata.get("last_name"),
                "email": email,
            },
        })

    if action == "update_profile_data":
        payload = body.get("payload")
        if not isinstance(payload, dict):
            raise BadRequest("Missing or invalid 'payload' object for profile data.")
        with db_session() as db:
            merged = merge_metadata(db, user_id, payload)
        logger.info("Profile data updated for user_id=%s (%d keys)", user_id, len(payload))
        return jsonify({
            "message": "User profile data updated successfully.",
            "updatedSettings": payload,
            "user_metadata": merged,
        })

    if action in SETTINGS_MAPPINGS:
        client_settings = body.get("settings")
        if not isinstance(client_settings, dict):
            raise BadRequest("Missing or invalid 'settings' object.")
        mapped = map_settings(action, client_settings)
        with db_session() as db:
            merged = merge_metadata(db, user_id, mapped)
        logger.info("%s for user_id=%s: %s", action, user_id, sorted(mapped))
        return jsonify({
            "message": UPDATE_MESSAGES[action],
            "updatedSettings": mapped,
            "user_metadata": merged,
        })

    raise BadRequest(f"Unknown action: {raw_action}")
