# google_people.py
"""
Google People API access for contact import.

GooglePeopleClient wraps the HTTP calls we need (consent URL, code exchange,
token refresh, connections listing, batchGet). Token bookkeeping lives in
oauth_connections; an expired access token is refreshed exactly once before
giving up.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import jwt
import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
from models import ImportHistory, ImportQueueItem, OAuthConnection, utcnow

logger = logging.getLogger(__name__)

PROVIDER = "google"
GOOGLE_REQUIRED_SCOPES = [
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/contacts.other.readonly",
]
PROFILE_SCOPE = "https://www.googleapis.com/auth/userinfo.profile"
FEATURE_SCOPES = {
    "contacts": GOOGLE_REQUIRED_SCOPES,
    "calendar": ["https://www.googleapis.com/auth/calendar", PROFILE_SCOPE],
    "calendar_readonly": ["https://www.googleapis.com/auth/calendar.readonly", PROFILE_SCOPE],
}
PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations,addresses,biographies,urls,birthdays,nicknames"

PAGE_SIZE = 100
FETCH_LIMIT = 100           # resource names fetched inline per import request
INSERT_BATCH_SIZE = 50      # contacts per insert
QUEUE_BATCH_SIZE = 10       # resource names per background step
EXPIRY_SKEW = timedelta(seconds=60)


class GoogleApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None, www_authenticate: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.www_authenticate = www_authenticate


class GoogleAuthRequired(Exception):
    """No usable token: the user has to (re)connect their Google account."""


def is_insufficient_scope_error(message: str) -> bool:
    return any(s in (message or "") for s in ("Insufficient Permission", "insufficient_scope",
                                               "insufficientPermissions", "ACCESS_TOKEN_SCOPE_INSUFFICIENT"))


def is_api_not_enabled_error(message: str) -> bool:
    text = (message or "").lower()
    return ("has not been used in project" in text or "it is disabled" in text
            or "service_disabled" in text or "api has not been used" in text)


class GooglePeopleClient:
    def __init__(self, settings, http: Optional[requests.Session] = None):
        self.settings = settings
        self.http = http or requests.Session()

    def _raise_for(self, resp) -> None:
        if resp.ok:
            return
        try:
            err = resp.json().get("error", {})
            if isinstance(err, dict):
                message = err.get("message") or resp.reason
                details = " ".join(str(d.get("reason", "")) for d in err.get("details", []) if isinstance(d, dict))
                if details.strip():
                    message = f"{message} ({details.strip()})"
            else:
                message = f"{err}: {resp.json().get('error_description', '')}".strip(": ")
        except ValueError:
            message = resp.text or resp.reason
        raise GoogleApiError(message, resp.status_code, resp.headers.get("www-authenticate", ""))

    def authorization_url(self, state: str, scopes: List[str]) -> str:
        """Consent-screen URL; offline access + forced consent so Google returns a refresh token."""
        params = {
            "client_id": self.settings.GOOGLE_CLIENT_ID,
            "redirect_uri": self.settings.GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": " ".join(scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{self.settings.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        resp = self.http.post(
            self.settings.GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "redirect_uri": self.settings.GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
            timeout=self.settings.GOOGLE_TIMEOUT,
        )
        self._raise_for(resp)
        return resp.json()

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        resp = self.http.post(
            self.settings.GOOGLE_TOKEN_URL,
            data={
                "client_id": self.settings.GOOGLE_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            timeout=self.settings.GOOGLE_TIMEOUT,
        )
        self._raise_for(resp)
        return resp.json()

    def list_connections(self, access_token: str, page_token: Optional[str] = None) -> Dict[str, Any]:
        params = {"pageSize": PAGE_SIZE, "personFields": PERSON_FIELDS}
        if page_token:
            params["pageToken"] = page_token
        resp = self.http.get(
            f"{self.settings.GOOGLE_PEOPLE_API_URL}/people/me/connections",
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
            timeout=self.settings.GOOGLE_TIMEOUT,
        )
        self._raise_for(resp)
        return resp.json()

    def batch_get(self, access_token: str, resource_names: List[str]) -> List[Dict[str, Any]]:
        resp = self.http.get(
            f"{self.settings.GOOGLE_PEOPLE_API_URL}/people:batchGet",
            headers={"Authorization": f"Bearer {access_token}"},
            params={"resourceNames": resource_names, "personFields": PERSON_FIELDS},
            timeout=self.settings.GOOGLE_TIMEOUT,
        )
        self._raise_for(resp)
        return resp.json().get("responses", [])


# ----------------------------
# Tokens
# ----------------------------
def get_connection(db: Session, user_id: str) -> Optional[OAuthConnection]:
    return (
        db.query(OAuthConnection)
        .filter(OAuthConnection.user_id == user_id, OAuthConnection.provider == PROVIDER)
        .order_by(OAuthConnection.id.desc())
        .first()
    )


def delete_connection(db: Session, user_id: str) -> int:
    return (
        db.query(OAuthConnection)
        .filter(OAuthConnection.user_id == user_id, OAuthConnection.provider == PROVIDER)
        .delete(synchronize_session=False)
    )


def _provider_user_id(id_token: Optional[str]) -> Optional[str]:
    """`sub` of the id_token Google returned alongside the access token."""
    if not id_token:
        return None
    try:
        # Straight from the token endpoint; signature not re-verified
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.warning("Could not read Google id_token: %s", e)
        return None
    return claims.get("sub")


def save_connection(db: Session, user_id: str, tokens: Dict[str, Any]) -> OAuthConnection:
    """Insert or update the user's Google connection from a token-endpoint response."""
    conn = get_connection(db, user_id)
    if conn is None:
        conn = OAuthConnection(user_id=user_id, provider=PROVIDER)
        db.add(conn)

    conn.access_token = tokens["access_token"]
    # Google omits refresh_token when the user had already granted offline access
    if tokens.get("refresh_token"):
        conn.refresh_token = tokens["refresh_token"]
    conn.expires_at = (utcnow() + timedelta(seconds=int(tokens["expires_in"]))
                       if tokens.get("expires_in") else None)
    if tokens.get("scope"):
        conn.scopes = tokens["scope"]
    conn.provider_user_id = _provider_user_id(tokens.get("id_token")) or conn.provider_user_id
    db.flush()
    logger.info("Stored Google connection for user_id=%s", user_id)
    return conn


def get_valid_access_token(db: Session, user_id: str, client: GooglePeopleClient) -> str:
    """Stored access token, refreshed once if it has expired."""
    conn = get_connection(db, user_id)
    if conn is None:
        raise GoogleAuthRequired("No Google connection for user")
    if not conn.is_expired(utcnow() + EXPIRY_SKEW):
        return conn.access_token
    if not conn.refresh_token:
        raise GoogleAuthRequired("Access token expired and no refresh token stored")

    try:
        tokens = client.refresh_access_token(conn.refresh_token)
    except (GoogleApiError, requests.RequestException) as e:
        logger.warning("Google token refresh failed for user_id=%s: %s", user_id, e)
        raise GoogleAuthRequired("Token refresh failed") from e

    conn.access_token = tokens["access_token"]
    if tokens.get("refresh_token"):
        conn.refresh_token = tokens["refresh_token"]
    if tokens.get("expires_in"):
        conn.expires_at = utcnow() + timedelta(seconds=int(tokens["expires_in"]))
    db.flush()
    logger.info("Refreshed Google access token for user_id=%s", user_id)
    return conn.access_token


# ----------------------------
# Mapping
# ----------------------------
def _first(person: Dict[str, Any], key: str) -> Dict[str, Any]:
    items = person.get(key) or []
    return items[0] if items else {}


def google_person_to_contact(person: Dict[str, Any]) -> Dict[str, Any]:
    """Map a People API person resource onto contact columns (first value of each list)."""
    name = _first(person, "names")
    if name:
        contact = {
            "first_name": name.get("givenName") or "Unknown",
            "middle_name": name.get("middleName"),
            "last_name": name.get("familyName"),
        }
    else:
        contact = {"first_name": "Google", "middle_name": None, "last_name": None}

    contact["google_contact_id"] = person.get("resourceName")
    contact["nickname"] = _first(person, "nicknames").get("value")
    contact["email"] = _first(person, "emailAddresses").get("value")
    contact["phone"] = _first(person, "phoneNumbers").get("value")
    org = _first(person, "organizations")
    contact["company"] = org.get("name")
    contact["job_title"] = org.get("title")
    contact["formatted_address"] = _first(person, "addresses").get("formattedValue")
    contact["website"] = _first(person, "urls").get("value")
    contact["notes"] = _first(person, "biographies").get("value")

    bday = _first(person, "birthdays").get("date") or {}
    if bday.get("year") and bday.get("month") and bday.get("day"):
        contact["birthday"] = f"{bday['year']:04d}-{bday['month']:02d}-{bday['day']:02d}"

    return {k: v for k, v in contact.items() if v is not None}


# ----------------------------
# Import
# ----------------------------
def _fetch_and_insert(
    db: Session, user_id: str, batch_id: str, client: GooglePeopleClient,
    access_token: str, resource_names: List[str], errors: List[Dict[str, Any]],
) -> Dict[str, int]:
    """Fetch people by resource name and insert them; returns counts."""
    rows: List[Dict[str, Any]] = []
    for resp in client.batch_get(access_token, resource_names):
        person = resp.get("person")
        if person and person.get("resourceName"):
            rows.append(google_person_to_contact(person))
        else:
            name = resp.get("requestedResourceName") or "unknown resource"
            status = resp.get("status") or {}
            errors.append({
                "code": "GOOGLE_API_ERROR",
                "message": f"Failed to fetch contact details for {name}: {status.get('message', 'Unknown error')}",
            })

    ok = failed = 0
    for i in range(0, len(rows), INSERT_BATCH_SIZE):
        chunk = rows[i:i + INSERT_BATCH_SIZE]
        for row in chunk:
            row.update(import_source=PROVIDER, import_batch_id=batch_id)
        try:
            crud.create_contacts(db, user_id, chunk)
            db.commit()
            ok += len(chunk)
        except SQLAlchemyError as e:
            db.rollback()
            failed += len(chunk)
            errors.append({
                "code": "DATABASE_ERROR",
                "message": f"Failed to insert contacts batch {i // INSERT_BATCH_SIZE + 1}: {e}",
            })
            logger.error("Contact insert batch failed for user_id=%s: %s", user_id, e)
    return {"processed": len(rows), "successful": ok, "failed": failed}


def import_contacts(db: Session, user_id: str, resource_names: List[str],
                    client: GooglePeopleClient, access_token: str) -> Dict[str, Any]:
    """
    Import the first FETCH_LIMIT resource names now and queue the rest.
    GoogleApiError from the batch fetch propagates to the caller.
    """
    batch_id = str(uuid.uuid4())
    inline, remaining = resource_names[:FETCH_LIMIT], resource_names[FETCH_LIMIT:]

    history = ImportHistory(user_id=user_id, import_batch_id=batch_id, source=PROVIDER,
                            total_requested=len(resource_names))
    db.add(history)
    queue_item = None
    if remaining:
        queue_item = ImportQueueItem(user_id=user_id, import_batch_id=batch_id,
                                     resource_names=remaining, batch_size=QUEUE_BATCH_SIZE)
        db.add(queue_item)
    db.commit()

    errors: List[Dict[str, Any]] = []
    try:
        counts = _fetch_and_insert(db, user_id, batch_id, client, access_token, inline, errors)
    except (GoogleApiError, requests.RequestException):
        history.status = "failed"
        history.completed_at = utcnow()
        if queue_item is not None:
            queue_item.status = "failed"
        db.commit()
        raise

    history.total_processed = counts["processed"]
    history.successful_imports = counts["successful"]
    history.failed_imports = counts["failed"]
    if not remaining:
        history.status = "completed"
        history.completed_at = utcnow()
    db.commit()

    logger.info("Google import %s for user_id=%s: %d ok, %d failed, %d queued",
                batch_id, user_id, counts["successful"], counts["failed"], len(remaining))
    return {
        "message": ("Google contacts import partially completed, background processing started"
                    if remaining else "Google contacts import completed"),
        "importBatchId": batch_id,
        "totalRequested": len(resource_names),
        "totalProcessed": counts["processed"],
        "successfulImports": counts["successful"],
        "failedImports": counts["failed"],
        "errors": errors,
        "remainingCount": len(remaining),
        "backgroundProcessingStarted": bool(remaining),
        "processingQueueId": queue_item.id if queue_item else None,
    }


def process_import_queue(db: Session, client: GooglePeopleClient, max_items: int = 10) -> int:
    """
    Work through pending queue items, one batch_size slice at a time.
    Returns the number of queue items that reached a final state.
    """
    finished = 0
    items = (
        db.query(ImportQueueItem)
        .filter(ImportQueueItem.status.in_(("pending", "processing")))
        .order_by(ImportQueueItem.id)
        .limit(max_items)
        .all()
    )
    for item in items:
        item.status = "processing"
        db.commit()
        history = db.query(ImportHistory).filter(ImportHistory.import_batch_id == item.import_batch_id).one()
        names = list(item.resource_names or [])
        errors: List[Dict[str, Any]] = []
        try:
            token = get_valid_access_token(db, item.user_id, client)
            while item.processed_count < len(names):
                chunk = names[item.processed_count:item.processed_count + item.batch_size]
                counts = _fetch_and_insert(db, item.user_id, item.import_batch_id, client, token, chunk, errors)
                item.processed_count += len(chunk)
                history.total_processed += counts["processed"]
                history.successful_imports += counts["successful"]
                history.failed_imports += counts["failed"]
                db.commit()
        except (GoogleAuthRequired, GoogleApiError, requests.RequestException) as e:
            db.rollback()
            item.status = "failed"
            item.error = str(e)
            history.status = "failed"
            history.completed_at = utcnow()
            db.commit()
            logger.error("Import queue item %s failed: %s", item.id, e)
            finished += 1
            continue

        item.status = "completed"
        item.error = "; ".join(err["message"] for err in errors) or None
        history.status = "completed"
        history.completed_at = utcnow()
        db.commit()
        finished += 1
    return finished
