# intents/contact_intents.py
"""
Assistant-driven contact operations: search, create, update, delete, merge.

Each operation validates its arguments, resolves the target contacts with a
search, then mutates. Failures come back as IntentResult objects carrying an
ErrorKind; store errors during bulk work are recorded per contact.
"""

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
from models import Contact
from schemas import ContactCreate, ContactIntentArgs, first_error
from search_cache import SearchCache

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20
UPDATE_MATCH_LIMIT = 10
DELETE_MATCH_LIMIT = 5
MERGE_MATCH_LIMIT = 50

# Fields that decide which duplicate survives a merge
COMPLETENESS_FIELDS = ("first_name", "last_name", "email", "phone", "mobile_phone", "company", "job_title")
MERGE_SKIP_FIELDS = {"contact_id", "user_id", "created_at", "updated_at"}

VAGUE_REQUEST_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(find|search|show|get|list)?\s*(for\s+)?(a\s+)?contacts?$",
        r"^(find|search|show|get|list)?\s*(for\s+)?(my\s+)?contacts?$",
        r"^(find|search|show|get|list)?\s*(for\s+)?(a\s+)?contacts?\s+(by\s+)?(name|email|phone)$",
        r"^(find|search|show|get|list)?\s*(for\s+)?(a\s+)?(someone|person|client|customer)$",
        r"^(all|any|some)\s+contacts?$",
        r"^contacts?\s+(with|having|that\s+have)$",
        r"^who\s+is\??$",
        r"^(what|which)\s+contacts?\??$",
    )
]
VAGUE_TERMS = {
    "contact", "contacts", "person", "people", "someone", "anyone", "client",
    "customer", "user", "employee", "colleague", "friend", "family",
}
VAGUE_PHRASES = (
    "find contact", "search contact", "show contact", "get contact",
    "find person", "search person", "show person", "get person",
    "by name", "by email", "by phone", "contact info",
)

VAGUE_QUERY_MESSAGE = (
    "I need more specific information to find the right contact. Please give a name "
    '(e.g. "John Smith"), an email address, a phone number, or a company and role '
    '(e.g. "CEO at Acme Corp").'
)


def is_vague_query(user_request: str, search_term: str) -> bool:
    """True when the term (or the whole request) cannot identify a specific contact."""
    request = (user_request or "").strip().lower()
    term = (search_term or "").strip().lower()

    if len(term) <= 2:
        return True
    if term in VAGUE_TERMS:
        return True
    if any(phrase in term for phrase in VAGUE_PHRASES):
        return True
    return any(p.match(request) for p in VAGUE_REQUEST_PATTERNS)


def detect_phone_field(user_request: str) -> Optional[str]:
    """Which column a bare 'phone' value belongs in, judging by the wording."""
    request = (user_request or "").lower()
    if any(w in request for w in ("mobile", "cell", "cellular")):
        return "mobile_phone"
    if any(w in request for w in ("work", "office", "business")):
        return "work_phone"
    return None


def wants_phone_moved_to_mobile(user_request: str) -> bool:
    request = (user_request or "").lower()
    return "move" in request and "phone" in request and ("mobile" in request or "cell" in request)


def completeness_score(contact: Contact) -> int:
    return sum(1 for f in COMPLETENESS_FIELDS if _has_value(getattr(contact, f)))


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _match(contact: Contact) -> Dict[str, Any]:
    return {
        "contact_id": contact.contact_id,
        "name": contact.display_name,
        "email": contact.email,
        "phone": contact.phone,
        "company": contact.company,
    }


class ContactIntentHandler:
    """Runs one contact intent for one user against an open session."""

    def __init__(self, db: Session, user_id: str, cache: Optional[SearchCache] = None):
        self.db = db
        self.user_id = user_id
        self.cache = cache

    # ----------------------------
    # Entry point
    # ----------------------------
    def handle(self, args: ContactIntentArgs) -> IntentResult:
        action = args.intended_action
        dispatch = {
            "search": self.search,
            "create": self.create,
            "update": self.update,
            "delete": self.delete,
            "merge": self.merge,
        }
        op = dispatch.get(action)
        if op is None:
            return IntentResult.fail(action or "unknown", ErrorKind.UNKNOWN_ACTION,
                                     f"Unknown action: {action}", args.user_request)

        problem = self._validate(args)
        if problem:
            return IntentResult.fail(action, ErrorKind.VALIDATION, problem, args.user_request)

        try:
            return op(args)
        except Exception as e:
            logger.exception("Contact %s failed for user_id=%s", action, self.user_id)
            self.db.rollback()
            return IntentResult.fail(action, ErrorKind.UNEXPECTED, f"Operation failed: {e}", args.user_request)

    def _validate(self, args: ContactIntentArgs) -> Optional[str]:
        action = args.intended_action
        term = (args.search_term or "").strip()
        if action == "search" and not term:
            return "Search term is required for search operations."
        if action == "create":
            fields = args.contact_updates
            if fields is None or not _has_value(fields.first_name) or not _has_value(fields.last_name):
                return "First name and last name are required to create a contact."
        if action == "update":
            if not term:
                return "Search term is required for update operations."
            if args.contact_updates is None and not wants_phone_moved_to_mobile(args.user_request):
                return "Contact updates are required for update operations."
        if action in ("delete", "merge") and not term and not (action == "delete" and args.confirmation_id):
            return f"Search term is required for {action} operations."
        return None

    # ----------------------------
    # Helpers
    # ----------------------------
    def _search(self, term: str, limit: int) -> List[Contact]:
        return crud.search_contacts(self.db, self.user_id, term.strip(), limit=limit)

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.clear_user_cache(self.user_id)

    # ----------------------------
    # Operations
    # ----------------------------
    def search(self, args: ContactIntentArgs) -> IntentResult:
        term = args.search_term.strip()
        if is_vague_query(args.user_request, term):
            return IntentResult.fail("search", ErrorKind.VAGUE_QUERY, VAGUE_QUERY_MESSAGE, args.user_request)

        key = SearchCache.key(self.user_id, term, SEARCH_LIMIT)
        contacts = self.cache.get(key) if self.cache is not None else None
        if contacts is None:
            contacts = [c.to_dict() for c in self._search(term, SEARCH_LIMIT)]
            if self.cache is not None:
                self.cache.set(key, contacts)

        if contacts:
            message = f'Found {len(contacts)} contact{"s" if len(contacts) != 1 else ""} matching "{term}".'
        else:
            message = f'No contacts found matching "{term}".'
        return IntentResult(True, "search", message, user_request=args.user_request,
                            payload={"contacts": contacts, "total_found": len(contacts)})

    def create(self, args: ContactIntentArgs) -> IntentResult:
        try:
            payload = ContactCreate(**args.contact_updates.non_empty())
        except ValidationError as e:
            return IntentResult.fail("create", ErrorKind.VALIDATION, first_error(e), args.user_request)

        try:
            contact = crud.create_contact(self.db, self.user_id, payload.non_empty())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Create contact failed for user_id=%s: %s", self.user_id, e)
            return IntentResult.fail("create", ErrorKind.DATABASE, f"Failed to create contact: {e}", args.user_request)

        self._invalidate()
        return IntentResult(
            True, "create", f"Successfully created contact: {contact.display_name}",
            user_request=args.user_request, trigger_refresh=True,
            payload={"contact": contact.to_dict(), "contact_id": contact.contact_id},
        )

    def update(self, args: ContactIntentArgs) -> IntentResult:
        term = args.search_term.strip()
        move_phone = wants_phone_moved_to_mobile(args.user_request)

        requested = args.contact_updates.non_empty() if args.contact_updates else {}
        phone_target = detect_phone_field(args.user_request)
        if "phone" in requested and phone_target and not move_phone:
            requested[phone_target] = requested.pop("phone")

        contacts = self._search(term, UPDATE_MATCH_LIMIT)
        if not contacts:
            return IntentResult.fail("update", ErrorKind.NOT_FOUND,
                                     f'No contacts found matching "{term}" to update.', args.user_request)

        if not requested and not move_phone:
            n = len(contacts)
            return IntentResult(True, "update",
                                f'No changes specified for the {n} matching contact{"s" if n > 1 else ""}.',
                                user_request=args.user_request, payload={"total_found": n})

        results: List[ItemResult] = []
        for contact in contacts:
            changes = {k: v for k, v in requested.items() if getattr(contact, k) != v}
            if move_phone and _has_value(contact.phone):
                changes["mobile_phone"] = contact.phone
                changes["phone"] = None

            name = contact.display_name
            if not changes:
                note = "No phone number to move to mobile" if move_phone else "No changes needed"
                results.append(ItemResult(contact.contact_id, name, updated=False, message=note))
                continue

            contact_id = contact.contact_id
            try:
                crud.update_contact(self.db, contact, changes)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.warning("Update of contact_id=%s failed: %s", contact_id, e)
                results.append(ItemResult(contact_id, name, updated=False,
                                          message="Update failed", error=str(e)))
                continue
            results.append(ItemResult(contact_id, name, updated=True, changes=changes,
                                      message=f"Updated: {', '.join(changes)}",
                                      data=contact.to_dict()))

        updated = sum(1 for r in results if r.updated)
        failed = sum(1 for r in results if r.error)
        if updated:
            self._invalidate()
        return IntentResult(
            success=failed == 0 or updated > 0,
            operation="update",
            message=f'Successfully updated {updated} of {len(contacts)} contacts matching "{term}".',
            user_request=args.user_request,
            results=results,
            trigger_refresh=updated > 0,
            payload={"total_contacts": len(contacts), "updated_contacts": updated},
        )

    def delete(self, args: ContactIntentArgs) -> IntentResult:
        if args.confirmation_provided:
            return self._confirmed_delete(args)

        term = args.search_term.strip()
        contacts = self._search(term, DELETE_MATCH_LIMIT)
        if not contacts:
            return IntentResult.fail("delete", ErrorKind.NOT_FOUND,
                                     f'No contacts found matching "{term}" to delete.', args.user_request)
        if len(contacts) > 1:
            return IntentResult.fail(
                "delete", ErrorKind.MULTIPLE_MATCHES,
                f'Found {len(contacts)} contacts matching "{term}". '
                "Please be more specific about which contact to delete.",
                args.user_request, matches=[_match(c) for c in contacts],
            )

        contact = contacts[0]
        pending = confirmations.propose(self.db, self.user_id, "contact", "delete", contact.contact_id)
        self.db.commit()
        return IntentResult.fail(
            "delete", ErrorKind.CONFIRMATION_REQUIRED,
            f'Found contact "{contact.display_name}". Are you sure you want to delete this contact? '
            "Please confirm to proceed.",
            args.user_request, contact=_match(contact), confirmation_id=pending.confirmation_id,
        )

    def _confirmed_delete(self, args: ContactIntentArgs) -> IntentResult:
        if not args.confirmation_id:
            return IntentResult.fail("delete", ErrorKind.VALIDATION,
                                     "confirmation_id is required to confirm a delete.", args.user_request)
        return self.execute_delete(args.confirmation_id, args.user_request)

    def execute_delete(self, confirmation_id: str, user_request: str = "") -> IntentResult:
        """Carry out a previously proposed contact delete."""
        try:
            pending = confirmations.get_proposed(self.db, self.user_id, confirmation_id, "contact", "delete")
        except confirmations.ConfirmationError as e:
            return IntentResult.fail("delete", ErrorKind.INVALID_CONFIRMATION, str(e), user_request)

        contact = crud.get_contact(self.db, self.user_id, pending.target_id)
        if contact is None:
            confirmations.mark_executed(self.db, pending)
            self.db.commit()
            return IntentResult.fail("delete", ErrorKind.NOT_FOUND,
                                     "That contact no longer exists.", user_request)

        name, contact_id = contact.display_name, contact.contact_id
        try:
            crud.delete_contact(self.db, contact)
            confirmations.mark_executed(self.db, pending)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Delete of contact_id=%s failed: %s", contact_id, e)
            return IntentResult.fail("delete", ErrorKind.DATABASE, f"Failed to delete contact: {e}", user_request)

        self._invalidate()
        return IntentResult(True, "delete", f'Contact "{name}" has been deleted successfully.',
                            user_request=user_request, trigger_refresh=True,
                            payload={"contact_id": contact_id})

    def merge(self, args: ContactIntentArgs) -> IntentResult:
        term = args.search_term.strip()
        contacts = self._search(term, MERGE_MATCH_LIMIT)
        if len(contacts) < 2:
            return IntentResult.fail(
                "merge", ErrorKind.INSUFFICIENT_CONTACTS,
                f'Found {len(contacts)} contact{"s" if len(contacts) != 1 else ""} matching "{term}". '
                "At least 2 contacts are needed to merge.",
                args.user_request,
            )

        # max() keeps the first of equally complete contacts
        primary = max(contacts, key=completeness_score)
        duplicates = [c for c in contacts if c.contact_id != primary.contact_id]

        merged: Dict[str, Any] = {}
        for dup in duplicates:
            for name, value in dup.to_dict().items():
                if name in MERGE_SKIP_FIELDS or name in merged:
                    continue
                if _has_value(value) and not _has_value(getattr(primary, name)):
                    merged[name] = value

        primary_id, primary_name = primary.contact_id, primary.display_name
        duplicate_ids = [d.contact_id for d in duplicates]

        if merged:
            try:
                crud.update_contact(self.db, primary, merged)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Merge update of contact_id=%s failed: %s", primary_id, e)
                return IntentResult.fail("merge", ErrorKind.MERGE_UPDATE,
                                         f"Failed to update primary contact during merge: {e}",
                                         args.user_request)

        try:
            for dup in duplicates:
                crud.delete_contact(self.db, dup)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Merge delete for primary contact_id=%s failed: %s", primary_id, e)
            return IntentResult.fail("merge", ErrorKind.MERGE_DELETE,
                                     f"Failed to delete duplicate contacts during merge: {e}",
                                     args.user_request)

        self._invalidate()
        return IntentResult(
            True, "merge",
            f'Successfully merged {len(contacts)} duplicate contacts for "{primary_name}". '
            f"Kept the most complete contact and combined data from {len(duplicates)} others.",
            user_request=args.user_request, trigger_refresh=True,
            payload={
                "primary_contact": primary.to_dict(),
                "merged_contacts": duplicate_ids,
                "merged_fields": sorted(merged),
            },
        )


def handle_contact_intent(db: Session, user_id: str, args: ContactIntentArgs,
                          cache: Optional[SearchCache] = None) -> Dict[str, Any]:
    """Run one contact intent and return its JSON-ready result."""
    result = ContactIntentHandler(db, user_id, cache).handle(args)
    logger.info("Contact intent %s for user_id=%s -> %s", result.operation, user_id,
                result.error.value if result.error else "ok")
    return result.to_dict(id_key="contact_id")
