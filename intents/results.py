# intents/results.py
"""Structured results returned by the assistant intent handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    VAGUE_QUERY = "VagueQuery"
    NOT_FOUND = "NotFound"
    MULTIPLE_MATCHES = "MultipleMatches"
    CONFIRMATION_REQUIRED = "ConfirmationRequired"
    INVALID_CONFIRMATION = "InvalidConfirmation"
    INSUFFICIENT_CONTACTS = "InsufficientContacts"
    INVALID_DATA = "InvalidData"
    DATABASE = "DatabaseError"
    MERGE_UPDATE = "MergeUpdateError"
    MERGE_DELETE = "MergeDeleteError"
    UNKNOWN_ACTION = "UnknownAction"
    UNEXPECTED = "UnexpectedError"


@dataclass
class ItemResult:
    """Outcome for one record touched by a bulk operation."""

    id: str
    name: str
    updated: bool
    message: str = ""
    changes: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


@dataclass
class IntentResult:
    success: bool
    operation: str
    message: str
    user_request: str = ""
    error: Optional[ErrorKind] = None
    results: List[ItemResult] = field(default_factory=list)
    trigger_refresh: bool = False
    # Operation-specific payload (contacts, events, matches, confirmation_id, counts)
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def fail(cls, operation: str, error: ErrorKind, message: str, user_request: str = "", **payload):
        return cls(False, operation, message, user_request=user_request, error=error, payload=payload)

    def to_dict(self, id_key: str = "id") -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "operation": self.operation,
            "user_request": self.user_request,
            "message": self.message,
        }
        if self.error is not None:
            out["error"] = self.error.value
        if self.results:
            out["results"] = [_item_dict(r, id_key) for r in self.results]
        if self.trigger_refresh:
            out["triggerRefresh"] = True
        out.update(self.payload)
        return out


def _item_dict(item: ItemResult, id_key: str) -> Dict[str, Any]:
    out = {id_key: item.id, "name": item.name, "updated": item.updated, "message": item.message}
    if item.changes is not None:
        out["changes"] = item.changes
    if item.error is not None:
        out["error"] = item.error
    if item.data is not None:
        out["data"] = item.data
    return out
