# llm_handler.py
"""
Assistant turn: send the user's message to an OpenAI-compatible
chat-completions endpoint with our two tools, run whatever tool calls come
back through the intent handlers, then ask the model for the final reply.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError
from sqlalchemy.orm import Session

from intents.calendar_intents import handle_calendar_intent
from intents.contact_intents import handle_contact_intent
from intents.results import ErrorKind
from schemas import CalendarIntentArgs, ContactIntentArgs, first_error
from search_cache import SearchCache

logger = logging.getLogger(__name__)

MAX_HISTORY = 20

_CONTACT_FIELD_PROPS = {
    name: {"type": "string"}
    for name in (
        "first_name", "middle_name", "last_name", "nickname", "email", "phone", "mobile_phone",
        "work_phone", "website", "company", "job_title", "department", "street_address",
        "street_address_2", "city", "state_province", "postal_code", "country", "formatted_address",
        "social_linkedin", "social_twitter", "preferred_contact_method", "timezone", "language",
        "birthday", "notes",
    )
}
_CONTACT_FIELD_PROPS["tags"] = {"type": "array", "items": {"type": "string"}}

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "intelligent_contact_operation",
            "description": (
                "Search, create, update, delete or merge the user's contacts. Updates apply to every "
                "contact matching search_term. Deletes need an exact single match and a confirmation."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "user_request": {"type": "string", "description": "The user's request, verbatim."},
                    "intended_action": {"type": "string", "enum": ["search", "create", "update", "delete", "merge"]},
                    "search_term": {"type": "string", "description": "Name, email, phone or company to look up."},
                    "contact_updates": {"type": "object", "properties": _CONTACT_FIELD_PROPS},
                    "confirmation_provided": {"type": "boolean"},
                    "confirmation_id": {"type": "string"},
                },
                "required": ["user_request", "intended_action"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "intelligent_calendar_operation",
            "description": "Search, create, update or delete calendar events. Times are ISO 8601.",
            "parameters": {
                "type": "object",
                "properties": {
                    "user_request": {"type": "string"},
                    "intended_action": {"type": "string", "enum": ["search", "create", "update", "delete"]},
                    "search_criteria": {
                        "type": "object",
                        "properties": {
                            "search_term": {"type": "string"},
                            "event_id": {"type": "string"},
                            "location": {"type": "string"},
                            "date_range": {
                                "type": "object",
                                "properties": {"start_date": {"type": "string"}, "end_date": {"type": "string"}},
                            },
                        },
                    },
                    "event_data": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string"},
                            "start_time": {"type": "string"},
                            "end_time": {"type": "string"},
                            "description": {"type": "string"},
                            "location": {"type": "string"},
                            "is_all_day": {"type": "boolean"},
                            "is_recurring": {"type": "boolean"},
                            "recurrence_pattern": {"type": "string", "enum": ["daily", "weekly", "monthly", "yearly"]},
                            "recurrence_interval": {"type": "integer"},
                            "recurrence_days_of_week": {"type": "array", "items": {"type": "integer"}},
                            "recurrence_day_of_month": {"type": "integer"},
                            "recurrence_end_date": {"type": "string"},
                            "recurrence_count": {"type": "integer"},
                        },
                    },
                    "operation_scope": {"type": "string", "enum": ["single", "series"]},
                    "confirmation_provided": {"type": "boolean"},
                    "confirmation_id": {"type": "string"},
                },
                "required": ["user_request", "intended_action"],
            },
        },
    },
]

SYSTEM_PROMPT = (
    "You are a personal CRM assistant that manages the user's contacts and calendar. "
    "Use the tools for every lookup or change; never invent records. "
    "When a tool reports ConfirmationRequired, ask the user to confirm and, if they agree, call the tool "
    "again with confirmation_provided=true and the confirmation_id you were given. "
    "When a tool reports MultipleMatches or VagueQuery, ask the user to be more specific. "
    "Answer briefly in plain text."
)


class LLMUnavailable(Exception):
    pass


class LLMClient:
    def __init__(self, settings, http: Optional[requests.Session] = None):
        self.settings = settings
        self.http = http or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.settings.LLM_API_KEY)

    def chat(self, messages: List[Dict[str, Any]], tools: Optional[List[dict]] = None) -> Dict[str, Any]:
        """One chat-completions round trip; returns the assistant message."""
        headers = {
            "Authorization": f"Bearer {self.settings.LLM_API_KEY}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": self.settings.LLM_MODEL,
            "messages": messages,
            "temperature": 0.0,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        try:
            r = self.http.post(self.settings.LLM_API_URL, headers=headers, json=payload, timeout=self.settings.LLM_TIMEOUT)
            r.raise_for_status()
            return r.json()["choices"][0]["message"]
        except (requests.RequestException, KeyError, IndexError, ValueError) as e:
            logger.error("LLM call failed: %s", e)
            raise LLMUnavailable(str(e)) from e


def dispatch_tool_call(db: Session, user_id: str, name: str, raw_args: str,
                       cache: Optional[SearchCache] = None) -> Dict[str, Any]:
    """Validate one tool call's arguments and run it through the matching intent handler."""
    try:
        args = json.loads(raw_args or "{}")
    except json.JSONDecodeError:
        return {"success": False, "error": ErrorKind.VALIDATION.value, "message": "Tool arguments were not valid JSON."}
    if not isinstance(args, dict):
        return {"success": False, "error": ErrorKind.VALIDATION.value, "message": "Tool arguments must be a JSON object."}

    try:
        if name == "intelligent_contact_operation":
            return handle_contact_intent(db, user_id, ContactIntentArgs(**args), cache)
        if name == "intelligent_calendar_operation":
            return handle_calendar_intent(db, user_id, CalendarIntentArgs(**args))
    except ValidationError as e:
        return {"success": False, "error": ErrorKind.VALIDATION.value, "message": first_error(e)}

    return {"success": False, "error": ErrorKind.UNKNOWN_ACTION.value, "message": f"Unknown tool: {name}"}


def _clean_history(history) -> List[Dict[str, str]]:
    out = []
    for item in (history or [])[-MAX_HISTORY:]:
        if isinstance(item, dict) and item.get("role") in ("user", "assistant") and isinstance(item.get("content"), str):
            out.append({"role": item["role"], "content": item["content"]})
    return out


def run_assistant_turn(db: Session, user_id: str, message: str, llm: LLMClient,
                       history=None, cache: Optional[SearchCache] = None) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "system", "content": f"Today's date is {date.today().isoformat()}."},
        *_clean_history(history),
        {"role": "user", "content": message},
    ]

    first = llm.chat(messages, tools=TOOLS)
    tool_calls = first.get("tool_calls") or []
    if not tool_calls:
        return {"reply": (first.get("content") or "").strip(), "tool_results": [], "triggerRefresh": False}

    messages.append({"role": "assistant", "content": first.get("content") or "", "tool_calls": tool_calls})
    results = []
    for call in tool_calls:
        fn = call.get("function") or {}
        result = dispatch_tool_call(db, user_id, fn.get("name", ""), fn.get("arguments", ""), cache)
        logger.info("Tool %s for user_id=%s -> %s", fn.get("name"), user_id, result.get("error", "ok"))
        results.append({"tool": fn.get("name"), "result": result})
        messages.append({"role": "tool", "tool_call_id": call.get("id"), "content": json.dumps(result, default=str)})

    final = llm.chat(messages)
    return {
        "reply": (final.get("content") or "").strip(),
        "tool_results": results,
        "triggerRefresh": any(r["result"].get("triggerRefresh") for r in results),
    }
