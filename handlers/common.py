# handlers/common.py
"""Small helpers shared by the resource blueprints."""

from flask import current_app, jsonify, request

from schemas import is_valid_uuid


class BadRequest(Exception):
    """Client input error; rendered as 400 with the message."""

    def __init__(self, message: str, status: int = 400):
        super().__init__(message)
        self.message = message
        self.status = status


def json_body(required: bool = True) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise BadRequest("Request body must be valid JSON")
        return {}
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def require_uuid(value, name: str = "id") -> str:
    if not value:
        raise BadRequest(f"Missing {name}")
    if not is_valid_uuid(value):
        raise BadRequest(f"Invalid {name} format")
    return value


def truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def search_cache():
    return current_app.extensions["search_cache"]


def not_found(message: str):
    return jsonify({"error": message}), 404
