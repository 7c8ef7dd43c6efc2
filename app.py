# app.py

import logging
import uuid

import click
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

import google_people
from auth import AuthError
from config import configure_logging, load_settings
from database import db_session
from handlers import (
    assistant,
    batch,
    calendar,
    contacts,
    google_contacts,
    google_oauth,
    password_reset,
    settings as settings_bp,
)
from handlers.common import BadRequest
from llm_handler import LLMClient
from models import init_db, make_engine, make_session_factory
from schemas import first_error
from search_cache import SearchCache

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}
SERVER_ERROR = "An unexpected server error occurred."


def create_app(settings=None, session_factory=None, llm_client=None, google_client=None) -> Flask:
    """
    Build the Flask app. Collaborators (settings, store session factory, LLM
    and Google clients) are created here once unless passed in, and reach the
    handlers through app.config / app.extensions.
    """
    settings = settings or load_settings()
    configure_logging(settings.LOG_LEVEL)

    if session_factory is None:
        engine = make_engine(settings.DATABASE_URL)
        init_db(engine)
        session_factory = make_session_factory(engine)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["session_factory"] = session_factory
    app.extensions["search_cache"] = SearchCache(settings.SEARCH_CACHE_TTL, settings.SEARCH_CACHE_MAX_SIZE)
    app.extensions["llm_client"] = llm_client or LLMClient(settings)
    app.extensions["google_client"] = google_client or google_people.GooglePeopleClient(settings)

    CORS(app, resources={r"/api/*": {"origins": "*"}},
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"])

    for module in (contacts, calendar, batch, settings_bp, password_reset, google_contacts, google_oauth, assistant):
        app.register_blueprint(module.bp)

    _register_request_hooks(app)
    _register_error_handlers(app)
    _register_cli(app)

    @app.route("/", methods=["GET"])
    def root():
        return jsonify({"status": "running"})

    return app


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.user_id = None

    @app.after_request
    def stamp_response(response):
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers["X-Request-ID"] = g.get("request_id", "")
        return response


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AuthError)
    def handle_auth(err):
        logger.info("Auth rejected (%s) request_id=%s", err.reason, g.get("request_id"))
        return jsonify({"error": err.message}), 401

    @app.errorhandler(BadRequest)
    def handle_bad_request(err):
        return jsonify({"error": err.message}), err.status

    @app.errorhandler(ValidationError)
    def handle_validation(err):
        return jsonify({"error": first_error(err)}), 400

    @app.errorhandler(400)
    def handle_400(err):
        return jsonify({"error": "Bad Request", "details": err.description}), 400

    @app.errorhandler(404)
    def handle_404(err):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def handle_405(err):
        return jsonify({"error": f"HTTP method {request.method} is not supported on this endpoint."}), 405

    @app.errorhandler(Exception)
    def handle_unexpected(err):
        if isinstance(err, HTTPException):
            return jsonify({"error": err.description}), err.code
        logger.exception(
            "Unhandled error request_id=%s user_id=%s path=%s",
            g.get("request_id"), g.get("user_id"), request.path,
        )
        return jsonify({"error": SERVER_ERROR}), 500


def _register_cli(app: Flask) -> None:
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables."""
        factory = app.extensions["session_factory"]
        init_db(factory.kw["bind"])
        click.echo("Database initialised.")

    @app.cli.command("process-imports")
    @click.option("--max-items", default=10, show_default=True, help="Queue items to work through.")
    def process_imports_command(max_items):
        """Drain pending Google contact import batches."""
        with db_session(app.extensions["session_factory"]) as db:
            done = google_people.process_import_queue(db, app.extensions["google_client"], max_items=max_items)
        click.echo(f"Processed {done} import queue item(s).")


if __name__ == "__main__":
    create_app().run(debug=True)
