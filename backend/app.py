# app.py: form submission API for the programme marketing site
import logging
import os
import sys
from datetime import datetime as dt, timezone
from pathlib import Path
from time import time

from dotenv import load_dotenv
from flask import Flask, abort, current_app, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.serving import make_server

from db import db, init_db, start_provisioning
from errors import StoreUnavailable, ValidationError
from ingestion import IngestionService, RequestContext
from logging_setup import configure_logging
from storage import FallbackChain, FileStore, RelationalStore

# ---- Setup & config
load_dotenv(dotenv_path=Path(__file__).with_name(".env"))
log = logging.getLogger(__name__)

DEFAULT_SUBMISSIONS_FILE = Path(__file__).with_name("form-submissions.json")
ADMIN_LIST_LIMIT = 500


def _settings_from_env() -> dict:
    return {
        "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///./local.db"),
        "DB_POOL_SIZE": int(os.getenv("DB_POOL_SIZE", "5")),
        "DB_CONNECT_TIMEOUT": int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
        "FORM_SUBMISSIONS_FILE": os.getenv("FORM_SUBMISSIONS_FILE") or str(DEFAULT_SUBMISSIONS_FILE),
        "ADMIN_API_TOKEN": os.getenv("ADMIN_API_TOKEN"),
        "RATELIMIT_STORAGE_URI": os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        "RATELIMIT_HEADERS_ENABLED": True,
        "SUBMIT_RATE_LIMIT": os.getenv("SUBMIT_RATE_LIMIT", "10 per minute"),
    }


def _require_admin_token():
    token_expected = current_app.config.get("ADMIN_API_TOKEN")
    if not token_expected:
        abort(503, description="ADMIN_API_TOKEN not configured")
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        abort(401)
    token = auth.split(" ", 1)[1].strip()
    if token != token_expected:
        abort(403)


def _request_context() -> RequestContext:
    return RequestContext(
        ip_address=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=request.headers.get("User-Agent"),
    )


def create_app(config=None) -> Flask:
    app = Flask(__name__)
    app.config.from_mapping(_settings_from_env())
    if config:
        app.config.update(config)
    app.config["STARTED_AT"] = time()

    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        supports_credentials=False,
        methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=["60 per minute"],
    )
    # Route limits only hold a weak reference to their Limiter.
    app.extensions["form_limiter"] = limiter

    # --- Store chain: DB -> file -> discard
    relational = RelationalStore(db if init_db(app) else None)
    file_store = FileStore(app.config["FORM_SUBMISSIONS_FILE"])
    service = IngestionService(FallbackChain([relational, file_store]))
    app.extensions["form_ingestion"] = service
    app.extensions["form_relational_store"] = relational
    app.extensions["form_file_store"] = file_store

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({"success": False, "message": "Too many submissions, please try again shortly."}), 429

    @app.errorhandler(401)
    @app.errorhandler(403)
    @app.errorhandler(503)
    def auth_error_handler(e):
        return jsonify({"success": False, "message": e.description}), e.code

    # ---- Routes
    @app.get("/health")
    def health():
        return jsonify({
            "status": "ok",
            "timestamp": dt.now(timezone.utc).isoformat(),
            "uptime": round(time() - current_app.config["STARTED_AT"], 3),
        })

    @app.post("/api/submit-form")
    @limiter.limit(lambda: current_app.config["SUBMIT_RATE_LIMIT"])
    def submit_form():
        data = request.get_json(silent=True)
        if data is None:
            data = request.form.to_dict()
        try:
            ack = service.submit(data, _request_context())
        except ValidationError as e:
            return jsonify({"success": False, "message": str(e)}), 400
        return jsonify(ack.to_dict())

    # Admin listing reads the relational store only; file fallbacks are not merged.
    @app.get("/api/submissions")
    def list_submissions():
        _require_admin_token()
        try:
            rows = relational.recent(ADMIN_LIST_LIMIT)
        except StoreUnavailable as e:
            log.error("Fetch error: %s", e.reason)
            return jsonify({"success": False, "message": "Server error."}), 500
        return jsonify({"success": True, "data": [r.to_dict() for r in rows]})

    return app


def serve(app, host="0.0.0.0", port=3000):
    """Bind the listening socket, then provision the table, then serve."""
    try:
        server = make_server(host, port, app, threaded=True)
    except OSError as e:
        log.critical("FATAL: Server failed to start! %s", e)
        sys.exit(1)
    log.info("Server successfully started on port %s", server.server_port)
    start_provisioning(app)
    try:
        server.serve_forever()
    finally:
        server.server_close()
    return server


if __name__ == "__main__":
    configure_logging()
    app = create_app()
    log.info("Starting form submission server")
    log.info("DATABASE_URL set: %s", bool(app.config.get("DATABASE_URL")))

    with app.app_context():
        for rule in app.url_map.iter_rules():
            log.debug("route %s -> methods=%s", rule, sorted(rule.methods))

    serve(app, port=int(os.environ.get("PORT", "3000")))
