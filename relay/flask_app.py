"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and configuration.
"""
from __future__ import annotations
import logging
import os
from datetime import timedelta
from tempfile import gettempdir

from flask import Flask
from flask_session import Session
from werkzeug.middleware.proxy_fix import ProxyFix

from relay.config import load_settings
from relay.core.schema_discovery import SchemaCache


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app() -> Flask:
    """Create and configure Flask application."""
    # Load configuration
    cfg = load_settings()
    _configure_logging(cfg.log_level)

    # Create Flask app
    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode

    # One schema cache per process; a TTL of 0 disables it
    app.config["SCHEMA_CACHE"] = SchemaCache(ttl_seconds=cfg.schema_cache_ttl)

    # Flask session configuration
    app.config["SECRET_KEY"] = cfg.secret_key

    app.config["SESSION_TYPE"] = os.environ.get("FLASK_SESSION_TYPE", "filesystem")
    if app.config["SESSION_TYPE"] == "filesystem":
        session_dir = os.environ.get("FLASK_SESSION_DIR") or os.path.join(gettempdir(), "relay_flask_session")
        os.makedirs(session_dir, exist_ok=True)
        app.config["SESSION_FILE_DIR"] = session_dir

    app.config["SESSION_PERMANENT"] = True
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=cfg.session_lifetime_hours)
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = cfg.session_cookie_secure

    # Initialize session
    Session(app)

    # Trust X-Forwarded-* headers from the reverse proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    # Initialize Salesforce OAuth
    from relay.api import auth
    auth.init_oauth(app, cfg)

    # Register blueprints
    from relay.api import health, errors, crm

    app.register_blueprint(health.bp)
    app.register_blueprint(auth.bp, url_prefix="/api/auth")
    app.register_blueprint(crm.bp, url_prefix="/api")

    # Register error handlers
    errors.register_error_handlers(app)

    # Register middleware/before_request handlers
    _register_middleware(app)

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print("[flask_app] Salesforce API registered at /api/sfdc")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with a generated secret key")

    return app


def _configure_logging(level_name: str) -> None:
    """Apply LOG_LEVEL to the relay package loggers."""
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("relay").setLevel(level)


def _register_middleware(app: Flask):
    """Register before_request middleware."""
    from relay.api.decorators import enforce_bearer_token

    app.before_request(enforce_bearer_token)


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", "3000")), debug=True)
