"""
Flask application factory for the mail authentication checker.

Creates and configures the Flask application, loads the DoH resolver
settings and the mail provider catalog once, and registers the JSON API
blueprint.
"""

from __future__ import annotations

import logging
import sys

from flask import Flask, Response, jsonify
from werkzeug.exceptions import HTTPException

from mailauth.checker.mx import ProviderCatalog
from mailauth.checker.resolver import load_dns_settings
from mailauth.config import Config

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure root logger for the application.

    Logging is sent to stdout so WSGI hosts capture it without file
    handlers.

    Format: timestamp  level  logger-name  message

    Args:
        debug: When True, sets the root level to DEBUG.  Otherwise INFO.
    """
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)-8s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
    )

    root_logger = logging.getLogger()
    # create_app() runs once per test; keep a single handler
    if not root_logger.handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def create_app(config_object: object = Config) -> Flask:
    """Application factory.

    Args:
        config_object: Configuration class or object to load settings from.

    Returns:
        A fully configured Flask application instance.  The resolver
        settings and provider catalog are available under
        ``app.extensions["mailauth"]``.
    """
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.json.sort_keys = False  # keep result field order

    _configure_logging(debug=app.debug)

    # ------------------------------------------------------------------
    # Shared checker state
    # ------------------------------------------------------------------
    settings = load_dns_settings(app.config.get("DNS_SETTINGS_PATH"))
    catalog = ProviderCatalog(app.config.get("PROVIDER_CATALOG_PATH"))
    app.extensions["mailauth"] = {"settings": settings, "catalog": catalog}
    logger.info(
        "Using %s DoH resolver with %d mail provider profiles",
        settings.resolver,
        len(catalog),
    )

    # ------------------------------------------------------------------
    # Register blueprints
    # ------------------------------------------------------------------
    from mailauth.api import bp as api_bp

    app.register_blueprint(api_bp)

    # ------------------------------------------------------------------
    # JSON errors
    # ------------------------------------------------------------------
    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        """Render HTTP errors (404, 405, ...) as JSON instead of HTML."""
        return jsonify({"error": exc.name, "message": exc.description}), exc.code

    # ------------------------------------------------------------------
    # Security headers
    # ------------------------------------------------------------------
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        """Attach security-related HTTP response headers."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    return app
