"""
API blueprint routes.

Each endpoint validates the domain in the URL, runs one checker (or all
of them for ``/check``) with the application's resolver settings and
provider catalog, and returns the result as JSON.

Invalid input returns 400 JSON.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps

from flask import current_app, jsonify, request

from mailauth.api import bp
from mailauth.checker.dkim import check_dkim
from mailauth.checker.dmarc import check_dmarc
from mailauth.checker.dnssec import check_dnssec
from mailauth.checker.engine import run_domain_check
from mailauth.checker.mx import check_mx
from mailauth.checker.spf import check_spf
from mailauth.utils.domain import normalize_domain, parse_selectors

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _state():
    """Return the (settings, catalog) pair loaded by create_app."""
    state = current_app.extensions["mailauth"]
    return state["settings"], state["catalog"]


def _domain_route(f):
    """Decorator that normalises the ``domain`` URL argument.

    Returns a JSON 400 response when the domain is not a valid hostname.
    """

    @wraps(f)
    def decorated(domain: str, *args, **kwargs):
        try:
            hostname = normalize_domain(domain)
        except ValueError as exc:
            return jsonify({"error": "Invalid domain", "message": str(exc)}), 400
        return f(hostname, *args, **kwargs)

    return decorated


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@bp.route("/health")
def health():
    """Health-check endpoint."""
    settings, catalog = _state()
    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "mailauth",
            "resolver": settings.resolver,
            "providers": len(catalog),
        }
    )


@bp.route("/spf/<domain>")
@_domain_route
def spf(domain: str):
    """Evaluate the SPF tree of a domain.

    Query parameters:
        expected_include: SPF include to look for; inferred from the MX
            records when omitted.
    """
    settings, catalog = _state()
    expected_include = (request.args.get("expected_include") or "").strip() or None
    if expected_include is not None:
        try:
            expected_include = normalize_domain(expected_include)
        except ValueError as exc:
            return jsonify({"error": "Invalid expected_include", "message": str(exc)}), 400

    result = check_spf(domain, expected_include, settings=settings, catalog=catalog)
    return jsonify(result.to_dict())


@bp.route("/dmarc/<domain>")
@_domain_route
def dmarc(domain: str):
    """Evaluate the DMARC record of a domain."""
    settings, _ = _state()
    return jsonify(check_dmarc(domain, settings).to_dict())


@bp.route("/dkim/<domain>")
@_domain_route
def dkim(domain: str):
    """Evaluate DKIM selectors of a domain.

    Query parameters:
        selectors: Comma-separated selector list; the mail provider's
            selectors are used when omitted.
    """
    settings, catalog = _state()
    try:
        selectors = parse_selectors(request.args.get("selectors"))
    except ValueError as exc:
        return jsonify({"error": "Invalid selectors", "message": str(exc)}), 400

    return jsonify(check_dkim(domain, selectors, settings, catalog).to_dict())


@bp.route("/dnssec/<domain>")
@_domain_route
def dnssec(domain: str):
    settings, _ = _state()
    return jsonify(check_dnssec(domain, settings).to_dict())


@bp.route("/mx/<domain>")
@_domain_route
def mx(domain: str):
    settings, catalog = _state()
    return jsonify(check_mx(domain, catalog, settings).to_dict())


@bp.route("/check/<domain>")
@_domain_route
def check(domain: str):
    """Run every checker for a domain."""
    settings, catalog = _state()
    logger.info("API check requested for %s", domain)
    return jsonify(run_domain_check(domain, settings, catalog).to_dict())
