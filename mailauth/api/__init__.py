"""API blueprint - JSON endpoints for the individual checks."""

from __future__ import annotations

from flask import Blueprint

bp: Blueprint = Blueprint("api", __name__, url_prefix="/api/v1")

from mailauth.api import routes  # noqa: E402, F401
