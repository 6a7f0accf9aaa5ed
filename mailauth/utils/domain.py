"""Domain name normalisation for user-supplied input."""

from __future__ import annotations

import re

# Hostname validation pattern: lowercase labels separated by dots, min 2-char TLD
_HOSTNAME_RE = re.compile(
    r"^[a-z0-9_]([a-z0-9_-]*[a-z0-9])?(\.[a-z0-9_]([a-z0-9_-]*[a-z0-9])?)*\.(xn--[a-z0-9-]+|[a-z]{2,})$"
)

_SELECTOR_RE = re.compile(r"^[a-z0-9_]([a-z0-9_.-]*[a-z0-9_])?$", re.IGNORECASE)


def normalize_domain(value: str) -> str:
    """Return *value* as a lowercase ASCII hostname without a trailing dot.

    Internationalised names are IDNA-encoded.

    Raises:
        ValueError: If the value is not a syntactically valid hostname.
    """
    hostname = (value or "").strip().rstrip(".").lower()
    if not hostname:
        raise ValueError("Hostname is required.")
    try:
        hostname = hostname.encode("idna").decode("ascii")
    except UnicodeError as exc:
        raise ValueError(f"Invalid hostname {value!r}: {exc}") from None
    if len(hostname) > 253 or not _HOSTNAME_RE.match(hostname):
        raise ValueError(
            f"Invalid hostname {value!r}. Use letters, digits, hyphens and dots (e.g. example.com)."
        )
    return hostname


def parse_selectors(value: str | None) -> list[str] | None:
    """Split a comma-separated selector list; None when nothing was given.

    Raises:
        ValueError: If a selector contains characters not allowed in a label.
    """
    if value is None or not value.strip():
        return None
    selectors = [s.strip() for s in value.split(",") if s.strip()]
    for selector in selectors:
        if not _SELECTOR_RE.match(selector):
            raise ValueError(f"Invalid DKIM selector {selector!r}.")
    return selectors
