"""
DNS-over-HTTPS resolver wrapper.

Issues a single JSON DoH query against the configured backend (Google or
Cloudflare) and normalises the response into a DnsResult.  There is no
retry and no caching: a transport failure is reported immediately as None
so callers can record it as a failed lookup.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import requests

from mailauth.models import DnsAnswer, DnsResult, DnsSettings

logger = logging.getLogger(__name__)

DOH_ENDPOINTS: dict[str, str] = {
    "google": "https://dns.google/resolve",
    "cloudflare": "https://cloudflare-dns.com/dns-query",
}

# IANA RR type numbers for the record types the checkers query.
RECORD_TYPES: dict[str, int] = {
    "A": 1,
    "PTR": 12,
    "MX": 15,
    "TXT": 16,
    "AAAA": 28,
    "DNSKEY": 48,
    "SPF": 99,
}

_TEXT_TYPES = {RECORD_TYPES["TXT"], RECORD_TYPES["SPF"]}

# A quoted TXT character-string, honouring backslash escapes.
_QUOTED_CHUNK_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')


def load_dns_settings(path: str | Path | None) -> DnsSettings:
    """Load resolver settings from an optional JSON document.

    A missing path, unreadable file or invalid content falls back to the
    default backend.

    Args:
        path: Filesystem path of the settings document, or None.

    Returns:
        A DnsSettings instance.
    """
    if not path:
        return DnsSettings()

    try:
        with open(path, encoding="utf-8") as fh:
            document = json.load(fh)
    except FileNotFoundError:
        logger.info("DNS settings file %s not found, using default resolver", path)
        return DnsSettings()
    except (OSError, ValueError) as exc:
        logger.warning("Could not read DNS settings from %s: %s", path, exc)
        return DnsSettings()

    if not isinstance(document, dict):
        logger.warning("DNS settings in %s is not a JSON object, using defaults", path)
        return DnsSettings()

    try:
        return DnsSettings.from_dict(document)
    except (TypeError, ValueError) as exc:
        logger.warning("Invalid DNS settings in %s: %s", path, exc)
        return DnsSettings()


def _unquote_txt(data: str) -> str:
    """Join the quoted character-strings of a TXT answer.

    Cloudflare returns ``"part one" "part two"`` while Google returns the
    already-joined text; both normalise to the joined, unquoted value.
    """
    stripped = data.strip()
    if not stripped.startswith('"'):
        return stripped
    chunks = _QUOTED_CHUNK_RE.findall(stripped)
    if not chunks:
        return stripped.strip('"')
    return "".join(re.sub(r"\\(.)", r"\1", chunk) for chunk in chunks)


def _parse_answers(raw_answers: object, type_number: int) -> list[DnsAnswer]:
    """Convert the JSON ``Answer`` array into DnsAnswer rows of *type_number*."""
    answers: list[DnsAnswer] = []
    if not isinstance(raw_answers, list):
        return answers

    for item in raw_answers:
        if not isinstance(item, dict):
            continue
        try:
            record_type = int(item.get("type", 0))
            ttl = int(item.get("TTL", 0))
        except (TypeError, ValueError):
            continue
        # CNAME chain entries and other types are not part of the answer set
        if record_type != type_number:
            continue
        data = item.get("data")
        if not isinstance(data, str):
            continue
        if record_type in _TEXT_TYPES:
            data = _unquote_txt(data)
        answers.append(
            DnsAnswer(
                name=str(item.get("name", "")),
                record_type=record_type,
                ttl=ttl,
                data=data,
            )
        )
    return answers


def _mx_hostname(answer: DnsAnswer) -> DnsAnswer:
    """Reduce an MX answer's ``<priority> <host>`` data to the hostname."""
    parts = answer.data.split()
    hostname = parts[-1] if parts else ""
    return DnsAnswer(
        name=answer.name,
        record_type=answer.record_type,
        ttl=answer.ttl,
        data=hostname.rstrip("."),
    )


def query_dns(
    domain: str,
    rdtype: str,
    settings: DnsSettings | None = None,
    simple_mx: bool = False,
) -> DnsResult | None:
    """Execute a DoH query for *domain* / *rdtype*.

    Args:
        domain: The domain name to query.
        rdtype: Record type string (A, AAAA, MX, TXT, DNSKEY, SPF, PTR).
        settings: Optional DnsSettings selecting the backend.
        simple_mx: For MX queries, return only the hostname of each answer.

    Returns:
        A DnsResult, or None when the request failed or NOERROR came back
        without answers.

    Raises:
        ValueError: If *rdtype* is not a supported record type.
    """
    rdtype = rdtype.upper()
    if rdtype not in RECORD_TYPES:
        raise ValueError(f"Unsupported record type: {rdtype}")
    if settings is None:
        settings = DnsSettings()

    url = DOH_ENDPOINTS.get(settings.resolver, DOH_ENDPOINTS["google"])

    try:
        response = requests.get(
            url,
            params={"name": domain, "type": rdtype},
            headers={"accept": "application/dns-json"},
            timeout=settings.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
    except requests.RequestException as exc:
        logger.warning("DoH request for %s/%s via %s failed: %s", domain, rdtype, settings.resolver, exc)
        return None
    except ValueError as exc:
        logger.warning("DoH response for %s/%s is not valid JSON: %s", domain, rdtype, exc)
        return None

    if not isinstance(payload, dict) or "Status" not in payload:
        logger.warning("Malformed DoH response for %s/%s", domain, rdtype)
        return None

    try:
        status = int(payload["Status"])
    except (TypeError, ValueError):
        logger.warning("DoH response for %s/%s has a non-numeric Status", domain, rdtype)
        return None

    answers = _parse_answers(payload.get("Answer"), RECORD_TYPES[rdtype])
    if status == 0 and not answers:
        logger.debug("No %s records for %s", rdtype, domain)
        return None

    if simple_mx and rdtype == "MX":
        answers = [_mx_hostname(a) for a in answers]

    comment = payload.get("Comment", "")
    if isinstance(comment, list):
        comment = " ".join(str(c) for c in comment)

    logger.debug("DoH query %s/%s returned status %d with %d answers", domain, rdtype, status, len(answers))
    return DnsResult(
        status=status,
        answers=tuple(answers),
        authenticated_data=bool(payload.get("AD", False)),
        comment=str(comment or ""),
    )
