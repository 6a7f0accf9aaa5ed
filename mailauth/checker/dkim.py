"""
DKIM key validation.

Validates DKIM (DomainKeys Identified Mail) keys for a domain:
- Queries {selector}._domainkey.{domain} TXT records for each selector
- Parses DKIM record tags (v, p, k, t, n, h, s, g) and collects unknown tags
- Decodes the public key to measure its algorithm and size
- Aggregates messages across all selectors
"""

from __future__ import annotations

import logging
from typing import Callable

from mailauth.checker.keys import decode_public_key, to_pem
from mailauth.checker.mx import ProviderCatalog, check_mx
from mailauth.checker.resolver import query_dns
from mailauth.checker.tags import TagOutcome, parse_tags
from mailauth.models import DkimAnalysis, DkimRecord, DnsSettings

logger = logging.getLogger(__name__)

MIN_RSA_KEY_BITS = 1024


def _handle_version(value: str, position: int) -> TagOutcome:
    if value != "DKIM1" or position != 0:
        return TagOutcome({"version": value}, failures=("Version must be DKIM1 and be the first tag.",))
    return TagOutcome({"version": value})


def _handle_public_key(value: str, position: int) -> TagOutcome:
    key = "".join(value.split())
    if not key:
        return TagOutcome({"public_key": ""}, failures=("No public key specified, the key may have been revoked.",))
    return TagOutcome({"public_key": key})


def _handle_flags(value: str, position: int) -> TagOutcome:
    flags = [flag.strip().lower() for flag in value.split(":")]
    if "y" in flags:
        return TagOutcome({"flags": value}, warnings=("This domain is in DKIM testing mode (t=y).",))
    return TagOutcome({"flags": value})


def _verbatim(field_name: str, lower: bool = False) -> Callable[[str, int], TagOutcome]:
    def handler(value: str, position: int) -> TagOutcome:
        return TagOutcome({field_name: value.lower() if lower else value})

    return handler


_TAG_HANDLERS: dict[str, Callable[[str, int], TagOutcome]] = {
    "v": _handle_version,
    "p": _handle_public_key,
    "k": _verbatim("key_type", lower=True),
    "t": _handle_flags,
    "n": _verbatim("notes"),
    "h": _verbatim("hash_algorithms"),
    "s": _verbatim("service_type"),
    "g": _verbatim("granularity"),
}


def _check_single_selector(
    domain: str,
    selector: str,
    settings: DnsSettings | None,
) -> DkimRecord:
    """Validate a single DKIM selector for *domain*."""
    dkim_domain = f"{selector}._domainkey.{domain}"
    result = query_dns(dkim_domain, "TXT", settings)
    if result is None or not result.ok:
        return DkimRecord(selector=selector, failures=(f"No DKIM record found at {dkim_domain}.",))

    # Split TXT records show up as several answers; the last one is used.
    raw_record = result.answers[-1].data

    passes: list[str] = []
    warnings: list[str] = []
    failures: list[str] = []
    fields: dict = {}
    unrecognized: list[str] = []
    seen: set[str] = set()

    for position, (tag, value) in enumerate(parse_tags(raw_record)):
        handler = _TAG_HANDLERS.get(tag)
        if handler is None:
            unrecognized.append(tag)
            continue
        if tag in seen:
            continue
        seen.add(tag)
        outcome = handler(value, position)
        fields.update(outcome.fields)
        passes.extend(outcome.passes)
        warnings.extend(outcome.warnings)
        failures.extend(outcome.failures)

    if unrecognized:
        warnings.append(f"Unrecognized tags found: {', '.join(unrecognized)}.")

    if "p" not in seen:
        failures.append("No public key (p=) tag found.")

    key_type = fields.get("key_type") or "rsa"
    public_key = fields.get("public_key", "")
    public_key_pem = ""
    key_info = None

    if public_key:
        public_key_pem = to_pem(public_key)
        key_info = decode_public_key(public_key)
        if key_info is None:
            failures.append("Unable to decode the public key, key size and algorithm cannot be validated.")
        else:
            if key_info.algorithm.lower() != key_type:
                warnings.append(
                    f"Key algorithm {key_info.algorithm} does not match the declared key type {key_type}."
                )
            if key_info.algorithm == "RSA" and key_info.key_size_bits < MIN_RSA_KEY_BITS:
                failures.append(
                    f"Key size is less than {MIN_RSA_KEY_BITS} bit ({key_info.key_size_bits} bit)."
                )
            else:
                passes.append(f"{key_info.key_size_bits} bit {key_info.algorithm} key is sufficient.")

    if not failures:
        passes.append(f"No errors detected with DKIM selector {selector}.")

    return DkimRecord(
        selector=selector,
        raw_record=raw_record,
        version=fields.get("version", ""),
        public_key_pem=public_key_pem,
        key_info=key_info,
        key_type=key_type,
        flags=fields.get("flags", ""),
        notes=fields.get("notes", ""),
        hash_algorithms=fields.get("hash_algorithms", "all"),
        service_type=fields.get("service_type", "*"),
        granularity=fields.get("granularity", "*"),
        unrecognized_tags=tuple(unrecognized),
        passes=tuple(passes),
        warnings=tuple(warnings),
        failures=tuple(failures),
    )


def check_dkim(
    domain: str,
    selectors: list[str] | None = None,
    settings: DnsSettings | None = None,
    catalog: ProviderCatalog | None = None,
) -> DkimAnalysis:
    """Validate DKIM keys for *domain* across all given *selectors*.

    Args:
        domain: The domain name to check.
        selectors: DKIM selectors to validate. When omitted and *catalog* is
            given, the selectors of the domain's mail provider are used.
        settings: Optional DnsSettings for the DoH backend.
        catalog: Provider catalog used to infer selectors.

    Returns:
        A DkimAnalysis with one DkimRecord per selector. Selector messages
        are repeated at the analysis level prefixed with ``[selector]``.
    """
    mail_provider = None
    if selectors is None and catalog is not None:
        match = check_mx(domain, catalog, settings)
        selectors = list(match.dkim_selectors)
        mail_provider = match.provider.name if match.provider else None

    selectors = [s.strip() for s in selectors or [] if s and s.strip()]
    if not selectors:
        return DkimAnalysis(
            domain=domain,
            mail_provider=mail_provider,
            failures=("No DKIM selectors provided.",),
        )

    records: list[DkimRecord] = []
    passes: list[str] = []
    warnings: list[str] = []
    failures: list[str] = []

    for selector in selectors:
        record = _check_single_selector(domain, selector, settings)
        records.append(record)
        passes.extend(f"[{selector}] {message}" for message in record.passes)
        warnings.extend(f"[{selector}] {message}" for message in record.warnings)
        failures.extend(f"[{selector}] {message}" for message in record.failures)

    logger.debug("DKIM for %s: %d selectors, %d failures", domain, len(selectors), len(failures))
    return DkimAnalysis(
        domain=domain,
        mail_provider=mail_provider,
        selectors=tuple(selectors),
        records=tuple(records),
        passes=tuple(passes),
        warnings=tuple(warnings),
        failures=tuple(failures),
    )
