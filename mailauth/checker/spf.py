"""
SPF record validation.

Validates the SPF (Sender Policy Framework) record of a domain by walking
its whole include/redirect tree:
- Presence and uniqueness of the v=spf1 record
- Mechanism parsing (ip4, ip6, include, a, mx, ptr, exists, redirect, all)
- DNS lookup count enforcement (max 10 per RFC 7208), counted over the tree
- Permanent errors (unknown mechanisms, redirect combined with all, missing
  include targets) which propagate up from nested records
- Comparison against the SPF include expected for the mail provider

Each call returns a new SpfRecord; nested records are evaluated first and
merged into their parent at the call site.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import replace

from mailauth.checker.mx import ProviderCatalog, check_mx
from mailauth.checker.resolver import query_dns
from mailauth.models import DnsSettings, SpfLevel, SpfRecord, TypeLookup

logger = logging.getLogger(__name__)

MAX_DNS_LOOKUPS = 10

# Include/redirect nesting beyond this depth is not resolved.
MAX_RECURSION_DEPTH = 10

# RFC 7208 section 4.6.4: at most 10 hosts per mx mechanism.
_MX_HOST_LIMIT = 10

_SPF_RECORD_RE = re.compile(r"^v=spf1( |$)")

_Q = r"(?P<qualifier>[+\-~?]?)"
_REDIRECT_RE = re.compile(r"^redirect=(?P<domain>.+)$", re.IGNORECASE)
_EXP_RE = re.compile(r"^exp=.+$", re.IGNORECASE)
_INCLUDE_RE = re.compile(rf"^{_Q}include:(?P<domain>.+)$", re.IGNORECASE)
_EXISTS_RE = re.compile(rf"^{_Q}exists:(?P<domain>.+)$", re.IGNORECASE)
_IP_RE = re.compile(rf"^{_Q}ip(?P<version>[46]):(?P<value>.+)$", re.IGNORECASE)
_ALL_RE = re.compile(rf"^{_Q}all$", re.IGNORECASE)
_TYPE_RE = re.compile(
    rf"^{_Q}(?P<mechanism>a|mx|ptr)"
    r"(?::(?P<domain>[^/]+))?"
    r"(?P<prefix>/\d{1,3}(?://\d{1,3})?|//\d{1,3})?$",
    re.IGNORECASE,
)

_PASS_QUALIFIERS = ("", "+")


def _normalise(domain: str) -> str:
    return domain.strip().rstrip(".").lower()


def _is_valid_ip(value: str, version: int) -> bool:
    try:
        return ipaddress.ip_network(value, strict=False).version == version
    except ValueError:
        return False


def _resolve_type_lookup(
    mechanism: str,
    domain: str,
    prefix: str,
    settings: DnsSettings | None,
) -> TypeLookup:
    """Resolve the records an ``a``, ``mx`` or ``ptr`` mechanism refers to."""
    records: list[str] = []

    if mechanism == "a":
        result = query_dns(domain, "A", settings)
        if result is not None and result.ok:
            records = result.data()
    elif mechanism == "mx":
        mx_result = query_dns(domain, "MX", settings, simple_mx=True)
        if mx_result is not None and mx_result.ok:
            for host in mx_result.data()[:_MX_HOST_LIMIT]:
                if not host:
                    continue
                host_result = query_dns(host, "A", settings)
                if host_result is not None and host_result.ok:
                    records.extend(host_result.data())
    else:
        result = query_dns(domain, "PTR", settings)
        if result is not None and result.ok:
            records = result.data()

    return TypeLookup(mechanism=mechanism, domain=domain, prefix=prefix, records=tuple(records))


def _evaluate_record(
    domain: str,
    level: SpfLevel,
    settings: DnsSettings | None,
    visited: set[str],
    depth: int = 0,
) -> SpfRecord:
    """Resolve and evaluate the SPF record of *domain* and its nested records.

    Nested records are evaluated depth-first in include order, then the
    redirect. A domain already in *visited* is skipped and not counted, so
    every record in the tree is resolved at most once.

    Args:
        domain: Domain whose TXT records are evaluated.
        level: Position of this record in the tree.
        settings: DnsSettings for the DoH backend.
        visited: Normalised domains already evaluated during this check.
            Updated in place.
        depth: Nesting depth of this record, 0 for the top-level record.

    Returns:
        The evaluated SpfRecord, without the top-level only checks.
    """
    passes: list[str] = []
    warnings: list[str] = []
    failures: list[str] = []
    permanent_error = False

    result = query_dns(domain, "TXT", settings)
    if result is None:
        logger.info("No TXT answer for %s (%s)", domain, level.value)
        candidates: list[str] = []
    else:
        candidates = [data for data in result.data() if _SPF_RECORD_RE.match(data)]

    if not candidates:
        if level is SpfLevel.PARENT:
            failures.append(f"{domain} does not resolve an SPF record.")
        else:
            failures.append(f"{level.value} {domain} does not resolve an SPF record, permanent error.")
            permanent_error = True
        return SpfRecord(
            domain=domain,
            level=level,
            permanent_error=permanent_error,
            failures=tuple(failures),
        )

    if len(candidates) > 1:
        failures.append(f"{domain} has {len(candidates)} SPF records, only one is allowed.")
        if level is not SpfLevel.PARENT:
            permanent_error = True

    raw_record = candidates[0]
    includes: list[str] = []
    ip_addresses: set[str] = set()
    type_lookups: list[TypeLookup] = []
    lookup_count = 0
    all_mechanism: str | None = None
    redirect_domain: str | None = None

    for token in raw_record.split():
        if token.lower() == "v=spf1":
            continue

        match = _REDIRECT_RE.match(token)
        if match:
            redirect_domain = match.group("domain")
            continue

        if _EXP_RE.match(token):
            continue

        match = _INCLUDE_RE.match(token)
        if match:
            if match.group("domain") not in includes:
                includes.append(match.group("domain"))
            continue

        match = _EXISTS_RE.match(token)
        if match:
            lookup_count += 1
            continue

        match = _IP_RE.match(token)
        if match:
            value = match.group("value")
            if not _is_valid_ip(value, int(match.group("version"))):
                failures.append(f"{domain} - Invalid IP address '{token}', permanent error.")
                permanent_error = True
            elif match.group("qualifier") in _PASS_QUALIFIERS:
                ip_addresses.add(value)
            continue

        match = _ALL_RE.match(token)
        if match:
            all_mechanism = match.group("qualifier")
            continue

        match = _TYPE_RE.match(token)
        if match:
            lookup_count += 1
            mechanism = match.group("mechanism").lower()
            target = match.group("domain") or domain
            prefix = match.group("prefix") or ""
            lookup = _resolve_type_lookup(mechanism, target, prefix, settings)
            type_lookups.append(lookup)
            if mechanism != "ptr" and match.group("qualifier") in _PASS_QUALIFIERS:
                v4_prefix = prefix.split("//")[0]
                ip_addresses.update(f"{ip}{v4_prefix}" for ip in lookup.records)
            continue

        failures.append(f"{domain} - Unknown mechanism '{token}', permanent error.")
        permanent_error = True

    if redirect_domain and all_mechanism is not None:
        failures.append(
            f"{domain} - Redirect modifier should not contain all mechanism, SPF record invalid."
        )
        permanent_error = True

    targets = [(include, SpfLevel.INCLUDE) for include in includes]
    if redirect_domain:
        targets.append((redirect_domain, SpfLevel.REDIRECT))

    children: list[SpfRecord] = []
    for target, child_level in targets:
        key = _normalise(target)
        if key in visited:
            warnings.append(f"{child_level.value} {target} was already evaluated and was skipped.")
            continue
        if depth >= MAX_RECURSION_DEPTH:
            failures.append(
                f"{child_level.value} {target} exceeds the maximum nesting depth of "
                f"{MAX_RECURSION_DEPTH}, permanent error."
            )
            permanent_error = True
            continue

        visited.add(key)
        child = _evaluate_record(target, child_level, settings, visited, depth + 1)
        children.append(child)
        lookup_count += 1 + child.lookup_count
        ip_addresses |= child.ip_addresses
        passes.extend(child.passes)
        warnings.extend(child.warnings)
        failures.extend(child.failures)
        permanent_error = permanent_error or child.permanent_error
        if child_level is SpfLevel.REDIRECT:
            all_mechanism = child.all_mechanism

    logger.debug(
        "SPF %s (%s): %d lookups, %d addresses, permerror=%s",
        domain, level.value, lookup_count, len(ip_addresses), permanent_error,
    )
    return SpfRecord(
        domain=domain,
        level=level,
        raw_record=raw_record,
        record_count=len(candidates),
        lookup_count=lookup_count,
        all_mechanism=all_mechanism,
        ip_addresses=frozenset(ip_addresses),
        type_lookups=tuple(type_lookups),
        included_records=tuple(children),
        redirect_domain=redirect_domain,
        permanent_error=permanent_error,
        passes=tuple(passes),
        warnings=tuple(warnings),
        failures=tuple(failures),
    )


def _check_expected_include(
    record: SpfRecord,
    expected_include: str,
    settings: DnsSettings | None,
) -> tuple[list[str], list[str]]:
    """Compare the SPF tree against the include the mail provider expects.

    Returns:
        A (passes, failures) tuple of messages.
    """
    key = _normalise(expected_include)
    if key in {_normalise(d) for d in record.include_domains()}:
        return [f"Expected SPF include of '{expected_include}' was included."], []

    expected = _evaluate_record(expected_include, SpfLevel.INCLUDE, settings, {key})
    total = len(expected.ip_addresses)
    matched = len(expected.ip_addresses & record.ip_addresses)
    if total and matched == total:
        return [f"All {total} IP addresses from expected SPF include '{expected_include}' were included."], []
    if not total:
        return [], [
            f"Expected SPF include of '{expected_include}' was not found "
            "(expected include resolved no addresses)."
        ]

    return [], [
        f"Expected SPF include of '{expected_include}' was not found "
        f"({matched} of {total} IP addresses matched)."
    ]


def check_spf(
    domain: str,
    expected_include: str | None = None,
    level: SpfLevel | str = SpfLevel.PARENT,
    settings: DnsSettings | None = None,
    catalog: ProviderCatalog | None = None,
) -> SpfRecord:
    """Validate the SPF record for *domain*.

    Args:
        domain: The domain name to check.
        expected_include: SPF include the domain's mail provider requires.
            Inferred from the MX records when omitted and *catalog* is given.
        level: Evaluation level; the lookup limit, expected include and
            ``all`` checks only run at ``SpfLevel.PARENT``.
        settings: Optional DnsSettings for the DoH backend.
        catalog: Provider catalog used to infer *expected_include*.

    Returns:
        The evaluated SpfRecord. DNS failures and invalid records are
        reported in its message lists, never raised.
    """
    level = SpfLevel(level)
    record = _evaluate_record(domain, level, settings, {_normalise(domain)})
    if level is not SpfLevel.PARENT:
        return record

    passes = list(record.passes)
    warnings = list(record.warnings)
    failures = list(record.failures)
    permanent_error = record.permanent_error

    if record.lookup_count > MAX_DNS_LOOKUPS:
        failures.append(f"SPF record exceeded {MAX_DNS_LOOKUPS} lookups, found {record.lookup_count}.")
        permanent_error = True
    elif record.lookup_count == MAX_DNS_LOOKUPS - 1:
        warnings.append(
            f"SPF record is approaching the {MAX_DNS_LOOKUPS} lookup limit, found {record.lookup_count}."
        )

    if record.record_count > 0:
        if expected_include is None and catalog is not None:
            expected_include = check_mx(domain, catalog, settings).expected_spf_include

        if expected_include:
            include_passes, include_failures = _check_expected_include(record, expected_include, settings)
            passes.extend(include_passes)
            failures.extend(include_failures)

        if record.all_mechanism is None:
            failures.append("SPF record does not contain an all mechanism, defaulting to +all.")
        elif record.all_mechanism == "-":
            passes.append("SPF record ends in -all.")
        else:
            failures.append(
                f"SPF record ends in {record.all_mechanism}all, it should end in -all "
                "to prevent spoofing."
            )

        if not failures and not permanent_error:
            passes.append("No errors detected with SPF record.")

    return replace(
        record,
        expected_include=expected_include,
        permanent_error=permanent_error,
        passes=tuple(passes),
        warnings=tuple(warnings),
        failures=tuple(failures),
    )
