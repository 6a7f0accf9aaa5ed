"""
DMARC record validation.

Validates DMARC (Domain-based Message Authentication, Reporting and
Conformance) records for a domain:
- Queries _dmarc.{domain} TXT record
- Parses all tag=value pairs (v, p, sp, rua, ruf, fo, pct, adkim, aspf, rf, ri)
- Validates policy settings and reports passes, warnings and failures
- Verifies that external report recipients authorise the domain
  (RFC 7489 section 7.1)
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from mailauth.checker.resolver import query_dns
from mailauth.checker.tags import TagOutcome, parse_tags
from mailauth.models import DmarcRecord, DnsSettings

logger = logging.getLogger(__name__)

_DMARC_RECORD_RE = re.compile(r"^v=dmarc1", re.IGNORECASE)
_MAILTO_PREFIX = "mailto:"

_SUPPORTED_REPORT_FORMATS = {"afrf"}

_FAILURE_OPTIONS: dict[str, tuple[str, str]] = {
    "0": ("warning", "Forensic reports will only be sent when both SPF and DKIM fail to align."),
    "1": ("pass", "Forensic reports will be sent when either SPF or DKIM fails to align."),
    "d": ("warning", "Forensic reports will only be sent when the DKIM signature fails to verify."),
    "s": ("warning", "Forensic reports will only be sent when SPF evaluation fails."),
}


def _policy_outcome(value: str, subject: str) -> tuple[tuple[str, ...], tuple[str, ...], tuple[str, ...]]:
    """Return (passes, warnings, failures) for a p= or sp= value."""
    normalised = value.lower()
    if normalised == "reject":
        return (f"{subject} is sufficiently strict.",), (), ()
    if normalised == "quarantine":
        return (), (f"{subject} is only quarantine, consider changing to reject.",), ()
    if normalised == "none":
        return (), (), (f"{subject} is not being enforced (none).",)
    return (), (), (f"{subject} must be one of none, quarantine or reject, found '{value}'.",)


def _extract_addresses(value: str, label: str) -> tuple[list[str], list[str]]:
    """Parse a comma-separated rua/ruf value.

    Returns:
        (addresses, failures): valid addresses without the ``mailto:`` prefix
        or ``!size`` suffix, and one failure per malformed URI.
    """
    addresses: list[str] = []
    failures: list[str] = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        if not item.lower().startswith(_MAILTO_PREFIX):
            failures.append(f"{label} address '{item}' must begin with mailto:.")
            continue
        address = item[len(_MAILTO_PREFIX):].split("!", 1)[0].strip()
        if "@" not in address:
            failures.append(f"{label} address '{item}' is not a valid email address.")
            continue
        addresses.append(address)
    return addresses, failures


# ---------------------------------------------------------------------------
# Tag handlers
# ---------------------------------------------------------------------------


def _handle_version(value: str, position: int) -> TagOutcome:
    if value != "DMARC1" or position != 0:
        return TagOutcome({"version": value}, failures=("Version must be DMARC1 and be the first tag.",))
    return TagOutcome({"version": value})


def _handle_policy(value: str, position: int) -> TagOutcome:
    passes, warnings, failures = _policy_outcome(value, "Policy")
    return TagOutcome({"policy": value.lower()}, passes, warnings, failures)


def _handle_subdomain_policy(value: str, position: int) -> TagOutcome:
    return TagOutcome({"subdomain_policy": value.lower()})


def _handle_rua(value: str, position: int) -> TagOutcome:
    addresses, failures = _extract_addresses(value, "Aggregate report")
    return TagOutcome({"reporting_emails": addresses}, failures=tuple(failures))


def _handle_ruf(value: str, position: int) -> TagOutcome:
    addresses, failures = _extract_addresses(value, "Forensic report")
    return TagOutcome({"forensic_emails": addresses}, failures=tuple(failures))


def _handle_failure_options(value: str, position: int) -> TagOutcome:
    return TagOutcome({"failure_report_options": value})


def _handle_percent(value: str, position: int) -> TagOutcome:
    try:
        percent = int(value)
    except ValueError:
        percent = -1
    if not 1 <= percent <= 100:
        return TagOutcome({}, failures=("Percentage must be between 1 and 100.",))
    if percent < 100:
        return TagOutcome(
            {"percent": percent},
            warnings=(f"Not all emails will be processed by the DMARC policy ({percent}%).",),
        )
    return TagOutcome({"percent": percent})


def _handle_report_format(value: str, position: int) -> TagOutcome:
    if value.lower() not in _SUPPORTED_REPORT_FORMATS:
        return TagOutcome({"report_format": value}, failures=(f"Report format '{value}' is not supported.",))
    return TagOutcome({"report_format": value})


def _verbatim(field_name: str) -> Callable[[str, int], TagOutcome]:
    def handler(value: str, position: int) -> TagOutcome:
        return TagOutcome({field_name: value})

    return handler


_TAG_HANDLERS: dict[str, Callable[[str, int], TagOutcome]] = {
    "v": _handle_version,
    "p": _handle_policy,
    "sp": _handle_subdomain_policy,
    "rua": _handle_rua,
    "ruf": _handle_ruf,
    "fo": _handle_failure_options,
    "pct": _handle_percent,
    "rf": _handle_report_format,
    "adkim": _verbatim("dkim_alignment"),
    "aspf": _verbatim("spf_alignment"),
    "ri": _verbatim("report_interval"),
}


def _check_report_authorization(
    domain: str,
    report_domains: list[str],
    settings: DnsSettings | None,
) -> tuple[list[str], list[str], list[str]]:
    """Verify ``<domain>._report._dmarc.<report domain>`` for each recipient.

    Returns:
        (authorized domains, passes, warnings).
    """
    authorized: list[str] = []
    warnings: list[str] = []
    for report_domain in report_domains:
        name = f"{domain}._report._dmarc.{report_domain}"
        result = query_dns(name, "TXT", settings)
        if result is not None and any(_DMARC_RECORD_RE.match(data) for data in result.data()):
            authorized.append(report_domain)
        else:
            warnings.append(
                f"Report domain {report_domain} is not authorized to receive reports for {domain} "
                f"(missing {name} record)."
            )

    passes: list[str] = []
    if not warnings and authorized:
        passes.append(f"External reporting domains are authorized: {', '.join(authorized)}.")
    return authorized, passes, warnings


def check_dmarc(domain: str, settings: DnsSettings | None = None) -> DmarcRecord:
    """Validate the DMARC record for *domain*.

    Args:
        domain: The domain name to check.
        settings: Optional DnsSettings for the DoH backend.

    Returns:
        A DmarcRecord. A missing record yields an empty record with a
        single failure; nothing is raised for DNS or syntax problems.
    """
    dmarc_domain = f"_dmarc.{domain}"
    result = query_dns(dmarc_domain, "TXT", settings)
    if result is None or not result.ok:
        logger.info("No DMARC record for %s", domain)
        return DmarcRecord(domain=domain, failures=(f"No DMARC record found at {dmarc_domain}.",))

    passes: list[str] = []
    warnings: list[str] = []
    failures: list[str] = []

    answers = result.data()
    records = [data for data in answers if _DMARC_RECORD_RE.match(data)] or answers[:1]
    if len(records) > 1:
        warnings.append(
            f"Multiple DMARC records found at {dmarc_domain}, this may cause unexpected behavior."
        )
    raw_record = records[0]

    fields: dict = {}
    seen: set[str] = set()
    for position, (tag, value) in enumerate(parse_tags(raw_record)):
        handler = _TAG_HANDLERS.get(tag)
        if handler is None or tag in seen:
            continue
        seen.add(tag)
        outcome = handler(value, position)
        fields.update(outcome.fields)
        passes.extend(outcome.passes)
        warnings.extend(outcome.warnings)
        failures.extend(outcome.failures)

    if "v" not in seen:
        failures.append("Version must be DMARC1 and be the first tag.")
    if "p" not in seen:
        failures.append("Policy tag (p=) is required.")

    policy = fields.get("policy", "")
    subdomain_policy = fields.get("subdomain_policy") or policy
    if subdomain_policy:
        sp_passes, sp_warnings, sp_failures = _policy_outcome(subdomain_policy, "Subdomain policy")
        passes.extend(sp_passes)
        warnings.extend(sp_warnings)
        failures.extend(sp_failures)

    reporting_emails: list[str] = fields.get("reporting_emails", [])
    forensic_emails: list[str] = fields.get("forensic_emails", [])
    if reporting_emails:
        passes.append("Aggregate reports are being sent.")
    else:
        warnings.append("Aggregate reports are not being sent.")

    failure_options = fields.get("failure_report_options", "")
    if forensic_emails:
        failure_options = failure_options or "0"
        for option in failure_options.split(":"):
            option = option.strip().lower()
            severity_message = _FAILURE_OPTIONS.get(option)
            if severity_message is None:
                failures.append(f"Failure reporting option '{option}' is not valid.")
            elif severity_message[0] == "pass":
                passes.append(severity_message[1])
            else:
                warnings.append(severity_message[1])

    report_domains: list[str] = []
    for address in reporting_emails + forensic_emails:
        report_domain = address.rsplit("@", 1)[-1].rstrip(".").lower()
        if report_domain != domain.lower() and report_domain not in report_domains:
            report_domains.append(report_domain)

    authorized: list[str] = []
    if report_domains:
        authorized, auth_passes, auth_warnings = _check_report_authorization(domain, report_domains, settings)
        passes.extend(auth_passes)
        warnings.extend(auth_warnings)

    return DmarcRecord(
        domain=domain,
        raw_record=raw_record,
        version=fields.get("version", ""),
        policy=policy,
        subdomain_policy=subdomain_policy,
        percent=fields.get("percent", 100),
        dkim_alignment=fields.get("dkim_alignment", "r"),
        spf_alignment=fields.get("spf_alignment", "r"),
        report_format=fields.get("report_format", "afrf"),
        report_interval=fields.get("report_interval", "86400"),
        reporting_emails=tuple(reporting_emails),
        forensic_emails=tuple(forensic_emails),
        failure_report_options=failure_options,
        authorized_report_domains=tuple(authorized),
        passes=tuple(passes),
        warnings=tuple(warnings),
        failures=tuple(failures),
    )
