"""
DNSSEC check.

A single DNSKEY lookup through the DoH resolver.  The validating resolver
sets the AD (authenticated data) flag when the chain of trust verifies.
"""

from __future__ import annotations

import logging

from mailauth.checker.resolver import query_dns
from mailauth.models import DnsSettings, DnssecRecord

logger = logging.getLogger(__name__)

# RCODE 2: a validating resolver answers SERVFAIL for bogus signatures.
_SERVFAIL = 2


def check_dnssec(domain: str, settings: DnsSettings | None = None) -> DnssecRecord:
    """Check whether *domain* publishes DNSKEY records that validate.

    Args:
        domain: The domain name to check.
        settings: Optional DnsSettings for the DoH backend.

    Returns:
        A DnssecRecord with the DNSKEY data and validation messages.
    """
    result = query_dns(domain, "DNSKEY", settings)

    if result is None:
        return DnssecRecord(
            domain=domain,
            failures=(f"No DNSKEY records found, DNSSEC is not enabled for {domain}.",),
        )

    if result.status != 0:
        logger.info("DNSKEY lookup for %s returned status %d", domain, result.status)
        if result.status == _SERVFAIL:
            message = f"DNSSEC validation failed for {domain}, the resolver returned SERVFAIL."
        else:
            message = f"DNSKEY lookup for {domain} failed with status {result.status}."
        if result.comment:
            message = f"{message} {result.comment}"
        return DnssecRecord(domain=domain, failures=(message,))

    keys = tuple(result.data())
    if result.authenticated_data:
        return DnssecRecord(
            domain=domain,
            keys=keys,
            enabled=True,
            validated=True,
            passes=(f"DNSSEC enabled and validated for {domain}.",),
        )

    return DnssecRecord(
        domain=domain,
        keys=keys,
        enabled=True,
        failures=(
            f"DNSSEC enabled for {domain}, but the response was not validated. "
            "Ensure DS records are published at the registrar.",
        ),
    )
