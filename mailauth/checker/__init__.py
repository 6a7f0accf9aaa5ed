"""
Checker package for mailauth.

Provides the DNS-over-HTTPS resolver and the SPF, DMARC, DKIM, DNSSEC and
MX/provider checkers, plus the engine that runs them together.
"""

from mailauth.checker.dkim import check_dkim
from mailauth.checker.dmarc import check_dmarc
from mailauth.checker.dnssec import check_dnssec
from mailauth.checker.mx import ProviderCatalog, check_mx
from mailauth.checker.resolver import load_dns_settings, query_dns
from mailauth.checker.spf import check_spf

__all__ = [
    "ProviderCatalog",
    "check_dkim",
    "check_dmarc",
    "check_dnssec",
    "check_mx",
    "check_spf",
    "load_dns_settings",
    "query_dns",
]
