"""
Unit tests for mailauth/checker/engine.py

Every checker module's query_dns is patched with the same fake so the
whole pipeline runs without network access.
"""

from __future__ import annotations

from contextlib import ExitStack
from unittest.mock import patch

import pytest

from mailauth.checker.dkim import check_dkim
from mailauth.checker.dmarc import check_dmarc
from mailauth.checker.engine import run_batch_check, run_domain_check
from mailauth.checker.spf import check_spf
from mailauth.models import DnsAnswer, DnsResult, DomainCheck

_CHECKER_MODULES = ("mx", "spf", "dmarc", "dkim", "dnssec")


def _patch_dns(stack: ExitStack, query) -> None:
    for module in _CHECKER_MODULES:
        stack.enter_context(patch(f"mailauth.checker.{module}.query_dns", side_effect=query))


@pytest.fixture
def google_domain(fake_dns, rsa_key_b64):
    """A fully configured Google Workspace domain."""
    return fake_dns(
        {
            ("example.com", "MX"): ["1 aspmx.l.google.com.", "5 alt1.aspmx.l.google.com."],
            ("example.com", "TXT"): ["v=spf1 include:_spf.google.com -all", "google-site-verification=x"],
            ("_spf.google.com", "TXT"): ["v=spf1 ip4:198.51.100.0/24 ~all"],
            ("_dmarc.example.com", "TXT"): ["v=DMARC1; p=reject; rua=mailto:dmarc@example.com"],
            ("google._domainkey.example.com", "TXT"): [f"v=DKIM1; k=rsa; p={rsa_key_b64(256)}"],
            ("example.com", "DNSKEY"): DnsResult(
                status=0,
                answers=(DnsAnswer(name="example.com.", record_type=48, ttl=3600, data="257 3 13 abc"),),
                authenticated_data=True,
            ),
        }
    )


# ---------------------------------------------------------------------------
# Tests - run_domain_check
# ---------------------------------------------------------------------------


def test_run_domain_check_wires_provider_hints(google_domain, catalog):
    with ExitStack() as stack:
        _patch_dns(stack, google_domain)
        check = run_domain_check("example.com", catalog=catalog)

    assert check.errors == []
    assert check.mx.provider.name == "Google Workspace"
    assert check.spf.expected_include == "_spf.google.com"
    assert "Expected SPF include of '_spf.google.com' was included." in check.spf.passes
    assert check.dkim.selectors == ("google",)
    assert check.dkim.mail_provider == "Google Workspace"
    assert check.dmarc.policy == "reject"
    assert check.dnssec.validated is True
    assert check.failure_count() == 0
    assert check.execution_time_ms >= 0


def test_run_domain_check_isolates_failing_check(google_domain, catalog):
    with ExitStack() as stack:
        _patch_dns(stack, google_domain)
        stack.enter_context(
            patch("mailauth.checker.engine.check_dmarc", side_effect=RuntimeError("boom"))
        )
        check = run_domain_check("example.com", catalog=catalog)

    assert check.dmarc is None
    assert check.errors == ["dmarc check failed: boom"]
    assert check.spf is not None
    assert check.dkim is not None


def test_run_domain_check_without_provider(fake_dns, catalog):
    query = fake_dns({("example.com", "TXT"): ["v=spf1 -all"]})
    with ExitStack() as stack:
        _patch_dns(stack, query)
        check = run_domain_check("example.com", catalog=catalog)

    assert check.mx.failures == ("No MX records found for example.com",)
    assert check.spf.expected_include is None
    assert check.dkim.failures == ("No DKIM selectors provided.",)
    assert check.dkim.mail_provider is None


def test_domain_check_serialises(google_domain, catalog):
    with ExitStack() as stack:
        _patch_dns(stack, google_domain)
        data = run_domain_check("example.com", catalog=catalog).to_dict()

    assert data["domain"] == "example.com"
    assert data["spf"]["level"] == "Parent"
    assert data["mx"]["mx_records"][0] == {"priority": 1, "hostname": "aspmx.l.google.com"}
    assert data["errors"] == []


def test_checks_are_repeatable(google_domain, catalog):
    """Running each check twice against the same answers gives the same result."""

    def _run():
        return (
            check_spf("example.com", "_spf.google.com").to_dict(),
            check_dmarc("example.com").to_dict(),
            check_dkim("example.com", ["google"], catalog=catalog).to_dict(),
        )

    with ExitStack() as stack:
        _patch_dns(stack, google_domain)
        first = _run()
        second = _run()

    assert first == second


# ---------------------------------------------------------------------------
# Tests - run_batch_check
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("workers", [0, 1, 3, 50])
def test_run_batch_check_preserves_order(catalog, workers):
    domains = [f"d{n}.example" for n in range(6)]
    with patch(
        "mailauth.checker.engine.run_domain_check",
        side_effect=lambda d, s, c: DomainCheck(domain=d),
    ) as mock_check:
        results = run_batch_check(domains, catalog=catalog, max_workers=workers)

    assert [r.domain for r in results] == domains
    assert mock_check.call_count == 6


def test_run_batch_check_records_crashed_domain(catalog):
    def _check(domain, settings, catalog):
        if domain == "bad.example":
            raise RuntimeError("exploded")
        return DomainCheck(domain=domain)

    with patch("mailauth.checker.engine.run_domain_check", side_effect=_check):
        results = run_batch_check(["a.example", "bad.example", "c.example"], catalog=catalog, max_workers=3)

    assert [r.domain for r in results] == ["a.example", "bad.example", "c.example"]
    assert results[1].errors == ["check failed: exploded"]
    assert results[0].errors == []


def test_run_batch_check_empty(catalog):
    assert run_batch_check([], catalog=catalog) == []
