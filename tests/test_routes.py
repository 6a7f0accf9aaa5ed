"""
Route tests for the mailauth JSON API.

Checker entry points are patched where the routes import them, so no
DNS calls occur.
"""

from __future__ import annotations

from unittest.mock import ANY, patch

import pytest

from mailauth.models import (
    DkimAnalysis,
    DmarcRecord,
    DnssecRecord,
    DnsSettings,
    DomainCheck,
    ProviderMatch,
    SpfRecord,
)

_ROUTES = "mailauth.api.routes"


# ---------------------------------------------------------------------------
# Health and errors
# ---------------------------------------------------------------------------


def test_health(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "ok"
    assert data["resolver"] == "google"
    assert data["providers"] >= 10


def test_unknown_route_returns_json_404(client):
    response = client.get("/api/v1/unknown/example.com")

    assert response.status_code == 404
    assert response.is_json
    assert response.get_json()["error"] == "Not Found"


def test_security_headers(client):
    response = client.get("/api/v1/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"


def test_app_state_loaded(app):
    state = app.extensions["mailauth"]

    assert state["settings"] == DnsSettings()
    assert len(state["catalog"]) >= 10


@pytest.mark.parametrize("domain", ["not%20a%20domain", "localhost", "192.0.2.1", "exa..mple.com", "-bad.example"])
def test_invalid_domain_returns_400(client, domain):
    with patch(f"{_ROUTES}.check_dmarc") as mock_check:
        response = client.get(f"/api/v1/dmarc/{domain}")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid domain"
    mock_check.assert_not_called()


# ---------------------------------------------------------------------------
# Checker endpoints
# ---------------------------------------------------------------------------


def test_spf_endpoint_normalises_domain(client, app):
    record = SpfRecord(domain="example.com", passes=("SPF record ends in -all.",))
    with patch(f"{_ROUTES}.check_spf", return_value=record) as mock_check:
        response = client.get("/api/v1/spf/Example.COM.")

    assert response.status_code == 200
    assert response.get_json()["passes"] == ["SPF record ends in -all."]
    mock_check.assert_called_once_with(
        "example.com",
        None,
        settings=app.extensions["mailauth"]["settings"],
        catalog=app.extensions["mailauth"]["catalog"],
    )


def test_spf_endpoint_expected_include(client):
    with patch(f"{_ROUTES}.check_spf", return_value=SpfRecord(domain="example.com")) as mock_check:
        client.get("/api/v1/spf/example.com?expected_include=_spf.Google.com")

    assert mock_check.call_args[0][1] == "_spf.google.com"


def test_spf_endpoint_rejects_bad_expected_include(client):
    response = client.get("/api/v1/spf/example.com?expected_include=not%20valid")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid expected_include"


def test_dmarc_endpoint(client):
    record = DmarcRecord(domain="example.com", policy="reject")
    with patch(f"{_ROUTES}.check_dmarc", return_value=record):
        response = client.get("/api/v1/dmarc/example.com")

    assert response.get_json()["policy"] == "reject"


def test_dkim_endpoint_with_selectors(client):
    analysis = DkimAnalysis(domain="example.com", selectors=("s1", "s2"))
    with patch(f"{_ROUTES}.check_dkim", return_value=analysis) as mock_check:
        response = client.get("/api/v1/dkim/example.com?selectors=s1,%20s2")

    assert response.status_code == 200
    assert response.get_json()["selectors"] == ["s1", "s2"]
    mock_check.assert_called_once_with("example.com", ["s1", "s2"], ANY, ANY)


def test_dkim_endpoint_without_selectors(client):
    with patch(f"{_ROUTES}.check_dkim", return_value=DkimAnalysis(domain="example.com")) as mock_check:
        client.get("/api/v1/dkim/example.com")

    assert mock_check.call_args[0][1] is None


def test_dkim_endpoint_rejects_bad_selector(client):
    response = client.get("/api/v1/dkim/example.com?selectors=ok,bad%20one")

    assert response.status_code == 400
    assert response.get_json()["error"] == "Invalid selectors"


def test_dnssec_endpoint(client):
    with patch(f"{_ROUTES}.check_dnssec", return_value=DnssecRecord(domain="example.com", enabled=True)):
        response = client.get("/api/v1/dnssec/example.com")

    assert response.get_json()["enabled"] is True


def test_mx_endpoint(client):
    with patch(f"{_ROUTES}.check_mx", return_value=ProviderMatch(domain="example.com")):
        response = client.get("/api/v1/mx/example.com")

    assert response.get_json()["domain"] == "example.com"


def test_check_endpoint(client):
    check = DomainCheck(domain="example.com", errors=["dnssec check failed: timeout"])
    with patch(f"{_ROUTES}.run_domain_check", return_value=check) as mock_check:
        response = client.get("/api/v1/check/example.com")

    data = response.get_json()
    assert data["domain"] == "example.com"
    assert data["errors"] == ["dnssec check failed: timeout"]
    assert data["spf"] is None
    assert mock_check.call_args[0][0] == "example.com"
