"""
Shared pytest fixtures for the mailauth test suite.

No fixture touches the network: checker tests patch ``query_dns`` and
route tests patch the checker entry points.
"""

from __future__ import annotations

import base64

import pytest

from mailauth import create_app
from mailauth.checker.mx import ProviderCatalog
from mailauth.models import DnsAnswer, DnsResult, MailProviderProfile


# ---------------------------------------------------------------------------
# Test configuration
# ---------------------------------------------------------------------------


class TestConfig:
    """Minimal Flask config for automated testing."""

    TESTING = True
    DNS_SETTINGS_PATH = None
    PROVIDER_CATALOG_PATH = None
    CHECK_CONCURRENCY = 2


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def app():
    """Create a Flask application instance using the bundled catalog."""
    flask_app = create_app(TestConfig)
    with flask_app.app_context():
        yield flask_app


@pytest.fixture(scope="function")
def client(app):
    """Return a Flask test client."""
    return app.test_client()


@pytest.fixture(scope="function")
def catalog():
    """A small in-memory provider catalog."""
    return ProviderCatalog.from_profiles(
        [
            MailProviderProfile(
                name="Google Workspace",
                match_pattern=r"aspmx\.l\.google\.com$",
                spf_include_template="_spf.google.com",
                dkim_selectors=("google",),
            ),
            MailProviderProfile(
                name="Mimecast",
                match_pattern=r"^(?<Region>us|eu)-smtp-inbound-\d+\.mimecast\.com$",
                spf_include_template="{0}._netblocks.mimecast.com",
                spf_replace=("Region",),
            ),
        ]
    )


@pytest.fixture(scope="function")
def fake_dns():
    """Return a factory building a ``query_dns`` side effect from a table.

    The table maps ``(name, rdtype)`` to a list of answer strings, an int
    RCODE (answers empty) or a DnsResult.  Missing keys resolve to None.
    MX answers honour ``simple_mx``.
    """

    def factory(table: dict):
        calls: list[tuple[str, str]] = []

        def _query(domain, rdtype, settings=None, simple_mx=False):
            calls.append((domain, rdtype))
            value = table.get((domain, rdtype))
            if value is None:
                return None
            if isinstance(value, DnsResult):
                return value
            if isinstance(value, int):
                return DnsResult(status=value)
            data = list(value)
            if simple_mx and rdtype == "MX":
                data = [d.split()[-1].rstrip(".") for d in data]
            return DnsResult(
                status=0,
                answers=tuple(DnsAnswer(name=domain, record_type=0, ttl=300, data=d) for d in data),
            )

        _query.calls = calls
        return _query

    return factory


# ---------------------------------------------------------------------------
# DER key builders
# ---------------------------------------------------------------------------


def _der(tag: int, body: bytes) -> bytes:
    """Encode a single DER TLV element."""
    size = len(body)
    if size < 0x80:
        length = bytes([size])
    elif size < 0x100:
        length = b"\x81" + bytes([size])
    else:
        length = b"\x82" + size.to_bytes(2, "big")
    return bytes([tag]) + length + body


@pytest.fixture(scope="session")
def rsa_key_b64():
    """Return a factory for base64 SubjectPublicKeyInfo RSA keys.

    The modulus has exactly ``modulus_bytes`` significant bytes (high bit
    set, so DER adds a zero padding byte).
    """
    def factory(modulus_bytes: int) -> str:
        modulus = b"\x00\xc3" + b"\x5a" * (modulus_bytes - 1)
        rsa_public_key = _der(0x30, _der(0x02, modulus) + _der(0x02, b"\x01\x00\x01"))
        algorithm = _der(0x30, _der(0x06, bytes.fromhex("2a864886f70d010101")) + _der(0x05, b""))
        spki = _der(0x30, algorithm + _der(0x03, b"\x00" + rsa_public_key))
        return base64.b64encode(spki).decode("ascii")

    return factory
