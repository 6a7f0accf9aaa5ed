"""
Unit tests for mailauth/checker/dkim.py

DNS lookups are mocked; keys are built from raw DER so their size is
known exactly.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from mailauth.checker.dkim import check_dkim

_PATCH_TARGET = "mailauth.checker.dkim.query_dns"
_MX_PATCH_TARGET = "mailauth.checker.mx.query_dns"


def _check(fake_dns, records, selector="sel"):
    """Run check_dkim for example.com with *records* at the selector name."""
    if isinstance(records, str):
        records = [records]
    table = {(f"{selector}._domainkey.example.com", "TXT"): records}
    with patch(_PATCH_TARGET, side_effect=fake_dns(table)):
        return check_dkim("example.com", [selector])


# ---------------------------------------------------------------------------
# Tests - key strength
# ---------------------------------------------------------------------------


def test_dkim_1024_bit_key_passes(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; k=rsa; p={rsa_key_b64(128)}")
    record = analysis.records[0]

    assert record.key_info.key_size_bits == 1024
    assert record.failures == ()
    assert "1024 bit RSA key is sufficient." in record.passes
    assert "No errors detected with DKIM selector sel." in record.passes
    assert "[sel] 1024 bit RSA key is sufficient." in analysis.passes
    assert record.public_key_pem.startswith("-----BEGIN PUBLIC KEY-----\n")


def test_dkim_512_bit_key_fails(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; k=rsa; p={rsa_key_b64(64)}")

    assert analysis.records[0].key_info.key_size_bits == 512
    assert analysis.failures == ("[sel] Key size is less than 1024 bit (512 bit).",)


def test_dkim_last_answer_is_used(fake_dns, rsa_key_b64):
    """When the selector returns several TXT answers the last one wins."""
    analysis = _check(
        fake_dns,
        [f"v=DKIM1; p={rsa_key_b64(64)}", f"v=DKIM1; p={rsa_key_b64(256)}"],
    )
    record = analysis.records[0]

    assert record.key_info.key_size_bits == 2048
    assert record.failures == ()


def test_dkim_undecodable_key(fake_dns):
    analysis = _check(fake_dns, "v=DKIM1; p=AAAA")

    assert analysis.records[0].key_info is None
    assert (
        "[sel] Unable to decode the public key, key size and algorithm cannot be validated."
        in analysis.failures
    )


def test_dkim_declared_key_type_mismatch(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; k=dsa; p={rsa_key_b64(128)}")

    assert "Key algorithm RSA does not match the declared key type dsa." in analysis.records[0].warnings


def test_dkim_ed25519_key(fake_dns):
    analysis = _check(fake_dns, "v=DKIM1; k=ed25519; p=11qYAYKxCrfVS/7TyWQHOg7hcvPapiMlrwIaaPcHURo=")
    record = analysis.records[0]

    assert record.key_type == "ed25519"
    assert "256 bit ED25519 key is sufficient." in record.passes
    assert record.failures == ()


def test_dkim_rsa_key_declared_as_ed25519(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; k=ed25519; p={rsa_key_b64(256)}")
    record = analysis.records[0]

    assert "Key algorithm RSA does not match the declared key type ed25519." in record.warnings
    assert record.key_info.algorithm == "RSA"
    assert record.key_info.key_size_bits == 2048
    assert record.failures == ()


def test_dkim_ed25519_key_declared_as_rsa(fake_dns):
    analysis = _check(fake_dns, "v=DKIM1; k=rsa; p=11qYAYKxCrfVS/7TyWQHOg7hcvPapiMlrwIaaPcHURo=")
    record = analysis.records[0]

    assert "Key algorithm ED25519 does not match the declared key type rsa." in record.warnings
    assert record.key_info.key_size_bits == 256


# ---------------------------------------------------------------------------
# Tests - tags
# ---------------------------------------------------------------------------


def test_dkim_revoked_key(fake_dns):
    analysis = _check(fake_dns, "v=DKIM1; k=rsa; p=")
    record = analysis.records[0]

    assert record.failures == ("No public key specified, the key may have been revoked.",)
    assert record.public_key_pem == ""
    assert record.key_info is None


def test_dkim_missing_public_key_tag(fake_dns):
    analysis = _check(fake_dns, "v=DKIM1; k=rsa")

    assert "No public key (p=) tag found." in analysis.records[0].failures


def test_dkim_testing_mode_warns(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; t=y:s; p={rsa_key_b64(128)}")
    record = analysis.records[0]

    assert record.flags == "y:s"
    assert "This domain is in DKIM testing mode (t=y)." in record.warnings
    assert "No errors detected with DKIM selector sel." in record.passes


def test_dkim_unrecognized_tags(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; x=1; p={rsa_key_b64(128)}; zz=2")
    record = analysis.records[0]

    assert record.unrecognized_tags == ("x", "zz")
    assert "Unrecognized tags found: x, zz." in record.warnings


def test_dkim_version_must_be_first(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"p={rsa_key_b64(128)}; v=DKIM1")

    assert "Version must be DKIM1 and be the first tag." in analysis.records[0].failures


def test_dkim_optional_tags_recorded(fake_dns, rsa_key_b64):
    analysis = _check(fake_dns, f"v=DKIM1; h=sha256; s=email; n=rotated 2024; p={rsa_key_b64(128)}")
    record = analysis.records[0]

    assert record.hash_algorithms == "sha256"
    assert record.service_type == "email"
    assert record.notes == "rotated 2024"
    assert record.granularity == "*"


# ---------------------------------------------------------------------------
# Tests - selectors
# ---------------------------------------------------------------------------


def test_dkim_missing_record(fake_dns):
    with patch(_PATCH_TARGET, side_effect=fake_dns({})):
        analysis = check_dkim("example.com", ["missing"])

    assert analysis.failures == ("[missing] No DKIM record found at missing._domainkey.example.com.",)


@pytest.mark.parametrize("selectors", [[], [" ", ""], None])
def test_dkim_no_selectors(selectors):
    with patch(_PATCH_TARGET) as mock_query:
        analysis = check_dkim("example.com", selectors)

    assert analysis.failures == ("No DKIM selectors provided.",)
    assert analysis.records == ()
    mock_query.assert_not_called()


def test_dkim_messages_aggregated_per_selector(fake_dns, rsa_key_b64):
    table = {
        ("good._domainkey.example.com", "TXT"): [f"v=DKIM1; p={rsa_key_b64(128)}"],
        ("weak._domainkey.example.com", "TXT"): [f"v=DKIM1; p={rsa_key_b64(64)}"],
    }
    with patch(_PATCH_TARGET, side_effect=fake_dns(table)):
        analysis = check_dkim("example.com", ["good", "weak"])

    assert analysis.selectors == ("good", "weak")
    assert [r.selector for r in analysis.records] == ["good", "weak"]
    assert "[good] No errors detected with DKIM selector good." in analysis.passes
    assert analysis.failures == ("[weak] Key size is less than 1024 bit (512 bit).",)


def test_dkim_selectors_inferred_from_provider(fake_dns, catalog, rsa_key_b64):
    table = {
        ("example.com", "MX"): ["5 aspmx.l.google.com."],
        ("google._domainkey.example.com", "TXT"): [f"v=DKIM1; p={rsa_key_b64(128)}"],
    }
    query = fake_dns(table)
    with patch(_PATCH_TARGET, side_effect=query), patch(_MX_PATCH_TARGET, side_effect=query):
        analysis = check_dkim("example.com", catalog=catalog)

    assert analysis.mail_provider == "Google Workspace"
    assert analysis.selectors == ("google",)
    assert analysis.failures == ()
