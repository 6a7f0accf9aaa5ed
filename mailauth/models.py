"""
Result and reference-data types for the mail authentication checkers.

Every checker returns one of the frozen dataclasses below.  Message lists
(passes / warnings / failures) are tuples so a finished result can be
shared across threads and compared structurally.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


def _jsonable(value: Any) -> Any:
    """Convert dataclass payloads into JSON-friendly primitives."""
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_jsonable(v) for v in value)
    if isinstance(value, Enum):
        return value.value
    return value


class _Serializable:
    """Mixin adding ``to_dict()`` to result dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))  # type: ignore[call-overload]


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnsAnswer(_Serializable):
    """A single answer row from a DoH JSON response."""

    name: str
    record_type: int
    ttl: int
    data: str


@dataclass(frozen=True)
class DnsResult(_Serializable):
    """Normalised DoH response.

    ``status`` is the DNS RCODE: 0 = NOERROR, 3 = NXDOMAIN.
    """

    status: int
    answers: tuple[DnsAnswer, ...] = ()
    authenticated_data: bool = False
    comment: str = ""

    @property
    def ok(self) -> bool:
        return self.status == 0 and bool(self.answers)

    def data(self) -> list[str]:
        """Return the data field of every answer, in answer order."""
        return [answer.data for answer in self.answers]


_RESOLVER_BACKENDS = ("google", "cloudflare")


@dataclass(frozen=True)
class DnsSettings:
    """DoH resolver configuration.

    Loaded once from the optional settings document and passed explicitly
    to every checker.
    """

    resolver: str = "google"
    timeout_seconds: float = 5.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DnsSettings:
        resolver = str(data.get("resolver", cls.resolver)).strip().lower()
        if resolver not in _RESOLVER_BACKENDS:
            raise ValueError(f"Unknown DoH resolver backend: {resolver!r}")
        timeout = float(data.get("timeout_seconds", cls.timeout_seconds))
        if timeout <= 0:
            raise ValueError("timeout_seconds must be positive")
        return cls(resolver=resolver, timeout_seconds=timeout)


# ---------------------------------------------------------------------------
# SPF
# ---------------------------------------------------------------------------


class SpfLevel(str, Enum):
    """Position of a record in the SPF evaluation tree."""

    PARENT = "Parent"
    INCLUDE = "Include"
    REDIRECT = "Redirect"


@dataclass(frozen=True)
class TypeLookup(_Serializable):
    """Nested resolution performed for an ``a``, ``mx`` or ``ptr`` mechanism."""

    mechanism: str
    domain: str
    prefix: str = ""
    records: tuple[str, ...] = ()


@dataclass(frozen=True)
class SpfRecord(_Serializable):
    """Evaluated SPF record, including its whole include/redirect tree.

    ``all_mechanism`` is None when the record has no ``all`` term, the empty
    string for an unqualified ``all``, otherwise the qualifier character.
    ``lookup_count`` covers this record and every nested record.
    """

    domain: str
    level: SpfLevel = SpfLevel.PARENT
    raw_record: str = ""
    record_count: int = 0
    lookup_count: int = 0
    all_mechanism: str | None = None
    ip_addresses: frozenset[str] = frozenset()
    type_lookups: tuple[TypeLookup, ...] = ()
    included_records: tuple[SpfRecord, ...] = ()
    redirect_domain: str | None = None
    expected_include: str | None = None
    permanent_error: bool = False
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()

    def include_domains(self) -> list[str]:
        """Return the domain of every nested record, depth-first."""
        domains: list[str] = []
        for child in self.included_records:
            domains.append(child.domain)
            domains.extend(child.include_domains())
        return domains


# ---------------------------------------------------------------------------
# DMARC
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DmarcRecord(_Serializable):
    """Parsed and validated DMARC policy record."""

    domain: str
    raw_record: str = ""
    version: str = ""
    policy: str = ""
    subdomain_policy: str = ""
    percent: int = 100
    dkim_alignment: str = "r"
    spf_alignment: str = "r"
    report_format: str = "afrf"
    report_interval: str = "86400"
    reporting_emails: tuple[str, ...] = ()
    forensic_emails: tuple[str, ...] = ()
    failure_report_options: str = ""
    authorized_report_domains: tuple[str, ...] = ()
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeyInfo(_Serializable):
    """Algorithm and strength of a decoded DKIM public key."""

    algorithm: str
    key_size_bits: int
    exponent: int | None = None


@dataclass(frozen=True)
class DkimRecord(_Serializable):
    """Validation result for one DKIM selector."""

    selector: str
    raw_record: str = ""
    version: str = ""
    public_key_pem: str = ""
    key_info: KeyInfo | None = None
    key_type: str = "rsa"
    flags: str = ""
    notes: str = ""
    hash_algorithms: str = "all"
    service_type: str = "*"
    granularity: str = "*"
    unrecognized_tags: tuple[str, ...] = ()
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


@dataclass(frozen=True)
class DkimAnalysis(_Serializable):
    """All DKIM selectors checked for a domain."""

    domain: str
    mail_provider: str | None = None
    selectors: tuple[str, ...] = ()
    records: tuple[DkimRecord, ...] = ()
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# DNSSEC
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnssecRecord(_Serializable):
    domain: str
    keys: tuple[str, ...] = ()
    enabled: bool = False
    validated: bool = False
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# MX / mail providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MxRecord(_Serializable):
    priority: int
    hostname: str


@dataclass(frozen=True)
class MailProviderProfile(_Serializable):
    """Catalog entry describing a known mail provider.

    ``spf_include_template`` uses positional ``str.format`` fields filled
    from the ``match_pattern`` capture groups named in ``spf_replace``.
    """

    name: str
    match_pattern: str
    spf_include_template: str = ""
    spf_replace: tuple[str, ...] = ()
    dkim_selectors: tuple[str, ...] = ()

    @classmethod
    def from_document(cls, name: str, document: dict[str, Any]) -> MailProviderProfile:
        """Build a profile from a catalog JSON document.

        Raises:
            ValueError: When the document lacks a usable ``MxMatch``.
        """
        pattern = document.get("MxMatch")
        if not isinstance(pattern, str) or not pattern:
            raise ValueError(f"Provider {name!r} has no MxMatch pattern")
        return cls(
            name=str(document.get("Name") or name),
            match_pattern=pattern,
            spf_include_template=str(document.get("SpfInclude") or ""),
            spf_replace=tuple(str(v) for v in document.get("SpfReplace") or ()),
            dkim_selectors=tuple(str(v) for v in document.get("Selectors") or ()),
        )


@dataclass(frozen=True)
class ProviderMatch(_Serializable):
    """MX records for a domain and the mail provider they point to."""

    domain: str
    mx_records: tuple[MxRecord, ...] = ()
    provider: MailProviderProfile | None = None
    expected_spf_include: str | None = None
    dkim_selectors: tuple[str, ...] = ()
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


@dataclass
class DomainCheck(_Serializable):
    """Combined output of every checker for one domain."""

    domain: str
    mx: ProviderMatch | None = None
    spf: SpfRecord | None = None
    dmarc: DmarcRecord | None = None
    dkim: DkimAnalysis | None = None
    dnssec: DnssecRecord | None = None
    errors: list[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def failure_count(self) -> int:
        """Total failure messages across all checks that ran."""
        total = 0
        for f in fields(self):
            value = getattr(self, f.name)
            total += len(getattr(value, "failures", ()))
        return total
