"""
MX record checker: resolves MX records and identifies the mail provider.

The provider identification is driven by a catalog of JSON documents, one
per provider, each carrying a regular expression over MX hostnames, the
SPF include the provider expects and its DKIM selectors.  The catalog is
loaded explicitly and passed to the checkers; it is never mutated during
an evaluation.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from mailauth.checker.resolver import query_dns
from mailauth.models import DnsSettings, MailProviderProfile, MxRecord, ProviderMatch

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "providers"

# .NET style named groups, e.g. (?<Region>...), excluding look-behinds.
_DOTNET_GROUP_RE = re.compile(r"\(\?<(?=[A-Za-z_])")


class ProviderCatalog:
    """Read-only collection of mail provider profiles.

    Profiles are loaded from every ``*.json`` file in *path*, in filename
    order; that order decides which profile wins when several match.
    Call :meth:`refresh` to reload after the documents change.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path: Path | None = Path(path) if path else DEFAULT_CATALOG_PATH
        self._profiles: tuple[MailProviderProfile, ...] = ()
        self._patterns: tuple[re.Pattern[str], ...] = ()
        self.refresh()

    @classmethod
    def from_profiles(cls, profiles: list[MailProviderProfile]) -> ProviderCatalog:
        """Build a catalog from in-memory profiles (no filesystem access)."""
        catalog = cls.__new__(cls)
        catalog.path = None
        catalog._set_profiles(profiles)
        return catalog

    @property
    def profiles(self) -> tuple[MailProviderProfile, ...]:
        return self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def refresh(self) -> None:
        """(Re)load every provider document from the catalog directory."""
        if self.path is None:
            return
        profiles: list[MailProviderProfile] = []
        if not self.path.is_dir():
            logger.warning("Provider catalog directory %s does not exist", self.path)
            self._set_profiles(profiles)
            return

        for doc_path in sorted(self.path.glob("*.json")):
            try:
                with open(doc_path, encoding="utf-8") as fh:
                    document = json.load(fh)
                if not isinstance(document, dict):
                    raise ValueError("document is not a JSON object")
                profiles.append(MailProviderProfile.from_document(doc_path.stem, document))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping provider document %s: %s", doc_path.name, exc)

        self._set_profiles(profiles)
        logger.debug("Loaded %d mail provider profiles from %s", len(profiles), self.path)

    def _set_profiles(self, profiles: list[MailProviderProfile]) -> None:
        kept: list[MailProviderProfile] = []
        patterns: list[re.Pattern[str]] = []
        for profile in profiles:
            try:
                patterns.append(re.compile(_DOTNET_GROUP_RE.sub("(?P<", profile.match_pattern), re.IGNORECASE))
            except re.error as exc:
                logger.warning("Invalid MxMatch for provider %s: %s", profile.name, exc)
                continue
            kept.append(profile)
        self._profiles = tuple(kept)
        self._patterns = tuple(patterns)

    def match(self, hostname: str) -> tuple[MailProviderProfile, re.Match[str]] | None:
        """Return the first profile whose pattern matches *hostname*."""
        for profile, pattern in zip(self._profiles, self._patterns):
            found = pattern.search(hostname)
            if found:
                return profile, found
        return None


def expand_spf_include(profile: MailProviderProfile, found: re.Match[str]) -> str | None:
    """Fill the profile's SPF include template from the regex capture groups."""
    if not profile.spf_include_template:
        return None
    try:
        values = [found.group(name) or "" for name in profile.spf_replace]
        return profile.spf_include_template.format(*values)
    except (IndexError, KeyError, ValueError) as exc:
        logger.warning("Could not expand SPF include for provider %s: %s", profile.name, exc)
        return None


def parse_mx_records(raw_records: list[str]) -> list[MxRecord]:
    """Parse ``<priority> <host>`` strings and sort by priority (lower first).

    Unparseable priorities sort last; equal priorities keep answer order.
    """
    records: list[MxRecord] = []
    for raw in raw_records:
        parts = raw.split(None, 1)
        if len(parts) != 2:
            continue
        try:
            priority = int(parts[0])
        except ValueError:
            priority = 65535
        records.append(MxRecord(priority=priority, hostname=parts[1].strip().rstrip(".").lower()))

    records.sort(key=lambda r: r.priority)
    return records


def check_mx(
    domain: str,
    catalog: ProviderCatalog | None = None,
    settings: DnsSettings | None = None,
) -> ProviderMatch:
    """Resolve MX records for *domain* and identify the mail provider.

    Args:
        domain: The domain name to query.
        catalog: Provider catalog; the bundled catalog is used when omitted.
        settings: Optional DnsSettings for the DoH backend.

    Returns:
        A ProviderMatch with the sorted MX records and, when one of them
        matches the catalog, the provider profile, its expected SPF include
        and its DKIM selectors.
    """
    if catalog is None:
        catalog = ProviderCatalog()

    result = query_dns(domain, "MX", settings)
    if result is None or not result.ok:
        return ProviderMatch(domain=domain, failures=(f"No MX records found for {domain}",))

    mx_records = parse_mx_records(result.data())

    # RFC 7505 null MX: the domain accepts no mail
    if len(mx_records) == 1 and mx_records[0].hostname == "":
        return ProviderMatch(
            domain=domain,
            mx_records=tuple(mx_records),
            warnings=(f"{domain} publishes a null MX record and does not accept email",),
        )

    for mx in mx_records:
        matched = catalog.match(mx.hostname)
        if matched is None:
            continue
        profile, found = matched
        expected_include = expand_spf_include(profile, found)
        logger.info("Mail provider for %s identified as %s via %s", domain, profile.name, mx.hostname)
        return ProviderMatch(
            domain=domain,
            mx_records=tuple(mx_records),
            provider=profile,
            expected_spf_include=expected_include,
            dkim_selectors=profile.dkim_selectors,
            passes=(f"Mail provider found: {profile.name}",),
        )

    return ProviderMatch(
        domain=domain,
        mx_records=tuple(mx_records),
        warnings=(f"No known mail provider matched the MX records of {domain}",),
    )
