"""Tag=value parsing shared by the DMARC and DKIM checkers."""

from __future__ import annotations

from typing import NamedTuple


class TagOutcome(NamedTuple):
    """Result of one tag handler: field updates plus messages."""

    fields: dict
    passes: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()


def parse_tags(record: str) -> list[tuple[str, str]]:
    """Split a tag=value record into ordered (tag, value) pairs.

    Tags are lowercased; whitespace around tags and values is stripped.
    Segments without ``=`` are kept with an empty value so that tag
    positions stay meaningful.
    """
    tags: list[tuple[str, str]] = []
    for part in record.split(";"):
        part = part.strip()
        if not part:
            continue
        key, _, value = part.partition("=")
        tags.append((key.strip().lower(), value.strip()))
    return tags
