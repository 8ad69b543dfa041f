"""Relationship-field value parsing.

Lookup values come back from the CRM in three shapes depending on the field
definition: a bare record id, a formula field rendering an HTML anchor
(``<a href="/003...">Jane Doe</a>``), or plain display text.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

CORE_ID_LENGTH = 15
CONTACT_KEY_PREFIX = "003"


@dataclass(frozen=True)
class NormalizedIdentity:
    """A parsed relationship value; both parts None means unparseable."""
    id: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def usable(self) -> bool:
        return self.id is not None or self.display_name is not None


@lru_cache(maxsize=32)
def id_pattern(key_prefix: str = CONTACT_KEY_PREFIX) -> re.Pattern:
    """Bare 15/18-character id carrying the given 3-character key prefix."""
    return re.compile(rf"^{re.escape(key_prefix)}[0-9A-Za-z]{{12}}(?:[0-9A-Za-z]{{3}})?\Z")


@lru_cache(maxsize=32)
def anchor_pattern(key_prefix: str = CONTACT_KEY_PREFIX) -> re.Pattern:
    """Anchor tag whose href is "/<id>"; group 1 is the id, group 2 the text."""
    record_id = rf"{re.escape(key_prefix)}[0-9A-Za-z]{{12}}(?:[0-9A-Za-z]{{3}})?"
    return re.compile(
        rf"""<a[^>]*href=["']/({record_id})["'][^>]*>([^<]+)</a>""",
        re.IGNORECASE,
    )


def parse_identity(raw: Any, key_prefix: str = CONTACT_KEY_PREFIX) -> NormalizedIdentity:
    """Parse a relationship-field value into an id and/or display name.

    Never raises; non-text input yields an empty identity.
    """
    if not isinstance(raw, str):
        return NormalizedIdentity()

    match = anchor_pattern(key_prefix).search(raw)
    if match:
        return NormalizedIdentity(id=match.group(1), display_name=match.group(2))

    if id_pattern(key_prefix).match(raw):
        return NormalizedIdentity(id=raw)

    return NormalizedIdentity(display_name=raw)


def truncate_to_core15(record_id: Optional[str]) -> Optional[str]:
    """Drop the 3-character case-safety suffix of an 18-character id."""
    if isinstance(record_id, str) and len(record_id) > CORE_ID_LENGTH:
        return record_id[:CORE_ID_LENGTH]
    return record_id
