"""
Contact field normalization.

Maps an upstream record in any of the historical field-naming conventions
onto NormalizedContact. Pure functions, no I/O: a missing attribute is
simply left as None.
"""

from __future__ import annotations

from typing import Any

from app.features.visitor_ingest.domain.models import NormalizedContact, RawContactRecord
from app.features.visitor_ingest.pipeline.normalize.fields import (
    CLAIMED_KEYS,
    EXPANDED_ATTRIBUTES,
    EXPANDED_IDENTITY,
    MULTI_VALUE_ATTRIBUTES,
    RESOLUTION_KEYS,
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list)):
        return not value
    return False


def _scalar_text(value: Any) -> str | None:
    """Text form of a scalar value, or None for empty or non-scalar values."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def _first_item(text: str) -> str | None:
    for item in text.split(","):
        item = item.strip()
        if item:
            return item
    return None


def clean_record(raw: RawContactRecord) -> dict[str, Any]:
    """Drop null and empty values, one nested level deep."""
    cleaned: dict[str, Any] = {}
    for key, value in raw.items():
        if _is_empty(value):
            continue
        if isinstance(value, dict):
            nested = {nk: nv for nk, nv in value.items() if not _is_empty(nv)}
            if nested:
                cleaned[key] = nested
        else:
            cleaned[key] = value
    return cleaned


def _resolution(raw: RawContactRecord) -> dict[str, Any]:
    for key in RESOLUTION_KEYS:
        nested = raw.get(key)
        if isinstance(nested, dict):
            return nested
    return {}


def lookup_space(raw: RawContactRecord) -> dict[str, Any]:
    """
    Top-level fields over the resolution sub-object.

    A top-level key only shadows its resolution counterpart when it holds a
    value, so empty top-level fields fall back to resolution.
    """
    merged = {key: value for key, value in _resolution(raw).items() if not _is_empty(value)}
    for key, value in raw.items():
        if key in RESOLUTION_KEYS or _is_empty(value):
            continue
        merged[key] = value
    return merged


def first_value(space: dict[str, Any], spellings: tuple[str, ...]) -> str | None:
    """First non-empty scalar among the candidate spellings, as trimmed text."""
    for key in spellings:
        if key not in space:
            continue
        text = _scalar_text(space[key])
        if text:
            return text
    return None


def resolve_visitor_id(raw: RawContactRecord) -> str | None:
    """Stable identity of a record, or None if no identity field resolves."""
    return first_value(lookup_space(raw), EXPANDED_IDENTITY)


def _with_scheme(url: str) -> str:
    return url if url.startswith("http") else f"https://{url}"


def normalize(raw: RawContactRecord) -> NormalizedContact:
    """Resolve every canonical attribute of a raw upstream record."""
    space = lookup_space(clean_record(raw))
    contact = NormalizedContact(visitor_id=first_value(space, EXPANDED_IDENTITY))

    for attribute, spellings in EXPANDED_ATTRIBUTES.items():
        value = first_value(space, spellings)
        if value and attribute in MULTI_VALUE_ATTRIBUTES:
            value = _first_item(value)
        setattr(contact, attribute, value)

    if contact.linkedin_url:
        contact.linkedin_url = _with_scheme(contact.linkedin_url)

    full_name = " ".join(part for part in (contact.first_name, contact.last_name) if part)
    contact.full_name = full_name or None

    for key, value in space.items():
        if key in CLAIMED_KEYS:
            continue
        extra_key = key.lower()
        if extra_key not in contact.extra:
            contact.extra[extra_key] = value

    return contact
