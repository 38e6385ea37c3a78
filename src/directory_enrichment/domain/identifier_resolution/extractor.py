"""
Identifier extraction for arbitrary nested data.

Detects directory object identifiers in two shapes:

1. Canonical GUIDs: the whole string is an 8-4-4-4-12 hex GUID. These are
   scoped to the caller's tenant.
2. Partner UPNs: ``<prefix><hex blob>@<domain>``, the login name a partner
   tenant object gets when it appears in a customer tenant, for example
   ``user_a1b2c3d4e5f6a1b2c3d4e5f6a1b2c3d4@partner.onmicrosoft.com``. The blob
   is the object id and the domain is the tenant it resolves in.

All functions here are pure: they never mutate their input and return the
same result for the same input.
"""

import re
from functools import lru_cache
from typing import Any, Iterator, List, NamedTuple, Pattern, Set

from .models import IdentifierKey

DEFAULT_PARTNER_PREFIX = "user_"

GUID_PATTERN = (
    r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)
_HEX32_PATTERN = r"[0-9a-fA-F]{32}"
_DOMAIN_PATTERN = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+"

GUID_RE = re.compile(GUID_PATTERN)

# Containers walked by the extractor; anything else is a leaf
_CONTAINER_TYPES = (dict, list, tuple, set, frozenset)


class IdentifierMatch(NamedTuple):
    """One identifier occurrence inside a string."""

    start: int
    end: int
    key: IdentifierKey
    is_partner_upn: bool


def normalize_guid(value: str) -> str:
    """
    Normalize a 32-hex blob or hyphenated GUID to lowercase canonical form.

    Examples:
        >>> normalize_guid("A1B2C3D4E5F6A1B2C3D4E5F6A1B2C3D4")
        'a1b2c3d4-e5f6-a1b2-c3d4-e5f6a1b2c3d4'
    """
    hex_digits = value.replace("-", "").lower()
    if len(hex_digits) != 32:
        raise ValueError(f"Not a GUID-length hex value: {value!r}")
    return "-".join(
        (
            hex_digits[0:8],
            hex_digits[8:12],
            hex_digits[12:16],
            hex_digits[16:20],
            hex_digits[20:32],
        )
    )


@lru_cache(maxsize=32)
def identifier_pattern(prefix: str = DEFAULT_PARTNER_PREFIX) -> Pattern[str]:
    """
    Build the combined scanning pattern for a partner prefix.

    The partner UPN alternative comes first so a hyphenated GUID inside a
    partner UPN is consumed as part of the UPN span rather than on its own.
    """
    return re.compile(
        rf"(?<![A-Za-z0-9_.+-]){re.escape(prefix)}"
        rf"(?P<blob>{GUID_PATTERN}|{_HEX32_PATTERN})"
        rf"@(?P<domain>{_DOMAIN_PATTERN})"
        rf"|(?<![0-9A-Za-z])(?P<guid>{GUID_PATTERN})(?![0-9A-Za-z])"
    )


def is_guid(value: Any) -> bool:
    """
    Check whether a value is, in its entirety, a canonical GUID.

    Examples:
        >>> is_guid("550e8400-e29b-41d4-a716-446655440000")
        True
        >>> is_guid("not-a-guid")
        False
    """
    return isinstance(value, str) and GUID_RE.fullmatch(value) is not None


def iter_identifier_matches(
    text: str,
    default_tenant: str,
    *,
    prefix: str = DEFAULT_PARTNER_PREFIX,
    match_embedded: bool = False,
) -> Iterator[IdentifierMatch]:
    """
    Yield every identifier occurrence in ``text`` in order of appearance.

    Matches never overlap. A bare GUID is only reported when it is the whole
    string, unless ``match_embedded`` is set.

    Args:
        text: String to scan.
        default_tenant: Tenant used for canonical GUIDs.
        prefix: Partner UPN local-part prefix.
        match_embedded: Also report GUIDs inside longer text.
    """
    if is_guid(text):
        yield IdentifierMatch(
            0, len(text), IdentifierKey(text.lower(), default_tenant), False
        )
        return

    for match in identifier_pattern(prefix).finditer(text):
        if match.group("blob") is not None:
            key = IdentifierKey(
                normalize_guid(match.group("blob")), match.group("domain").lower()
            )
            yield IdentifierMatch(match.start(), match.end(), key, True)
        elif match_embedded:
            key = IdentifierKey(match.group("guid").lower(), default_tenant)
            yield IdentifierMatch(match.start(), match.end(), key, False)


def extract_partner_upn_matches(
    text: str, prefix: str = DEFAULT_PARTNER_PREFIX
) -> List[IdentifierKey]:
    """Return ``(object_id, tenant)`` for every partner UPN in ``text``."""
    if not isinstance(text, str):
        return []
    return [
        match.key
        for match in iter_identifier_matches(text, "", prefix=prefix)
        if match.is_partner_upn
    ]


def extract_object_id_from_partner_upn(
    text: Any, prefix: str = DEFAULT_PARTNER_PREFIX
) -> List[str]:
    """
    Extract the object ids embedded in partner UPNs.

    Returns zero or more normalized GUIDs, in order of appearance.

    Examples:
        >>> extract_object_id_from_partner_upn(
        ...     "user_a1b2c3d4e5f6a1b2c3d4e5f6a1b2c3d4@partner.onmicrosoft.com"
        ... )
        ['a1b2c3d4-e5f6-a1b2-c3d4-e5f6a1b2c3d4']
        >>> extract_object_id_from_partner_upn("alice@contoso.com")
        []
    """
    return [key.object_id for key in extract_partner_upn_matches(text, prefix)]


def extract_identifiers(
    value: Any,
    default_tenant: str,
    *,
    prefix: str = DEFAULT_PARTNER_PREFIX,
    match_embedded: bool = False,
) -> Set[IdentifierKey]:
    """
    Collect every identifier found in an arbitrary object graph.

    Walks dict values, lists, tuples and sets with an explicit worklist; a
    visited set keyed by object identity stops cycles and shared subtrees
    from being scanned twice. Callables and other non-plain values are
    skipped. The input is never mutated.

    Args:
        value: Any value (record, list of records, single string).
        default_tenant: Tenant for canonical GUIDs.
        prefix: Partner UPN local-part prefix.
        match_embedded: Also extract GUIDs inside longer text.

    Returns:
        Set of identifier keys.
    """
    found: Set[IdentifierKey] = set()
    visited: Set[int] = set()
    worklist: List[Any] = [value]

    while worklist:
        current = worklist.pop()

        if isinstance(current, str):
            for match in iter_identifier_matches(
                current, default_tenant, prefix=prefix, match_embedded=match_embedded
            ):
                found.add(match.key)
            continue

        if not isinstance(current, _CONTAINER_TYPES):
            continue

        marker = id(current)
        if marker in visited:
            continue
        visited.add(marker)

        children = current.values() if isinstance(current, dict) else current
        worklist.extend(children)

    return found
