"""
Substitution of resolved identifiers with human-readable names.

Works on a single string or a whole object graph and reads nothing but the
resolution cache (or a snapshot of it), so it is synchronous and never
triggers a lookup. Identifiers that are not RESOLVED are left verbatim.
"""

from typing import Any, Callable, Dict, Mapping, NamedTuple, Union

from directory_enrichment.domain.identifier_resolution.extractor import (
    DEFAULT_PARTNER_PREFIX,
    iter_identifier_matches,
)
from directory_enrichment.domain.identifier_resolution.models import (
    IdentifierKey,
    ResolutionEntry,
    ResolutionState,
)

from .resolution_cache import ResolutionCache

EntrySource = Union[ResolutionCache, Mapping[IdentifierKey, ResolutionEntry]]
Formatter = Callable[[ResolutionEntry], str]


class SubstitutionResult(NamedTuple):
    """Outcome of replacing identifiers in one string."""

    result: str
    has_resolved_names: bool


def display_name_only(entry: ResolutionEntry) -> str:
    """Default formatter: the display name alone."""
    return entry.display_name or entry.upn or entry.object_id


def display_name_with_upn(entry: ResolutionEntry) -> str:
    """
    Formatter rendering ``Name (upn)`` when the object has a distinct UPN.

    Examples:
        >>> entry = ResolutionEntry("id", "t", ResolutionState.RESOLVED, "Alice", "alice@contoso.com")
        >>> display_name_with_upn(entry)
        'Alice (alice@contoso.com)'
    """
    name = display_name_only(entry)
    if entry.upn and entry.upn != name:
        return f"{name} ({entry.upn})"
    return name


def replace_identifiers(
    text: str,
    cache: EntrySource,
    default_tenant: str,
    *,
    prefix: str = DEFAULT_PARTNER_PREFIX,
    match_embedded: bool = False,
    formatter: Formatter = display_name_only,
) -> SubstitutionResult:
    """
    Replace every resolved identifier in ``text`` in a single pass.

    Partner UPN spans win over GUIDs they contain. When nothing is replaced
    the original string object is returned.

    Args:
        text: String to rewrite.
        cache: Resolution cache or an entry mapping snapshot.
        default_tenant: Tenant for canonical GUIDs.
        prefix: Partner UPN local-part prefix.
        match_embedded: Also replace GUIDs inside longer text.
        formatter: Renders a RESOLVED entry into its replacement text.

    Returns:
        SubstitutionResult with the rewritten string and whether any
        replacement happened.
    """
    if not text:
        return SubstitutionResult(text, False)

    parts = []
    position = 0
    for match in iter_identifier_matches(
        text, default_tenant, prefix=prefix, match_embedded=match_embedded
    ):
        entry = cache.get(match.key)
        if entry is None or entry.state is not ResolutionState.RESOLVED:
            continue
        parts.append(text[position : match.start])
        parts.append(formatter(entry))
        position = match.end

    if not parts:
        return SubstitutionResult(text, False)

    parts.append(text[position:])
    return SubstitutionResult("".join(parts), True)


def substitute_in_value(
    value: Any,
    cache: EntrySource,
    default_tenant: str,
    *,
    prefix: str = DEFAULT_PARTNER_PREFIX,
    match_embedded: bool = False,
    formatter: Formatter = display_name_only,
) -> Any:
    """
    Return a copy of ``value`` with every string leaf substituted.

    Dicts, lists, tuples and sets are rebuilt (dict keys are kept as they
    are); shared and cyclic references keep their shape in the copy. Any
    other value is returned as-is. The input is never mutated.
    """
    memo: Dict[int, Any] = {}

    def rewrite(current: Any) -> Any:
        if isinstance(current, str):
            return replace_identifiers(
                current,
                cache,
                default_tenant,
                prefix=prefix,
                match_embedded=match_embedded,
                formatter=formatter,
            ).result

        marker = id(current)
        if marker in memo:
            return memo[marker]

        if isinstance(current, dict):
            copied: Dict[Any, Any] = {}
            memo[marker] = copied
            for key, item in current.items():
                copied[key] = rewrite(item)
            return copied
        if isinstance(current, list):
            items: list = []
            memo[marker] = items
            items.extend(rewrite(item) for item in current)
            return items
        if isinstance(current, tuple):
            rebuilt = tuple(rewrite(item) for item in current)
            memo[marker] = rebuilt
            return rebuilt
        if isinstance(current, (set, frozenset)):
            rebuilt_set = type(current)(rewrite(item) for item in current)
            memo[marker] = rebuilt_set
            return rebuilt_set
        return current

    return rewrite(value)

