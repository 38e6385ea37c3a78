"""
Identifier Resolution and Enrichment

Resolves directory object ids and partner UPNs found in arbitrary data to
display names, and substitutes those names back into strings.

Components:
- GuidResolver: engine facade with an explicit create/dispose lifecycle
- ResolutionCache: append-only, atomically updated identifier state store
- BatchResolver: tenant-scoped batch lookups with bounded retry
- RetryPolicy: exponential backoff configuration for rate-limited lookups
- replace_identifiers / substitute_in_value: name substitution
"""

from __future__ import annotations

import importlib
from typing import Any

__all__ = [
    "GuidResolver",
    "ResolutionSnapshot",
    "ResolutionCache",
    "BatchResolver",
    "RetryPolicy",
    "SubstitutionResult",
    "replace_identifiers",
    "substitute_in_value",
    "display_name_only",
    "display_name_with_upn",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "GuidResolver": (".engine", "GuidResolver"),
    "ResolutionSnapshot": (".engine", "ResolutionSnapshot"),
    "ResolutionCache": (".resolution_cache", "ResolutionCache"),
    "BatchResolver": (".batch_resolver", "BatchResolver"),
    "RetryPolicy": (".retry_policy", "RetryPolicy"),
    "SubstitutionResult": (".substitution", "SubstitutionResult"),
    "replace_identifiers": (".substitution", "replace_identifiers"),
    "substitute_in_value": (".substitution", "substitute_in_value"),
    "display_name_only": (".substitution", "display_name_only"),
    "display_name_with_upn": (".substitution", "display_name_with_upn"),
}


def __getattr__(name: str) -> Any:
    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = _LAZY_IMPORTS[name]
    module = importlib.import_module(module_name, __name__)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_IMPORTS.keys())))
