"""
Identifier resolution domain.

Pure extraction of directory object identifiers, their resolution state
model, and the deduplicating pending queue that feeds batch lookups.
"""

from .extractor import (
    extract_identifiers,
    extract_object_id_from_partner_upn,
    is_guid,
    normalize_guid,
)
from .lookup_queue import PendingQueue
from .models import (
    Batch,
    DirectoryObject,
    IdentifierKey,
    ResolutionEntry,
    ResolutionState,
)
from .observability import ResolutionStats

__all__ = [
    "Batch",
    "DirectoryObject",
    "IdentifierKey",
    "PendingQueue",
    "ResolutionEntry",
    "ResolutionState",
    "ResolutionStats",
    "extract_identifiers",
    "extract_object_id_from_partner_upn",
    "is_guid",
    "normalize_guid",
]
