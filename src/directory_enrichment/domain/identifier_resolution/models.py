"""
Data models for the identifier resolution domain.

This module defines the data contracts for:
1. Identifier keys and per-identifier resolution state (cache entries)
2. Lookup batches submitted to the directory backend
3. Validated directory objects returned by a lookup

Cache entries and batches are frozen dataclasses so a snapshot handed to a
caller can never be changed underneath it; lookup responses are validated with
Pydantic v2 because they cross the network boundary.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import NamedTuple, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ResolutionState(Enum):
    """Lifecycle state of a single identifier."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ResolutionState.PENDING


class IdentifierKey(NamedTuple):
    """Cache key: a normalized object id scoped to the tenant it resolves in."""

    object_id: str
    tenant: str


@dataclass(frozen=True)
class ResolutionEntry:
    """
    Resolution state of one identifier within one tenant.

    Attributes:
        object_id: Normalized (lowercase, hyphenated) object id.
        tenant: Tenant context the id must be resolved against.
        state: Current lifecycle state.
        display_name: Resolved display name (RESOLVED only).
        upn: Resolved user principal name, when the object has one.
        attempts: Lookup attempts consumed so far.
    """

    object_id: str
    tenant: str
    state: ResolutionState = ResolutionState.PENDING
    display_name: Optional[str] = None
    upn: Optional[str] = None
    attempts: int = 0

    @property
    def key(self) -> IdentifierKey:
        return IdentifierKey(self.object_id, self.tenant)

    @classmethod
    def pending(cls, key: IdentifierKey) -> "ResolutionEntry":
        return cls(object_id=key.object_id, tenant=key.tenant)

    def resolved(self, display_name: str, upn: Optional[str]) -> "ResolutionEntry":
        return replace(
            self,
            state=ResolutionState.RESOLVED,
            display_name=display_name,
            upn=upn,
        )

    def failed(self) -> "ResolutionEntry":
        return replace(self, state=ResolutionState.FAILED)

    def with_attempts(self, attempts: int) -> "ResolutionEntry":
        return replace(self, attempts=attempts)


@dataclass(frozen=True)
class Batch:
    """
    Bounded group of pending identifiers sharing one tenant context.

    Attributes:
        tenant: Tenant the lookup endpoint is scoped to.
        object_ids: Ids submitted together in one lookup call.
        attempts: Lookup attempts already made for this batch.
    """

    tenant: str
    object_ids: Tuple[str, ...]
    attempts: int = 0

    @property
    def keys(self) -> Tuple[IdentifierKey, ...]:
        return tuple(IdentifierKey(object_id, self.tenant) for object_id in self.object_ids)

    def next_attempt(self) -> "Batch":
        return replace(self, attempts=self.attempts + 1)

    def __len__(self) -> int:
        return len(self.object_ids)


class DirectoryObject(BaseModel):
    """
    Validated directory object returned by a lookup call.

    Accepts both the short ``upn`` field and the Graph-style
    ``userPrincipalName`` field.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1, description="Directory object id")
    display_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("displayName", "display_name"),
        description="Human-readable display name",
    )
    upn: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("upn", "userPrincipalName", "user_principal_name"),
        description="User principal name, if the object is a user",
    )

    @field_validator("id", mode="after")
    @classmethod
    def normalize_id(cls, v: str) -> str:
        """Object ids are compared case-insensitively."""
        return v.lower()

    @field_validator("display_name", "upn", mode="after")
    @classmethod
    def empty_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def label(self) -> Optional[str]:
        """Name shown for the object: display name, else its UPN."""
        return self.display_name or self.upn
