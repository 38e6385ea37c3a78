"""Shared fixtures for the directory enrichment test suite.

Environment defaults are set before any package import so ``get_settings()``
never depends on a developer's local .env file.
"""

from __future__ import annotations

import os

os.environ.setdefault("DIRENRICH_ENV_FILE", "tests/.env.missing")
os.environ.setdefault("DIRENRICH_DIRECTORY_TOKEN", "test_token_0123456789")
os.environ.setdefault("DIRENRICH_DEFAULT_TENANT", "contoso.onmicrosoft.com")

import asyncio
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from directory_enrichment.config.settings import get_settings

TENANT = "contoso.onmicrosoft.com"
PARTNER_TENANT = "partner.onmicrosoft.com"
ALICE_ID = "550e8400-e29b-41d4-a716-446655440000"
BOB_ID = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"
PARTNER_BLOB = "a1b2c3d4e5f6a1b2c3d4e5f6a1b2c3d4"
PARTNER_ID = "a1b2c3d4-e5f6-a1b2-c3d4-e5f6a1b2c3d4"
PARTNER_UPN = f"user_{PARTNER_BLOB}@{PARTNER_TENANT}"


class FakeDirectory:
    """Scripted async lookup that records every call.

    ``objects`` maps ``(tenant, object_id)`` to the dict the backend returns.
    Each entry of ``script`` decides the outcome of one call: an exception is
    raised, any other non-None value is returned verbatim, and None (or an
    exhausted script) answers from ``objects``. ``fail_with`` raises on every
    call. ``gate`` holds every call until the event is set.
    """

    def __init__(self, objects: Optional[Dict[Tuple[str, str], Dict[str, Any]]] = None):
        self.objects = dict(objects or {})
        self.script: List[Any] = []
        self.fail_with: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, List[str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, tenant: str, object_ids: List[str]) -> Any:
        self.calls.append((tenant, list(object_ids)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_with is not None:
                raise self.fail_with
            if self.script:
                outcome = self.script.pop(0)
                if isinstance(outcome, BaseException):
                    raise outcome
                if outcome is not None:
                    return outcome
            return [
                dict(self.objects[(tenant, object_id)])
                for object_id in object_ids
                if (tenant, object_id) in self.objects
            ]
        finally:
            self.in_flight -= 1

    def ids_requested(self) -> List[str]:
        return [object_id for _, ids in self.calls for object_id in ids]


class RecordingSleep:
    """Backoff sleep replacement: records delays and only yields to the loop."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Each test sees settings built from its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def directory_objects() -> Dict[Tuple[str, str], Dict[str, Any]]:
    """Backend contents for the standard tenants."""
    return {
        (TENANT, ALICE_ID): {
            "id": ALICE_ID,
            "displayName": "Alice",
            "userPrincipalName": "alice@contoso.onmicrosoft.com",
        },
        (TENANT, BOB_ID): {"id": BOB_ID, "displayName": "Bob"},
        (PARTNER_TENANT, PARTNER_ID): {
            "id": PARTNER_ID,
            "displayName": "Contoso Admin",
            "upn": "admin@partner.onmicrosoft.com",
        },
    }


@pytest.fixture
def fake_directory(directory_objects) -> FakeDirectory:
    return FakeDirectory(directory_objects)


@pytest.fixture
def make_directory() -> Callable[..., FakeDirectory]:
    return FakeDirectory


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1234)
