"""
Unit tests for the GuidResolver engine facade.

Tests cover:
- End-to-end resolution of a canonical GUID and a partner UPN
- No mutation of caller data
- Zero additional lookups for known identifiers
- At most one in-flight lookup per identifier
- Rate-limit retry and exhaustion through the public surface
- Disposal while a batch is in flight
- Timed-out waits, hung lookups and loop shutdown mid-lookup
- Use outside a running event loop
"""

import asyncio
import copy

import pytest

from conftest import (
    ALICE_ID,
    BOB_ID,
    PARTNER_ID,
    PARTNER_TENANT,
    PARTNER_UPN,
    TENANT,
)
from directory_enrichment.domain.identifier_resolution.models import (
    IdentifierKey,
    ResolutionState,
)
from directory_enrichment.infrastructure.enrichment.engine import GuidResolver
from directory_enrichment.infrastructure.enrichment.retry_policy import RetryPolicy
from directory_enrichment.infrastructure.enrichment.substitution import (
    SubstitutionResult,
    display_name_with_upn,
)
from directory_enrichment.io.connectors.directory.models import DirectoryRateLimitError


@pytest.fixture
def make_engine(recording_sleep, seeded_rng):
    def factory(lookup, tenant=TENANT, **kwargs):
        kwargs.setdefault("retry_policy", RetryPolicy(timeout=None))
        return GuidResolver(lookup, tenant, sleep=recording_sleep, rng=seeded_rng, **kwargs)

    return factory


def _entry(engine: GuidResolver, object_id: str, tenant: str = TENANT):
    return engine.snapshot().entries.get(IdentifierKey(object_id, tenant))


@pytest.mark.unit
class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_guid_and_partner_upn(self, fake_directory, make_engine) -> None:
        engine = make_engine(fake_directory)
        record = {"id": ALICE_ID, "target": PARTNER_UPN}

        queued = engine.resolve_guids(record)

        assert set(queued) == {
            IdentifierKey(ALICE_ID, TENANT),
            IdentifierKey(PARTNER_ID, PARTNER_TENANT),
        }
        assert engine.is_loading_guids

        await engine.wait_idle()

        assert not engine.is_loading_guids
        assert engine.guid_mapping[ALICE_ID] == "Alice"
        assert engine.guid_mapping[PARTNER_ID] == "Contoso Admin"
        assert engine.upn_mapping[ALICE_ID] == "alice@contoso.onmicrosoft.com"
        result = engine.replace_guids_and_upns_in_string(record["target"])
        assert "Contoso Admin" in result.result
        assert result.has_resolved_names is True
        assert sorted(fake_directory.calls) == [
            (PARTNER_TENANT, [PARTNER_ID]),
            (TENANT, [ALICE_ID]),
        ]

    @pytest.mark.asyncio
    async def test_async_context_manager_disposes(self, fake_directory, make_engine) -> None:
        async with make_engine(fake_directory) as engine:
            engine.resolve_guids(ALICE_ID)
            await engine.wait_idle()
            assert engine.replace_guids_and_upns_in_string(ALICE_ID) == ("Alice", True)

        assert engine.is_disposed

    @pytest.mark.asyncio
    async def test_enrich_value_with_formatter(self, fake_directory, make_engine) -> None:
        engine = make_engine(fake_directory)
        rows = [{"actor": ALICE_ID, "note": "ok"}]
        engine.resolve_guids(rows)
        await engine.wait_idle()

        enriched = engine.enrich_value(rows, formatter=display_name_with_upn)

        assert enriched == [{"actor": "Alice (alice@contoso.onmicrosoft.com)", "note": "ok"}]
        assert rows == [{"actor": ALICE_ID, "note": "ok"}]


@pytest.mark.unit
class TestDeduplication:
    @pytest.mark.asyncio
    async def test_resolve_guids_does_not_mutate_input(self, fake_directory, make_engine) -> None:
        engine = make_engine(fake_directory)
        record = {"id": ALICE_ID, "nested": [PARTNER_UPN, {"ids": {BOB_ID}}]}
        before = copy.deepcopy(record)

        engine.resolve_guids(record)
        await engine.wait_idle()
        engine.enrich_value(record)

        assert record == before

    @pytest.mark.asyncio
    async def test_resolved_identifiers_issue_no_further_calls(
        self, fake_directory, make_engine
    ) -> None:
        engine = make_engine(fake_directory)
        engine.resolve_guids({"id": ALICE_ID})
        await engine.wait_idle()
        calls_after_first = len(fake_directory.calls)

        assert engine.resolve_guids({"id": ALICE_ID, "again": ALICE_ID.upper()}) == []
        await engine.wait_idle()

        assert len(fake_directory.calls) == calls_after_first
        assert engine.stats.identifiers_coalesced == 1

    @pytest.mark.asyncio
    async def test_one_in_flight_lookup_per_identifier(
        self, fake_directory, make_engine
    ) -> None:
        fake_directory.gate = asyncio.Event()
        engine = make_engine(fake_directory)

        engine.resolve_guids(ALICE_ID)
        await asyncio.sleep(0)
        engine.resolve_guids([ALICE_ID, {"again": ALICE_ID}])
        engine.resolve_guids(ALICE_ID)
        fake_directory.gate.set()
        await engine.wait_idle()

        assert fake_directory.ids_requested() == [ALICE_ID]

    @pytest.mark.asyncio
    async def test_batches_are_bounded(self, make_directory, make_engine) -> None:
        ids = [f"{i:08x}-0000-4000-8000-000000000000" for i in range(5)]
        directory = make_directory(
            {(TENANT, i): {"id": i, "displayName": f"User {n}"} for n, i in enumerate(ids)}
        )
        engine = make_engine(directory, max_batch_size=2)

        engine.resolve_guids(ids)
        await engine.wait_idle()

        assert [len(call_ids) for _, call_ids in directory.calls] == [2, 2, 1]
        assert len(engine.guid_mapping) == 5

    @pytest.mark.asyncio
    async def test_tenant_override_scopes_canonical_guids(
        self, make_directory, make_engine
    ) -> None:
        directory = make_directory(
            {("fabrikam.com", ALICE_ID): {"id": ALICE_ID, "displayName": "Alice F"}}
        )
        engine = make_engine(directory)

        engine.resolve_guids(ALICE_ID, tenant_override="Fabrikam.com")
        await engine.wait_idle()

        assert directory.calls == [("fabrikam.com", [ALICE_ID])]
        assert engine.guid_mapping == {ALICE_ID: "Alice F"}
        assert engine.replace_guids_and_upns_in_string(ALICE_ID, "fabrikam.com").result == "Alice F"
        assert engine.replace_guids_and_upns_in_string(ALICE_ID).has_resolved_names is False


@pytest.mark.unit
class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_resolves_after_transient_rate_limits(
        self, fake_directory, make_engine, recording_sleep
    ) -> None:
        fake_directory.script = [DirectoryRateLimitError()] * 3
        engine = make_engine(fake_directory, retry_policy=RetryPolicy(max_attempts=4))

        engine.resolve_guids(ALICE_ID)
        await engine.wait_idle()

        assert len(fake_directory.calls) == 4
        assert engine.guid_mapping == {ALICE_ID: "Alice"}
        assert len(recording_sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_always_rate_limited_becomes_failed_and_is_never_retried(
        self, fake_directory, make_engine
    ) -> None:
        fake_directory.fail_with = DirectoryRateLimitError()
        engine = make_engine(fake_directory, retry_policy=RetryPolicy(max_attempts=3))

        engine.resolve_guids({"id": ALICE_ID})
        await engine.wait_idle()

        assert len(fake_directory.calls) == 3
        assert _entry(engine, ALICE_ID).state is ResolutionState.FAILED
        assert engine.guid_mapping == {}

        engine.resolve_guids({"id": ALICE_ID})
        await engine.wait_idle()

        assert len(fake_directory.calls) == 3
        assert engine.replace_guids_and_upns_in_string(ALICE_ID) == SubstitutionResult(
            ALICE_ID, False
        )

    @pytest.mark.asyncio
    async def test_loading_while_backing_off(self, fake_directory, make_engine) -> None:
        fake_directory.script = [DirectoryRateLimitError()]
        release = asyncio.Event()
        states = []

        async def held_sleep(delay: float) -> None:
            states.append(engine.is_loading_guids)
            await release.wait()

        engine = GuidResolver(
            fake_directory, TENANT, retry_policy=RetryPolicy(timeout=None), sleep=held_sleep
        )
        engine.resolve_guids(ALICE_ID)
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert states == [True]
        assert engine.is_loading_guids
        release.set()
        await engine.wait_idle()
        assert not engine.is_loading_guids


@pytest.mark.unit
class TestDisposal:
    @pytest.mark.asyncio
    async def test_in_flight_result_is_discarded(self, fake_directory, make_engine) -> None:
        fake_directory.gate = asyncio.Event()
        engine = make_engine(fake_directory)
        engine.resolve_guids({"id": ALICE_ID})
        await asyncio.sleep(0)
        before = engine.snapshot()

        engine.dispose()
        fake_directory.gate.set()
        await engine.wait_idle()

        after = engine.snapshot()
        assert after.entries == before.entries
        assert _entry(engine, ALICE_ID).state is ResolutionState.PENDING
        assert engine.guid_mapping == {}
        assert not engine.is_loading_guids

    @pytest.mark.asyncio
    async def test_no_lookups_after_dispose(self, fake_directory, make_engine) -> None:
        engine = make_engine(fake_directory)
        engine.dispose()
        engine.dispose()

        assert engine.resolve_guids(ALICE_ID) == []
        await engine.wait_idle()

        assert fake_directory.calls == []

    @pytest.mark.asyncio
    async def test_queued_batches_dropped(self, fake_directory, make_engine) -> None:
        fake_directory.gate = asyncio.Event()
        engine = make_engine(fake_directory, max_batch_size=1)
        engine.resolve_guids([ALICE_ID, BOB_ID])
        await asyncio.sleep(0)

        engine.dispose()
        fake_directory.gate.set()
        await engine.wait_idle()

        assert len(fake_directory.calls) == 1

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, fake_directory, make_engine) -> None:
        first = make_engine(fake_directory)
        second = make_engine(fake_directory)

        first.resolve_guids(ALICE_ID)
        await first.wait_idle()

        assert second.guid_mapping == {}
        assert second.resolve_guids(ALICE_ID) == [IdentifierKey(ALICE_ID, TENANT)]
        await second.wait_idle()
        assert len(fake_directory.calls) == 2


@pytest.mark.unit
class TestInterruptedLookups:
    @pytest.mark.asyncio
    async def test_timed_out_wait_does_not_strand_identifiers(
        self, fake_directory, make_engine
    ) -> None:
        fake_directory.gate = asyncio.Event()
        engine = make_engine(fake_directory, max_batch_size=1)
        engine.resolve_guids([ALICE_ID, BOB_ID])

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(engine.wait_idle(), 0.05)

        fake_directory.gate.set()
        engine.resolve_guids([ALICE_ID, BOB_ID])
        await engine.wait_idle()

        assert fake_directory.ids_requested() == [ALICE_ID, BOB_ID]
        assert engine.guid_mapping == {ALICE_ID: "Alice", BOB_ID: "Bob"}

    @pytest.mark.asyncio
    async def test_hung_lookup_ends_failed(self, make_directory, make_engine) -> None:
        directory = make_directory()
        directory.gate = asyncio.Event()
        engine = make_engine(
            directory,
            max_batch_size=1,
            retry_policy=RetryPolicy(max_attempts=2, timeout=0.01),
        )

        engine.resolve_guids([ALICE_ID, BOB_ID])
        await engine.wait_idle()

        assert len(directory.calls) == 4
        assert _entry(engine, ALICE_ID).state is ResolutionState.FAILED
        assert _entry(engine, BOB_ID).state is ResolutionState.FAILED
        assert not engine.is_loading_guids
        assert engine.stats.timed_out == 4

    def test_loop_shutdown_mid_lookup_is_looked_up_again(self, fake_directory) -> None:
        engine = GuidResolver(
            fake_directory,
            TENANT,
            retry_policy=RetryPolicy(timeout=None),
            sleep=lambda _: asyncio.sleep(0),
        )

        async def first_request() -> None:
            fake_directory.gate = asyncio.Event()
            engine.resolve_guids({"id": ALICE_ID})
            await asyncio.sleep(0)

        asyncio.run(first_request())

        assert len(fake_directory.calls) == 1
        assert len(engine.snapshot().entries) == 0
        assert not engine.is_loading_guids

        async def second_request() -> None:
            fake_directory.gate = None
            engine.resolve_guids({"id": ALICE_ID})
            await engine.wait_idle()

        asyncio.run(second_request())

        assert len(fake_directory.calls) == 2
        assert engine.guid_mapping == {ALICE_ID: "Alice"}


@pytest.mark.unit
class TestWithoutRunningLoop:
    def test_batches_wait_for_wait_idle(self, fake_directory) -> None:
        engine = GuidResolver(fake_directory, TENANT, sleep=lambda _: asyncio.sleep(0))

        engine.resolve_guids({"id": ALICE_ID})

        assert engine.is_loading_guids
        assert fake_directory.calls == []

        asyncio.run(engine.wait_idle())

        assert engine.guid_mapping == {ALICE_ID: "Alice"}
        assert not engine.is_loading_guids


@pytest.mark.unit
class TestHelpers:
    def test_is_guid(self) -> None:
        assert GuidResolver.is_guid("550e8400-e29b-41d4-a716-446655440000") is True
        assert GuidResolver.is_guid("not-a-guid") is False

    def test_extract_object_id_uses_configured_prefix(self, fake_directory) -> None:
        engine = GuidResolver(fake_directory, TENANT, partner_prefix="ext_")

        assert engine.extract_object_id_from_partner_upn(PARTNER_UPN) == []
        assert engine.extract_object_id_from_partner_upn(
            PARTNER_UPN.replace("user_", "ext_")
        ) == [PARTNER_ID]

    def test_replace_non_string(self, fake_directory) -> None:
        engine = GuidResolver(fake_directory, TENANT)

        assert engine.replace_guids_and_upns_in_string(None) == (None, False)

    def test_invalid_batch_size(self, fake_directory) -> None:
        with pytest.raises(ValueError):
            GuidResolver(fake_directory, TENANT, max_batch_size=0)

    def test_from_settings(self, fake_directory, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DIRENRICH_DEFAULT_TENANT", "Fabrikam.com")
        monkeypatch.setenv("DIRENRICH_LOOKUP_RETRY_MAX", "2")
        monkeypatch.setenv("DIRENRICH_LOOKUP_TIMEOUT", "5")
        monkeypatch.setenv("DIRENRICH_MATCH_EMBEDDED_GUIDS", "true")

        engine = GuidResolver.from_settings(fake_directory)

        assert engine.default_tenant == "fabrikam.com"
        assert engine.match_embedded is True
        assert engine._resolver.policy.max_attempts == 2
        assert engine._resolver.policy.timeout == 5.0
