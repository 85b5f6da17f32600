import random

import pytest

from replicator.context import NamespacedName, ReconcileRequest
from replicator.exceptions import StoreUnavailableError
from replicator.index.trigger_index import TriggerIndex

KINDS = ["Secret", "ConfigMap", "secret"]
NAMESPACES = ["default", "kube-system", "team-a"]
NAMES = ["db-password", "tls", "api-key"]


@pytest.fixture
def trigger_index(store):
    return TriggerIndex(store)


class TestTriggerIndex:
    """Test suite for resolving a changed object to the declarations naming it as source."""

    @pytest.mark.asyncio
    async def test_exact_match(self, trigger_index, create_replicated_resource):
        """Only declarations matching kind, namespace and name are returned."""
        await create_replicated_resource("team-a", "db-password", "default", "db-password")
        await create_replicated_resource("team-b", "db-password", "default", "db-password")
        await create_replicated_resource("team-c", "db-password", "kube-system", "db-password")
        await create_replicated_resource("team-d", "db-password", "default", "db-password", "ConfigMap")
        await create_replicated_resource("team-e", "tls", "default", "tls")

        matches = await trigger_index.resolve("Secret", "default", "db-password")

        assert matches == [NamespacedName("team-a", "db-password"), NamespacedName("team-b", "db-password")]

    @pytest.mark.asyncio
    async def test_kind_is_case_sensitive(self, trigger_index, create_replicated_resource):
        """Kinds are compared exactly."""
        await create_replicated_resource("team-a", "copy", "default", "db-password", "Secret")

        assert await trigger_index.resolve("secret", "default", "db-password") == []

    @pytest.mark.asyncio
    async def test_empty_fields_never_match(self, trigger_index, create_replicated_resource):
        """Declarations with empty source fields are not indexed and empty queries match nothing."""
        await create_replicated_resource("team-a", "copy", "", "db-password")
        await create_replicated_resource("team-b", "copy", "default", "", "Secret")
        await create_replicated_resource("team-c", "copy", "default", "db-password", "")

        assert await trigger_index.resolve("Secret", "", "db-password") == []
        assert await trigger_index.resolve("Secret", "default", "") == []
        assert await trigger_index.resolve("", "default", "db-password") == []

    @pytest.mark.asyncio
    async def test_reflects_current_declarations(self, store, trigger_index, create_replicated_resource):
        """Deleted and retargeted declarations drop out of the answer immediately."""
        await create_replicated_resource("team-a", "copy", "default", "db-password")
        rr = await create_replicated_resource("team-b", "copy", "default", "db-password")
        assert len(await trigger_index.resolve("Secret", "default", "db-password")) == 2

        await store.delete_replicated_resource("team-a", "copy")
        rr.source_name = "tls"
        await store.update_replicated_resource_spec(rr)

        assert await trigger_index.resolve("Secret", "default", "db-password") == []
        assert await trigger_index.resolve("Secret", "default", "tls") == [NamespacedName("team-b", "copy")]

    @pytest.mark.asyncio
    async def test_randomized_precision(self, trigger_index, create_replicated_resource):
        """For every triple the answer equals a brute-force scan over random declarations."""
        rng = random.Random(20250611)
        declarations = {}
        for i in range(60):
            source = (
                rng.choice(KINDS + [""]),
                rng.choice(NAMESPACES + [""]),
                rng.choice(NAMES + [""]),
            )
            identity = NamespacedName(rng.choice(NAMESPACES), f"declaration-{i}")
            declarations[identity] = source
            await create_replicated_resource(identity.namespace, identity.name, source[1], source[2], source[0])

        for kind in KINDS + [""]:
            for namespace in NAMESPACES + [""]:
                for name in NAMES + [""]:
                    expected = []
                    if kind and namespace and name:
                        expected = sorted(
                            identity
                            for identity, source in declarations.items()
                            if source == (kind, namespace, name)
                        )
                    actual = await trigger_index.resolve(kind, namespace, name)
                    assert actual == expected, (kind, namespace, name)

    @pytest.mark.asyncio
    async def test_store_errors_propagate_from_resolve(self, store, trigger_index, monkeypatch):
        """resolve() surfaces store failures to its caller."""

        async def failing_list(field_selector=None):
            raise StoreUnavailableError("database is locked")

        monkeypatch.setattr(store, "list_replicated_resources", failing_list)

        with pytest.raises(StoreUnavailableError):
            await trigger_index.resolve("Secret", "default", "db-password")

    @pytest.mark.asyncio
    async def test_requests_for_swallows_store_errors(self, store, trigger_index, monkeypatch):
        """The watch-path lookup logs a failure and reports no matches."""

        async def failing_list(field_selector=None):
            raise StoreUnavailableError("database is locked")

        monkeypatch.setattr(store, "list_replicated_resources", failing_list)

        assert await trigger_index.requests_for("Secret", "default", "db-password") == []

    @pytest.mark.asyncio
    async def test_requests_for_wraps_identities(self, trigger_index, create_replicated_resource):
        """Matches are returned as reconcile requests."""
        await create_replicated_resource("team-a", "copy", "default", "db-password")

        requests = await trigger_index.requests_for("Secret", "default", "db-password")

        assert requests == [ReconcileRequest.of("team-a", "copy")]
