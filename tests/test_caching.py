"""Tests for the caching secret provider decorator."""

from __future__ import annotations

import asyncio
import gc
from datetime import timedelta

import pytest

from secretstore import (
    CacheConfiguration,
    CachedSecretProvider,
    ProviderCapabilities,
    Secret,
    SecretNotSupportedError,
    with_caching,
)
from tests.mocks import (
    FailingSecretProvider,
    FakeClock,
    InMemorySecretProvider,
    InMemorySyncSecretProvider,
    InMemoryVersionedSecretProvider,
)


# =============================================================================
# CacheConfiguration Tests
# =============================================================================


class TestCacheConfiguration:
    """Tests for CacheConfiguration."""

    def test_default_duration(self):
        assert CacheConfiguration().duration == timedelta(minutes=5)

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            CacheConfiguration(timedelta(seconds=-1))

    def test_zero_duration_allowed(self):
        assert CacheConfiguration(timedelta(0)).duration == timedelta(0)

    def test_coerce(self):
        assert CacheConfiguration.coerce(None) == CacheConfiguration()
        assert CacheConfiguration.coerce(30).duration == timedelta(seconds=30)
        assert CacheConfiguration.coerce(timedelta(minutes=1)).duration == timedelta(minutes=1)

        configuration = CacheConfiguration.from_seconds(10)
        assert CacheConfiguration.coerce(configuration) is configuration

    def test_coerce_rejects_other_types(self):
        with pytest.raises(TypeError):
            CacheConfiguration.coerce("5 minutes")  # type: ignore[arg-type]


# =============================================================================
# CachedSecretProvider Tests
# =============================================================================


def cached(provider, seconds: float = 60, clock: FakeClock | None = None) -> CachedSecretProvider:
    return CachedSecretProvider(provider, CacheConfiguration.from_seconds(seconds), clock=clock or FakeClock())


class TestCachedSecretProvider:
    """Tests for CachedSecretProvider."""

    def test_requires_provider(self):
        with pytest.raises(ValueError):
            CachedSecretProvider(None)

    def test_capabilities_follow_inner_provider(self):
        assert cached(InMemorySecretProvider()).capabilities == ProviderCapabilities(cached=True)
        assert cached(InMemorySyncSecretProvider()).capabilities == ProviderCapabilities(sync=True, cached=True)
        assert cached(InMemoryVersionedSecretProvider({})).capabilities == ProviderCapabilities(
            cached=True, versioned=True
        )

    @pytest.mark.asyncio
    async def test_second_lookup_served_from_cache(self):
        inner = InMemorySecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        first = await provider.get_secret("Arcus.Foo")
        second = await provider.get_secret("Arcus.Foo")

        assert first == "bar"
        assert second == "bar"
        assert inner.calls == ["Arcus.Foo"]

    @pytest.mark.asyncio
    async def test_raw_secret_uses_cache(self):
        inner = InMemorySecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        assert await provider.get_raw_secret("Arcus.Foo") == "bar"
        assert await provider.get_raw_secret("Arcus.Foo") == "bar"
        assert inner.calls == ["Arcus.Foo"]

    @pytest.mark.asyncio
    async def test_entry_expires_after_duration(self):
        clock = FakeClock()
        inner = InMemorySecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner, seconds=30, clock=clock)

        await provider.get_secret("Arcus.Foo")
        clock.advance(29)
        await provider.get_secret("Arcus.Foo")
        assert len(inner.calls) == 1

        clock.advance(1)
        await provider.get_secret("Arcus.Foo")
        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_zero_duration_never_serves_cache(self):
        inner = InMemorySecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner, seconds=0)

        await provider.get_secret("Arcus.Foo")
        await provider.get_secret("Arcus.Foo")

        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_ignore_cache_refetches_and_refreshes(self):
        inner = InMemorySecretProvider({"Arcus.Foo": "old"})
        provider = cached(inner)

        assert await provider.get_raw_secret("Arcus.Foo") == "old"
        inner.secrets["Arcus.Foo"] = "new"

        assert await provider.get_raw_secret("Arcus.Foo") == "old"
        assert await provider.get_raw_secret("Arcus.Foo", ignore_cache=True) == "new"
        assert await provider.get_raw_secret("Arcus.Foo") == "new"
        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_misses_are_not_cached(self):
        inner = InMemorySecretProvider()
        provider = cached(inner)

        assert await provider.get_secret("Arcus.Foo") is None
        inner.secrets["Arcus.Foo"] = "bar"

        assert await provider.get_secret("Arcus.Foo") == "bar"
        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self):
        provider = cached(FailingSecretProvider(TimeoutError("vault down")))

        with pytest.raises(TimeoutError):
            await provider.get_secret("Arcus.Foo")

        assert provider.is_secret_cached("Arcus.Foo") is False

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self):
        inner = InMemorySecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        await provider.get_secret("Arcus.Foo")
        assert provider.is_secret_cached("Arcus.Foo") is True

        await provider.invalidate_secret("Arcus.Foo")
        assert provider.is_secret_cached("Arcus.Foo") is False

        await provider.get_secret("Arcus.Foo")
        assert len(inner.calls) == 2

    @pytest.mark.asyncio
    async def test_invalidate_unknown_secret_is_noop(self):
        provider = cached(InMemorySecretProvider())

        await provider.invalidate_secret("Arcus.Unknown")

    @pytest.mark.asyncio
    async def test_invalidate_requires_name(self):
        with pytest.raises(ValueError):
            await cached(InMemorySecretProvider()).invalidate_secret(" ")

    @pytest.mark.asyncio
    async def test_concurrent_lookups_fetch_once(self):
        class SlowProvider(InMemorySecretProvider):
            async def get_secret(self, name: str) -> Secret | None:
                await asyncio.sleep(0.01)
                return await super().get_secret(name)

        inner = SlowProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        results = await asyncio.gather(*(provider.get_raw_secret("Arcus.Foo") for _ in range(10)))

        assert results == ["bar"] * 10
        assert inner.calls == ["Arcus.Foo"]

    @pytest.mark.asyncio
    async def test_requires_secret_name(self):
        with pytest.raises(ValueError):
            await cached(InMemorySecretProvider()).get_secret("")

    def test_sync_lookup_uses_cache(self):
        inner = InMemorySyncSecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        assert provider.get_raw_secret_sync("Arcus.Foo") == "bar"
        assert provider.get_raw_secret_sync("Arcus.Foo") == "bar"
        assert inner.calls == ["Arcus.Foo"]

    def test_sync_lookup_requires_sync_provider(self):
        with pytest.raises(SecretNotSupportedError):
            cached(InMemorySecretProvider()).get_secret_sync("Arcus.Foo")

    @pytest.mark.asyncio
    async def test_sync_and_async_share_entries(self):
        inner = InMemorySyncSecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        provider.get_secret_sync("Arcus.Foo")
        await provider.get_secret("Arcus.Foo")

        assert inner.calls == ["Arcus.Foo"]

    def test_clear(self):
        inner = InMemorySyncSecretProvider({"Arcus.Foo": "bar"})
        provider = cached(inner)

        provider.get_secret_sync("Arcus.Foo")
        provider.clear()

        assert provider.is_secret_cached("Arcus.Foo") is False

    @pytest.mark.asyncio
    async def test_name_locks_released_after_lookups(self):
        inner = InMemorySyncSecretProvider({f"Arcus.Foo{index}": "bar" for index in range(50)})
        provider = cached(inner)

        for index in range(50):
            await provider.get_secret(f"Arcus.Foo{index}")
            provider.get_secret_sync(f"Arcus.Missing{index}")
        gc.collect()

        assert len(provider._async_locks) == 0
        assert len(provider._sync_locks) == 0
        assert provider.is_secret_cached("Arcus.Foo49") is True


class TestCachedVersionedSecrets:
    """Tests for caching of versioned lookups."""

    @pytest.mark.asyncio
    async def test_versions_cached(self):
        inner = InMemoryVersionedSecretProvider({"Arcus.Foo": ["v3", "v2", "v1"]})
        provider = cached(inner)

        first = await provider.get_raw_secrets("Arcus.Foo", 2)
        second = await provider.get_raw_secrets("Arcus.Foo", 2)

        assert first == ["v3", "v2"]
        assert second == ["v3", "v2"]
        assert inner.version_calls == [("Arcus.Foo", 2)]

    @pytest.mark.asyncio
    async def test_fewer_versions_served_from_larger_entry(self):
        inner = InMemoryVersionedSecretProvider({"Arcus.Foo": ["v3", "v2", "v1"]})
        provider = cached(inner)

        await provider.get_secrets("Arcus.Foo", 3)

        assert await provider.get_raw_secrets("Arcus.Foo", 1) == ["v3"]
        assert await provider.get_raw_secret("Arcus.Foo") == "v3"
        assert inner.version_calls == [("Arcus.Foo", 3)]
        assert inner.calls == []

    @pytest.mark.asyncio
    async def test_more_versions_refetched(self):
        inner = InMemoryVersionedSecretProvider({"Arcus.Foo": ["v3", "v2", "v1"]})
        provider = cached(inner)

        await provider.get_secrets("Arcus.Foo", 1)
        await provider.get_secrets("Arcus.Foo", 2)

        assert inner.version_calls == [("Arcus.Foo", 1), ("Arcus.Foo", 2)]

    @pytest.mark.asyncio
    async def test_requires_versioned_provider(self):
        with pytest.raises(SecretNotSupportedError):
            await cached(InMemorySecretProvider()).get_secrets("Arcus.Foo", 2)

    @pytest.mark.asyncio
    async def test_requires_positive_amount(self):
        with pytest.raises(ValueError):
            await cached(InMemoryVersionedSecretProvider({})).get_secrets("Arcus.Foo", 0)


class TestWithCaching:
    """Tests for the with_caching helper."""

    def test_wraps_provider(self):
        inner = InMemorySecretProvider()
        provider = with_caching(inner, timedelta(seconds=10))

        assert provider.provider is inner
        assert provider.cache_configuration.duration == timedelta(seconds=10)

    @pytest.mark.parametrize("duration", [0, timedelta(0)])
    def test_requires_positive_duration(self, duration):
        with pytest.raises(ValueError):
            with_caching(InMemorySecretProvider(), duration)

    def test_negative_duration_rejected(self):
        with pytest.raises(ValueError):
            with_caching(InMemorySecretProvider(), -5)
