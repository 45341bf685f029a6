"""Caching decorator for secret providers.

:class:`CachedSecretProvider` wraps any provider and keeps successful lookups
in memory for a configurable duration. Misses and failures are never cached.
Concurrent lookups of the same uncached name result in a single call to the
wrapped provider.
"""

from __future__ import annotations

import asyncio
import threading
import time
import weakref
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from secretstore.base import (
    ProviderCapabilities,
    Secret,
    SecretNotSupportedError,
    describe_provider,
    ensure_secret_name,
)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheConfiguration:
    """How long secrets stay cached.

    Attributes:
        duration: Time a cached secret is considered fresh (default: 5 minutes).
    """

    duration: timedelta = timedelta(minutes=5)

    def __post_init__(self) -> None:
        if not isinstance(self.duration, timedelta):
            raise TypeError("Requires the cache duration to be a timedelta")
        if self.duration < timedelta(0):
            raise ValueError("Requires a positive or zero cache duration")

    @classmethod
    def from_seconds(cls, seconds: float) -> "CacheConfiguration":
        return cls(timedelta(seconds=seconds))

    @classmethod
    def coerce(cls, value: "CacheConfiguration | timedelta | float | int | None") -> "CacheConfiguration":
        """Build a configuration from a duration, seconds or an existing configuration."""
        if value is None:
            return cls()
        if isinstance(value, CacheConfiguration):
            return value
        if isinstance(value, timedelta):
            return cls(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return cls.from_seconds(value)
        raise TypeError(f"Cannot use {value!r} as cache configuration")


DEFAULT_CACHE_CONFIGURATION = CacheConfiguration()


@dataclass(frozen=True)
class _CacheEntry:
    secrets: tuple[Secret, ...]
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class CachedSecretProvider:
    """Provider decorator caching secrets of the wrapped provider.

    Example:
        >>> provider = CachedSecretProvider(KeyVaultSecretProvider(uri), CacheConfiguration.from_seconds(60))
        >>> await provider.get_secret("my-secret")                     # fetched
        >>> await provider.get_secret("my-secret")                     # cached
        >>> await provider.get_secret("my-secret", ignore_cache=True)  # refetched
    """

    def __init__(
        self,
        provider: Any,
        cache_configuration: CacheConfiguration | timedelta | float | None = None,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        if provider is None:
            raise ValueError("Requires a secret provider to cache")

        self._provider = provider
        self._inner = ProviderCapabilities.of(provider)
        self._configuration = CacheConfiguration.coerce(cache_configuration)
        self._clock = clock

        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        # Per-name locks live only while a lookup holds them.
        self._async_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._sync_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    @property
    def provider(self) -> Any:
        """The wrapped provider."""
        return self._provider

    @property
    def cache_configuration(self) -> CacheConfiguration:
        return self._configuration

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            sync=self._inner.sync,
            cached=True,
            versioned=self._inner.versioned,
        )

    @property
    def description(self) -> str:
        return describe_provider(self._provider)

    # -------------------------------------------------------------------------
    # Cache bookkeeping
    # -------------------------------------------------------------------------

    def _lookup(self, name: str, amount: int = 1) -> tuple[Secret, ...] | None:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock()):
                del self._entries[name]
                return None
            if len(entry.secrets) < amount:
                return None
            return entry.secrets[:amount]

    def _store(self, name: str, secrets: tuple[Secret, ...]) -> None:
        expires_at = self._clock() + self._configuration.duration.total_seconds()
        with self._lock:
            self._entries[name] = _CacheEntry(secrets, expires_at)

    def _async_lock(self, name: str) -> asyncio.Lock:
        with self._lock:
            lock = self._async_locks.get(name)
            if lock is None:
                lock = self._async_locks[name] = asyncio.Lock()
            return lock

    def _sync_lock(self, name: str) -> threading.Lock:
        with self._lock:
            lock = self._sync_locks.get(name)
            if lock is None:
                lock = self._sync_locks[name] = threading.Lock()
            return lock

    def is_secret_cached(self, name: str) -> bool:
        """Check whether a fresh entry exists for the secret name."""
        ensure_secret_name(name)
        return self._lookup(name) is not None

    async def invalidate_secret(self, name: str) -> None:
        """Remove the secret from the cache, forcing the next lookup to refetch."""
        ensure_secret_name(name, "Requires a non-blank secret name to invalidate the cached secret")
        with self._lock:
            self._entries.pop(name, None)

    def clear(self) -> None:
        """Remove all cached secrets."""
        with self._lock:
            self._entries.clear()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_raw_secret(self, name: str, ignore_cache: bool = False) -> str | None:
        secret = await self.get_secret(name, ignore_cache=ignore_cache)
        return None if secret is None else secret.value

    async def get_secret(self, name: str, ignore_cache: bool = False) -> Secret | None:
        """Get the secret from the cache, or from the wrapped provider when absent or stale.

        Args:
            name: Name of the secret.
            ignore_cache: Always fetch from the wrapped provider and refresh the cache.
        """
        ensure_secret_name(name)

        if not ignore_cache:
            cached = self._lookup(name)
            if cached is not None:
                return cached[0]

        async with self._async_lock(name):
            if not ignore_cache:
                cached = self._lookup(name)
                if cached is not None:
                    return cached[0]

            secret = await self._provider.get_secret(name)
            if secret is not None:
                self._store(name, (secret,))
            return secret

    async def get_raw_secrets(self, name: str, amount_of_versions: int, ignore_cache: bool = False) -> list[str]:
        secrets = await self.get_secrets(name, amount_of_versions, ignore_cache=ignore_cache)
        return [secret.value for secret in secrets]

    async def get_secrets(self, name: str, amount_of_versions: int, ignore_cache: bool = False) -> list[Secret]:
        """Get the most recent versions of the secret, newest first."""
        ensure_secret_name(name)
        if amount_of_versions < 1:
            raise ValueError("Requires at least one secret version to retrieve")
        if not self._inner.versioned:
            raise SecretNotSupportedError(
                f"Cannot retrieve versioned secrets from {self.description}: "
                "the provider does not support versioned secrets"
            )

        if not ignore_cache:
            cached = self._lookup(name, amount_of_versions)
            if cached is not None:
                return list(cached)

        async with self._async_lock(name):
            if not ignore_cache:
                cached = self._lookup(name, amount_of_versions)
                if cached is not None:
                    return list(cached)

            secrets = list(await self._provider.get_secrets(name, amount_of_versions) or [])
            if secrets:
                self._store(name, tuple(secrets))
            return secrets

    def get_raw_secret_sync(self, name: str, ignore_cache: bool = False) -> str | None:
        secret = self.get_secret_sync(name, ignore_cache=ignore_cache)
        return None if secret is None else secret.value

    def get_secret_sync(self, name: str, ignore_cache: bool = False) -> Secret | None:
        ensure_secret_name(name)
        if not self._inner.sync:
            raise SecretNotSupportedError(
                f"Cannot retrieve secrets synchronously from {self.description}: "
                "the provider only supports asynchronous lookups"
            )

        if not ignore_cache:
            cached = self._lookup(name)
            if cached is not None:
                return cached[0]

        with self._sync_lock(name):
            if not ignore_cache:
                cached = self._lookup(name)
                if cached is not None:
                    return cached[0]

            secret = self._provider.get_secret_sync(name)
            if secret is not None:
                self._store(name, (secret,))
            return secret

    def __repr__(self) -> str:
        return f"CachedSecretProvider({self._provider!r}, duration={self._configuration.duration})"


def with_caching(
    provider: Any,
    duration: CacheConfiguration | timedelta | float | None = None,
    *,
    clock: Clock = time.monotonic,
) -> CachedSecretProvider:
    """Wrap a provider with an in-memory cache.

    Raises:
        ValueError: If the duration is not strictly positive.
    """
    configuration = CacheConfiguration.coerce(duration)
    if configuration.duration <= timedelta(0):
        raise ValueError("Requires a cache duration greater than zero")
    return CachedSecretProvider(provider, configuration, clock=clock)
