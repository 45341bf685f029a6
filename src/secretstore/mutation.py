"""Secret name mutation.

Backends often impose their own naming rules: environment variables are
usually upper case with underscores, Key Vault secret names only allow
dashes. :class:`MutatedSecretNameProvider` rewrites the requested name before
delegating, so the application can keep asking for ``Arcus.Foo`` everywhere.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from secretstore.base import (
    ProviderCapabilities,
    Secret,
    SecretNotFoundError,
    SecretNotSupportedError,
    describe_provider,
    ensure_secret_name,
)
from secretstore.observability import SecretStoreLogger, as_logger

T = TypeVar("T")

SecretNameMutation = Callable[[str], str]


class MutatedSecretNameProvider:
    """Provider decorator transforming secret names before each lookup.

    Capabilities (sync, cache-aware, versioned) are those of the wrapped
    provider; mutated names are also used for cache operations.

    Example:
        >>> provider = MutatedSecretNameProvider(
        ...     EnvironmentVariableSecretProvider(),
        ...     lambda name: name.replace(".", "_").upper(),
        ... )
        >>> await provider.get_raw_secret("Arcus.Foo")  # reads ARCUS_FOO
    """

    def __init__(
        self,
        provider: Any,
        mutate_secret_name: SecretNameMutation,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        if provider is None:
            raise ValueError("Requires a secret provider to mutate secret names for")
        if mutate_secret_name is None or not callable(mutate_secret_name):
            raise ValueError("Requires a function to mutate secret names")

        self._provider = provider
        self._mutate = mutate_secret_name
        self._capabilities = ProviderCapabilities.of(provider)
        self._logger = as_logger(logger, __name__)

    @property
    def provider(self) -> Any:
        """The wrapped provider."""
        return self._provider

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    @property
    def description(self) -> str:
        return describe_provider(self._provider)

    @property
    def cache_configuration(self) -> Any:
        self._require(self._capabilities.cached, "cache-aware")
        return self._provider.cache_configuration

    def mutate_secret_name(self, name: str) -> str:
        """Apply the mutation to a secret name.

        Raises:
            SecretNotSupportedError: If the mutation fails or produces a blank name.
        """
        ensure_secret_name(name)
        try:
            mutated = self._mutate(name)
        except Exception as exception:
            raise SecretNotSupportedError(
                f"Cannot mutate secret name '{name}' for {self.description}"
            ) from exception

        if not isinstance(mutated, str) or not mutated.strip():
            raise SecretNotSupportedError(
                f"Mutating secret name '{name}' for {self.description} resulted in a blank name"
            )
        return mutated

    def _require(self, supported: bool, capability: str) -> None:
        if not supported:
            raise SecretNotSupportedError(
                f"{self.description} is not {capability}"
            )

    async def _with_mutated_name_async(self, name: str, call: Callable[[str], Awaitable[T]]) -> T:
        mutated = self.mutate_secret_name(name)
        try:
            return await call(mutated)
        except SecretNotFoundError:
            self._logger.trace("Secret '%s' (mutated to '%s') was not found", name, mutated)
            raise
        except Exception as exception:
            self._logger.error(
                "Failure during retrieving secret '%s' that was mutated to '%s'",
                name,
                mutated,
                exc_info=exception,
            )
            raise

    def _with_mutated_name(self, name: str, call: Callable[[str], T]) -> T:
        mutated = self.mutate_secret_name(name)
        try:
            return call(mutated)
        except SecretNotFoundError:
            self._logger.trace("Secret '%s' (mutated to '%s') was not found", name, mutated)
            raise
        except Exception as exception:
            self._logger.error(
                "Failure during retrieving secret '%s' that was mutated to '%s'",
                name,
                mutated,
                exc_info=exception,
            )
            raise

    async def get_raw_secret(self, name: str, ignore_cache: bool | None = None) -> str | None:
        if ignore_cache is None:
            return await self._with_mutated_name_async(name, self._provider.get_raw_secret)

        self._require(self._capabilities.cached, "cache-aware")
        return await self._with_mutated_name_async(
            name, lambda mutated: self._provider.get_raw_secret(mutated, ignore_cache=ignore_cache)
        )

    async def get_secret(self, name: str, ignore_cache: bool | None = None) -> Secret | None:
        if ignore_cache is None:
            return await self._with_mutated_name_async(name, self._provider.get_secret)

        self._require(self._capabilities.cached, "cache-aware")
        return await self._with_mutated_name_async(
            name, lambda mutated: self._provider.get_secret(mutated, ignore_cache=ignore_cache)
        )

    async def invalidate_secret(self, name: str) -> None:
        self._require(self._capabilities.cached, "cache-aware")
        await self._with_mutated_name_async(name, self._provider.invalidate_secret)

    def is_secret_cached(self, name: str) -> bool:
        self._require(self._capabilities.cached, "cache-aware")
        is_cached = getattr(self._provider, "is_secret_cached", None)
        if is_cached is None:
            return True
        return self._with_mutated_name(name, is_cached)

    async def get_secrets(self, name: str, amount_of_versions: int) -> list[Secret]:
        self._require(self._capabilities.versioned, "versioned")
        return await self._with_mutated_name_async(
            name, lambda mutated: self._provider.get_secrets(mutated, amount_of_versions)
        )

    async def get_raw_secrets(self, name: str, amount_of_versions: int) -> list[str]:
        self._require(self._capabilities.versioned, "versioned")
        return await self._with_mutated_name_async(
            name, lambda mutated: self._provider.get_raw_secrets(mutated, amount_of_versions)
        )

    def get_secret_sync(self, name: str) -> Secret | None:
        self._require(self._capabilities.sync, "synchronous")
        return self._with_mutated_name(name, self._provider.get_secret_sync)

    def get_raw_secret_sync(self, name: str) -> str | None:
        self._require(self._capabilities.sync, "synchronous")
        return self._with_mutated_name(name, self._provider.get_raw_secret_sync)

    def __repr__(self) -> str:
        return f"MutatedSecretNameProvider({self._provider!r})"


def to_environment_variable_name(name: str) -> str:
    """``Arcus.Foo`` -> ``ARCUS_FOO``"""
    return name.replace(".", "_").replace(":", "_").replace("-", "_").upper()


def to_key_vault_name(name: str) -> str:
    """``Arcus.Foo`` -> ``Arcus-Foo``"""
    return name.replace(".", "-").replace(":", "-").replace("_", "-")


SECRET_NAME_MUTATIONS: dict[str, SecretNameMutation] = {
    "environment_variable": to_environment_variable_name,
    "key_vault": to_key_vault_name,
    "upper": str.upper,
    "lower": str.lower,
}


def mutate_secret_name(
    provider: Any,
    mutation: SecretNameMutation,
    logger: logging.Logger | SecretStoreLogger | None = None,
) -> MutatedSecretNameProvider:
    """Wrap a provider so every lookup first transforms the secret name."""
    return MutatedSecretNameProvider(provider, mutation, logger)
