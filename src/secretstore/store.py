"""The composite secret store.

The secret store consults its registered providers in registration order and
returns the first secret found. Provider failures are misses unless a
critical exception filter marks them as critical, in which case the lookup
fails with those exceptions once all providers have been consulted.

Example:
    >>> store = (
    ...     SecretStoreBuilder()
    ...     .add_environment_variables(mutate_secret_name=lambda n: n.replace(".", "_").upper())
    ...     .add_azure_key_vault("https://my-vault.vault.azure.net", cache_configuration=300)
    ...     .build()
    ... )
    >>> password = await store.get_raw_secret("Database.Password")
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, TypeVar, overload

from secretstore.base import (
    AmbiguousSecretProviderError,
    CriticalSecretStoreError,
    ProviderCapabilities,
    Secret,
    SecretNotFoundError,
    SecretNotSupportedError,
    SecretProviderNotFoundError,
    SecretStoreConfigurationError,
    describe_provider,
    ensure_secret_name,
)
from secretstore.configuration import Configuration
from secretstore.critical import CriticalExceptionFilter, CriticalExceptionPolicy
from secretstore.mutation import MutatedSecretNameProvider, SecretNameMutation
from secretstore.observability import SecretStoreLogger, as_logger

P = TypeVar("P")
T = TypeVar("T")


# =============================================================================
# Options
# =============================================================================


@dataclass
class SecretProviderOptions:
    """Registration options of a provider in the secret store.

    Attributes:
        name: Optional name to look the provider up later on.
        mutate_secret_name: Transformation applied to secret names before lookup.
        versioned_secrets: Number of versions to retrieve per secret name.
    """

    name: str | None = None
    mutate_secret_name: SecretNameMutation | None = None
    versioned_secrets: dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.name is not None and not self.name.strip():
            raise ValueError("Requires a non-blank provider name when a name is given")
        if self.mutate_secret_name is not None and not callable(self.mutate_secret_name):
            raise TypeError("Requires a callable to mutate secret names")

        versioned = dict(self.versioned_secrets or {})
        self.versioned_secrets = {}
        for secret_name, allowed_versions in versioned.items():
            self.add_versioned_secret(secret_name, allowed_versions)

    def add_versioned_secret(self, secret_name: str, allowed_versions: int) -> "SecretProviderOptions":
        """Declare that lookups of this secret return up to ``allowed_versions`` versions."""
        ensure_secret_name(secret_name, "Requires a non-blank secret name to register a versioned secret")
        if isinstance(allowed_versions, bool) or not isinstance(allowed_versions, int) or allowed_versions < 1:
            raise ValueError("Requires at least one allowed version for a versioned secret")

        self.versioned_secrets[secret_name] = allowed_versions
        return self

    def get_allowed_versions(self, secret_name: str) -> int | None:
        return self.versioned_secrets.get(secret_name)


@dataclass
class SecretStoreAuditingOptions:
    """Auditing options of the secret store.

    Attributes:
        emit_security_events: Log a security event for every secret request.
    """

    emit_security_events: bool = False


@dataclass
class SecretStoreContext:
    """Services available to lazily created providers.

    Attributes:
        configuration: Application configuration, if any.
        services: Arbitrary named services.
    """

    configuration: Configuration | None = None
    services: dict[str, Any] = field(default_factory=dict)

    def get_service(self, name: str) -> Any:
        try:
            return self.services[name]
        except KeyError:
            raise LookupError(f"No service '{name}' registered in the secret store context") from None


ProviderFactory = Callable[[SecretStoreContext], Any]


# =============================================================================
# Source
# =============================================================================


class _ResolvedProvider:
    __slots__ = ("registered", "effective", "capabilities", "description")

    def __init__(self, registered: Any, effective: Any) -> None:
        self.registered = registered
        self.effective = effective
        self.capabilities = ProviderCapabilities.of(registered)
        self.description = describe_provider(registered)


class SecretStoreSource:
    """A provider registered in the secret store, with its options.

    The provider is either given directly or created lazily by a factory on
    first use. A factory runs at most once; if it fails, every use of the
    source raises :class:`SecretStoreConfigurationError`.
    """

    def __init__(
        self,
        provider: Any = None,
        *,
        factory: ProviderFactory | None = None,
        options: SecretProviderOptions | None = None,
        context: SecretStoreContext | None = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        if (provider is None) == (factory is None):
            raise ValueError("Requires either a secret provider or a factory creating one")
        if factory is not None and not callable(factory):
            raise TypeError("Requires a callable secret provider factory")

        self._options = options or SecretProviderOptions()
        self._factory = factory
        self._context = context or SecretStoreContext()
        self._logger = as_logger(logger, __name__)
        self._lock = threading.Lock()
        self._resolved: _ResolvedProvider | None = None
        self._failure: BaseException | None = None

        if provider is not None:
            self._resolved = self._resolve(provider)

    @property
    def options(self) -> SecretProviderOptions:
        return self._options

    @property
    def name(self) -> str | None:
        return self._options.name

    @property
    def is_lazy(self) -> bool:
        return self._factory is not None

    @property
    def provider(self) -> Any:
        """The provider as consulted by the store, with name mutation applied."""
        return self._ensure_resolved().effective

    @property
    def registered_provider(self) -> Any:
        """The provider as it was registered, without name mutation."""
        return self._ensure_resolved().registered

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._ensure_resolved().capabilities

    @property
    def description(self) -> str:
        if self._resolved is None:
            return self.name or "lazy secret provider"
        return self._resolved.description

    def _resolve(self, provider: Any) -> _ResolvedProvider:
        mutation = self._options.mutate_secret_name
        effective = (
            provider
            if mutation is None
            else MutatedSecretNameProvider(provider, mutation, self._logger)
        )
        return _ResolvedProvider(provider, effective)

    def _configuration_error(self) -> SecretStoreConfigurationError:
        error = SecretStoreConfigurationError(
            f"Could not create the secret provider{f' {self.name!r}' if self.name else ''} "
            "registered in the secret store"
        )
        error.__cause__ = self._failure
        return error

    def _ensure_resolved(self) -> _ResolvedProvider:
        resolved = self._resolved
        if resolved is not None:
            return resolved

        with self._lock:
            if self._resolved is not None:
                return self._resolved
            if self._failure is not None:
                raise self._configuration_error()

            factory = self._factory
            if factory is None:
                raise SecretStoreConfigurationError("No secret provider or factory was registered")
            try:
                provider = factory(self._context)
                if provider is None:
                    raise ValueError("The secret provider factory returned no provider")
            except Exception as exception:
                self._failure = exception
                self._logger.error(
                    "Failed to create secret provider%s",
                    f" '{self.name}'" if self.name else "",
                    exc_info=exception,
                )
                raise self._configuration_error() from exception

            self._resolved = self._resolve(provider)
            return self._resolved

    def __repr__(self) -> str:
        return f"SecretStoreSource(name={self.name!r}, provider={self.description!r})"


# =============================================================================
# Resolution
# =============================================================================


def _is_miss(result: Any) -> bool:
    return result is None or (isinstance(result, list) and not result)


class _Resolution:
    """Bookkeeping of one fan-out over the registered providers."""

    def __init__(self, store: "CompositeSecretProvider", secret_name: str) -> None:
        self._store = store
        self.secret_name = secret_name
        self.critical_exceptions: list[BaseException] = []

    def before(self, source: SecretStoreSource) -> None:
        if self._store.auditing.emit_security_events:
            self._store.logger.security_event(
                "Get Secret",
                {"SecretName": self.secret_name, "SecretProvider": source.description},
            )

    def failed(self, source: SecretStoreSource, exception: Exception) -> None:
        if self._store.critical_exceptions.is_critical(exception):
            self._store.logger.error(
                "Exception of type '%s' was marked as critical while looking up secret '%s' in %s",
                type(exception).__name__,
                self.secret_name,
                source.description,
                exc_info=exception,
            )
            self.critical_exceptions.append(exception)
        else:
            self._store.logger.trace(
                "Secret provider %s failed to look up secret '%s': %s",
                source.description,
                self.secret_name,
                type(exception).__name__,
            )

    def completed(self, source: SecretStoreSource, result: Any) -> bool:
        """Register a provider result, returns whether the lookup is done."""
        if _is_miss(result):
            self._store.logger.trace(
                "Secret provider %s has no secret '%s'", source.description, self.secret_name
            )
            return False

        if self.critical_exceptions:
            self._store.logger.warning(
                "Found secret '%s' in %s but discarded it as %d critical exceptions were thrown before",
                self.secret_name,
                source.description,
                len(self.critical_exceptions),
            )
            return False

        self._store.logger.info("Found secret '%s' in %s", self.secret_name, source.description)
        return True

    def not_supported(self, source: SecretStoreSource) -> Exception:
        if self.critical_exceptions:
            return self.failure()
        self._store.logger.error(
            "Secret provider %s does not support synchronous lookups, stopped looking up secret '%s'",
            source.description,
            self.secret_name,
        )
        return SecretNotSupportedError(
            f"Secret provider {source.description} does not support synchronous lookups "
            f"of secret '{self.secret_name}'; use the asynchronous lookup instead"
        )

    def failure(self) -> Exception:
        critical = self.critical_exceptions
        if len(critical) == 1:
            return critical[0]  # type: ignore[return-value]
        if critical:
            return CriticalSecretStoreError(self.secret_name, critical)

        sources = self._store.sources
        self._store.logger.error(
            "None of the %d configured secret providers was able to retrieve secret '%s'",
            len(sources),
            self.secret_name,
        )
        return SecretNotFoundError(
            self.secret_name,
            LookupError(
                f"None of the {len(sources)} configured secret providers was able to "
                f"retrieve the requested secret with name '{self.secret_name}'"
            ),
        )


# =============================================================================
# Composite
# =============================================================================


class CompositeSecretProvider:
    """Secret provider looking up secrets in all registered providers.

    Providers are consulted in registration order and the first result is
    returned. The store supports synchronous lookups, cache operations and
    versioned lookups; providers without the capability needed for a call
    are treated as misses.
    """

    capabilities = ProviderCapabilities(sync=True, cached=True, versioned=True)
    description = "secret store"

    def __init__(
        self,
        sources: Iterable[SecretStoreSource] = (),
        critical_exceptions: CriticalExceptionPolicy | Iterable[CriticalExceptionFilter] | None = None,
        auditing: SecretStoreAuditingOptions | None = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        sources = tuple(sources)
        if any(source is None for source in sources):
            raise ValueError("Requires all secret store sources to be non-null")

        self._logger = as_logger(logger, __name__)
        self._sources = sources
        if isinstance(critical_exceptions, CriticalExceptionPolicy):
            self._critical = critical_exceptions
        else:
            self._critical = CriticalExceptionPolicy(critical_exceptions or (), self._logger)
        self._auditing = auditing or SecretStoreAuditingOptions()

    @property
    def sources(self) -> tuple[SecretStoreSource, ...]:
        return self._sources

    @property
    def critical_exceptions(self) -> CriticalExceptionPolicy:
        return self._critical

    @property
    def auditing(self) -> SecretStoreAuditingOptions:
        return self._auditing

    @property
    def logger(self) -> SecretStoreLogger:
        return self._logger

    @property
    def cache_configuration(self) -> Any:
        raise SecretNotSupportedError(
            "The secret store has no cache configuration of its own; "
            "look up a cached provider with 'get_cached_provider' instead"
        )

    # -------------------------------------------------------------------------
    # Provider lookup
    # -------------------------------------------------------------------------

    def _sources_named(self, name: str) -> list[SecretStoreSource]:
        ensure_secret_name(name, "Requires a non-blank name to look up a secret provider")
        matches = [source for source in self._sources if source.name == name]
        if not matches:
            raise SecretProviderNotFoundError(
                f"No secret provider registered in the secret store with name '{name}'"
            )
        return matches

    @overload
    def get_provider(self, name: str) -> Any:
        ...

    @overload
    def get_provider(self, name: str, provider_type: type[P]) -> P:
        ...

    def get_provider(self, name: str, provider_type: type[Any] | None = None) -> Any:
        """Get a registered provider by its registration name.

        Without a type, several registrations sharing the name are returned
        together as a secret store of their own. With a type, exactly one
        registration must match and it must be of that type.

        Raises:
            SecretProviderNotFoundError: If no provider has this name.
            AmbiguousSecretProviderError: If a typed lookup matches several providers.
            TypeError: If the provider is not of the requested type.
        """
        matches = self._sources_named(name)

        if provider_type is None:
            if len(matches) == 1:
                return matches[0].provider
            return CompositeSecretProvider(matches, self._critical, self._auditing, self._logger)

        if len(matches) > 1:
            raise AmbiguousSecretProviderError(
                f"Cannot get the secret provider '{name}' as {provider_type.__name__}: "
                f"{len(matches)} providers are registered with this name"
            )

        source = matches[0]
        if isinstance(source.registered_provider, provider_type):
            return source.registered_provider
        if isinstance(source.provider, provider_type):
            return source.provider
        raise TypeError(
            f"Secret provider '{name}' is a {type(source.registered_provider).__name__}, "
            f"not a {provider_type.__name__}"
        )

    def get_cached_provider(self, name: str, provider_type: type[Any] | None = None) -> Any:
        """Get a registered cache-aware provider by its registration name.

        Raises:
            SecretNotSupportedError: If a matching provider is not cache-aware.
        """
        provider = self.get_provider(name, provider_type)
        for source in self._sources_named(name):
            if not source.capabilities.cached:
                raise SecretNotSupportedError(
                    f"Secret provider '{name}' ({source.description}) is not cache-aware"
                )
        return provider

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    def _ensure_any_sources(self, secret_name: str) -> None:
        if not self._sources:
            self._logger.error(
                "No secret providers are configured to retrieve secret '%s'", secret_name
            )
            raise SecretNotFoundError(
                secret_name,
                LookupError(
                    "No secret providers are configured in the secret store to retrieve "
                    f"the secret '{secret_name}'"
                ),
            )

    async def _with_sources(
        self,
        secret_name: str,
        call: Callable[[SecretStoreSource, _Resolution], Awaitable[T | None]],
    ) -> T:
        ensure_secret_name(secret_name)
        self._ensure_any_sources(secret_name)

        resolution = _Resolution(self, secret_name)
        for source in self._sources:
            resolution.before(source)
            try:
                result = await call(source, resolution)
            except SecretNotFoundError:
                result = None
            except SecretStoreConfigurationError:
                raise
            except Exception as exception:
                resolution.failed(source, exception)
                continue

            if resolution.completed(source, result):
                return result  # type: ignore[return-value]

        raise resolution.failure()

    def _with_sources_sync(
        self,
        secret_name: str,
        call: Callable[[SecretStoreSource], T | None],
    ) -> T:
        ensure_secret_name(secret_name)
        self._ensure_any_sources(secret_name)

        resolution = _Resolution(self, secret_name)
        for source in self._sources:
            if not source.capabilities.sync:
                raise resolution.not_supported(source)

            resolution.before(source)
            try:
                result = call(source)
            except SecretNotFoundError:
                result = None
            except SecretStoreConfigurationError:
                raise
            except Exception as exception:
                resolution.failed(source, exception)
                continue

            if resolution.completed(source, result):
                return result  # type: ignore[return-value]

        raise resolution.failure()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_raw_secret(self, name: str, ignore_cache: bool | None = None) -> str:
        """Get the secret value from the first provider that has it.

        Args:
            name: Name of the secret.
            ignore_cache: When given, only cache-aware providers are consulted,
                bypassing their cache when ``True``.

        Raises:
            SecretNotFoundError: If no provider has the secret.
        """
        if ignore_cache is None:
            return await self._with_sources(
                name, lambda source, _: source.provider.get_raw_secret(name)
            )

        async def call(source: SecretStoreSource, _: _Resolution) -> str | None:
            if not source.capabilities.cached:
                return None
            return await source.provider.get_raw_secret(name, ignore_cache=ignore_cache)

        return await self._with_sources(name, call)

    async def get_secret(self, name: str, ignore_cache: bool | None = None) -> Secret:
        """Get the secret from the first provider that has it.

        Args:
            name: Name of the secret.
            ignore_cache: When given, only cache-aware providers are consulted,
                bypassing their cache when ``True``.

        Raises:
            SecretNotFoundError: If no provider has the secret.
        """
        if ignore_cache is None:
            return await self._with_sources(
                name, lambda source, _: source.provider.get_secret(name)
            )

        async def call(source: SecretStoreSource, _: _Resolution) -> Secret | None:
            if not source.capabilities.cached:
                return None
            return await source.provider.get_secret(name, ignore_cache=ignore_cache)

        return await self._with_sources(name, call)

    async def invalidate_secret(self, name: str) -> None:
        """Invalidate the cached secret in the first cache-aware provider holding it."""

        async def call(source: SecretStoreSource, _: _Resolution) -> bool | None:
            if not source.capabilities.cached:
                return None
            provider = source.provider
            is_cached = getattr(provider, "is_secret_cached", None)
            if is_cached is not None and not is_cached(name):
                return None
            await provider.invalidate_secret(name)
            return True

        await self._with_sources(name, call)

    def is_secret_cached(self, name: str) -> bool:
        """Check whether any cache-aware provider holds a fresh entry for the secret."""
        ensure_secret_name(name)
        for source in self._sources:
            if not source.capabilities.cached:
                continue
            is_cached = getattr(source.provider, "is_secret_cached", None)
            if is_cached is not None and is_cached(name):
                return True
        return False

    def get_raw_secret_sync(self, name: str) -> str:
        """Get the secret value from the first provider that has it, without awaiting.

        Raises:
            SecretNotSupportedError: If a provider registered before the one holding the secret
                only supports asynchronous lookups.
            SecretNotFoundError: If no provider has the secret.
        """

        def call(source: SecretStoreSource) -> str | None:
            return source.provider.get_raw_secret_sync(name)

        return self._with_sources_sync(name, call)

    def get_secret_sync(self, name: str) -> Secret:
        """Get the secret from the first provider that has it, without awaiting."""

        def call(source: SecretStoreSource) -> Secret | None:
            return source.provider.get_secret_sync(name)

        return self._with_sources_sync(name, call)

    # -------------------------------------------------------------------------
    # Versioned lookups
    # -------------------------------------------------------------------------

    @staticmethod
    def _amount_of_versions(source: SecretStoreSource, name: str, amount_of_versions: int | None) -> int | None:
        if amount_of_versions is not None:
            return amount_of_versions
        return source.options.get_allowed_versions(name)

    async def get_raw_secrets(self, name: str, amount_of_versions: int | None = None) -> list[str]:
        """Get several versions of the secret values, newest first.

        Providers for which the secret is registered as versioned (or all
        versioned providers when ``amount_of_versions`` is given) return
        multiple versions; others return a single value.
        """
        self._ensure_amount(amount_of_versions)

        async def call(source: SecretStoreSource, _: _Resolution) -> list[str] | None:
            amount = self._amount_of_versions(source, name, amount_of_versions)
            if amount is not None and source.capabilities.versioned:
                return list(await source.provider.get_raw_secrets(name, amount) or [])

            value = await source.provider.get_raw_secret(name)
            return None if value is None else [value]

        return await self._with_sources(name, call)

    async def get_secrets(self, name: str, amount_of_versions: int | None = None) -> list[Secret]:
        """Get several versions of the secret, newest first."""
        self._ensure_amount(amount_of_versions)

        async def call(source: SecretStoreSource, _: _Resolution) -> list[Secret] | None:
            amount = self._amount_of_versions(source, name, amount_of_versions)
            if amount is not None and source.capabilities.versioned:
                return list(await source.provider.get_secrets(name, amount) or [])

            secret = await source.provider.get_secret(name)
            return None if secret is None else [secret]

        return await self._with_sources(name, call)

    @staticmethod
    def _ensure_amount(amount_of_versions: int | None) -> None:
        if amount_of_versions is not None and amount_of_versions < 1:
            raise ValueError("Requires at least one secret version to retrieve")

    def __len__(self) -> int:
        return len(self._sources)

    def __repr__(self) -> str:
        return f"CompositeSecretProvider(providers={len(self._sources)})"


# =============================================================================
# Helpers for arbitrary providers
# =============================================================================


def _require_found(name: str, value: T | None) -> T:
    if value is None:
        raise SecretNotFoundError(name)
    return value


def get_secret_sync(provider: Any, name: str) -> Secret:
    """Look up a secret synchronously in any provider.

    Raises:
        SecretNotSupportedError: If the provider only supports async lookups.
        SecretNotFoundError: If the provider does not have the secret.
    """
    ensure_secret_name(name)
    if not ProviderCapabilities.of(provider).sync:
        raise SecretNotSupportedError(
            f"{describe_provider(provider)} does not support synchronous secret lookups"
        )
    return _require_found(name, provider.get_secret_sync(name))


def get_raw_secret_sync(provider: Any, name: str) -> str:
    """Look up a secret value synchronously in any provider."""
    ensure_secret_name(name)
    if not ProviderCapabilities.of(provider).sync:
        raise SecretNotSupportedError(
            f"{describe_provider(provider)} does not support synchronous secret lookups"
        )
    return _require_found(name, provider.get_raw_secret_sync(name))


async def get_secrets(provider: Any, name: str, amount_of_versions: int | None = None) -> list[Secret]:
    """Look up several versions of a secret in any provider.

    Providers without versioning return their single secret.
    """
    ensure_secret_name(name)
    if isinstance(provider, CompositeSecretProvider):
        return await provider.get_secrets(name, amount_of_versions)
    if amount_of_versions is not None and ProviderCapabilities.of(provider).versioned:
        secrets = list(await provider.get_secrets(name, amount_of_versions) or [])
        if not secrets:
            raise SecretNotFoundError(name)
        return secrets
    return [_require_found(name, await provider.get_secret(name))]


async def get_raw_secrets(provider: Any, name: str, amount_of_versions: int | None = None) -> list[str]:
    """Look up several versions of a secret value in any provider."""
    ensure_secret_name(name)
    if isinstance(provider, CompositeSecretProvider):
        return await provider.get_raw_secrets(name, amount_of_versions)
    if amount_of_versions is not None and ProviderCapabilities.of(provider).versioned:
        values = list(await provider.get_raw_secrets(name, amount_of_versions) or [])
        if not values:
            raise SecretNotFoundError(name)
        return values
    return [_require_found(name, await provider.get_raw_secret(name))]
