"""Base classes and protocols for the secret store.

This module defines the core abstractions shared by every secret provider,
the decorators wrapping them and the composite secret store:

- The exception hierarchy rooted at :class:`SecretError`
- The immutable :class:`Secret` value container
- The provider protocols (async, sync, cache-aware and versioned)
- :class:`ProviderCapabilities`, the capability descriptor resolved once
  per registered provider

Design Principles:
    1. Protocol-based: Duck typing for flexibility
    2. Immutable values: Secret is immutable after creation
    3. Misses are not errors: ``None`` or SecretNotFoundError mean "not here"
    4. Secure by default: Values are redacted in repr/str
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence, runtime_checkable


# =============================================================================
# Exceptions
# =============================================================================


class SecretError(Exception):
    """Base exception for secret-related errors."""

    pass


class SecretNotFoundError(SecretError):
    """Raised when a secret could not be found."""

    def __init__(self, name: str, cause: BaseException | None = None) -> None:
        if not name or not name.strip():
            raise ValueError("Requires a non-blank secret name")

        self.name = name
        super().__init__(f"The secret {name} was not found")
        if cause is not None:
            self.__cause__ = cause


class SecretNotSupportedError(SecretError, NotImplementedError):
    """Raised when a capability is requested from a path that cannot honour it.

    The secret may well exist, but this call shape (synchronous, cache-aware,
    versioned, ...) cannot reach it.
    """

    pass


class CriticalSecretStoreError(SecretError):
    """Raised when more than one critical exception occurred in one lookup.

    Attributes:
        name: The secret name that was looked up.
        exceptions: The critical exceptions, in provider registration order.
    """

    def __init__(self, name: str, exceptions: Sequence[BaseException]) -> None:
        self.name = name
        self.exceptions = tuple(exceptions)
        super().__init__(
            "None of the configured secret providers was able to retrieve the "
            f"secret with name '{name}' while {len(self.exceptions)} critical "
            "exceptions were thrown"
        )


class SecretProviderNotFoundError(SecretError, LookupError):
    """Raised when no provider is registered under the requested name."""

    pass


class AmbiguousSecretProviderError(SecretError):
    """Raised when a typed provider lookup matches more than one registration."""

    pass


class SecretStoreConfigurationError(SecretError):
    """Raised when the secret store itself is misconfigured.

    A lazily created provider that failed to construct keeps raising this
    error on every use.
    """

    pass


def ensure_secret_name(name: str, message: str | None = None) -> str:
    """Validate that a secret name is not blank.

    Raises:
        ValueError: If the name is ``None``, empty or whitespace.
    """
    if name is None or not isinstance(name, str) or not name.strip():
        raise ValueError(message or "Requires a non-blank secret name to look up the secret")
    return name


# =============================================================================
# Secret
# =============================================================================


UNVERSIONED = "unversioned"
"""Version assigned to secrets coming from backends without versioning."""


class Secret:
    """Immutable container for a secret value.

    A Secret pairs the value with its version and optional expiration date.
    The value is not exposed in ``repr``/``str`` and equality is checked in
    constant time.

    Example:
        >>> secret = Secret("my-api-key", version="3")
        >>> print(secret)  # "***"
        >>> secret.value  # "my-api-key"
        >>> secret == "my-api-key"  # True
    """

    __slots__ = ("_value", "_version", "_expires")

    def __init__(
        self,
        value: str,
        version: str | None = None,
        expires: datetime | None = None,
    ) -> None:
        """Initialize the secret.

        Args:
            value: The secret string.
            version: Version of the secret; ``None`` means unversioned.
            expires: When the secret itself expires, if ever.
        """
        if value is None:
            raise ValueError("Requires a secret value")
        if not isinstance(value, str):
            raise TypeError(f"Requires a string secret value, got {type(value).__name__}")

        object.__setattr__(self, "_value", value)
        object.__setattr__(self, "_version", version if version is not None else UNVERSIONED)
        object.__setattr__(self, "_expires", expires)

    @property
    def value(self) -> str:
        """Get the actual secret value."""
        return self._value

    @property
    def version(self) -> str:
        """Get the secret version (``UNVERSIONED`` if the backend has none)."""
        return self._version

    @property
    def expires(self) -> datetime | None:
        """Get the expiration date of the secret."""
        return self._expires

    @property
    def is_versioned(self) -> bool:
        return self._version != UNVERSIONED

    @property
    def is_expired(self) -> bool:
        """Check if the secret has passed its own expiration date."""
        if self._expires is None:
            return False
        if self._expires.tzinfo is None:
            return datetime.now() >= self._expires
        return datetime.now(timezone.utc) >= self._expires

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __eq__(self, other: object) -> bool:
        """Constant-time comparison against another secret or a string."""
        if isinstance(other, Secret):
            other_value = other._value
        elif isinstance(other, str):
            other_value = other
        else:
            return NotImplemented
        return hmac.compare_digest(self._value.encode(), other_value.encode())

    def __hash__(self) -> int:
        """Hash of the value only, consistent with equality against secrets and strings."""
        return hash(self._value)

    def __repr__(self) -> str:
        return f"Secret(version={self._version!r}, expires={self._expires!r})"

    def __str__(self) -> str:
        return "***"


# =============================================================================
# Provider Protocols
# =============================================================================


@runtime_checkable
class SecretProvider(Protocol):
    """Protocol every secret backend implements.

    A provider returns ``None`` (or raises SecretNotFoundError) when it does
    not hold the requested secret. Any other exception is a failure that the
    secret store either treats as a miss or escalates as critical.
    """

    async def get_secret(self, name: str) -> Secret | None:
        ...

    async def get_raw_secret(self, name: str) -> str | None:
        ...


@runtime_checkable
class SyncSecretProvider(SecretProvider, Protocol):
    """Provider that can also look up secrets without an event loop."""

    def get_secret_sync(self, name: str) -> Secret | None:
        ...

    def get_raw_secret_sync(self, name: str) -> str | None:
        ...


@runtime_checkable
class CacheAwareSecretProvider(SecretProvider, Protocol):
    """Provider that caches its lookups.

    Besides the protocol methods, cache-aware providers expose a
    ``cache_configuration`` and accept an ``ignore_cache`` keyword on
    ``get_secret``/``get_raw_secret``. They may also expose
    ``is_secret_cached(name)``.
    """

    async def invalidate_secret(self, name: str) -> None:
        ...


@runtime_checkable
class VersionedSecretProvider(SecretProvider, Protocol):
    """Provider that can return several versions of one secret, newest first."""

    async def get_secrets(self, name: str, amount_of_versions: int) -> list[Secret]:
        ...

    async def get_raw_secrets(self, name: str, amount_of_versions: int) -> list[str]:
        ...


@dataclass(frozen=True)
class ProviderCapabilities:
    """Optional capabilities of a provider beyond async lookups.

    Providers and decorators may declare their capabilities explicitly with a
    ``capabilities`` attribute; otherwise they are detected from the provider
    protocols.
    """

    sync: bool = False
    cached: bool = False
    versioned: bool = False

    @classmethod
    def of(cls, provider: Any) -> "ProviderCapabilities":
        """Determine the capabilities of a provider instance."""
        declared = getattr(type(provider), "capabilities", None)
        if declared is not None:
            declared = provider.capabilities
            if isinstance(declared, ProviderCapabilities):
                return declared

        return cls(
            sync=isinstance(provider, SyncSecretProvider),
            cached=isinstance(provider, CacheAwareSecretProvider),
            versioned=isinstance(provider, VersionedSecretProvider),
        )


def describe_provider(provider: Any) -> str:
    """Human-readable description of a provider for diagnostics."""
    description = getattr(provider, "description", None)
    if isinstance(description, str) and description.strip():
        return description
    return type(provider).__name__
