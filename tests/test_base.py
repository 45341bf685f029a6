"""Tests for the secret store base types.

Tests cover:
- Secret immutability and redaction
- Exception hierarchy
- Provider capability detection
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from secretstore import (
    UNVERSIONED,
    AmbiguousSecretProviderError,
    CriticalSecretStoreError,
    ProviderCapabilities,
    Secret,
    SecretError,
    SecretNotFoundError,
    SecretNotSupportedError,
    SecretProviderNotFoundError,
    SecretStoreConfigurationError,
)
from secretstore.base import describe_provider, ensure_secret_name
from tests.mocks import (
    InMemorySecretProvider,
    InMemorySyncSecretProvider,
    InMemoryVersionedSecretProvider,
)


# =============================================================================
# Secret Tests
# =============================================================================


class TestSecret:
    """Tests for the Secret value container."""

    def test_basic_creation(self):
        secret = Secret("my-secret", version="3")

        assert secret.value == "my-secret"
        assert secret.version == "3"
        assert secret.expires is None
        assert secret.is_versioned is True

    def test_unversioned_by_default(self):
        secret = Secret("my-secret")

        assert secret.version == UNVERSIONED
        assert secret.is_versioned is False

    def test_requires_value(self):
        with pytest.raises(ValueError):
            Secret(None)  # type: ignore[arg-type]

    def test_requires_string_value(self):
        with pytest.raises(TypeError):
            Secret(42)  # type: ignore[arg-type]

    def test_empty_value_allowed(self):
        assert Secret("").value == ""

    def test_value_not_exposed(self):
        """Test that the value is redacted in repr and str."""
        secret = Secret("super-secret-value", version="1")

        assert "super-secret-value" not in repr(secret)
        assert str(secret) == "***"

    def test_immutable(self):
        secret = Secret("value")

        with pytest.raises(AttributeError):
            secret._value = "other"  # type: ignore[misc]
        with pytest.raises(AttributeError):
            secret.value = "other"  # type: ignore[misc]

    def test_constant_time_comparison(self):
        secret = Secret("password123")

        assert secret == "password123"
        assert secret == Secret("password123", version="2")
        assert secret != "wrong"
        assert secret != Secret("different")
        assert secret != 123

    def test_equal_secrets_hash_equally(self):
        first = Secret("password123", version="1")
        second = Secret("password123", version="2")

        assert first == second
        assert hash(first) == hash(second)
        assert hash(first) == hash("password123")
        assert len({first, second}) == 1

    def test_expiration(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        past = datetime.now(timezone.utc) - timedelta(hours=1)

        assert Secret("test", expires=future).is_expired is False
        assert Secret("test", expires=past).is_expired is True
        assert Secret("test").is_expired is False

    def test_naive_expiration(self):
        past = datetime.now() - timedelta(minutes=1)

        assert Secret("test", expires=past).is_expired is True


# =============================================================================
# Exception Tests
# =============================================================================


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_not_found_carries_name(self):
        error = SecretNotFoundError("Arcus.Foo")

        assert error.name == "Arcus.Foo"
        assert "Arcus.Foo" in str(error)
        assert isinstance(error, SecretError)

    def test_not_found_chains_cause(self):
        cause = LookupError("nowhere")
        error = SecretNotFoundError("Arcus.Foo", cause)

        assert error.__cause__ is cause

    @pytest.mark.parametrize("name", ["", "   "])
    def test_not_found_requires_name(self, name):
        with pytest.raises(ValueError):
            SecretNotFoundError(name)

    def test_not_supported_is_not_implemented(self):
        assert issubclass(SecretNotSupportedError, NotImplementedError)
        assert issubclass(SecretNotSupportedError, SecretError)

    def test_critical_error_keeps_order(self):
        first, second = PermissionError("first"), TimeoutError("second")
        error = CriticalSecretStoreError("Arcus.Foo", [first, second])

        assert error.exceptions == (first, second)
        assert "2 critical exceptions" in str(error)

    def test_lookup_errors(self):
        assert issubclass(SecretProviderNotFoundError, LookupError)
        assert issubclass(AmbiguousSecretProviderError, SecretError)
        assert issubclass(SecretStoreConfigurationError, SecretError)

    @pytest.mark.parametrize("name", [None, "", "  ", 12])
    def test_ensure_secret_name(self, name):
        with pytest.raises(ValueError):
            ensure_secret_name(name)

    def test_ensure_secret_name_returns_name(self):
        assert ensure_secret_name("Arcus.Foo") == "Arcus.Foo"


# =============================================================================
# Capability Tests
# =============================================================================


class TestProviderCapabilities:
    """Tests for capability detection."""

    def test_async_only_provider(self):
        assert ProviderCapabilities.of(InMemorySecretProvider()) == ProviderCapabilities()

    def test_sync_provider(self):
        capabilities = ProviderCapabilities.of(InMemorySyncSecretProvider())

        assert capabilities.sync is True
        assert capabilities.cached is False

    def test_versioned_provider(self):
        capabilities = ProviderCapabilities.of(InMemoryVersionedSecretProvider({}))

        assert capabilities.versioned is True
        assert capabilities.sync is False

    def test_declared_capabilities_win(self):
        class Declared(InMemorySyncSecretProvider):
            capabilities = ProviderCapabilities(sync=False, versioned=True)

        assert ProviderCapabilities.of(Declared()) == ProviderCapabilities(versioned=True)

    def test_describe_provider(self):
        class Described(InMemorySecretProvider):
            description = "My vault"

        assert describe_provider(Described()) == "My vault"
        assert describe_provider(InMemorySecretProvider()) == "InMemorySecretProvider"
