"""Composite secret store.

This package looks up secrets in an ordered set of secret providers:
environment variables, configuration, command-line arguments, Docker
secrets, Azure Key Vault and HashiCorp Vault, or any object implementing
the provider protocol.

Features:
    - First-found-wins lookup across providers, in registration order
    - Per-provider secret name mutation
    - In-memory caching with explicit invalidation
    - Versioned secrets
    - Critical exceptions that fail a lookup instead of being skipped
    - Automatic redaction: Secrets are masked in logs/repr

Usage:
    >>> from secretstore import SecretStoreBuilder, to_environment_variable_name
    >>>
    >>> store = (
    ...     SecretStoreBuilder()
    ...     .add_environment_variables(mutate_secret_name=to_environment_variable_name)
    ...     .add_azure_key_vault("https://my-vault.vault.azure.net", cache_configuration=True)
    ...     .build()
    ... )
    >>> password = await store.get_raw_secret("Database.Password")
    >>>
    >>> # Synchronous lookups skip providers that only support async
    >>> password = store.get_raw_secret_sync("Database.Password")
    >>>
    >>> # Configuration-based setup
    >>> store = SecretStoreBuilder.from_config("secretstore.yaml").build()
"""

from secretstore.base import (
    # Protocols
    SecretProvider,
    SyncSecretProvider,
    CacheAwareSecretProvider,
    VersionedSecretProvider,
    ProviderCapabilities,
    # Value container
    Secret,
    UNVERSIONED,
    # Exceptions
    SecretError,
    SecretNotFoundError,
    SecretNotSupportedError,
    CriticalSecretStoreError,
    SecretProviderNotFoundError,
    AmbiguousSecretProviderError,
    SecretStoreConfigurationError,
)
from secretstore.caching import (
    CacheConfiguration,
    CachedSecretProvider,
    with_caching,
)
from secretstore.critical import (
    CriticalExceptionFilter,
    CriticalExceptionPolicy,
)
from secretstore.mutation import (
    MutatedSecretNameProvider,
    mutate_secret_name,
    to_environment_variable_name,
    to_key_vault_name,
)
from secretstore.store import (
    CompositeSecretProvider,
    SecretProviderOptions,
    SecretStoreAuditingOptions,
    SecretStoreContext,
    SecretStoreSource,
    get_raw_secret_sync,
    get_raw_secrets,
    get_secret_sync,
    get_secrets,
)
from secretstore.builder import (
    ProviderConfig,
    SecretStoreBuilder,
    SecretStoreConfig,
)
from secretstore.providers import (
    BaseSecretProvider,
    CommandLineSecretProvider,
    ConfigurationSecretProvider,
    DockerSecretsSecretProvider,
    EnvironmentVariableSecretProvider,
)
from secretstore.cloud import (
    HashiCorpSecretProvider,
    HashiCorpVaultOptions,
    KeyVaultOptions,
    KeyVaultSecretProvider,
    VaultKeyValueVersion,
)
from secretstore.configuration import (
    Configuration,
    DictConfigSource,
    EnvConfigSource,
    FileConfigSource,
)
from secretstore.observability import configure_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    # Protocols
    "SecretProvider",
    "SyncSecretProvider",
    "CacheAwareSecretProvider",
    "VersionedSecretProvider",
    "ProviderCapabilities",
    # Value container
    "Secret",
    "UNVERSIONED",
    # Exceptions
    "SecretError",
    "SecretNotFoundError",
    "SecretNotSupportedError",
    "CriticalSecretStoreError",
    "SecretProviderNotFoundError",
    "AmbiguousSecretProviderError",
    "SecretStoreConfigurationError",
    # Decorators
    "CacheConfiguration",
    "CachedSecretProvider",
    "with_caching",
    "MutatedSecretNameProvider",
    "mutate_secret_name",
    "to_environment_variable_name",
    "to_key_vault_name",
    # Critical exceptions
    "CriticalExceptionFilter",
    "CriticalExceptionPolicy",
    # Store
    "CompositeSecretProvider",
    "SecretProviderOptions",
    "SecretStoreAuditingOptions",
    "SecretStoreContext",
    "SecretStoreSource",
    "SecretStoreBuilder",
    "SecretStoreConfig",
    "ProviderConfig",
    "get_secret_sync",
    "get_raw_secret_sync",
    "get_secrets",
    "get_raw_secrets",
    # Providers
    "BaseSecretProvider",
    "EnvironmentVariableSecretProvider",
    "ConfigurationSecretProvider",
    "CommandLineSecretProvider",
    "DockerSecretsSecretProvider",
    "KeyVaultSecretProvider",
    "KeyVaultOptions",
    "HashiCorpSecretProvider",
    "HashiCorpVaultOptions",
    "VaultKeyValueVersion",
    # Configuration
    "Configuration",
    "DictConfigSource",
    "EnvConfigSource",
    "FileConfigSource",
    # Logging
    "configure_logging",
    "get_logger",
]
