"""Secret store builder and configuration-driven setup.

The builder registers secret providers in the order they should be
consulted, together with their options, and builds the composite secret
store from them.

Example:
    >>> store = (
    ...     SecretStoreBuilder()
    ...     .add_environment_variables(mutate_secret_name=to_environment_variable_name)
    ...     .add_docker_secrets("/run/secrets")
    ...     .add_azure_key_vault(
    ...         "https://my-vault.vault.azure.net",
    ...         mutate_secret_name=to_key_vault_name,
    ...         cache_configuration=CacheConfiguration.from_seconds(300),
    ...     )
    ...     .build()
    ... )

    >>> # Config-based setup
    >>> store = SecretStoreBuilder.from_config("secretstore.yaml").build()
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from secretstore.caching import CacheConfiguration, CachedSecretProvider
from secretstore.cloud import (
    HashiCorpSecretProvider,
    HashiCorpVaultOptions,
    KeyVaultOptions,
    KeyVaultSecretProvider,
    VaultKeyValueVersion,
)
from secretstore.configuration import Configuration, DictConfigSource, EnvConfigSource, FileConfigSource
from secretstore.critical import CriticalExceptionFilter, CriticalExceptionPolicy, ExceptionPredicate
from secretstore.mutation import SECRET_NAME_MUTATIONS, SecretNameMutation
from secretstore.observability import SecretStoreLogger, as_logger
from secretstore.providers import (
    CommandLineSecretProvider,
    ConfigurationSecretProvider,
    DockerSecretsSecretProvider,
    EnvironmentVariableSecretProvider,
)
from secretstore.store import (
    CompositeSecretProvider,
    ProviderFactory,
    SecretProviderOptions,
    SecretStoreAuditingOptions,
    SecretStoreContext,
    SecretStoreSource,
)

CacheSetting = CacheConfiguration | timedelta | float | bool | None


# =============================================================================
# Secret Store Configuration
# =============================================================================


PROVIDER_TYPES = (
    "environment",
    "configuration",
    "command_line",
    "docker_secrets",
    "azure_key_vault",
    "hashicorp",
)


@dataclass
class ProviderConfig:
    """Configuration for a secret provider.

    Attributes:
        type: Provider type (environment, configuration, command_line,
            docker_secrets, azure_key_vault, hashicorp).
        name: Optional registration name.
        enabled: Whether provider is registered.
        cache_seconds: Cache duration, ``None`` for no caching.
        mutate_secret_name: Name of a built-in secret name mutation.
        versioned_secrets: Number of versions to retrieve per secret name.
        options: Provider-specific options.
    """

    type: str
    name: str | None = None
    enabled: bool = True
    cache_seconds: float | None = None
    mutate_secret_name: str | None = None
    versioned_secrets: dict[str, int] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = self.type.lower().replace("-", "_")
        if self.type not in PROVIDER_TYPES:
            raise ValueError(
                f"Unknown secret provider type '{self.type}', "
                f"expected one of: {', '.join(PROVIDER_TYPES)}"
            )
        if self.mutate_secret_name is not None and self.mutate_secret_name not in SECRET_NAME_MUTATIONS:
            raise ValueError(
                f"Unknown secret name mutation '{self.mutate_secret_name}', "
                f"expected one of: {', '.join(SECRET_NAME_MUTATIONS)}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        if "type" not in data:
            raise ValueError("Requires a 'type' for every secret provider configuration")
        return cls(
            type=str(data["type"]),
            name=data.get("name"),
            enabled=data.get("enabled", True),
            cache_seconds=data.get("cache_seconds"),
            mutate_secret_name=data.get("mutate_secret_name"),
            versioned_secrets=dict(data.get("versioned_secrets") or {}),
            options=dict(data.get("options") or {}),
        )


@dataclass
class SecretStoreConfig:
    """Configuration for the secret store.

    Attributes:
        providers: Provider configurations, in lookup order.
        emit_security_events: Log a security event for every secret request.
    """

    providers: list[ProviderConfig] = field(default_factory=list)
    emit_security_events: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SecretStoreConfig":
        """Create config from dictionary."""
        providers = [ProviderConfig.from_dict(p) for p in data.get("providers", []) or []]
        return cls(
            providers=providers,
            emit_security_events=bool(data.get("emit_security_events", False)),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "SecretStoreConfig":
        """Load config from JSON or YAML file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text(encoding="utf-8")
        suffix = path.suffix.lower()

        if suffix == ".json":
            data = json.loads(content)
        elif suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            raise ValueError(f"Unsupported config format: {suffix}")

        return cls.from_dict(data or {})


# =============================================================================
# Builder
# =============================================================================


class SecretStoreBuilder:
    """Registers secret providers and builds the secret store.

    Every ``add_*`` method accepts the registration options:

    - ``name``: name to look the provider up later on
    - ``mutate_secret_name``: transformation of secret names before lookup
    - ``cache_configuration``: wraps the provider in a cache (``True`` for the default duration)
    - ``versioned_secrets``: number of versions to retrieve per secret name
    """

    def __init__(
        self,
        *,
        context: SecretStoreContext | None = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        self._sources: list[SecretStoreSource] = []
        self._filters: list[CriticalExceptionFilter] = []
        self._auditing = SecretStoreAuditingOptions()
        self._logger = as_logger(logger, __name__)
        self._store_logger = logger
        self.context = context or SecretStoreContext()

    @property
    def sources(self) -> tuple[SecretStoreSource, ...]:
        return tuple(self._sources)

    @property
    def critical_exception_filters(self) -> tuple[CriticalExceptionFilter, ...]:
        return tuple(self._filters)

    @property
    def auditing(self) -> SecretStoreAuditingOptions:
        return self._auditing

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    @staticmethod
    def _cache_configuration(cache_configuration: CacheSetting) -> CacheConfiguration | None:
        if cache_configuration is None or cache_configuration is False:
            return None
        if cache_configuration is True:
            return CacheConfiguration()
        return CacheConfiguration.coerce(cache_configuration)

    @staticmethod
    def _provider_options(
        name: str | None,
        mutate_secret_name: SecretNameMutation | None,
        versioned_secrets: Mapping[str, int] | None,
    ) -> SecretProviderOptions:
        return SecretProviderOptions(
            name=name,
            mutate_secret_name=mutate_secret_name,
            versioned_secrets=dict(versioned_secrets or {}),
        )

    def add_provider(
        self,
        provider: Any,
        *,
        name: str | None = None,
        mutate_secret_name: SecretNameMutation | None = None,
        cache_configuration: CacheSetting = None,
        versioned_secrets: Mapping[str, int] | None = None,
    ) -> "SecretStoreBuilder":
        """Register a secret provider."""
        if provider is None:
            raise ValueError("Requires a secret provider to add to the secret store")

        options = self._provider_options(name, mutate_secret_name, versioned_secrets)
        configuration = self._cache_configuration(cache_configuration)
        if configuration is not None:
            provider = CachedSecretProvider(provider, configuration)

        self._sources.append(
            SecretStoreSource(provider, options=options, context=self.context, logger=self._logger)
        )
        return self

    def add_provider_factory(
        self,
        factory: ProviderFactory,
        *,
        name: str | None = None,
        mutate_secret_name: SecretNameMutation | None = None,
        cache_configuration: CacheSetting = None,
        versioned_secrets: Mapping[str, int] | None = None,
    ) -> "SecretStoreBuilder":
        """Register a secret provider created on first use.

        The factory receives the builder's :class:`SecretStoreContext` and
        runs at most once.
        """
        if factory is None or not callable(factory):
            raise ValueError("Requires a function creating the secret provider")

        options = self._provider_options(name, mutate_secret_name, versioned_secrets)
        configuration = self._cache_configuration(cache_configuration)
        if configuration is not None:
            inner = factory

            def factory(context: SecretStoreContext) -> Any:
                return CachedSecretProvider(inner(context), configuration)

        self._sources.append(
            SecretStoreSource(factory=factory, options=options, context=self.context, logger=self._logger)
        )
        return self

    def add_environment_variables(self, prefix: str = "", **options: Any) -> "SecretStoreBuilder":
        """Register environment variables as a secret source."""
        return self.add_provider(EnvironmentVariableSecretProvider(prefix), **options)

    def add_configuration(self, configuration: Configuration | None = None, **options: Any) -> "SecretStoreBuilder":
        """Register the application configuration as a secret source.

        Uses the configuration of the builder's context when none is given.
        """
        configuration = configuration or self.context.configuration
        if configuration is None:
            raise ValueError("Requires a configuration instance to add as secret source")
        return self.add_provider(ConfigurationSecretProvider(configuration), **options)

    def add_command_line(self, args: Sequence[str] | None = None, **options: Any) -> "SecretStoreBuilder":
        """Register command-line arguments as a secret source."""
        return self.add_provider(CommandLineSecretProvider(args), **options)

    def add_docker_secrets(self, directory: str | Path, **options: Any) -> "SecretStoreBuilder":
        """Register a directory of Docker secret files as a secret source."""
        return self.add_provider(DockerSecretsSecretProvider(directory), **options)

    def add_azure_key_vault(
        self,
        vault_uri: str,
        credential: Any = None,
        *,
        async_credential: Any = None,
        key_vault_options: KeyVaultOptions | None = None,
        **options: Any,
    ) -> "SecretStoreBuilder":
        """Register an Azure Key Vault as a secret source.

        Authentication and authorization failures of Key Vault are registered
        as critical exceptions.
        """
        from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
        from azure.identity import CredentialUnavailableError

        provider = KeyVaultSecretProvider(
            vault_uri,
            credential,
            async_credential=async_credential,
            options=key_vault_options,
            logger=self._store_logger,
        )

        self.add_critical_exception(
            HttpResponseError,
            lambda exception: getattr(exception, "status_code", None) in (400, 401, 403),
        )
        self.add_critical_exception(CredentialUnavailableError)
        self.add_critical_exception(ClientAuthenticationError)

        return self.add_provider(provider, **options)

    def add_hashicorp_vault(
        self,
        client: Any,
        secret_path: str,
        *,
        vault_options: HashiCorpVaultOptions | None = None,
        **options: Any,
    ) -> "SecretStoreBuilder":
        """Register a HashiCorp Vault KV secret engine through an existing ``hvac.Client``."""
        provider = HashiCorpSecretProvider(client, secret_path, vault_options, logger=self._store_logger)
        return self.add_provider(provider, **options)

    def add_hashicorp_vault_with_token(
        self,
        url: str,
        token: str,
        secret_path: str,
        *,
        vault_options: HashiCorpVaultOptions | None = None,
        **options: Any,
    ) -> "SecretStoreBuilder":
        """Register a HashiCorp Vault KV secret engine, authenticating with a token."""
        provider = HashiCorpSecretProvider.with_token(url, token, secret_path, vault_options)
        return self.add_provider(provider, **options)

    def add_hashicorp_vault_with_userpass(
        self,
        url: str,
        username: str,
        password: str,
        secret_path: str,
        *,
        user_pass_mount_point: str = "userpass",
        vault_options: HashiCorpVaultOptions | None = None,
        **options: Any,
    ) -> "SecretStoreBuilder":
        """Register a HashiCorp Vault KV secret engine, authenticating with UserPass."""
        provider = HashiCorpSecretProvider.with_userpass(
            url, username, password, secret_path, vault_options, mount_point=user_pass_mount_point
        )
        return self.add_provider(provider, **options)

    def add_hashicorp_vault_with_kubernetes(
        self,
        url: str,
        role_name: str,
        jwt: str,
        secret_path: str,
        *,
        kubernetes_mount_point: str = "kubernetes",
        vault_options: HashiCorpVaultOptions | None = None,
        **options: Any,
    ) -> "SecretStoreBuilder":
        """Register a HashiCorp Vault KV secret engine, authenticating with a Kubernetes service account."""
        provider = HashiCorpSecretProvider.with_kubernetes(
            url, role_name, jwt, secret_path, vault_options, mount_point=kubernetes_mount_point
        )
        return self.add_provider(provider, **options)

    def add_critical_exception(
        self,
        exception_type: type[BaseException],
        predicate: ExceptionPredicate | None = None,
    ) -> "SecretStoreBuilder":
        """Mark exceptions of the type (optionally matching the predicate) as critical."""
        self._filters.append(CriticalExceptionFilter(exception_type, predicate))
        return self

    def with_auditing(self, emit_security_events: bool = True) -> "SecretStoreBuilder":
        """Configure auditing of secret requests."""
        self._auditing = SecretStoreAuditingOptions(emit_security_events=emit_security_events)
        return self

    def build(self) -> CompositeSecretProvider:
        """Build the secret store from the registered providers."""
        counts = Counter(source.name for source in self._sources if source.name is not None)
        for name, count in counts.items():
            if count > 1:
                self._logger.warning(
                    "%d secret providers are registered with the name '%s'; "
                    "typed lookups of this name will be ambiguous",
                    count,
                    name,
                )

        policy = CriticalExceptionPolicy(self._filters, self._store_logger)
        return CompositeSecretProvider(
            self._sources,
            policy,
            SecretStoreAuditingOptions(self._auditing.emit_security_events),
            self._store_logger,
        )

    # -------------------------------------------------------------------------
    # Configuration-driven setup
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: SecretStoreConfig | Mapping[str, Any] | str | Path,
        *,
        context: SecretStoreContext | None = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> "SecretStoreBuilder":
        """Create a builder with the providers of a secret store configuration.

        Args:
            config: Configuration object, dictionary or path to a JSON/YAML file.
            context: Context for lazily created providers and configuration sources.
            logger: Logger of the secret store.
        """
        if isinstance(config, (str, Path)):
            config = SecretStoreConfig.from_file(config)
        elif not isinstance(config, SecretStoreConfig):
            config = SecretStoreConfig.from_dict(config)

        builder = cls(context=context, logger=logger)
        for provider_config in config.providers:
            if not provider_config.enabled:
                continue
            builder._add_configured_provider(provider_config)

        if config.emit_security_events:
            builder.with_auditing()
        return builder

    def _add_configured_provider(self, config: ProviderConfig) -> None:
        registration: dict[str, Any] = {
            "name": config.name,
            "versioned_secrets": config.versioned_secrets,
            "cache_configuration": config.cache_seconds,
        }
        if config.mutate_secret_name is not None:
            registration["mutate_secret_name"] = SECRET_NAME_MUTATIONS[config.mutate_secret_name]

        options = dict(config.options)
        if config.type == "environment":
            self.add_environment_variables(options.get("prefix", ""), **registration)

        elif config.type == "configuration":
            self.add_configuration(self._configuration_from_options(options), **registration)

        elif config.type == "command_line":
            self.add_command_line(options.get("args"), **registration)

        elif config.type == "docker_secrets":
            self.add_docker_secrets(self._required(options, "directory", config), **registration)

        elif config.type == "azure_key_vault":
            self.add_azure_key_vault(
                self._required(options, "vault_uri", config),
                key_vault_options=KeyVaultOptions(track_dependency=bool(options.get("track_dependency", False))),
                **registration,
            )

        elif config.type == "hashicorp":
            self._add_configured_hashicorp(options, config, registration)

    def _add_configured_hashicorp(
        self,
        options: dict[str, Any],
        config: ProviderConfig,
        registration: dict[str, Any],
    ) -> None:
        url = self._required(options, "url", config)
        secret_path = self._required(options, "secret_path", config)
        vault_options = HashiCorpVaultOptions(
            key_value_mount_point=options.get("key_value_mount_point", "secret"),
            key_value_version=VaultKeyValueVersion(int(options.get("key_value_version", 2))),
            track_dependency=bool(options.get("track_dependency", False)),
        )

        auth = str(options.get("auth", "token")).lower()
        if auth == "token":
            self.add_hashicorp_vault_with_token(
                url, self._required(options, "token", config), secret_path,
                vault_options=vault_options, **registration,
            )
        elif auth == "userpass":
            self.add_hashicorp_vault_with_userpass(
                url,
                self._required(options, "username", config),
                self._required(options, "password", config),
                secret_path,
                user_pass_mount_point=options.get("mount_point", "userpass"),
                vault_options=vault_options,
                **registration,
            )
        elif auth == "kubernetes":
            jwt = options.get("jwt")
            if jwt is None and options.get("jwt_path"):
                jwt = Path(options["jwt_path"]).read_text(encoding="utf-8").strip()
            if jwt is None:
                raise ValueError(
                    f"Requires a 'jwt' or 'jwt_path' option for the HashiCorp Vault Kubernetes "
                    f"authentication of provider '{config.name or config.type}'"
                )
            self.add_hashicorp_vault_with_kubernetes(
                url,
                self._required(options, "role_name", config),
                jwt,
                secret_path,
                kubernetes_mount_point=options.get("mount_point", "kubernetes"),
                vault_options=vault_options,
                **registration,
            )
        else:
            raise ValueError(
                f"Unknown HashiCorp Vault authentication '{auth}', expected one of: token, userpass, kubernetes"
            )

    def _configuration_from_options(self, options: Mapping[str, Any]) -> Configuration:
        sources = []
        if options.get("values"):
            sources.append(DictConfigSource(options["values"]))
        paths = options.get("path") or options.get("paths") or []
        if isinstance(paths, (str, Path)):
            paths = [paths]
        for path in paths:
            sources.append(FileConfigSource(path, required=True))
        if "environment_prefix" in options:
            sources.append(EnvConfigSource(prefix=options["environment_prefix"]))

        if sources:
            return Configuration(*sources)
        if self.context.configuration is not None:
            return self.context.configuration
        raise ValueError(
            "Requires 'values', 'path' or 'environment_prefix' options, or a configuration "
            "in the secret store context, to add the configuration as secret source"
        )

    @staticmethod
    def _required(options: Mapping[str, Any], key: str, config: ProviderConfig) -> Any:
        value = options.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(
                f"Requires the '{key}' option for secret provider '{config.name or config.type}'"
            )
        return value
