"""Secret providers for remote vaults.

This module provides secret providers for:
    - Azure Key Vault (azure-keyvault-secrets)
    - HashiCorp Vault KV secret engines (hvac)

Features:
    - Lazy client initialization
    - Secret not found errors mapped to misses
    - Retry of throttled (HTTP 429) Key Vault requests
    - Optional dependency tracking through the structured logger
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import urlparse

from secretstore.base import (
    ProviderCapabilities,
    Secret,
    SecretNotFoundError,
    ensure_secret_name,
)
from secretstore.observability import SecretStoreLogger, as_logger, measure_duration
from secretstore.resilience import RetryConfig, RetryPolicy

T = TypeVar("T")


# =============================================================================
# Azure Key Vault Provider
# =============================================================================


VAULT_URI_PATTERN = re.compile(r"^https:\/\/[0-9a-zA-Z\-]{3,24}\.vault.azure.net(\/)?$")
SECRET_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]{0,126}$")

# Sort key for versions the service reports without a creation date
_UNKNOWN_CREATION = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class KeyVaultOptions:
    """Options of the Azure Key Vault secret provider.

    Attributes:
        track_dependency: Log every Key Vault interaction as a dependency.
        throttling: Retry configuration for throttled (HTTP 429) requests,
            by default 5 retries waiting 1, 2, 4, 8 and 16 seconds.
    """

    track_dependency: bool = False
    throttling: RetryConfig = field(default_factory=RetryConfig.throttling)


class KeyVaultSecretProvider:
    """Secret provider for Azure Key Vault.

    Authentication:
        Uses azure-identity's DefaultAzureCredential unless a credential is
        given. The asynchronous lookups need an asynchronous credential
        (``azure.identity.aio``), the synchronous lookups a synchronous one.

    Example:
        >>> provider = KeyVaultSecretProvider("https://my-vault.vault.azure.net")
        >>> secret = await provider.get_secret("database-password")
        >>> versions = await provider.get_secrets("api-key", 2)
    """

    DEPENDENCY_TYPE = "Azure key vault"

    capabilities = ProviderCapabilities(sync=True, versioned=True)

    def __init__(
        self,
        vault_uri: str,
        credential: Any = None,
        *,
        async_credential: Any = None,
        options: KeyVaultOptions | None = None,
        client: Any = None,
        async_client: Any = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        """Initialize Azure Key Vault provider.

        Args:
            vault_uri: Key Vault URI (https://{vault-name}.vault.azure.net).
            credential: Credential for synchronous lookups.
            async_credential: Credential for asynchronous lookups.
            options: Provider options.
            client: Pre-built synchronous ``SecretClient``.
            async_client: Pre-built asynchronous ``SecretClient``.
            logger: Logger for dependency tracking and failures.
        """
        if not vault_uri or not vault_uri.strip():
            raise ValueError("Requires a non-blank Azure Key Vault URI")
        if not VAULT_URI_PATTERN.match(vault_uri):
            raise ValueError(
                f"Requires the Azure Key Vault URI to be in the format "
                f"'https://{{vault-name}}.vault.azure.net/', got '{vault_uri}'"
            )

        self._vault_uri = vault_uri.rstrip("/")
        self._credential = credential
        self._async_credential = async_credential
        self._options = options or KeyVaultOptions()
        self._client = client
        self._async_client = async_client
        self._lock = threading.Lock()
        self._retry = RetryPolicy(self._options.throttling)
        self._logger = as_logger(logger, __name__)

    @property
    def vault_uri(self) -> str:
        return self._vault_uri

    @property
    def options(self) -> KeyVaultOptions:
        return self._options

    @property
    def description(self) -> str:
        return f"Azure Key Vault {self._vault_uri}"

    def _get_client(self) -> Any:
        """Lazily initialize the synchronous Azure client."""
        with self._lock:
            if self._client is None:
                from azure.identity import DefaultAzureCredential
                from azure.keyvault.secrets import SecretClient

                credential = self._credential or DefaultAzureCredential()
                self._client = SecretClient(vault_url=self._vault_uri, credential=credential)
            return self._client

    def _get_async_client(self) -> Any:
        """Lazily initialize the asynchronous Azure client."""
        with self._lock:
            if self._async_client is None:
                from azure.identity.aio import DefaultAzureCredential
                from azure.keyvault.secrets.aio import SecretClient

                credential = self._async_credential or DefaultAzureCredential()
                self._async_client = SecretClient(vault_url=self._vault_uri, credential=credential)
            return self._async_client

    @staticmethod
    def _validate_secret_name(name: str) -> None:
        ensure_secret_name(name)
        if not SECRET_NAME_PATTERN.match(name):
            raise ValueError(
                f"Requires the secret name '{name}' to match the Azure Key Vault naming "
                f"format '{SECRET_NAME_PATTERN.pattern}'"
            )

    @staticmethod
    def _validate_amount(amount_of_versions: int) -> None:
        if amount_of_versions < 1:
            raise ValueError("Requires at least one secret version to retrieve")

    @staticmethod
    def _to_secret(response: Any) -> Secret | None:
        if response is None or response.value is None:
            return None
        properties = response.properties
        return Secret(response.value, properties.version, properties.expires_on)

    def _track(self, name: str, success: bool, duration: float) -> None:
        if self._options.track_dependency:
            self._logger.dependency(
                self.DEPENDENCY_TYPE,
                self._vault_uri,
                name,
                success=success,
                duration=duration,
            )

    def _map_error(self, name: str, error: Exception) -> None:
        if type(error).__name__ == "ResourceNotFoundError":
            raise SecretNotFoundError(name, error) from error
        self._logger.error(
            "Failure during interacting with %s for secret '%s'",
            self.description,
            name,
            exc_info=error,
        )

    async def _interact_async(self, name: str, operation: Callable[[Any], Awaitable[T]]) -> T:
        client = self._get_async_client()
        success = False
        with measure_duration() as measurement:
            try:
                result = await self._retry.execute_async(operation, client)
                success = True
                return result
            except Exception as e:
                self._map_error(name, e)
                raise
            finally:
                self._track(name, success, measurement.elapsed)

    def _interact(self, name: str, operation: Callable[[Any], T]) -> T:
        client = self._get_client()
        success = False
        with measure_duration() as measurement:
            try:
                result = self._retry.execute(operation, client)
                success = True
                return result
            except Exception as e:
                self._map_error(name, e)
                raise
            finally:
                self._track(name, success, measurement.elapsed)

    # -------------------------------------------------------------------------
    # Single secrets
    # -------------------------------------------------------------------------

    async def get_raw_secret(self, name: str) -> str | None:
        secret = await self.get_secret(name)
        return None if secret is None else secret.value

    async def get_secret(self, name: str) -> Secret | None:
        """Get the latest version of the secret from Key Vault."""
        self._validate_secret_name(name)

        async def operation(client: Any) -> Any:
            return await client.get_secret(name)

        return self._to_secret(await self._interact_async(name, operation))

    def get_raw_secret_sync(self, name: str) -> str | None:
        secret = self.get_secret_sync(name)
        return None if secret is None else secret.value

    def get_secret_sync(self, name: str) -> Secret | None:
        self._validate_secret_name(name)
        response = self._interact(name, lambda client: client.get_secret(name))
        return self._to_secret(response)

    # -------------------------------------------------------------------------
    # Versioned secrets
    # -------------------------------------------------------------------------

    @staticmethod
    def _latest_versions(properties: list[Any], amount_of_versions: int) -> list[str]:
        """Enabled versions, newest first."""
        enabled = [p for p in properties if p.enabled and p.version]
        enabled.sort(key=lambda p: p.created_on or _UNKNOWN_CREATION, reverse=True)
        return [p.version for p in enabled[:amount_of_versions]]

    async def get_raw_secrets(self, name: str, amount_of_versions: int) -> list[str]:
        secrets = await self.get_secrets(name, amount_of_versions)
        return [secret.value for secret in secrets]

    async def get_secrets(self, name: str, amount_of_versions: int) -> list[Secret]:
        """Get the most recent enabled versions of the secret, newest first."""
        self._validate_secret_name(name)
        self._validate_amount(amount_of_versions)

        async def list_versions(client: Any) -> list[Any]:
            return [p async for p in client.list_properties_of_secret_versions(name)]

        properties = await self._interact_async(name, list_versions)
        secrets: list[Secret] = []
        for version in self._latest_versions(properties, amount_of_versions):

            async def operation(client: Any, version: str = version) -> Any:
                return await client.get_secret(name, version=version)

            secret = self._to_secret(await self._interact_async(name, operation))
            if secret is not None:
                secrets.append(secret)
        return secrets

    def get_secrets_sync(self, name: str, amount_of_versions: int) -> list[Secret]:
        self._validate_secret_name(name)
        self._validate_amount(amount_of_versions)

        properties = self._interact(
            name, lambda client: list(client.list_properties_of_secret_versions(name))
        )
        secrets: list[Secret] = []
        for version in self._latest_versions(properties, amount_of_versions):

            def operation(client: Any, version: str = version) -> Any:
                return client.get_secret(name, version=version)

            secret = self._to_secret(self._interact(name, operation))
            if secret is not None:
                secrets.append(secret)
        return secrets

    async def close(self) -> None:
        """Close the underlying clients."""
        if self._async_client is not None:
            await self._async_client.close()
        if self._client is not None:
            self._client.close()

    def __repr__(self) -> str:
        return f"KeyVaultSecretProvider({self._vault_uri!r})"


# =============================================================================
# HashiCorp Vault Provider
# =============================================================================


class VaultKeyValueVersion(IntEnum):
    """Version of the HashiCorp Vault KV secret engine."""

    V1 = 1
    V2 = 2


@dataclass
class HashiCorpVaultOptions:
    """Options of the HashiCorp Vault secret provider.

    Attributes:
        key_value_mount_point: Mount point of the KV secret engine.
        key_value_version: Version of the KV secret engine.
        track_dependency: Log every Vault interaction as a dependency.
    """

    key_value_mount_point: str = "secret"
    key_value_version: VaultKeyValueVersion = VaultKeyValueVersion.V2
    track_dependency: bool = False

    def __post_init__(self) -> None:
        if not self.key_value_mount_point or not self.key_value_mount_point.strip():
            raise ValueError("Requires a non-blank mount point for the KV secret engine")
        try:
            self.key_value_version = VaultKeyValueVersion(self.key_value_version)
        except ValueError:
            raise ValueError(
                f"Requires the KV secret engine version to be 1 or 2, got {self.key_value_version!r}"
            ) from None


def _ensure_vault_url(url: str) -> str:
    if not url or not url.strip():
        raise ValueError("Requires a non-blank HashiCorp Vault server URL")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Requires a valid HashiCorp Vault server URL, got '{url}'")
    return url.rstrip("/")


def _ensure_not_blank(value: str, description: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"Requires a non-blank {description}")
    return value


class HashiCorpSecretProvider:
    """Secret provider for a HashiCorp Vault KV secret engine.

    Every secret lives at the same ``secret_path``; the secret name selects
    the key within the data stored at that path.

    Example:
        >>> provider = HashiCorpSecretProvider.with_userpass(
        ...     "https://vault.example.com:8200", "app", "p@ss", secret_path="my/secrets",
        ... )
        >>> await provider.get_raw_secret("database-password")
    """

    DEPENDENCY_TYPE = "HashiCorp Vault"

    capabilities = ProviderCapabilities(sync=True)

    def __init__(
        self,
        client: Any,
        secret_path: str,
        options: HashiCorpVaultOptions | None = None,
        *,
        authenticate: Callable[[Any], Any] | None = None,
        logger: logging.Logger | SecretStoreLogger | None = None,
    ) -> None:
        """Initialize HashiCorp Vault provider.

        Args:
            client: ``hvac.Client`` talking to the Vault server.
            secret_path: Path of the secret data in the KV secret engine.
            options: Provider options.
            authenticate: Login performed once, before the first lookup.
            logger: Logger for dependency tracking and failures.
        """
        if client is None:
            raise ValueError("Requires a HashiCorp Vault client")
        self._client = client
        self._secret_path = _ensure_not_blank(secret_path, "secret path in the HashiCorp Vault")
        self._options = options or HashiCorpVaultOptions()
        # Cleared once the login succeeded
        self._authenticate = authenticate
        self._lock = threading.Lock()
        self._logger = as_logger(logger, __name__)

    @classmethod
    def with_token(
        cls,
        url: str,
        token: str,
        secret_path: str,
        options: HashiCorpVaultOptions | None = None,
        **client_kwargs: Any,
    ) -> "HashiCorpSecretProvider":
        """Create a provider authenticating with a Vault token."""
        import hvac

        url = _ensure_vault_url(url)
        token = _ensure_not_blank(token, "HashiCorp Vault token")
        return cls(hvac.Client(url=url, token=token, **client_kwargs), secret_path, options)

    @classmethod
    def with_userpass(
        cls,
        url: str,
        username: str,
        password: str,
        secret_path: str,
        options: HashiCorpVaultOptions | None = None,
        *,
        mount_point: str = "userpass",
        **client_kwargs: Any,
    ) -> "HashiCorpSecretProvider":
        """Create a provider authenticating with the UserPass auth method."""
        import hvac

        url = _ensure_vault_url(url)
        username = _ensure_not_blank(username, "user name for the HashiCorp Vault UserPass authentication")
        password = _ensure_not_blank(password, "password for the HashiCorp Vault UserPass authentication")
        mount_point = _ensure_not_blank(mount_point, "mount point for the UserPass authentication")

        def login(client: Any) -> Any:
            return client.auth.userpass.login(username=username, password=password, mount_point=mount_point)

        return cls(hvac.Client(url=url, **client_kwargs), secret_path, options, authenticate=login)

    @classmethod
    def with_kubernetes(
        cls,
        url: str,
        role_name: str,
        jwt: str,
        secret_path: str,
        options: HashiCorpVaultOptions | None = None,
        *,
        mount_point: str = "kubernetes",
        **client_kwargs: Any,
    ) -> "HashiCorpSecretProvider":
        """Create a provider authenticating with the Kubernetes auth method."""
        import hvac

        url = _ensure_vault_url(url)
        role_name = _ensure_not_blank(role_name, "role name for the HashiCorp Vault Kubernetes authentication")
        jwt = _ensure_not_blank(jwt, "service account JWT for the HashiCorp Vault Kubernetes authentication")
        mount_point = _ensure_not_blank(mount_point, "mount point for the Kubernetes authentication")

        def login(client: Any) -> Any:
            return client.auth.kubernetes.login(role=role_name, jwt=jwt, mount_point=mount_point)

        return cls(hvac.Client(url=url, **client_kwargs), secret_path, options, authenticate=login)

    @property
    def secret_path(self) -> str:
        return self._secret_path

    @property
    def options(self) -> HashiCorpVaultOptions:
        return self._options

    @property
    def description(self) -> str:
        return f"HashiCorp Vault {self._options.key_value_mount_point}/{self._secret_path}"

    def _get_client(self) -> Any:
        """Return the client, logging in first if needed."""
        if self._authenticate is not None:
            with self._lock:
                authenticate = self._authenticate
                if authenticate is not None:
                    authenticate(self._client)
                    self._authenticate = None
        return self._client

    def _read_secret_data(self) -> tuple[dict[str, Any], str | None]:
        client = self._get_client()
        mount_point = self._options.key_value_mount_point

        if self._options.key_value_version == VaultKeyValueVersion.V2:
            response = client.secrets.kv.v2.read_secret_version(
                path=self._secret_path,
                mount_point=mount_point,
                raise_on_deleted_version=True,
            )
            body = response.get("data") or {}
            metadata = body.get("metadata") or {}
            version = metadata.get("version")
            return body.get("data") or {}, None if version is None else str(version)

        response = client.secrets.kv.v1.read_secret(path=self._secret_path, mount_point=mount_point)
        return response.get("data") or {}, None

    def get_secret_sync(self, name: str) -> Secret | None:
        """Get the secret stored under the name at the secret path."""
        ensure_secret_name(name)

        success = False
        with measure_duration() as measurement:
            try:
                data, version = self._read_secret_data()
                success = True
            except Exception as e:
                if type(e).__name__ == "InvalidPath":
                    raise SecretNotFoundError(name, e) from e
                self._logger.error(
                    "Failure during reading secret '%s' from %s",
                    name,
                    self.description,
                    exc_info=e,
                )
                raise
            finally:
                if self._options.track_dependency:
                    self._logger.dependency(
                        self.DEPENDENCY_TYPE,
                        self._secret_path,
                        name,
                        success=success,
                        duration=measurement.elapsed,
                        context={"VaultKeyValueVersion": f"V{int(self._options.key_value_version)}"},
                    )

        value = data.get(name)
        if value is None:
            return None
        return Secret(value if isinstance(value, str) else str(value), version)

    def get_raw_secret_sync(self, name: str) -> str | None:
        secret = self.get_secret_sync(name)
        return None if secret is None else secret.value

    async def get_secret(self, name: str) -> Secret | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_secret_sync, name)

    async def get_raw_secret(self, name: str) -> str | None:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.get_raw_secret_sync, name)

    def __repr__(self) -> str:
        return f"HashiCorpSecretProvider({self.description!r})"
