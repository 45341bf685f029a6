"""Built-in secret providers for local sources.

This module provides secret providers that read from sources available on
the machine itself:

- EnvironmentVariableSecretProvider: Environment variables
- ConfigurationSecretProvider: Application configuration
- CommandLineSecretProvider: Command-line arguments
- DockerSecretsSecretProvider: Files mounted by Docker/Kubernetes secrets

All of these look up secrets without blocking, so they support both the
asynchronous and the synchronous lookups.
"""

from __future__ import annotations

import logging
import os
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Sequence

from secretstore.base import ProviderCapabilities, Secret, ensure_secret_name
from secretstore.configuration import Configuration

logger = logging.getLogger(__name__)


class BaseSecretProvider(ABC):
    """Abstract base class for local secret providers.

    Subclasses implement :meth:`_fetch`, returning the raw value or ``None``
    when the secret is absent. Lookups are synchronous and the asynchronous
    methods delegate to them.
    """

    capabilities = ProviderCapabilities(sync=True)

    @property
    @abstractmethod
    def description(self) -> str:
        """Provider description for diagnostics."""
        pass

    @abstractmethod
    def _fetch(self, name: str) -> str | None:
        """Fetch the secret value, or ``None`` when absent."""
        pass

    def get_raw_secret_sync(self, name: str) -> str | None:
        ensure_secret_name(name)
        return self._fetch(name)

    def get_secret_sync(self, name: str) -> Secret | None:
        value = self.get_raw_secret_sync(name)
        return None if value is None else Secret(value)

    async def get_raw_secret(self, name: str) -> str | None:
        return self.get_raw_secret_sync(name)

    async def get_secret(self, name: str) -> Secret | None:
        return self.get_secret_sync(name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.description!r})"


# =============================================================================
# Environment Variables
# =============================================================================


class EnvironmentVariableSecretProvider(BaseSecretProvider):
    """Secret provider that reads from environment variables.

    Example:
        >>> provider = EnvironmentVariableSecretProvider(prefix="MYAPP_")
        >>> await provider.get_raw_secret("API_KEY")  # Reads $MYAPP_API_KEY
    """

    def __init__(self, prefix: str = "", *, environ: Mapping[str, str] | None = None) -> None:
        """Initialize environment provider.

        Args:
            prefix: Prefix prepended to every secret name.
            environ: Mapping to read from instead of ``os.environ``.
        """
        self._prefix = prefix or ""
        self._environ = environ

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def description(self) -> str:
        return "Environment variables"

    def _fetch(self, name: str) -> str | None:
        environ = os.environ if self._environ is None else self._environ
        return environ.get(f"{self._prefix}{name}")


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationSecretProvider(BaseSecretProvider):
    """Secret provider that reads scalar values from the application configuration."""

    def __init__(self, configuration: Configuration) -> None:
        if configuration is None:
            raise ValueError("Requires a configuration instance to retrieve secrets from")
        self._configuration = configuration

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    @property
    def description(self) -> str:
        return "Configuration"

    def _fetch(self, name: str) -> str | None:
        return self._configuration.get_str(name)


# =============================================================================
# Command Line
# =============================================================================


def parse_command_line(args: Sequence[str]) -> dict[str, str]:
    """Parse command-line arguments into key-value pairs.

    Supported forms: ``--key=value``, ``--key value``, ``/key=value``,
    ``/key value`` and ``key=value``. Later occurrences of a key win; keys
    are case-insensitive. Arguments that do not fit any form are ignored.
    """
    values: dict[str, str] = {}
    position = 0
    while position < len(args):
        argument = args[position]
        position += 1

        if argument.startswith("--"):
            body = argument[2:]
        elif argument.startswith("/"):
            body = argument[1:]
        else:
            body = argument
            if "=" not in body:
                continue

        if "=" in body:
            key, value = body.split("=", 1)
        else:
            if position >= len(args):
                continue
            key, value = body, args[position]
            position += 1

        if key:
            values[key.casefold()] = value

    return values


class CommandLineSecretProvider(BaseSecretProvider):
    """Secret provider that reads from command-line arguments.

    Example:
        >>> provider = CommandLineSecretProvider(["--Database:Password=s3cr3t"])
        >>> await provider.get_raw_secret("Database:Password")  # "s3cr3t"
    """

    def __init__(self, args: Sequence[str] | None = None) -> None:
        """Initialize command-line provider.

        Args:
            args: Arguments to parse (default: ``sys.argv[1:]``).
        """
        if args is not None and isinstance(args, str):
            raise TypeError("Requires a sequence of command-line arguments, not a single string")
        self._values = parse_command_line(list(sys.argv[1:] if args is None else args))

    @property
    def description(self) -> str:
        return "Command line"

    def _fetch(self, name: str) -> str | None:
        return self._values.get(name.casefold())


# =============================================================================
# Docker Secrets
# =============================================================================


class DockerSecretsSecretProvider(BaseSecretProvider):
    """Secret provider that reads Docker secrets mounted as files.

    Each file in the directory is a secret named after the file; ``__`` in
    file names maps to ``:`` in secret names. Trailing newlines are removed
    from the values.

    Example:
        >>> provider = DockerSecretsSecretProvider("/run/secrets")
        >>> await provider.get_raw_secret("ConnectionStrings:Database")
        # Reads /run/secrets/ConnectionStrings__Database
    """

    def __init__(self, directory: str | Path) -> None:
        if directory is None or not str(directory).strip():
            raise ValueError("Requires a directory containing the Docker secrets")

        path = Path(directory)
        if not path.is_absolute():
            raise ValueError(f"Requires an absolute path to the Docker secrets directory, got '{directory}'")
        if not path.is_dir():
            raise FileNotFoundError(f"The Docker secrets directory '{directory}' does not exist")

        self._directory = path
        self._values: dict[str, str] = {}
        self.reload()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def description(self) -> str:
        return "Docker secrets"

    def reload(self) -> None:
        """Re-read all secret files from the directory."""
        values: dict[str, str] = {}
        for path in sorted(self._directory.iterdir()):
            # Kubernetes mounts secrets through '..data' symlinked directories
            if path.name.startswith("..") or not path.is_file():
                continue
            key = path.name.replace("__", ":")
            values[key.casefold()] = path.read_text(encoding="utf-8").rstrip("\r\n")

        self._values = values
        logger.debug(f"Loaded {len(values)} Docker secrets from {self._directory}")

    def _fetch(self, name: str) -> str | None:
        return self._values.get(name.casefold())
