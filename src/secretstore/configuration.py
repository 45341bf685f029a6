"""Application configuration used as a secret source.

A :class:`Configuration` merges key-value pairs from several sources
(in-memory dictionaries, environment variables, YAML/JSON files) into one
nested mapping. Keys are case-insensitive; nested keys are addressed with
``:`` (``Database:Password``) or ``.`` (``Database.Password``).

Example:
    >>> configuration = Configuration(
    ...     FileConfigSource("appsettings.yaml"),
    ...     EnvConfigSource(prefix="MYAPP__"),
    ... )
    >>> configuration.get("Database:Password")
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml


class ConfigError(Exception):
    """Base configuration error."""

    pass


class ConfigSourceError(ConfigError):
    """Configuration source error."""

    pass


# =============================================================================
# Configuration Sources
# =============================================================================


class ConfigSource(ABC):
    """Abstract base class for configuration sources.

    Sources are merged in priority order: higher priorities override lower ones.
    """

    def __init__(self, priority: int = 0) -> None:
        self._priority = priority

    @property
    def priority(self) -> int:
        return self._priority

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Load configuration from source.

        Returns:
            Dictionary of configuration values.
        """
        pass

    def reload(self) -> dict[str, Any]:
        """Reload configuration (default: same as load)."""
        return self.load()


class DictConfigSource(ConfigSource):
    """In-memory configuration source."""

    def __init__(self, values: Mapping[str, Any], priority: int = 0) -> None:
        super().__init__(priority)
        if values is None:
            raise ValueError("Requires configuration values")
        self._values = dict(values)

    def load(self) -> dict[str, Any]:
        return dict(self._values)


class EnvConfigSource(ConfigSource):
    """Environment variable configuration source.

    Reads variables starting with ``prefix``; ``separator`` splits the rest
    of the name into nested keys. Values are kept as strings.

    Example:
        MYAPP__Database__Password=s3cr3t

        With ``prefix="MYAPP__"`` produces:
        {"database": {"password": "s3cr3t"}}
    """

    def __init__(
        self,
        prefix: str = "",
        separator: str = "__",
        priority: int = 100,
        *,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(priority)
        if not separator:
            raise ValueError("Requires a non-empty separator for nested keys")
        self._prefix = prefix or ""
        self._separator = separator
        self._environ = environ

    def load(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        environ = os.environ if self._environ is None else self._environ

        for key, value in environ.items():
            if not key.startswith(self._prefix):
                continue

            parts = [part for part in key[len(self._prefix):].split(self._separator) if part]
            if not parts:
                continue

            current = result
            for part in parts[:-1]:
                child = current.get(part)
                if not isinstance(child, dict):
                    child = current[part] = {}
                current = child
            current[parts[-1]] = value

        return result


class FileConfigSource(ConfigSource):
    """File-based configuration source.

    Supports YAML and JSON formats, detected from the file extension.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        required: bool = False,
        priority: int = 50,
    ) -> None:
        super().__init__(priority)
        self._path = Path(path)
        self._required = required
        self._last_modified: float = 0
        self._cached: dict[str, Any] = {}

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            if self._required:
                raise ConfigSourceError(f"Configuration file not found: {self._path}")
            return {}

        suffix = self._path.suffix.lower()
        try:
            content = self._path.read_text(encoding="utf-8")
            self._last_modified = self._path.stat().st_mtime

            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif suffix == ".json":
                data = json.loads(content) if content.strip() else {}
            else:
                raise ConfigSourceError(f"Unsupported file format: {suffix}")
        except ConfigSourceError:
            raise
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigSourceError(f"Failed to load config from {self._path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigSourceError(
                f"Configuration file {self._path} must contain a mapping at the top level"
            )

        self._cached = data
        return self._cached

    def reload(self) -> dict[str, Any]:
        """Reload if file has changed."""
        if self._path.exists():
            mtime = self._path.stat().st_mtime
            if mtime > self._last_modified:
                return self.load()
        elif self._required:
            raise ConfigSourceError(f"Configuration file not found: {self._path}")
        return self._cached


# =============================================================================
# Configuration
# =============================================================================


_MISSING = object()


def _normalize(values: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in values.items():
        result[str(key).casefold()] = _normalize(value) if isinstance(value, Mapping) else value
    return result


def _merge_config(base: dict[str, Any], override: Mapping[str, Any]) -> None:
    """Deep merge configuration dictionaries."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_config(base[key], value)
        else:
            base[key] = value


class Configuration:
    """Merged, case-insensitive view over configuration sources."""

    def __init__(self, *sources: ConfigSource) -> None:
        self._sources: list[ConfigSource] = []
        self._values: dict[str, Any] = {}
        self._lock = threading.Lock()
        for source in sources:
            self.add_source(source, load=False)
        self.load()

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Configuration":
        return cls(DictConfigSource(values))

    @property
    def sources(self) -> tuple[ConfigSource, ...]:
        return tuple(self._sources)

    def add_source(self, source: ConfigSource, *, load: bool = True) -> "Configuration":
        """Add a configuration source, reloading the merged values by default."""
        if source is None:
            raise ValueError("Requires a configuration source")
        self._sources.append(source)
        self._sources.sort(key=lambda s: s.priority)
        if load:
            self.load()
        return self

    def load(self) -> "Configuration":
        """Load and merge all sources."""
        values: dict[str, Any] = {}
        for source in self._sources:
            _merge_config(values, _normalize(source.load()))
        with self._lock:
            self._values = values
        return self

    def reload(self) -> "Configuration":
        """Reload all sources that changed since they were last loaded."""
        values: dict[str, Any] = {}
        for source in self._sources:
            _merge_config(values, _normalize(source.reload()))
        with self._lock:
            self._values = values
        return self

    def _walk(self, parts: list[str]) -> Any:
        current: Any = self._values
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                return _MISSING
            current = current[part]
        return current

    def _lookup(self, key: str) -> Any:
        normalized = key.casefold()
        candidates = [normalized.split(":"), [normalized], normalized.split(".")]
        with self._lock:
            for parts in candidates:
                value = self._walk(parts)
                if value is not _MISSING:
                    return value
        return _MISSING

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by its (nested) key."""
        if not key:
            raise ValueError("Requires a non-blank configuration key")
        value = self._lookup(key)
        return default if value is _MISSING else value

    def get_str(self, key: str) -> str | None:
        """Get a scalar configuration value as a string, ``None`` for sections or missing keys."""
        value = self.get(key)
        if value is None or isinstance(value, (dict, list)):
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return json.loads(json.dumps(self._values, default=str))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and bool(key) and self._lookup(key) is not _MISSING

    def __getitem__(self, key: str) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            raise KeyError(key)
        return value

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __repr__(self) -> str:
        return f"Configuration(sources={len(self._sources)})"
