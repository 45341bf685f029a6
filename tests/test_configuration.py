"""Tests for the application configuration layer."""

from __future__ import annotations

import json
import os

import pytest

from secretstore.configuration import (
    ConfigSourceError,
    Configuration,
    DictConfigSource,
    EnvConfigSource,
    FileConfigSource,
)


class TestConfigSources:
    """Tests for the configuration sources."""

    def test_dict_source_copies_values(self):
        values = {"Database": {"Password": "s3cr3t"}}
        source = DictConfigSource(values)
        values["Database"] = "changed"

        assert source.load() == {"Database": {"Password": "s3cr3t"}}

    def test_env_source_nests_keys(self):
        source = EnvConfigSource(
            prefix="MYAPP__",
            environ={"MYAPP__Database__Password": "s3cr3t", "OTHER": "ignored"},
        )

        assert source.load() == {"Database": {"Password": "s3cr3t"}}

    def test_env_source_requires_separator(self):
        with pytest.raises(ValueError):
            EnvConfigSource(separator="")

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("Database:\n  Password: s3cr3t\n", encoding="utf-8")

        assert FileConfigSource(path).load() == {"Database": {"Password": "s3cr3t"}}

    def test_json_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"ApiKey": "key"}), encoding="utf-8")

        assert FileConfigSource(path).load() == {"ApiKey": "key"}

    def test_optional_missing_file(self, tmp_path):
        assert FileConfigSource(tmp_path / "missing.yaml").load() == {}

    def test_required_missing_file(self, tmp_path):
        with pytest.raises(ConfigSourceError):
            FileConfigSource(tmp_path / "missing.yaml", required=True).load()

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "settings.ini"
        path.write_text("[section]", encoding="utf-8")

        with pytest.raises(ConfigSourceError):
            FileConfigSource(path).load()

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigSourceError):
            FileConfigSource(path).load()

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigSourceError):
            FileConfigSource(path).load()

    def test_reload_when_file_changed(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("ApiKey: old\n", encoding="utf-8")
        source = FileConfigSource(path)
        source.load()

        path.write_text("ApiKey: new\n", encoding="utf-8")
        modified = path.stat().st_mtime + 10
        os.utime(path, (modified, modified))

        assert source.reload() == {"ApiKey": "new"}


class TestConfiguration:
    """Tests for the merged configuration."""

    def test_case_insensitive_keys(self):
        configuration = Configuration.from_dict({"Database": {"Password": "s3cr3t"}})

        assert configuration.get("DATABASE:PASSWORD") == "s3cr3t"
        assert configuration.get("database.password") == "s3cr3t"
        assert configuration["Database:Password"] == "s3cr3t"

    def test_flat_dotted_key(self):
        configuration = Configuration.from_dict({"Arcus.Foo": "bar"})

        assert configuration.get("arcus.foo") == "bar"

    def test_missing_key(self):
        configuration = Configuration.from_dict({})

        assert configuration.get("Missing", "default") == "default"
        assert "Missing" not in configuration
        with pytest.raises(KeyError):
            configuration["Missing"]

    def test_requires_key(self):
        with pytest.raises(ValueError):
            Configuration.from_dict({}).get("")

    def test_higher_priority_overrides(self):
        configuration = Configuration(
            EnvConfigSource(prefix="APP__", environ={"APP__Database__Password": "from-env"}),
            DictConfigSource({"Database": {"Password": "from-dict", "User": "sa"}}),
        )

        assert configuration.get("Database:Password") == "from-env"
        assert configuration.get("Database:User") == "sa"

    def test_add_source_reloads(self):
        configuration = Configuration.from_dict({"ApiKey": "old"})

        configuration.add_source(DictConfigSource({"ApiKey": "new"}, priority=10))

        assert configuration.get("ApiKey") == "new"
        assert len(configuration.sources) == 2

    def test_get_str(self):
        configuration = Configuration.from_dict({"Retries": 3, "Enabled": False, "Section": {"Key": "value"}})

        assert configuration.get_str("Retries") == "3"
        assert configuration.get_str("Enabled") == "false"
        assert configuration.get_str("Section") is None
        assert configuration.get_str("Missing") is None

    def test_to_dict(self):
        configuration = Configuration.from_dict({"Database": {"Password": "s3cr3t"}})

        assert configuration.to_dict() == {"database": {"password": "s3cr3t"}}

    def test_reload(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"ApiKey": "old"}), encoding="utf-8")
        configuration = Configuration(FileConfigSource(path))

        path.write_text(json.dumps({"ApiKey": "new"}), encoding="utf-8")
        modified = path.stat().st_mtime + 10
        os.utime(path, (modified, modified))
        configuration.reload()

        assert configuration.get("ApiKey") == "new"
