"""Unit tests for config loading and CLI/env/file precedence."""

import argparse
from pathlib import Path
from typing import Any, Dict, List

import pytest

from migdiff.cli import build_parser
from migdiff.config import (
    build_config,
    deep_get,
    get_env_var,
    load_config,
    parse_bool,
    read_table_excludes,
)
from migdiff.errors import ConfigError


def parse(argv: List[str]) -> argparse.Namespace:
    return build_parser().parse_args(argv)


class TestDeepGet:
    """Tests for deep_get helper function."""

    def test_nested_keys(self) -> None:
        """Test nested key access."""
        assert deep_get({"a": {"b": {"c": 3}}}, ["a", "b", "c"]) == 3

    def test_missing_key_returns_default(self) -> None:
        """Test missing key returns default value."""
        assert deep_get({"a": 1}, ["b"]) is None
        assert deep_get({"a": 1}, ["a", "b"], "default") == "default"


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_valid_config(self, tmp_path: Path) -> None:
        """Test loading a valid YAML config."""
        path = tmp_path / "migdiff.yml"
        path.write_text("source: db-old\ntarget: db-new\nparallelism: 4\n", encoding="utf-8")
        assert load_config(path) == {"source": "db-old", "target": "db-new", "parallelism": 4}

    def test_load_missing_config_raises(self, tmp_path: Path) -> None:
        """Test missing config file raises ConfigError."""
        with pytest.raises(ConfigError, match="config not found"):
            load_config(tmp_path / "nope.yml")

    def test_load_empty_config_returns_empty_dict(self, tmp_path: Path) -> None:
        """Test empty config file returns empty dict."""
        path = tmp_path / "empty.yml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == {}

    def test_non_mapping_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(path)


class TestGetEnvVar:
    """Tests for get_env_var function."""

    def test_returns_env_var_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIGDIFF_SOURCE", "db-old")
        assert get_env_var("source") == "db-old"

    def test_returns_none_when_not_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MIGDIFF_NONEXISTENT_VAR", raising=False)
        assert get_env_var("nonexistent_var") is None


class TestParseBool:
    def test_accepts_common_spellings(self) -> None:
        assert parse_bool("yes", "x") is True
        assert parse_bool("0", "x") is False
        assert parse_bool(True, "x") is True

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ConfigError, match="expected a boolean"):
            parse_bool("maybe", "show_extra_on_target")


class TestBuildConfig:
    """Tests for build_config precedence."""

    @pytest.fixture
    def file_cfg(self) -> Dict[str, Any]:
        return {
            "source": "cfg-src",
            "target": "cfg-tgt",
            "parallelism": 3,
            "show_extra_on_target": False,
            "schemas": ["public"],
            "exclude": {"tables": "^tmp_.*", "tables_by_schema": {"Public": "^audit_log$"}},
            "envelope": {"lock_timeout": "10s"},
            "transport": {"multiplex": False, "connect_timeout": 9, "ssh_options": ["Port=2222"], "timeout": 600},
        }

    def test_defaults(self) -> None:
        """Test defaults when only hosts are given."""
        config = build_config({}, parse(["a", "b"]))
        assert config.source == "a" and config.target == "b"
        assert config.out_dir == Path("out")
        assert config.probe_dir == Path("probes")
        assert config.parallelism >= 1
        assert config.show_extra is False
        assert config.schemas == ()
        assert config.envelope.lock_timeout == "5s"
        assert config.envelope.statement_timeout == "30min"
        assert config.transport.psql == "sudo -u postgres psql"
        assert config.transport.multiplex is True
        assert config.transport.timeout is None
        assert config.exclusions.filter_databases(["postgres", "app"]) == ["app"]

    def test_values_from_config_file(self, file_cfg: Dict[str, Any]) -> None:
        config = build_config(file_cfg, parse([]))
        assert config.source == "cfg-src"
        assert config.parallelism == 3
        assert config.schemas == ("public",)
        assert config.exclusions.table == "^tmp_.*"
        assert config.exclusions.table_by_namespace == {"public": "^audit_log$"}
        assert config.envelope.lock_timeout == "10s"
        assert config.transport.multiplex is False
        assert config.transport.connect_timeout == 9
        assert config.transport.ssh_options == ("Port=2222",)
        assert config.transport.timeout == 600

    def test_env_overrides_config(self, file_cfg: Dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """Test MIGDIFF_* variables take precedence over the file."""
        monkeypatch.setenv("MIGDIFF_PARALLELISM", "7")
        monkeypatch.setenv("MIGDIFF_SHOW_EXTRA_ON_TARGET", "1")
        monkeypatch.setenv("MIGDIFF_SCHEMAS", "'public','myschema'")
        config = build_config(file_cfg, parse([]))
        assert config.parallelism == 7
        assert config.show_extra is True
        assert config.schemas == ("public", "myschema")

    def test_cli_overrides_env(self, file_cfg: Dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """Test CLI flags take precedence over environment and file."""
        monkeypatch.setenv("MIGDIFF_PARALLELISM", "7")
        monkeypatch.setenv("MIGDIFF_SOURCE", "env-src")
        config = build_config(
            file_cfg,
            parse(["cli-src", "cli-tgt", "-j", "2", "--show-extra", "--lock-timeout", "1s", "--no-multiplex"]),
        )
        assert config.source == "cli-src"
        assert config.target == "cli-tgt"
        assert config.parallelism == 2
        assert config.show_extra is True
        assert config.envelope.lock_timeout == "1s"
        assert config.transport.multiplex is False

    def test_missing_target_raises(self) -> None:
        with pytest.raises(ConfigError, match="missing target"):
            build_config({"source": "a"}, parse([]))

    def test_same_host_raises(self) -> None:
        with pytest.raises(ConfigError, match="same host"):
            build_config({}, parse(["a", "a"]))

    def test_invalid_parallelism(self) -> None:
        with pytest.raises(ConfigError, match="parallelism"):
            build_config({"parallelism": 0}, parse(["a", "b"]))

    def test_invalid_regex(self) -> None:
        with pytest.raises(ConfigError, match="invalid table regex"):
            build_config({}, parse(["a", "b", "--exclude-table", "(oops"]))

    def test_pinned_databases(self) -> None:
        config = build_config({}, parse(["a", "b", "--database", "app", "--database", "crm"]))
        assert config.databases == ("app", "crm")

    def test_describe_mentions_hosts(self) -> None:
        lines = build_config({}, parse(["a", "b"])).describe()
        assert "Source: a" in lines
        assert "Target: b" in lines


class TestReadTableExcludes:
    """Tests for per-schema table exclusion merging."""

    def test_env_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIGDIFF_TABLE_EXCLUDE_PUBLIC", "^(audit_log|event_.*)$")
        monkeypatch.setenv("MIGDIFF_TABLE_EXCLUDE_REPORTING", "")
        out = read_table_excludes({}, [])
        assert out["public"] == "^(audit_log|event_.*)$"
        assert "reporting" not in out

    def test_cli_overrides_env_and_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIGDIFF_TABLE_EXCLUDE_SALES", "^env$")
        cfg = {"exclude": {"tables_by_schema": {"sales": "^cfg$", "hr": "^x$"}}}
        out = read_table_excludes(cfg, ["sales=^cli$"])
        assert out == {"sales": "^cli$", "hr": "^x$"}

    def test_bad_cli_pair(self) -> None:
        with pytest.raises(ConfigError, match="SCHEMA=REGEX"):
            read_table_excludes({}, ["no-equals-sign"])
