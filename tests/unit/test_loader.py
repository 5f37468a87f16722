"""Unit tests for the YAML config loader and env var resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from private_site.config.loader import (
    load_site_config,
    load_yaml,
    prune_none,
    resolve_env_vars,
)
from private_site.config.models import AccessStrategy

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "examples" / "site.yaml"


class TestResolveEnvVars:
    def test_plain_string_unchanged(self):
        assert resolve_env_vars("hello") == "hello"

    def test_substitutes_env_var(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SITE_BUCKET", "docs-assets")
        assert resolve_env_vars("${SITE_BUCKET}") == "docs-assets"

    def test_default_when_var_missing(self):
        assert resolve_env_vars("${MISSING_VAR:-fallback}") == "fallback"

    def test_env_var_overrides_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SITE_REGION", "eu-west-1")
        assert resolve_env_vars("${SITE_REGION:-us-east-1}") == "eu-west-1"

    def test_escaped_brace_in_default(self):
        assert resolve_env_vars("${MISSING_VAR:-a\\}b}") == "a}b"

    def test_empty_env_value_wins_over_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SITE_PREFIX", "")
        assert resolve_env_vars("x${SITE_PREFIX:-docs}") == "x"

    def test_missing_var_no_default_raises(self):
        with pytest.raises(ValueError, match="UNDEFINED_VAR"):
            resolve_env_vars("${UNDEFINED_VAR}")

    def test_recursive_structures(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("OFFICE_CIDR", "198.51.100.0/24")
        data = {"access": {"allowed_cidrs": ["${OFFICE_CIDR}", "10.0.0.0/8"]}, "n": 3}
        assert resolve_env_vars(data) == {
            "access": {"allowed_cidrs": ["198.51.100.0/24", "10.0.0.0/8"]},
            "n": 3,
        }


class TestPruneNone:
    def test_drops_unset_options(self):
        overrides = {
            "bucket": {"name": "site"},
            "dns": {"domain": None, "zone_domain": None},
            "access": {"allowed_cidrs": []},
        }
        assert prune_none(overrides) == {"bucket": {"name": "site"}}


class TestLoadYaml:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "nope.yaml")

    def test_invalid_yaml_reports_position(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("bucket:\n  name: [unclosed\n")
        with pytest.raises(ValueError, match="line"):
            load_yaml(path)

    def test_top_level_must_be_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(TypeError, match="mapping"):
            load_yaml(path)


class TestLoadSiteConfig:
    def test_defaults_fill_unset_sections(self, tmp_path: Path):
        path = tmp_path / "site.yaml"
        path.write_text("bucket:\n  name: docs-assets\n")

        config = load_site_config(path)

        assert config.bucket.name == "docs-assets"
        assert config.access.strategy == AccessStrategy.WAF
        assert config.polling.distribution.max_attempts == 40
        assert config.dns is None

    def test_overrides_win_over_file(self, tmp_path: Path):
        path = tmp_path / "site.yaml"
        path.write_text("bucket:\n  name: docs-assets\naccess:\n  ip_set_name: FromFile\n")

        config = load_site_config(
            path,
            {"bucket": {"name": "other-assets"}, "access": {"ip_set_name": None}},
        )

        assert config.bucket.name == "other-assets"
        assert config.access.ip_set_name == "FromFile"

    def test_overrides_without_file(self):
        config = load_site_config(overrides={"bucket": {"name": "cli-assets"}})
        assert config.bucket.name == "cli-assets"

    def test_invalid_config_names_source(self, tmp_path: Path):
        path = tmp_path / "site.yaml"
        path.write_text("bucket:\n  name: Not_A_Bucket\n")
        with pytest.raises(ValueError, match="Invalid site config"):
            load_site_config(path)

    def test_example_config_loads(self):
        config = load_site_config(EXAMPLE_CONFIG)
        assert config.bucket.name == "site-assets"
        assert config.dns is not None
