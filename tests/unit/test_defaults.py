"""Unit tests for default config loading and merging."""

import pytest

from private_site.config.defaults import build_site_config, load_defaults, merge_configs
from private_site.config.models import AccessStrategy


class TestLoadDefaults:
    def test_loads_site_defaults(self):
        defaults = load_defaults("site")
        assert defaults["access"]["strategy"] == "waf"
        assert defaults["polling"]["distribution"]["max_attempts"] == 40
        assert "bucket" not in defaults

    def test_missing_defaults_raises(self):
        with pytest.raises(FileNotFoundError, match="nonexistent.*available: site"):
            load_defaults("nonexistent")


class TestMergeConfigs:
    def test_shallow_override(self):
        assert merge_configs({"a": 1, "b": 2}, {"b": 99}) == {"a": 1, "b": 99}

    def test_deep_merge(self):
        base = {"access": {"strategy": "waf", "ip_set_name": "A"}}
        result = merge_configs(base, {"access": {"ip_set_name": "B"}})
        assert result == {"access": {"strategy": "waf", "ip_set_name": "B"}}

    def test_base_not_mutated(self):
        base = {"polling": {"dns": {"max_attempts": 30}}}
        merge_configs(base, {"polling": {"dns": {"max_attempts": 5}}})
        assert base["polling"]["dns"]["max_attempts"] == 30

    def test_list_replaced_not_merged(self):
        base = {"access": {"allowed_cidrs": ["10.0.0.0/8"]}}
        result = merge_configs(base, {"access": {"allowed_cidrs": ["1.2.3.4/32"]}})
        assert result["access"]["allowed_cidrs"] == ["1.2.3.4/32"]

    def test_override_lists_are_copied(self):
        overrides = {"access": {"allowed_cidrs": ["1.2.3.4/32"]}}
        result = merge_configs({}, overrides)
        result["access"]["allowed_cidrs"].append("5.6.7.8/32")
        assert overrides["access"]["allowed_cidrs"] == ["1.2.3.4/32"]


class TestBuildSiteConfig:
    def test_layers_applied_in_order(self):
        config = build_site_config(
            {"bucket": {"name": "first-bucket"}},
            {"bucket": {"name": "second-bucket"}, "access": {"strategy": "bucket-policy"}},
        )
        assert config.bucket.name == "second-bucket"
        assert config.access.strategy == AccessStrategy.BUCKET_POLICY
        assert config.distribution.default_ttl == 86400
