"""Unit tests for the typer CLI with Resource APIs replaced by fakes."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import make_apis
from typer.testing import CliRunner

from private_site import cli
from private_site.errors import PermissionDeniedError

runner = CliRunner()


@pytest.fixture
def fake_apis(monkeypatch: pytest.MonkeyPatch):
    apis = make_apis()
    monkeypatch.setattr(cli, "AwsSiteApis", lambda config: apis)
    monkeypatch.setattr(cli, "configure_logging", lambda config: None)
    return apis


def _seed_waf_site(apis):
    apis.distribution.seed(
        "site-assets.s3.amazonaws.com",
        {"web_acl_id": "web-acl-RestrictToVPC"},
        ref="E2",
        status="Deployed",
    )
    apis.ip_set.seed("AllowVPCOnly", {"addresses": ["1.2.3.4/32"]})
    apis.web_acl.seed(
        "RestrictToVPC", {"default_action": "block", "ip_set_arns": ["ip-set-AllowVPCOnly"]}
    )


class TestValidate:
    def test_valid_from_options(self):
        result = runner.invoke(cli.app, ["validate", "--bucket", "site-assets"])
        assert result.exit_code == 0
        assert "Valid" in result.output

    def test_invalid_bucket_name(self):
        result = runner.invoke(cli.app, ["validate", "--bucket", "Bad_Name"])
        assert result.exit_code == 1
        assert "Config error" in result.output

    def test_missing_config_file(self, tmp_path: Path):
        result = runner.invoke(cli.app, ["validate", "-c", str(tmp_path / "missing.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestOverrides:
    def test_domain_and_zone_fill_dns_and_certificate(self):
        overrides = cli._overrides(bucket="b", domain="www.example.com", zone="example.com")
        assert overrides["dns"] == {"domain": "www.example.com", "zone_domain": "example.com"}
        assert overrides["certificate"]["domain"] == "www.example.com"

    def test_sectioned_extras(self):
        overrides = cli._overrides(distribution__min_ttl=5, access__strategy="waf")
        assert overrides["distribution"]["min_ttl"] == 5
        assert overrides["access"] == {"strategy": "waf"}


class TestProvision:
    def test_success_prints_outputs(self, fake_apis):
        result = runner.invoke(
            cli.app, ["provision", "--bucket", "site-assets", "--allow", "10.0.0.0/16"]
        )
        assert result.exit_code == 0, result.output
        assert "distribution_domain" in result.output
        assert fake_apis.bucket.writes() == [("create", "site-assets")]

    def test_my_ip_joins_allow_list(self, fake_apis, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setattr(cli.netinfo, "public_ip", lambda: "198.51.100.7/32")
        result = runner.invoke(
            cli.app,
            ["provision", "--bucket", "site-assets", "--allow", "10.0.0.0/16", "--my-ip"],
        )
        assert result.exit_code == 0, result.output
        addresses = fake_apis.ip_set.resources["AllowVPCOnly"]["attributes"]["addresses"]
        assert "198.51.100.7/32" in addresses

    def test_step_failure_exits_1(self, fake_apis):
        fake_apis.web_acl.fail["create"] = PermissionDeniedError("denied", key="RestrictToVPC")
        result = runner.invoke(
            cli.app, ["provision", "--bucket", "site-assets", "--allow", "10.0.0.0/16"]
        )
        assert result.exit_code == 1
        assert "Step failed" in result.output
        assert "firewall" in result.output

    def test_timeout_exits_2(self, fake_apis):
        fake_apis.distribution.statuses = ["InProgress"] * 5
        result = runner.invoke(
            cli.app,
            [
                "provision",
                "--bucket",
                "site-assets",
                "--allow",
                "10.0.0.0/16",
                "--max-attempts",
                "2",
                "--poll-interval",
                "0",
            ],
        )
        assert result.exit_code == 2
        assert "Timed out" in result.output


class TestAccessCommands:
    def test_unlock_dry_run(self, fake_apis):
        _seed_waf_site(fake_apis)
        result = runner.invoke(
            cli.app,
            ["unlock", "--bucket", "site-assets", "--no-detect", "--cidr", "5.6.7.8", "--dry-run"],
        )
        assert result.exit_code == 0, result.output
        assert "5.6.7.8/32" in result.output
        assert fake_apis.ip_set.writes() == []

    def test_unlock_detects_public_ip(self, fake_apis, monkeypatch: pytest.MonkeyPatch):
        _seed_waf_site(fake_apis)
        monkeypatch.setattr(cli.netinfo, "public_ip", lambda: "198.51.100.7/32")

        result = runner.invoke(cli.app, ["unlock", "--bucket", "site-assets"])

        assert result.exit_code == 0, result.output
        assert fake_apis.ip_set.resources["AllowVPCOnly"]["attributes"]["addresses"] == [
            "1.2.3.4/32",
            "198.51.100.7/32",
        ]

    def test_lock_lockout_exits_1(self, fake_apis, tmp_path: Path):
        _seed_waf_site(fake_apis)
        path = tmp_path / "site.yaml"
        path.write_text(
            "bucket:\n  name: site-assets\naccess:\n  operator_cidrs:\n    - 1.2.3.4\n"
        )
        result = runner.invoke(cli.app, ["lock", "-c", str(path), "--cidr", "9.9.9.9/32"])
        assert result.exit_code == 1
        assert "lock out" in result.output
        assert fake_apis.ip_set.writes() == []


class TestTeardown:
    def test_declined_confirmation_changes_nothing(self, fake_apis):
        _seed_waf_site(fake_apis)
        result = runner.invoke(cli.app, ["teardown", "--bucket", "site-assets"], input="n\n")
        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert fake_apis.distribution.writes() == []

    def test_confirmed(self, fake_apis):
        _seed_waf_site(fake_apis)
        result = runner.invoke(cli.app, ["teardown", "--bucket", "site-assets", "--yes"])
        assert result.exit_code == 0, result.output
        assert fake_apis.distribution.resources == {}

    def test_by_distribution_id(self, fake_apis):
        regional = "site-assets.s3.eu-west-1.amazonaws.com"
        fake_apis.distribution.seed(regional, {"enabled": False}, ref="E9", status="Deployed")

        result = runner.invoke(
            cli.app,
            ["teardown", "--bucket", "site-assets", "--distribution-id", "E9", "--yes"],
        )

        assert result.exit_code == 0, result.output
        assert fake_apis.distribution.writes() == [("delete", regional)]


class TestStatus:
    def test_incomplete_site_exits_1(self, fake_apis):
        result = runner.invoke(cli.app, ["status", "--bucket", "site-assets"])
        assert result.exit_code == 1
        assert "absent" in result.output
