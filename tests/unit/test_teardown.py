"""Unit tests for site teardown."""

from __future__ import annotations

import pytest
from fakes import site_config

from private_site.provisioning.teardown import SiteTeardown

ORIGIN = "site-assets.s3.amazonaws.com"
DNS = {"domain": "www.example.com", "zone_domain": "example.com"}


def _seed_site(apis, enabled=True):
    apis.distribution.seed(ORIGIN, {"enabled": enabled}, ref="E2", status="Deployed")
    apis.bucket.seed("site-assets", {"region": "us-east-1"})
    apis.dns_record.seed("www.example.com", {"alias_target": "d1.cloudfront.net"})


class TestSiteTeardown:
    def test_step_order(self, apis):
        teardown = SiteTeardown(site_config(dns=DNS), apis, delete_bucket=True)
        assert [s.name for s in teardown.steps()] == [
            "disable-distribution",
            "delete-distribution",
            "delete-bucket",
            "delete-alias",
        ]

    def test_bucket_kept_unless_requested(self, apis, sleeps):
        _seed_site(apis)
        result = SiteTeardown(site_config(), apis, sleep=sleeps.append).run()

        assert "delete-bucket" not in result.completed
        assert "site-assets" in apis.bucket.resources
        assert ORIGIN not in apis.distribution.resources

    def test_disables_waits_then_deletes(self, apis, sleeps):
        _seed_site(apis)
        SiteTeardown(
            site_config(dns=DNS), apis, delete_bucket=True, sleep=sleeps.append
        ).run()

        assert apis.distribution.writes() == [("update", ORIGIN), ("delete", ORIGIN)]
        assert apis.distribution.status_calls == 1
        assert apis.bucket.writes() == [("delete", "site-assets")]
        assert apis.dns_record.writes() == [("delete", "www.example.com")]
        assert apis.dns_record.resources == {}

    def test_already_disabled_distribution_is_deleted_directly(self, apis, sleeps):
        _seed_site(apis, enabled=False)
        SiteTeardown(site_config(), apis, sleep=sleeps.append).run()

        assert apis.distribution.writes() == [("delete", ORIGIN)]
        assert apis.distribution.status_calls == 0

    def test_rerun_on_missing_resources_succeeds(self, apis, sleeps):
        result = SiteTeardown(
            site_config(dns=DNS), apis, delete_bucket=True, sleep=sleeps.append
        ).run()

        assert result.completed == [
            "disable-distribution",
            "delete-distribution",
            "delete-bucket",
            "delete-alias",
        ]
        assert result.outputs["distribution_id"] is None
        assert apis.distribution.writes() == []
        assert apis.distribution.resources == {}
        assert apis.distribution.status_calls == 0


class TestTeardownAddressing:
    REGIONAL = "site-assets.s3.eu-west-1.amazonaws.com"

    def test_by_distribution_id_with_regional_origin(self, apis, sleeps):
        apis.distribution.seed(self.REGIONAL, {"enabled": True}, ref="E9", status="Deployed")

        result = SiteTeardown(
            site_config(), apis, distribution_id="E9", sleep=sleeps.append
        ).run()

        assert apis.distribution.writes() == [
            ("update", self.REGIONAL),
            ("delete", self.REGIONAL),
        ]
        assert apis.distribution.resources == {}
        assert result.outputs["distribution_id"] == "E9"

    def test_unknown_distribution_id_creates_nothing(self, apis, sleeps):
        apis.distribution.seed(ORIGIN, {"enabled": True}, ref="E2", status="Deployed")

        result = SiteTeardown(
            site_config(), apis, distribution_id="E404", sleep=sleeps.append
        ).run()

        assert result.outputs["distribution_id"] is None
        assert apis.distribution.writes() == []
        assert ORIGIN in apis.distribution.resources

    def test_by_name_tag(self, apis, sleeps):
        _seed_site(apis)

        teardown = SiteTeardown(site_config(), apis, name_tag="site-assets", sleep=sleeps.append)
        teardown.run()

        assert teardown.steps()[0].resource_key == "site-assets"
        assert apis.distribution.writes() == [("update", ORIGIN), ("delete", ORIGIN)]

    def test_alias_deletion_without_dns_section_is_a_config_error(self, apis):
        with pytest.raises(ValueError, match="dns"):
            SiteTeardown(site_config(), apis)._delete_alias(None)
