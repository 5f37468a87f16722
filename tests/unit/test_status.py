"""Unit tests for site status probes."""

from __future__ import annotations

from fakes import site_config

from private_site.errors import PermissionDeniedError
from private_site.observability.status import check_site_status, probe
from private_site.resources.base import ResourceKind, ResourceState


class TestProbe:
    def test_present(self):
        state = ResourceState(
            kind=ResourceKind.BUCKET, key="site", ref="site", attributes={"region": "eu-west-1"}
        )
        result = probe("bucket", "site", lambda: state)
        assert result.present
        assert result.detail == "eu-west-1"

    def test_failure_reported_not_raised(self):
        def _read():
            raise PermissionDeniedError("denied")

        result = probe("bucket", "site", _read)
        assert result.status == "error"
        assert not result.present
        assert result.detail == "denied"


class TestCheckSiteStatus:
    def test_empty_account_is_incomplete(self, apis):
        status = check_site_status(site_config(), apis)

        assert not status.complete
        assert [r.kind for r in status.resources] == [
            "bucket",
            "origin-access",
            "distribution",
            "bucket-policy",
            "ip-set",
            "web-acl",
        ]
        assert set(status.summary.values()) == {"absent"}

    def test_fully_provisioned_site(self, apis):
        apis.bucket.seed("site-assets", {"region": "us-east-1"})
        apis.origin_access.seed("site-assets-OAC")
        apis.distribution.seed(
            "site-assets.s3.amazonaws.com", {"web_acl_id": "arn:acl"}, status="Deployed"
        )
        apis.bucket_policy.seed("site-assets", {"document": {"Statement": []}})
        apis.ip_set.seed("AllowVPCOnly", {"addresses": ["10.0.0.0/16"]})
        apis.web_acl.seed("RestrictToVPC")
        apis.dns_record.seed("www.example.com", {"alias_target": "d1.cloudfront.net"})
        config = site_config(dns={"domain": "www.example.com", "zone_domain": "example.com"})

        status = check_site_status(config, apis)

        assert status.complete
        by_kind = {r.kind: r for r in status.resources}
        assert by_kind["distribution"].detail.endswith("(web ACL: arn:acl)")
        assert by_kind["ip-set"].detail == "10.0.0.0/16"
        assert by_kind["bucket-policy"].detail == "CloudFront only"
        assert by_kind["dns-record"].detail == "d1.cloudfront.net"

    def test_bucket_policy_strategy_skips_waf(self, apis):
        config = site_config(
            access={"strategy": "bucket-policy", "allowed_cidrs": ["10.0.0.0/16"]}
        )
        kinds = [r.kind for r in check_site_status(config, apis).resources]
        assert "ip-set" not in kinds
        assert "web-acl" not in kinds

    def test_unreadable_bucket_policy_is_reported_not_failed(self, apis):
        apis.bucket_policy.seed(
            "site-assets",
            {"document": {"Statement": [{"Sid": "Open", "Effect": "Allow", "Principal": "*"}]}},
        )

        status = check_site_status(site_config(), apis)

        policy = next(r for r in status.resources if r.kind == "bucket-policy")
        assert policy.present
        assert policy.detail.startswith("unrecognised conditions")
