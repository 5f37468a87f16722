"""Unit tests for AWS request/response payload builders."""

from __future__ import annotations

import pytest

from private_site.resources.aws import payloads

DIST_ARN = "arn:aws:cloudfront::111122223333:distribution/E2"


class TestBucketPayloads:
    def test_us_east_1_has_no_location_constraint(self):
        assert payloads.create_bucket_request("site", "us-east-1") == {"Bucket": "site"}

    def test_other_region_sets_constraint(self):
        request = payloads.create_bucket_request("site", "eu-central-1")
        assert request["CreateBucketConfiguration"] == {"LocationConstraint": "eu-central-1"}

    @pytest.mark.parametrize(
        ("constraint", "region"),
        [(None, "us-east-1"), ("", "us-east-1"), ("EU", "eu-west-1"), ("ap-south-1", "ap-south-1")],
    )
    def test_bucket_region(self, constraint, region):
        assert payloads.bucket_region(constraint) == region

    def test_origin_domain_round_trip(self):
        domain = payloads.origin_domain("site-assets")
        assert domain == "site-assets.s3.amazonaws.com"
        assert payloads.origin_bucket(domain) == "site-assets"


class TestBucketPolicy:
    def test_cloudfront_only(self):
        policy = payloads.bucket_policy("site", distribution_arn=DIST_ARN)
        assert policy["Version"] == "2012-10-17"
        assert len(policy["Statement"]) == 1
        statement = policy["Statement"][0]
        assert statement["Principal"] == {"Service": "cloudfront.amazonaws.com"}
        assert statement["Resource"] == "arn:aws:s3:::site/*"

    def test_cidrs_only_use_plain_operator(self):
        policy = payloads.bucket_policy("site", cidrs=["10.0.0.0/16"])
        condition = policy["Statement"][0]["Condition"]
        assert condition == {"IpAddress": {"aws:SourceIp": ["10.0.0.0/16"]}}

    def test_vpcs_only(self):
        policy = payloads.bucket_policy("site", vpc_ids=["vpc-1"])
        assert policy["Statement"][0]["Condition"] == {
            "StringEquals": {"aws:SourceVpc": ["vpc-1"]}
        }

    def test_cidrs_and_vpcs_use_if_exists(self):
        policy = payloads.bucket_policy("site", cidrs=["10.0.0.0/16"], vpc_ids=["vpc-1"])
        condition = policy["Statement"][0]["Condition"]
        assert set(condition) == {"IpAddressIfExists", "StringEqualsIfExists"}

    def test_policy_update_statement_mirrors_condition(self):
        policy = payloads.bucket_policy("site", cidrs=["10.0.0.0/16"])
        access, update, _ = policy["Statement"]
        assert update["Sid"] == payloads.POLICY_UPDATE_SID
        assert update["Action"] == "s3:PutBucketPolicy"
        assert update["Condition"] == access["Condition"]
        assert update["Condition"] is not access["Condition"]

    def test_source_policy_denies_everyone_else(self):
        policy = payloads.bucket_policy("site", cidrs=["10.0.0.0/16"], vpc_ids=["vpc-1"])
        deny = policy["Statement"][-1]
        assert deny["Sid"] == payloads.DENY_OTHERS_SID
        assert deny["Effect"] == "Deny"
        assert deny["Principal"] == "*"
        assert deny["Action"] == "s3:*"
        assert deny["Resource"] == ["arn:aws:s3:::site", "arn:aws:s3:::site/*"]
        assert deny["Condition"] == {
            "StringNotEqualsIfExists": {"aws:SourceVpc": ["vpc-1"]},
            "NotIpAddressIfExists": {"aws:SourceIp": ["10.0.0.0/16"]},
        }

    def test_source_policy_has_no_cloudfront_grant(self):
        policy = payloads.bucket_policy("site", vpc_ids=["vpc-1"])
        principals = [s["Principal"] for s in policy["Statement"]]
        assert {"Service": "cloudfront.amazonaws.com"} not in principals
        assert policy["Statement"][-1]["Condition"] == {
            "StringNotEqualsIfExists": {"aws:SourceVpc": ["vpc-1"]}
        }

    def test_cloudfront_grant_and_sources_never_mix(self):
        with pytest.raises(ValueError, match="CloudFront"):
            payloads.bucket_policy("site", distribution_arn=DIST_ARN, cidrs=["10.0.0.0/16"])

    def test_empty_policy_rejected(self):
        with pytest.raises(ValueError):
            payloads.bucket_policy("site")

    def test_empty_source_condition_rejected(self):
        with pytest.raises(ValueError):
            payloads.source_condition([], [])


class TestAllowedSources:
    def test_accepts_scalar_values(self):
        document = {
            "Statement": [
                {
                    "Sid": payloads.SOURCE_ACCESS_SID,
                    "Effect": "Allow",
                    "Principal": "*",
                    "Condition": {"IpAddress": {"aws:SourceIp": "1.2.3.4/32"}},
                },
            ]
        }
        assert payloads.allowed_sources(document) == (["1.2.3.4/32"], [])

    def test_reads_statements_written_by_other_tools(self):
        document = {
            "Statement": [
                {
                    "Sid": "AllowVPCAndHomeAccess",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Condition": {
                        "IpAddressIfExists": {"aws:SourceIp": ["1.2.3.4/32"]},
                        "StringEqualsIfExists": {"aws:SourceVpc": "vpc-0abc"},
                    },
                },
                {
                    "Sid": "AllowHomeAndVPCPolicyUpdate",
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                    "Condition": {
                        "IpAddressIfExists": {"aws:SourceIp": ["1.2.3.4/32", "8.8.8.8/32"]},
                    },
                },
            ]
        }
        assert payloads.allowed_sources(document) == (
            ["1.2.3.4/32", "8.8.8.8/32"],
            ["vpc-0abc"],
        )

    def test_ignores_cloudfront_and_deny_statements(self):
        document = payloads.bucket_policy("site", cidrs=["10.0.0.0/16"])
        document["Statement"].insert(0, payloads.cloudfront_statement("site", DIST_ARN))
        assert payloads.allowed_sources(document) == (["10.0.0.0/16"], [])

    def test_unconditional_public_statement_is_unreadable(self):
        document = {"Statement": [{"Sid": "Public", "Effect": "Allow", "Principal": "*"}]}
        with pytest.raises(payloads.UnreadablePolicyError, match="Public"):
            payloads.allowed_sources(document)

    def test_foreign_condition_is_unreadable(self):
        document = {
            "Statement": [
                {
                    "Sid": "Referer",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Condition": {"StringLike": {"aws:Referer": "https://example.com/*"}},
                }
            ]
        }
        with pytest.raises(payloads.UnreadablePolicyError, match="aws:Referer"):
            payloads.allowed_sources(document)


class TestPolicyVersion:
    def test_policy_version_ignores_key_order(self):
        a = {"Version": "2012-10-17", "Statement": []}
        b = {"Statement": [], "Version": "2012-10-17"}
        assert payloads.policy_version(a) == payloads.policy_version(b)


class TestDistributionPayloads:
    def test_new_config_defaults(self):
        config = payloads.distribution_config("site", "ref-1", {"origin_access_control_id": "OAC1"})
        assert config["Origins"]["Items"][0]["DomainName"] == "site.s3.amazonaws.com"
        assert config["Origins"]["Items"][0]["OriginAccessControlId"] == "OAC1"
        assert config["DefaultCacheBehavior"]["ViewerProtocolPolicy"] == "redirect-to-https"
        assert config["ViewerCertificate"]["CloudFrontDefaultCertificate"] is True

    def test_aliases_and_certificate(self):
        config = payloads.distribution_config(
            "site",
            "ref-1",
            {"aliases": ["www.example.com"], "certificate_arn": "arn:cert"},
        )
        assert config["Aliases"] == {"Quantity": 1, "Items": ["www.example.com"]}
        assert config["ViewerCertificate"]["ACMCertificateArn"] == "arn:cert"
        assert config["ViewerCertificate"]["SSLSupportMethod"] == "sni-only"

    def test_update_keeps_undeclared_fields(self):
        live = payloads.distribution_config("site", "ref-1", {})
        live["Logging"] = {"Enabled": True, "Bucket": "logs", "Prefix": "", "IncludeCookies": False}

        updated = payloads.apply_distribution_attributes(live, {"web_acl_id": "arn:acl"})

        assert updated["WebACLId"] == "arn:acl"
        assert updated["Logging"]["Enabled"] is True
        assert "WebACLId" not in live

    def test_unknown_attribute_rejected(self):
        with pytest.raises(ValueError, match="colour"):
            payloads.apply_distribution_attributes({}, {"colour": "blue"})

    def test_attributes_read_back(self):
        config = payloads.distribution_config("site", "ref-1", {"default_ttl": 60, "enabled": False})
        attrs = payloads.distribution_attributes(config)
        assert attrs["origin_domain"] == "site.s3.amazonaws.com"
        assert attrs["default_ttl"] == 60
        assert attrs["enabled"] is False
        assert attrs["aliases"] == []
        assert attrs["certificate_arn"] is None
        assert attrs["web_acl_id"] == ""


class TestWafPayloads:
    def test_ip_set_addresses_dedupe_and_normalize(self):
        assert payloads.ip_set_addresses(["10.0.0.1/16", "10.0.0.0/16", "1.2.3.4/32"]) == [
            "10.0.0.0/16",
            "1.2.3.4/32",
        ]

    def test_ip_set_rejects_ipv6(self):
        with pytest.raises(ValueError, match="IPv4"):
            payloads.ip_set_addresses(["2001:db8::/64"])

    def test_web_acl_blocks_by_default(self):
        body = payloads.web_acl_body("RestrictToVPC", ["arn:ipset"], "allow")
        assert body["DefaultAction"] == {"Block": {}}
        assert body["Scope"] == "CLOUDFRONT"
        assert body["Rules"][0]["Action"] == {"Allow": {}}
        assert payloads.web_acl_attributes(body) == {
            "default_action": "block",
            "ip_set_arns": ["arn:ipset"],
        }


class TestRoute53Payloads:
    def test_alias_record_set(self):
        rrset = payloads.record_set(
            "www.example.com", "A", payloads.alias_attributes("d1.cloudfront.net.")
        )
        assert rrset["Name"] == "www.example.com."
        assert rrset["AliasTarget"] == {
            "HostedZoneId": payloads.CLOUDFRONT_HOSTED_ZONE_ID,
            "DNSName": "d1.cloudfront.net",
            "EvaluateTargetHealth": False,
        }
        assert payloads.record_attributes(rrset)["alias_target"] == "d1.cloudfront.net"

    def test_value_record_set(self):
        rrset = payloads.record_set("_a.example.com", "CNAME", {"ttl": 60, "values": ["_b"]})
        assert rrset["TTL"] == 60
        assert rrset["ResourceRecords"] == [{"Value": "_b"}]
        assert payloads.record_attributes(rrset) == {"ttl": 60, "values": ["_b"]}

    def test_bare_name_lowercases_and_strips_dot(self):
        assert payloads.bare("WWW.Example.com.") == "www.example.com"


class TestAcmPayloads:
    def test_idempotency_token_is_word_characters(self):
        token = payloads.idempotency_token("a-very-long.subdomain.of.example.com")
        assert token.isalnum()
        assert len(token) <= 32
