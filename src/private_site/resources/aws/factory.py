"""Factory for the Resource APIs a site is built from."""

from __future__ import annotations

from functools import cached_property
from typing import Any

from private_site.config.models import GLOBAL_REGION, SiteConfig
from private_site.resources.aws.acm import CertificateApi
from private_site.resources.aws.cloudfront import DistributionApi, OriginAccessApi
from private_site.resources.aws.ec2 import nat_gateway_public_ips
from private_site.resources.aws.route53 import DnsRecordApi, find_hosted_zone_id
from private_site.resources.aws.s3 import BucketApi, BucketPolicyApi
from private_site.resources.aws.session import IdentityRole, Sessions
from private_site.resources.aws.waf import IpSetApi, WebAclApi


class AwsSiteApis:
    """Lazily builds one Resource API per kind, each bound to its identity.

    Storage resources use the storage identity in the configured region;
    CloudFront, WAF and ACM are global and always live in us-east-1;
    Route 53 records use the DNS identity.
    """

    def __init__(self, config: SiteConfig, sessions: Sessions | None = None) -> None:
        self._config = config
        self._sessions = sessions or Sessions(config.identities)

    @property
    def sessions(self) -> Sessions:
        return self._sessions

    def _client(self, role: IdentityRole, service: str, region: str | None = None) -> Any:
        return self._sessions.client(role, service, region)

    @cached_property
    def bucket(self) -> BucketApi:
        return BucketApi(
            self._client(IdentityRole.STORAGE, "s3"), self._config.identities.region
        )

    @cached_property
    def bucket_policy(self) -> BucketPolicyApi:
        return BucketPolicyApi(self._client(IdentityRole.STORAGE, "s3"))

    @cached_property
    def origin_access(self) -> OriginAccessApi:
        return OriginAccessApi(self._client(IdentityRole.CDN, "cloudfront", GLOBAL_REGION))

    @cached_property
    def distribution(self) -> DistributionApi:
        return DistributionApi(self._client(IdentityRole.CDN, "cloudfront", GLOBAL_REGION))

    @cached_property
    def ip_set(self) -> IpSetApi:
        return IpSetApi(self._client(IdentityRole.CDN, "wafv2", GLOBAL_REGION))

    @cached_property
    def web_acl(self) -> WebAclApi:
        return WebAclApi(
            self._client(IdentityRole.CDN, "wafv2", GLOBAL_REGION),
            rule_name=f"{self._config.access.web_acl_name}-allow",
        )

    @cached_property
    def certificate(self) -> CertificateApi:
        return CertificateApi(self._client(IdentityRole.CERT, "acm", GLOBAL_REGION))

    @cached_property
    def dns_record(self) -> DnsRecordApi:
        dns = self._config.dns
        if dns is None:
            msg = "This operation needs a 'dns' section (domain and zone_domain)"
            raise ValueError(msg)
        client = self._client(IdentityRole.DNS, "route53", GLOBAL_REGION)
        zone_id = dns.zone_id or find_hosted_zone_id(client, dns.zone_domain, dns.private_zone)
        return DnsRecordApi(client, zone_id, "A")

    @cached_property
    def validation_record(self) -> DnsRecordApi:
        cert = self._config.certificate
        if cert is None:
            msg = "This operation needs a 'certificate' section (domain and zone_domain)"
            raise ValueError(msg)
        client = self._client(IdentityRole.DNS, "route53", GLOBAL_REGION)
        zone_id = cert.zone_id or find_hosted_zone_id(client, cert.zone_domain, False)
        return DnsRecordApi(client, zone_id, "CNAME")

    def nat_gateway_ips(self, environment: str) -> list[str]:
        return nat_gateway_public_ips(self._client(IdentityRole.STORAGE, "ec2"), environment)
