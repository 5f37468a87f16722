"""Pydantic configuration models for a private static site."""

from __future__ import annotations

import ipaddress
import re
from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, field_validator, model_validator

# CloudFront, its WAF scope and the ACM certificates it serves are global
# services homed in us-east-1 regardless of where the bucket lives.
GLOBAL_REGION = "us-east-1"

_BUCKET_NAME = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_DOMAIN_NAME = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-zA-Z0-9-]{1,63}(?<!-)(\.(?!-)[a-zA-Z0-9-]{1,63}(?<!-))+$"
)


def normalize_cidr(value: str) -> str:
    """Return *value* as a network in CIDR notation (bare addresses get /32)."""
    text = value.strip()
    if "/" not in text:
        ipaddress.ip_address(text)
        return f"{text}/32" if ":" not in text else f"{text}/128"
    return str(ipaddress.ip_network(text, strict=False))


def _normalize_cidrs(values: list[str]) -> list[str]:
    seen: list[str] = []
    for v in values:
        try:
            cidr = normalize_cidr(v)
        except ValueError as exc:
            msg = f"'{v}' is not a valid IP address or CIDR block"
            raise ValueError(msg) from exc
        if cidr not in seen:
            seen.append(cidr)
    return seen


class AccessStrategy(StrEnum):
    """How access to the site is restricted."""

    WAF = "waf"
    BUCKET_POLICY = "bucket-policy"


class Identities(BaseModel):
    """Credential selectors for each account boundary the site touches.

    Each identity is an AWS named profile.  Storage and CDN usually live in
    the same account; DNS (Route 53) and the certificate may not.  Unset
    identities fall back along storage → cdn → dns / cert.
    """

    storage_identity: str | None = None
    cdn_identity: str | None = None
    dns_identity: str | None = None
    cert_identity: str | None = None
    region: str = GLOBAL_REGION

    @model_validator(mode="after")
    def fill_fallbacks(self) -> Self:
        if self.cdn_identity is None:
            self.cdn_identity = self.storage_identity
        if self.dns_identity is None:
            self.dns_identity = self.cdn_identity
        if self.cert_identity is None:
            self.cert_identity = self.cdn_identity
        return self


class BucketConfig(BaseModel):
    """Origin bucket settings."""

    name: str
    block_public_access: bool = True

    @field_validator("name")
    @classmethod
    def validate_bucket_name(cls, v: str) -> str:
        if not _BUCKET_NAME.match(v) or ".." in v:
            msg = f"'{v}' is not a valid S3 bucket name"
            raise ValueError(msg)
        return v


class DistributionConfig(BaseModel):
    """CloudFront distribution settings."""

    origin_access_name: str | None = None
    alt_domain: str | None = None
    certificate_arn: str | None = None
    default_root_object: str = "index.html"
    min_ttl: int = Field(default=0, ge=0)
    default_ttl: int = Field(default=86400, ge=0)
    max_ttl: int = Field(default=31536000, ge=0)
    price_class: str = "PriceClass_100"
    comment: str | None = None

    @model_validator(mode="after")
    def check_ttl_bounds(self) -> Self:
        if not self.min_ttl <= self.default_ttl <= self.max_ttl:
            msg = (
                "TTL bounds must satisfy min_ttl <= default_ttl <= max_ttl "
                f"(got {self.min_ttl}, {self.default_ttl}, {self.max_ttl})"
            )
            raise ValueError(msg)
        return self


class AccessConfig(BaseModel):
    """Access-restriction settings (WAF IP allow-list or bucket policy)."""

    strategy: AccessStrategy = AccessStrategy.WAF
    allowed_cidrs: list[str] = Field(default_factory=list)
    # Networks the operator works from; no restriction may exclude them.
    operator_cidrs: list[str] = Field(default_factory=list)
    vpc_ids: list[str] = Field(default_factory=list)
    ip_set_name: str = "AllowVPCOnly"
    web_acl_name: str = "RestrictToVPC"
    # Environment tag of a NAT gateway whose public IP joins the allow-list.
    nat_gateway_tag: str | None = None

    @field_validator("allowed_cidrs", "operator_cidrs")
    @classmethod
    def validate_cidrs(cls, v: list[str]) -> list[str]:
        return _normalize_cidrs(v)

    @field_validator("vpc_ids")
    @classmethod
    def validate_vpc_ids(cls, v: list[str]) -> list[str]:
        for vpc in v:
            if not vpc.startswith("vpc-"):
                msg = f"'{vpc}' is not a VPC id (expected 'vpc-...')"
                raise ValueError(msg)
        return v

    @property
    def networks(self) -> list[str]:
        """Every CIDR that must be allowed: declared networks plus operator's."""
        return _normalize_cidrs([*self.allowed_cidrs, *self.operator_cidrs])


class DnsConfig(BaseModel):
    """Route 53 alias record settings."""

    domain: str
    zone_domain: str
    zone_id: str | None = None
    private_zone: bool | None = None

    @field_validator("domain", "zone_domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.rstrip(".")
        if not _DOMAIN_NAME.match(v):
            msg = f"'{v}' is not a valid domain name"
            raise ValueError(msg)
        return v.lower()

    @model_validator(mode="after")
    def check_domain_in_zone(self) -> Self:
        if self.domain != self.zone_domain and not self.domain.endswith(
            f".{self.zone_domain}"
        ):
            msg = f"domain '{self.domain}' is not inside zone '{self.zone_domain}'"
            raise ValueError(msg)
        return self


class CertificateConfig(BaseModel):
    """ACM certificate request settings."""

    domain: str
    zone_domain: str
    zone_id: str | None = None
    validation_ttl: int = Field(default=300, ge=60)


class PollingConfig(BaseModel):
    """Bound and backoff for one convergence wait."""

    max_attempts: int = Field(default=20, ge=1)
    interval_seconds: float = Field(default=15.0, ge=0)
    backoff: float = Field(default=1.0, ge=1.0)
    max_interval_seconds: float = Field(default=300.0, gt=0)


class PollingSettings(BaseModel):
    """Per-resource polling bounds."""

    distribution: PollingConfig = PollingConfig(max_attempts=40, interval_seconds=15.0)
    certificate: PollingConfig = PollingConfig(max_attempts=20, interval_seconds=10.0)
    firewall: PollingConfig = PollingConfig(max_attempts=12, interval_seconds=5.0)
    dns: PollingConfig = PollingConfig(max_attempts=30, interval_seconds=10.0)


class LoggingConfig(BaseModel):
    """Console logging and the append-only run log."""

    level: str = "info"
    log_dir: str = "logs"
    run_log: bool = True
    latest_link: str | None = "deploy.log"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v = v.lower()
        if v not in {"debug", "info", "warning", "error"}:
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return v


class SiteConfig(BaseModel, extra="forbid"):
    """Everything one provisioning invocation needs."""

    identities: Identities = Identities()
    bucket: BucketConfig
    distribution: DistributionConfig = DistributionConfig()
    access: AccessConfig = AccessConfig()
    dns: DnsConfig | None = None
    certificate: CertificateConfig | None = None
    polling: PollingSettings = PollingSettings()
    logging: LoggingConfig = LoggingConfig()
    wait_for_deployment: bool = True

    @model_validator(mode="after")
    def check_cross_references(self) -> Self:
        alt = self.distribution.alt_domain
        if self.dns is not None and alt is not None and self.dns.domain != alt.lower():
            msg = (
                f"dns.domain '{self.dns.domain}' must match "
                f"distribution.alt_domain '{alt}'"
            )
            raise ValueError(msg)
        return self

    @property
    def origin_access_name(self) -> str:
        return self.distribution.origin_access_name or f"{self.bucket.name}-OAC"
