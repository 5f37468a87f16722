"""Observed-state probes for every resource a site is built from."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from private_site.config.models import AccessStrategy, SiteConfig
from private_site.errors import ResourceNotFound
from private_site.resources.aws import payloads
from private_site.resources.base import ResourceKind, ResourceState, Status

logger = structlog.get_logger()


@dataclass
class ResourceStatus:
    kind: str
    key: str
    status: str = Status.ABSENT
    ref: str | None = None
    detail: str = ""

    @property
    def present(self) -> bool:
        return self.status not in (Status.ABSENT, Status.ERROR)


@dataclass
class SiteStatus:
    resources: list[ResourceStatus] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(r.present for r in self.resources)

    @property
    def summary(self) -> dict[str, str]:
        return {f"{r.kind}:{r.key}": str(r.status) for r in self.resources}


def probe(kind: str, key: str, read: Callable[[], ResourceState]) -> ResourceStatus:
    """Read one resource, reporting absence and failures instead of raising."""
    try:
        state = read()
    except ResourceNotFound:
        return ResourceStatus(kind=kind, key=key, status=Status.ABSENT)
    except Exception as exc:
        logger.warning("status.probe_failed", kind=kind, key=key, error=str(exc))
        return ResourceStatus(kind=kind, key=key, status=Status.ERROR, detail=str(exc))
    return ResourceStatus(
        kind=kind,
        key=key,
        status=str(state.status),
        ref=state.ref,
        detail=_detail(state),
    )


def _detail(state: ResourceState) -> str:
    if state.kind == ResourceKind.DISTRIBUTION:
        acl = state.attributes.get("web_acl_id") or "none"
        return f"{state.outputs.get('distribution_domain')} (web ACL: {acl})"
    if state.kind == ResourceKind.IP_SET:
        return ", ".join(state.attributes.get("addresses", []))
    if state.kind == ResourceKind.BUCKET_POLICY:
        try:
            cidrs, vpcs = payloads.allowed_sources(state.attributes.get("document", {}))
        except payloads.UnreadablePolicyError as exc:
            return f"unrecognised conditions ({exc})"
        return ", ".join([*cidrs, *vpcs]) or "CloudFront only"
    if state.kind == ResourceKind.DNS_RECORD:
        return str(state.attributes.get("alias_target", ""))
    if state.kind == ResourceKind.BUCKET:
        return str(state.attributes.get("region", ""))
    return ""


def check_site_status(config: SiteConfig, apis: Any) -> SiteStatus:
    """Probe every resource of the site and return the aggregated result."""
    bucket = config.bucket.name
    origin = payloads.origin_domain(bucket)
    probes: list[tuple[str, str, Callable[[], ResourceState]]] = [
        (ResourceKind.BUCKET, bucket, lambda: apis.bucket.get(bucket)),
        (
            ResourceKind.ORIGIN_ACCESS,
            config.origin_access_name,
            lambda: apis.origin_access.get(config.origin_access_name),
        ),
        (ResourceKind.DISTRIBUTION, origin, lambda: apis.distribution.get(origin)),
        (ResourceKind.BUCKET_POLICY, bucket, lambda: apis.bucket_policy.get(bucket)),
    ]
    if config.access.strategy == AccessStrategy.WAF:
        ip_set = config.access.ip_set_name
        web_acl = config.access.web_acl_name
        probes += [
            (ResourceKind.IP_SET, ip_set, lambda: apis.ip_set.get(ip_set)),
            (ResourceKind.WEB_ACL, web_acl, lambda: apis.web_acl.get(web_acl)),
        ]
    if config.dns is not None:
        domain = config.dns.domain
        probes.append((ResourceKind.DNS_RECORD, domain, lambda: apis.dns_record.get(domain)))
    if config.certificate is not None:
        cert = config.certificate.domain
        probes.append((ResourceKind.CERTIFICATE, cert, lambda: apis.certificate.get(cert)))

    return SiteStatus(resources=[probe(str(kind), key, read) for kind, key, read in probes])
