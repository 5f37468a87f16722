"""The site provisioning pipeline.

Steps, in declaration order:

``bucket`` → ``origin-access`` → ``certificate`` (read-only, only with an
alternate domain) → ``distribution`` → ``bucket-policy`` → ``firewall`` →
``dns-alias`` (only with a ``dns`` section).

Each step reconciles its resources and publishes outputs that later steps
consume (origin domain, distribution id / ARN / domain ...).
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from private_site.config.models import SiteConfig
from private_site.errors import ProvisioningError
from private_site.provisioning.access import AccessController
from private_site.provisioning.convergence import await_status
from private_site.provisioning.pipeline import (
    PipelineStep,
    ProvisioningRun,
    RunContext,
    RunResult,
)
from private_site.provisioning.reconcile import Reconciler
from private_site.resources.aws import payloads
from private_site.resources.aws.acm import ISSUED
from private_site.resources.aws.cloudfront import DEPLOYED
from private_site.resources.aws.route53 import INSYNC
from private_site.resources.base import ResourceKind, ResourceSpec, ResourceState, Status

logger = structlog.get_logger()


def bucket_spec(config: SiteConfig) -> ResourceSpec:
    attributes: dict[str, Any] = {"region": config.identities.region}
    if config.bucket.block_public_access:
        attributes["public_access_block"] = payloads.public_access_block(True)
    return ResourceSpec(ResourceKind.BUCKET, config.bucket.name, attributes)


def origin_access_spec(config: SiteConfig) -> ResourceSpec:
    name = config.origin_access_name
    return ResourceSpec(
        ResourceKind.ORIGIN_ACCESS,
        name,
        payloads.origin_access_control_attributes(payloads.origin_access_control_config(name)),
    )


def distribution_spec(
    config: SiteConfig,
    *,
    origin_access_control_id: str,
    certificate_arn: str | None = None,
) -> ResourceSpec:
    dist = config.distribution
    bucket = config.bucket.name
    alt = dist.alt_domain
    return ResourceSpec(
        ResourceKind.DISTRIBUTION,
        payloads.origin_domain(bucket),
        {
            "origin_access_control_id": origin_access_control_id,
            "aliases": [alt.lower()] if alt else [],
            "certificate_arn": certificate_arn if alt else None,
            "default_root_object": dist.default_root_object,
            "min_ttl": dist.min_ttl,
            "default_ttl": dist.default_ttl,
            "max_ttl": dist.max_ttl,
            "price_class": dist.price_class,
            "comment": dist.comment or f"CloudFront Distribution for {bucket}",
            "enabled": True,
        },
    )


def alias_spec(domain: str, distribution_domain: str) -> ResourceSpec:
    return ResourceSpec(
        ResourceKind.DNS_RECORD, domain, payloads.alias_attributes(distribution_domain)
    )


def await_distribution(
    api: Any,
    state: ResourceState,
    config: SiteConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ResourceState:
    if state.status == DEPLOYED or not config.wait_for_deployment:
        return state
    return await_status(
        api, state.ref, DEPLOYED, config.polling.distribution, key=state.key, sleep=sleep
    )


def reconcile_alias(
    api: Any,
    domain: str,
    distribution_domain: str,
    config: SiteConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ResourceState:
    """Point *domain* at a distribution and wait for Route 53 to sync."""
    state = Reconciler(api).reconcile(alias_spec(domain, distribution_domain))
    if state.status != Status.PENDING:
        return state
    await_status(api, state.ref, INSYNC, config.polling.dns, key=domain, sleep=sleep)
    return state


class SiteProvisioner:
    """Builds and runs the provisioning pipeline for one :class:`SiteConfig`.

    *apis* supplies one Resource API per kind (``bucket``,
    ``origin_access``, ``distribution``, ``bucket_policy``, ``ip_set``,
    ``web_acl``, ``certificate``, ``dns_record``); see
    :class:`~private_site.resources.aws.factory.AwsSiteApis`.
    """

    def __init__(
        self,
        config: SiteConfig,
        apis: Any,
        *,
        extra_cidrs: list[str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._apis = apis
        self._extra_cidrs = list(extra_cidrs or [])
        self._sleep = sleep
        self._access = AccessController(config, apis, sleep=sleep)

    @property
    def config(self) -> SiteConfig:
        return self._config

    # -- step actions -------------------------------------------------------------

    def _bucket(self, ctx: RunContext) -> Mapping[str, Any]:
        return Reconciler(self._apis.bucket).reconcile(bucket_spec(self._config)).outputs

    def _origin_access(self, ctx: RunContext) -> Mapping[str, Any]:
        spec = origin_access_spec(self._config)
        return Reconciler(self._apis.origin_access).reconcile(spec).outputs

    def _certificate(self, ctx: RunContext) -> Mapping[str, Any]:
        dist = self._config.distribution
        key = dist.certificate_arn or str(dist.alt_domain)
        # Certificates are issued by the `certificate` command; here they are shared.
        state = Reconciler(self._apis.certificate).reconcile(
            ResourceSpec(ResourceKind.CERTIFICATE, key, managed=False)
        )
        if state.status != ISSUED:
            msg = f"Certificate {key} is {state.status}, not {ISSUED}"
            raise ProvisioningError(msg, kind=ResourceKind.CERTIFICATE, key=key)
        return {"certificate_arn": state.ref}

    def _distribution(self, ctx: RunContext) -> Mapping[str, Any]:
        spec = distribution_spec(
            self._config,
            origin_access_control_id=ctx.require("origin_access_control_id"),
            certificate_arn=ctx.get("certificate_arn"),
        )
        state = Reconciler(self._apis.distribution).reconcile(spec)
        state = await_distribution(
            self._apis.distribution, state, self._config, sleep=self._sleep
        )
        return state.outputs

    def _networks(self) -> list[str]:
        cidrs = [*self._config.access.networks, *self._extra_cidrs]
        tag = self._config.access.nat_gateway_tag
        if tag:
            nat_ips = self._apis.nat_gateway_ips(tag)
            logger.info("access.nat_gateway_ips", environment=tag, cidrs=nat_ips)
            cidrs.extend(nat_ips)
        return cidrs

    def _bucket_policy(self, ctx: RunContext) -> Mapping[str, Any]:
        plan = self._access.plan(self._networks(), self._config.access.vpc_ids)
        state = self._access.apply_bucket_policy(plan, ctx.require("distribution_arn"))
        return {"bucket_policy_version": state.version, "access_plan": plan}

    def _firewall(self, ctx: RunContext) -> Mapping[str, Any]:
        return {"web_acl_arn": self._access.apply_firewall(ctx.require("access_plan"))}

    def _dns_alias(self, ctx: RunContext) -> Mapping[str, Any]:
        if self._config.dns is None:
            msg = "The dns-alias step needs a 'dns' section (domain and zone_domain)"
            raise ValueError(msg)
        domain = self._config.dns.domain
        reconcile_alias(
            self._apis.dns_record,
            domain,
            ctx.require("distribution_domain"),
            self._config,
            sleep=self._sleep,
        )
        return {"alias_record": domain}

    # -- pipeline -----------------------------------------------------------------

    def steps(self) -> list[PipelineStep]:
        cfg = self._config
        origin = payloads.origin_domain(cfg.bucket.name)
        steps = [
            PipelineStep(
                "bucket",
                self._bucket,
                provides=("bucket_name", "bucket_region", "origin_domain"),
                resource_key=cfg.bucket.name,
            ),
            PipelineStep(
                "origin-access",
                self._origin_access,
                provides=("origin_access_control_id",),
                resource_key=cfg.origin_access_name,
            ),
        ]
        distribution_requires: tuple[str, ...] = ("origin_domain", "origin_access_control_id")
        if cfg.distribution.alt_domain:
            steps.append(
                PipelineStep(
                    "certificate",
                    self._certificate,
                    provides=("certificate_arn",),
                    resource_key=cfg.distribution.certificate_arn or cfg.distribution.alt_domain,
                )
            )
            distribution_requires += ("certificate_arn",)
        steps += [
            PipelineStep(
                "distribution",
                self._distribution,
                requires=distribution_requires,
                provides=("distribution_id", "distribution_arn", "distribution_domain"),
                resource_key=origin,
            ),
            PipelineStep(
                "bucket-policy",
                self._bucket_policy,
                requires=("bucket_name", "distribution_arn"),
                provides=("bucket_policy_version", "access_plan"),
                resource_key=cfg.bucket.name,
            ),
            PipelineStep(
                "firewall",
                self._firewall,
                requires=("distribution_id", "access_plan"),
                provides=("web_acl_arn",),
                resource_key=cfg.access.web_acl_name,
            ),
        ]
        if cfg.dns is not None:
            steps.append(
                PipelineStep(
                    "dns-alias",
                    self._dns_alias,
                    requires=("distribution_domain",),
                    provides=("alias_record",),
                    resource_key=cfg.dns.domain,
                )
            )
        return steps

    def run(self, outputs: Mapping[str, Any] | None = None) -> RunResult:
        run = ProvisioningRun(f"provision:{self._config.bucket.name}", self.steps(), outputs=outputs)
        return run.execute()


def alias_run(
    config: SiteConfig,
    apis: Any,
    *,
    distribution_id: str | None = None,
    name_tag: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisioningRun:
    """A run that points the configured domain at an existing distribution.

    The distribution is addressed by id, by its ``Name`` tag, or failing
    both by the configured bucket's origin domain.
    """
    if config.dns is None:
        msg = "The alias command needs a 'dns' section (domain and zone_domain)"
        raise ValueError(msg)
    domain = config.dns.domain
    distributions = apis.distribution

    def _find(ctx: RunContext) -> Mapping[str, Any]:
        if distribution_id:
            state = distributions.describe(distribution_id)
        elif name_tag:
            state = distributions.describe(distributions.find_id_by_tag(name_tag))
        else:
            state = distributions.get(payloads.origin_domain(config.bucket.name))
        logger.info(
            "distribution.found",
            id=state.ref,
            domain=state.outputs.get("distribution_domain"),
        )
        return state.outputs

    def _alias(ctx: RunContext) -> Mapping[str, Any]:
        reconcile_alias(
            apis.dns_record, domain, ctx.require("distribution_domain"), config, sleep=sleep
        )
        return {"alias_record": domain}

    return ProvisioningRun(
        f"alias:{domain}",
        [
            PipelineStep(
                "find-distribution",
                _find,
                provides=("distribution_id", "distribution_domain"),
                resource_key=distribution_id or name_tag or config.bucket.name,
            ),
            PipelineStep(
                "dns-alias",
                _alias,
                requires=("distribution_domain",),
                provides=("alias_record",),
                resource_key=domain,
            ),
        ],
    )
