"""Access restriction: WAF allow-list or bucket-policy conditions.

Exactly one mechanism is active for a site.  With the ``waf`` strategy an
IP-set and a default-block web ACL are attached to the distribution and
the bucket policy carries only the CloudFront statement.  With the
``bucket-policy`` strategy the bucket policy allows the listed networks
and VPCs and denies every other caller, CloudFront included, so the site
is read from the bucket directly; any web ACL is detached.  That strategy
works on a bucket with no distribution at all.
"""

from __future__ import annotations

import ipaddress
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from private_site.config.models import AccessStrategy, SiteConfig, normalize_cidr
from private_site.errors import LockoutError, ProvisioningError, ResourceNotFound
from private_site.provisioning.convergence import await_status
from private_site.provisioning.reconcile import Action, Reconciler
from private_site.resources.aws import payloads
from private_site.resources.aws.cloudfront import DEPLOYED
from private_site.resources.aws.waf import AVAILABLE
from private_site.resources.base import ResourceKind, ResourceSpec, ResourceState

logger = structlog.get_logger()


def _merge(*groups: Iterable[str]) -> list[str]:
    merged: list[str] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return merged


def check_operator_access(cidrs: Iterable[str], operator_cidrs: Iterable[str]) -> None:
    """Raise :class:`LockoutError` unless every operator network stays allowed."""
    allowed = [ipaddress.ip_network(c, strict=False) for c in cidrs]
    missing = []
    for op in operator_cidrs:
        network = ipaddress.ip_network(op, strict=False)
        if not any(
            network.version == a.version and network.subnet_of(a)  # type: ignore[arg-type]
            for a in allowed
        ):
            missing.append(op)
    if missing:
        msg = (
            f"Refusing a restriction that would lock out operator network(s) {missing}; "
            "include them in the allowed networks"
        )
        raise LockoutError(msg, kind=ResourceKind.IP_SET)


@dataclass
class AccessPlan:
    """The restriction about to be applied (or printed on a dry run)."""

    strategy: AccessStrategy
    cidrs: list[str] = field(default_factory=list)
    vpc_ids: list[str] = field(default_factory=list)
    policy: dict[str, Any] | None = None

    def describe(self) -> dict[str, Any]:
        described: dict[str, Any] = {
            "strategy": self.strategy.value,
            "cidrs": self.cidrs,
            "vpc_ids": self.vpc_ids,
        }
        if self.policy is not None:
            described["policy"] = self.policy
        return described


class AccessController:
    """Reads, plans and applies the site's access restriction."""

    def __init__(
        self,
        config: SiteConfig,
        apis: Any,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._apis = apis
        self._sleep = sleep
        self._access = config.access

    @property
    def bucket(self) -> str:
        return self._config.bucket.name

    @property
    def origin_domain(self) -> str:
        return payloads.origin_domain(self.bucket)

    def current(self) -> tuple[list[str], list[str]]:
        """``(cidrs, vpc_ids)`` the active mechanism allows right now."""
        try:
            if self._access.strategy == AccessStrategy.WAF:
                state = self._apis.ip_set.get(self._access.ip_set_name)
                return list(state.attributes.get("addresses", [])), []
            state = self._apis.bucket_policy.get(self.bucket)
        except ResourceNotFound:
            return [], []
        try:
            return payloads.allowed_sources(state.attributes["document"])
        except payloads.UnreadablePolicyError as exc:
            msg = (
                f"Cannot read the allow-list of the current policy on {self.bucket} ({exc}); "
                "widening it could drop access, use lock to replace it"
            )
            raise LockoutError(msg, kind=ResourceKind.BUCKET_POLICY, key=self.bucket) from exc

    def plan(self, cidrs: Iterable[str], vpc_ids: Iterable[str] = ()) -> AccessPlan:
        cidrs = _merge(normalize_cidr(c) for c in cidrs)
        vpc_ids = _merge(vpc_ids)
        check_operator_access(cidrs, self._access.operator_cidrs)

        if self._access.strategy == AccessStrategy.WAF:
            if vpc_ids:
                msg = "The waf strategy matches source IPs only; use bucket-policy for VPC ids"
                raise ProvisioningError(msg, kind=ResourceKind.IP_SET)
            if not cidrs:
                msg = "The waf strategy needs at least one allowed network"
                raise ProvisioningError(msg, kind=ResourceKind.IP_SET)
            payloads.ip_set_addresses(cidrs)
            return AccessPlan(AccessStrategy.WAF, cidrs=cidrs)

        if not cidrs and not vpc_ids:
            msg = "The bucket-policy strategy needs at least one allowed network or VPC id"
            raise ProvisioningError(msg, kind=ResourceKind.BUCKET_POLICY, key=self.bucket)
        policy = payloads.bucket_policy(self.bucket, cidrs=cidrs, vpc_ids=vpc_ids)
        return AccessPlan(
            AccessStrategy.BUCKET_POLICY, cidrs=cidrs, vpc_ids=vpc_ids, policy=policy
        )

    def _distribution(self) -> ResourceState:
        return self._apis.distribution.get(self.origin_domain)

    # -- appliers -----------------------------------------------------------------

    def apply_bucket_policy(
        self, plan: AccessPlan, distribution_arn: str | None = None
    ) -> ResourceState:
        """Reconcile the bucket policy for *plan*.

        Under the waf strategy the policy holds only the CloudFront statement
        for *distribution_arn*.
        """
        if plan.policy is not None:
            document = plan.policy
        elif distribution_arn:
            document = payloads.bucket_policy(self.bucket, distribution_arn=distribution_arn)
        else:
            msg = "The waf strategy needs the distribution ARN for the bucket policy"
            raise ProvisioningError(msg, kind=ResourceKind.BUCKET_POLICY, key=self.bucket)
        spec = ResourceSpec(ResourceKind.BUCKET_POLICY, self.bucket, {"document": document})
        return Reconciler(self._apis.bucket_policy).reconcile(spec)

    def apply_firewall(self, plan: AccessPlan) -> str:
        """Ensure the web ACL is attached (waf) or detached (bucket-policy).

        Returns the ARN of the attached web ACL, or ``""`` when none is.
        Detaching from a distribution that does not exist is a no-op.
        """
        if plan.strategy == AccessStrategy.WAF:
            web_acl_arn = self._ensure_web_acl(plan.cidrs)
            self._attach(web_acl_arn)
            return web_acl_arn
        try:
            self._attach("")
        except ResourceNotFound:
            logger.info("distribution.absent", key=self.origin_domain)
        return ""

    def _ensure_web_acl(self, cidrs: list[str]) -> str:
        polling = self._config.polling.firewall
        ip_sets = Reconciler(self._apis.ip_set)
        ip_set = ip_sets.reconcile(
            ResourceSpec(ResourceKind.IP_SET, self._access.ip_set_name, {"addresses": cidrs})
        )
        if ip_sets.last_action == Action.CREATED and ip_set.status != AVAILABLE:
            ip_set = await_status(
                self._apis.ip_set,
                ip_set.ref,
                AVAILABLE,
                polling,
                key=self._access.ip_set_name,
                sleep=self._sleep,
            )

        web_acl = Reconciler(self._apis.web_acl).reconcile(
            ResourceSpec(
                ResourceKind.WEB_ACL,
                self._access.web_acl_name,
                {"default_action": "block", "ip_set_arns": [ip_set.ref]},
            )
        )
        return web_acl.outputs.get("web_acl_arn") or web_acl.ref

    def _attach(self, web_acl_arn: str) -> None:
        spec = ResourceSpec(
            ResourceKind.DISTRIBUTION, self.origin_domain, {"web_acl_id": web_acl_arn}
        )
        distributions = Reconciler(self._apis.distribution, create_missing=False)
        state = distributions.reconcile(spec)
        if distributions.last_action != Action.UPDATED:
            return
        logger.info(
            "distribution.web_acl_attached" if web_acl_arn else "distribution.web_acl_detached",
            key=self.origin_domain,
            web_acl=web_acl_arn or None,
        )
        if self._config.wait_for_deployment and state.status != DEPLOYED:
            await_status(
                self._apis.distribution,
                state.ref,
                DEPLOYED,
                self._config.polling.distribution,
                key=self.origin_domain,
                sleep=self._sleep,
            )

    def apply(self, plan: AccessPlan) -> None:
        distribution_arn = None
        if plan.strategy == AccessStrategy.WAF:
            distribution_arn = self._distribution().outputs["distribution_arn"]
        self.apply_bucket_policy(plan, distribution_arn)
        self.apply_firewall(plan)

    # -- counter-operations -------------------------------------------------------

    def unlock(
        self,
        cidrs: Iterable[str],
        vpc_ids: Iterable[str] = (),
        *,
        dry_run: bool = False,
    ) -> AccessPlan:
        """Widen the restriction to the union of what is allowed and *cidrs*."""
        current_cidrs, current_vpcs = self.current()
        plan = self.plan(
            _merge(current_cidrs, (normalize_cidr(c) for c in cidrs)),
            _merge(current_vpcs, vpc_ids),
        )
        logger.info("access.unlock", dry_run=dry_run, **plan.describe())
        if not dry_run:
            self.apply(plan)
        return plan

    def lock(
        self,
        cidrs: Iterable[str],
        vpc_ids: Iterable[str] = (),
        *,
        dry_run: bool = False,
    ) -> AccessPlan:
        """Replace the restriction with exactly *cidrs* / *vpc_ids*."""
        plan = self.plan(cidrs, vpc_ids)
        logger.info("access.lock", dry_run=dry_run, **plan.describe())
        if not dry_run:
            self.apply(plan)
        return plan
