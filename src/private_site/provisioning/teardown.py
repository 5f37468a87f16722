"""Teardown: disable and delete the distribution, the alias, optionally the bucket.

Every stage tolerates a resource that is already gone, so an interrupted
teardown can simply be run again.  Nothing is ever created here.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from private_site.config.models import SiteConfig
from private_site.errors import ResourceNotFound
from private_site.provisioning.convergence import await_status
from private_site.provisioning.pipeline import (
    PipelineStep,
    ProvisioningRun,
    RunContext,
    RunResult,
)
from private_site.provisioning.reconcile import Reconciler
from private_site.resources.aws import payloads
from private_site.resources.aws.cloudfront import DEPLOYED
from private_site.resources.base import ResourceKind, ResourceSpec, ResourceState

logger = structlog.get_logger()


class SiteTeardown:
    """Builds and runs the teardown pipeline for one :class:`SiteConfig`."""

    def __init__(
        self,
        config: SiteConfig,
        apis: Any,
        *,
        delete_bucket: bool = False,
        distribution_id: str | None = None,
        name_tag: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._apis = apis
        self._delete_bucket = delete_bucket
        self._distribution_id = distribution_id
        self._name_tag = name_tag
        self._sleep = sleep
        self._origin = payloads.origin_domain(config.bucket.name)

    @property
    def distribution_label(self) -> str:
        return self._distribution_id or self._name_tag or self._origin

    def _find_distribution(self) -> ResourceState:
        """Locate the distribution by id, by ``Name`` tag, or by the bucket origin."""
        api = self._apis.distribution
        if self._distribution_id:
            return api.describe(self._distribution_id)
        if self._name_tag:
            return api.describe(api.find_id_by_tag(self._name_tag))
        return api.get(self._origin)

    def _disable_distribution(self, ctx: RunContext) -> Mapping[str, Any]:
        api = self._apis.distribution
        try:
            found = self._find_distribution()
            state = Reconciler(api, create_missing=False).reconcile(
                ResourceSpec(ResourceKind.DISTRIBUTION, found.key, {"enabled": False})
            )
        except ResourceNotFound:
            logger.info("distribution.already_absent", key=self.distribution_label)
            return {
                "distribution_disabled": True,
                "distribution_id": None,
                "distribution_origin": None,
            }
        if state.status != DEPLOYED:
            await_status(
                api,
                state.ref,
                DEPLOYED,
                self._config.polling.distribution,
                key=state.key,
                sleep=self._sleep,
            )
        logger.info("distribution.disabled", key=state.key, id=state.ref)
        return {
            "distribution_disabled": True,
            "distribution_id": state.ref,
            "distribution_origin": state.key,
        }

    def _delete_distribution(self, ctx: RunContext) -> Mapping[str, Any]:
        origin = ctx.get("distribution_origin")
        if origin is None:
            return {"distribution_deleted": True}
        try:
            # Disabling changed the ETag; delete_distribution needs the fresh one.
            self._apis.distribution.delete(origin)
        except ResourceNotFound:
            logger.info("distribution.already_absent", key=origin)
        else:
            logger.info("distribution.deleted", key=origin, id=ctx.get("distribution_id"))
        return {"distribution_deleted": True}

    def _remove_bucket(self, ctx: RunContext) -> Mapping[str, Any]:
        bucket = self._config.bucket.name
        api = self._apis.bucket
        try:
            # Refuses a non-empty bucket; content is never deleted here.
            api.delete(bucket)
        except ResourceNotFound:
            logger.info("bucket.already_absent", key=bucket)
        else:
            logger.info("bucket.deleted", key=bucket)
        return {"bucket_deleted": True}

    def _delete_alias(self, ctx: RunContext) -> Mapping[str, Any]:
        if self._config.dns is None:
            msg = "Deleting the alias needs a 'dns' section (domain and zone_domain)"
            raise ValueError(msg)
        domain = self._config.dns.domain
        try:
            self._apis.dns_record.delete(domain)
        except ResourceNotFound:
            logger.info("dns-record.already_absent", key=domain)
        else:
            logger.info("dns-record.deleted", key=domain)
        return {"alias_deleted": True}

    def steps(self) -> list[PipelineStep]:
        steps = [
            PipelineStep(
                "disable-distribution",
                self._disable_distribution,
                provides=("distribution_disabled",),
                resource_key=self.distribution_label,
            ),
            PipelineStep(
                "delete-distribution",
                self._delete_distribution,
                requires=("distribution_disabled",),
                provides=("distribution_deleted",),
                resource_key=self.distribution_label,
            ),
        ]
        if self._delete_bucket:
            steps.append(
                PipelineStep(
                    "delete-bucket",
                    self._remove_bucket,
                    requires=("distribution_deleted",),
                    provides=("bucket_deleted",),
                    resource_key=self._config.bucket.name,
                )
            )
        if self._config.dns is not None:
            steps.append(
                PipelineStep(
                    "delete-alias",
                    self._delete_alias,
                    provides=("alias_deleted",),
                    resource_key=self._config.dns.domain,
                )
            )
        return steps

    def run(self) -> RunResult:
        return ProvisioningRun(f"teardown:{self._config.bucket.name}", self.steps()).execute()
