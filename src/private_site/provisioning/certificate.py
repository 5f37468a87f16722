"""ACM certificate issuance with DNS validation.

The certificate moves ``absent → requested → pending-validation →
issued`` (or ends ``failed`` / timed out).  The validation CNAME is
written with the DNS identity, which may belong to a different account
than the certificate.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from private_site.config.models import CertificateConfig, SiteConfig
from private_site.errors import ConvergenceTimeout, TerminalRemoteError
from private_site.provisioning.convergence import await_status
from private_site.provisioning.pipeline import (
    PipelineStep,
    ProvisioningRun,
    RunContext,
    RunResult,
)
from private_site.provisioning.reconcile import Reconciler
from private_site.resources.aws.acm import ISSUED, TERMINAL_STATUSES
from private_site.resources.base import ResourceKind, ResourceSpec, ResourceState

logger = structlog.get_logger()


def certificate_spec(cert: CertificateConfig) -> ResourceSpec:
    return ResourceSpec(
        ResourceKind.CERTIFICATE,
        cert.domain,
        {"domain": cert.domain, "validation_method": "DNS"},
    )


def validation_record_spec(record: Mapping[str, str], ttl: int) -> ResourceSpec:
    return ResourceSpec(
        ResourceKind.DNS_RECORD, record["name"], {"ttl": ttl, "values": [record["value"]]}
    )


class CertificateIssuer:
    """Requests, validates and waits for the site certificate."""

    def __init__(
        self,
        config: SiteConfig,
        apis: Any,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if config.certificate is None:
            msg = "Certificate issuance needs a 'certificate' section"
            raise ValueError(msg)
        self._config = config
        self._cert: CertificateConfig = config.certificate
        self._apis = apis
        self._sleep = sleep

    def _request(self, ctx: RunContext) -> Mapping[str, Any]:
        state = Reconciler(self._apis.certificate).reconcile(certificate_spec(self._cert))
        if state.status in TERMINAL_STATUSES:
            msg = f"Certificate for {self._cert.domain} is {state.status}"
            raise TerminalRemoteError(
                msg, kind=ResourceKind.CERTIFICATE, key=self._cert.domain, status=state.status
            )
        logger.info(
            "certificate.pending_validation"
            if state.status != ISSUED
            else "certificate.already_issued",
            domain=self._cert.domain,
            arn=state.ref,
        )
        return {"certificate_arn": state.ref, "certificate_status": state.status}

    def _await_validation_record(self, arn: str) -> dict[str, str]:
        """ACM assigns the validation record a few seconds after the request."""
        policy = self._config.polling.certificate

        def _read() -> ResourceState:
            return self._apis.certificate.describe(arn, self._cert.domain)

        def _timed_out(retry_state: RetryCallState) -> ResourceState:
            msg = (
                f"ACM did not publish a validation record for {self._cert.domain}; "
                "check it manually"
            )
            raise ConvergenceTimeout(
                msg,
                kind=ResourceKind.CERTIFICATE,
                key=self._cert.domain,
                target_status="validation-record",
                last_status=retry_state.outcome.result().status if retry_state.outcome else None,
                attempts=retry_state.attempt_number,
            )

        retryer = Retrying(
            retry=retry_if_result(lambda s: not s.outputs.get("validation_record")),
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_fixed(policy.interval_seconds),
            retry_error_callback=_timed_out,
            sleep=self._sleep,
        )
        state = retryer(_read)
        return dict(state.outputs["validation_record"])

    def _validation_record(self, ctx: RunContext) -> Mapping[str, Any]:
        if ctx.require("certificate_status") == ISSUED:
            return {"validation_record": None}
        record = self._await_validation_record(ctx.require("certificate_arn"))
        Reconciler(self._apis.validation_record).reconcile(
            validation_record_spec(record, self._cert.validation_ttl)
        )
        logger.info("certificate.validation_record", domain=self._cert.domain, record=record["name"])
        return {"validation_record": record["name"]}

    def _issued(self, ctx: RunContext) -> Mapping[str, Any]:
        arn = ctx.require("certificate_arn")
        if ctx.require("certificate_status") != ISSUED:
            await_status(
                self._apis.certificate,
                arn,
                ISSUED,
                self._config.polling.certificate,
                terminal_statuses=TERMINAL_STATUSES,
                key=self._cert.domain,
                sleep=self._sleep,
            )
        logger.info("certificate.issued", domain=self._cert.domain, arn=arn)
        return {"certificate_status": ISSUED, "certificate_issued": True}

    def steps(self) -> list[PipelineStep]:
        domain = self._cert.domain
        return [
            PipelineStep(
                "certificate-request",
                self._request,
                provides=("certificate_arn", "certificate_status"),
                resource_key=domain,
            ),
            PipelineStep(
                "validation-record",
                self._validation_record,
                requires=("certificate_arn", "certificate_status"),
                provides=("validation_record",),
                resource_key=domain,
            ),
            PipelineStep(
                "certificate-issued",
                self._issued,
                requires=("certificate_arn", "validation_record"),
                provides=("certificate_issued",),
                resource_key=domain,
            ),
        ]

    def run(self) -> RunResult:
        return ProvisioningRun(f"certificate:{self._cert.domain}", self.steps()).execute()
