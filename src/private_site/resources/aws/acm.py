"""ACM certificate Resource API (DNS validation, us-east-1)."""

from __future__ import annotations

from typing import Any

import structlog

from private_site.errors import ProvisioningError, ResourceNotFound
from private_site.resources.aws import payloads
from private_site.resources.aws.errors import translate_errors
from private_site.resources.base import ResourceKind, ResourceSpec, ResourceState

logger = structlog.get_logger()

ISSUED = "ISSUED"
PENDING_VALIDATION = "PENDING_VALIDATION"
TERMINAL_STATUSES = ("FAILED", "VALIDATION_TIMED_OUT", "REVOKED")


def validation_record(certificate: dict[str, Any]) -> dict[str, str] | None:
    """The DNS record ACM wants published, once it has been assigned."""
    for option in certificate.get("DomainValidationOptions") or []:
        record = option.get("ResourceRecord")
        if record:
            return {
                "name": payloads.bare(record["Name"]),
                "type": record["Type"],
                "value": record["Value"],
            }
    return None


class CertificateApi:
    """Certificate for one domain.

    Key: the domain name, or a certificate ARN when an existing
    certificate is shared.  ``ref`` is the ARN; the status is ACM's
    (``PENDING_VALIDATION``, ``ISSUED``, ``FAILED`` ...).  Certificates
    cannot be modified in place, so drift is an error.
    """

    kind = ResourceKind.CERTIFICATE

    def __init__(self, client: Any) -> None:
        self._client = client

    def find_arn(self, domain: str) -> str:
        paginator = self._client.get_paginator("list_certificates")
        with translate_errors(self.kind, domain):
            for page in paginator.paginate(CertificateStatuses=[ISSUED, PENDING_VALIDATION]):
                for summary in page.get("CertificateSummaryList", []):
                    if summary.get("DomainName", "").lower() == domain.lower():
                        return summary["CertificateArn"]
        msg = f"No issued or pending certificate for {domain}"
        raise ResourceNotFound(msg, kind=self.kind, key=domain)

    def describe(self, arn: str, key: str | None = None) -> ResourceState:
        with translate_errors(self.kind, key or arn):
            cert = self._client.describe_certificate(CertificateArn=arn)["Certificate"]
        status = cert.get("Status", PENDING_VALIDATION)
        return ResourceState(
            kind=self.kind,
            key=key or arn,
            status=status,
            ref=arn,
            attributes={
                "domain": cert.get("DomainName"),
                "validation_method": (cert.get("DomainValidationOptions") or [{}])[0].get(
                    "ValidationMethod", "DNS"
                ),
            },
            outputs={
                "certificate_arn": arn,
                "certificate_status": status,
                "validation_record": validation_record(cert),
            },
        )

    def get(self, key: str) -> ResourceState:
        arn = key if key.startswith("arn:") else self.find_arn(key)
        return self.describe(arn, key)

    def create(self, spec: ResourceSpec) -> ResourceState:
        domain = spec.attributes.get("domain", spec.key)
        with translate_errors(self.kind, spec.key):
            resp = self._client.request_certificate(
                DomainName=domain,
                ValidationMethod="DNS",
                IdempotencyToken=payloads.idempotency_token(domain),
                Tags=[{"Key": "Name", "Value": domain}],
            )
        arn = resp["CertificateArn"]
        logger.info("certificate.requested", domain=domain, arn=arn)
        return self.describe(arn, spec.key)

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        msg = (
            f"Certificate {key} does not match the requested settings; "
            "ACM certificates cannot be modified, delete it or request a new one"
        )
        raise ProvisioningError(msg, kind=self.kind, key=key)

    def delete(self, key: str, version: str | None = None) -> None:
        arn = key if key.startswith("arn:") else self.find_arn(key)
        with translate_errors(self.kind, key):
            self._client.delete_certificate(CertificateArn=arn)

    def get_status(self, ref: str) -> str:
        with translate_errors(self.kind, ref):
            cert = self._client.describe_certificate(CertificateArn=ref)["Certificate"]
        return cert.get("Status", PENDING_VALIDATION)
