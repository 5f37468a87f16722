"""Route 53 record Resource API and hosted-zone lookup."""

from __future__ import annotations

from typing import Any

import structlog

from private_site.errors import OwnershipError, ResourceNotFound
from private_site.resources.aws import payloads
from private_site.resources.aws.errors import translate_errors
from private_site.resources.base import (
    ResourceKind,
    ResourceSpec,
    ResourceState,
    Status,
)

logger = structlog.get_logger()

INSYNC = "INSYNC"


def find_hosted_zone_id(client: Any, zone_domain: str, private: bool | None = None) -> str:
    """Return the id of the hosted zone named *zone_domain*.

    With *private* unset a public zone wins over a private zone of the
    same name.
    """
    name = payloads.fqdn(zone_domain.lower())
    with translate_errors(ResourceKind.DNS_RECORD, zone_domain):
        resp = client.list_hosted_zones_by_name(DNSName=name)
    zones = [z for z in resp.get("HostedZones", []) if z.get("Name", "").lower() == name]
    if private is not None:
        zones = [z for z in zones if z.get("Config", {}).get("PrivateZone", False) == private]
    else:
        zones.sort(key=lambda z: z.get("Config", {}).get("PrivateZone", False))
    if not zones:
        msg = f"No hosted zone found for {zone_domain}"
        raise ResourceNotFound(msg, kind=ResourceKind.DNS_RECORD, key=zone_domain)
    zone_id = zones[0]["Id"].rsplit("/", 1)[-1]
    logger.debug("dns.zone_found", zone=zone_domain, zone_id=zone_id)
    return zone_id


class DnsRecordApi:
    """One record set in one hosted zone.  Key: the record name.

    Writes return ``status=pending`` with the Route 53 change id as
    ``ref``; ``get_status`` reports that change's status, which reaches
    ``INSYNC`` once every authoritative server serves the record.
    Weighted, latency and other routed record sets are left alone.
    """

    kind = ResourceKind.DNS_RECORD

    def __init__(self, client: Any, zone_id: str, record_type: str = "A") -> None:
        self._client = client
        self._zone_id = zone_id
        self._type = record_type

    @property
    def zone_id(self) -> str:
        return self._zone_id

    def _record_set(self, key: str) -> dict[str, Any]:
        name = payloads.fqdn(key.lower())
        with translate_errors(self.kind, key):
            resp = self._client.list_resource_record_sets(
                HostedZoneId=self._zone_id,
                StartRecordName=name,
                StartRecordType=self._type,
                MaxItems="1",
            )
        for rrset in resp.get("ResourceRecordSets", []):
            if rrset.get("Name", "").lower() == name and rrset.get("Type") == self._type:
                if "SetIdentifier" in rrset:
                    msg = f"{self._type} record {key} uses a routing policy and is not managed here"
                    raise OwnershipError(msg, kind=self.kind, key=key)
                return rrset
        msg = f"No {self._type} record {key} in zone {self._zone_id}"
        raise ResourceNotFound(msg, kind=self.kind, key=key)

    def get(self, key: str) -> ResourceState:
        rrset = self._record_set(key)
        return ResourceState(
            kind=self.kind,
            key=key,
            ref=payloads.bare(rrset["Name"]),
            attributes=payloads.record_attributes(rrset),
            outputs={"dns_record": payloads.bare(rrset["Name"]), "dns_zone_id": self._zone_id},
        )

    def _change(self, action: str, key: str, rrset: dict[str, Any]) -> ResourceState:
        batch = payloads.change_batch(action, rrset, f"{action} {self._type} record for {key}")
        with translate_errors(self.kind, key):
            resp = self._client.change_resource_record_sets(
                HostedZoneId=self._zone_id, ChangeBatch=batch
            )
        change_id = resp["ChangeInfo"]["Id"]
        logger.info("dns.change_submitted", key=key, action=action, change_id=change_id)
        return ResourceState(
            kind=self.kind,
            key=key,
            status=Status.PENDING,
            ref=change_id,
            attributes=payloads.record_attributes(rrset),
            outputs={
                "dns_record": payloads.bare(key),
                "dns_zone_id": self._zone_id,
                "dns_change_id": change_id,
            },
        )

    def create(self, spec: ResourceSpec) -> ResourceState:
        rrset = payloads.record_set(spec.key, self._type, spec.attributes)
        return self._change("CREATE", spec.key, rrset)

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        rrset = payloads.record_set(key, self._type, spec.attributes)
        return self._change("UPSERT", key, rrset)

    def delete(self, key: str, version: str | None = None) -> None:
        rrset = self._record_set(key)
        self._change("DELETE", key, rrset)

    def get_status(self, ref: str) -> str:
        with translate_errors(self.kind, ref):
            resp = self._client.get_change(Id=ref)
        return resp["ChangeInfo"]["Status"]
