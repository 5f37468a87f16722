"""CloudFront Origin Access Control and distribution Resource APIs."""

from __future__ import annotations

import time
from collections.abc import Iterator
from typing import Any

from private_site.errors import ResourceNotFound
from private_site.resources.aws import payloads
from private_site.resources.aws.errors import translate_errors
from private_site.resources.base import (
    ResourceKind,
    ResourceSpec,
    ResourceState,
    Status,
)

DEPLOYED = "Deployed"
IN_PROGRESS = "InProgress"


class OriginAccessApi:
    """Origin Access Control.  Key: OAC name."""

    kind = ResourceKind.ORIGIN_ACCESS

    def __init__(self, client: Any) -> None:
        self._client = client

    def _find_id(self, name: str) -> str:
        paginator = self._client.get_paginator("list_origin_access_controls")
        with translate_errors(self.kind, name):
            for page in paginator.paginate():
                for item in page.get("OriginAccessControlList", {}).get("Items", []) or []:
                    if item.get("Name") == name:
                        return item["Id"]
        msg = f"No origin access control named {name}"
        raise ResourceNotFound(msg, kind=self.kind, key=name)

    def get(self, key: str) -> ResourceState:
        oac_id = self._find_id(key)
        with translate_errors(self.kind, key):
            resp = self._client.get_origin_access_control(Id=oac_id)
        config = resp["OriginAccessControl"]["OriginAccessControlConfig"]
        return ResourceState(
            kind=self.kind,
            key=key,
            ref=oac_id,
            version=resp.get("ETag"),
            attributes=payloads.origin_access_control_attributes(config),
            outputs={"origin_access_control_id": oac_id},
        )

    def create(self, spec: ResourceSpec) -> ResourceState:
        with translate_errors(self.kind, spec.key):
            resp = self._client.create_origin_access_control(
                OriginAccessControlConfig=payloads.origin_access_control_config(spec.key)
            )
        oac = resp["OriginAccessControl"]
        return ResourceState(
            kind=self.kind,
            key=spec.key,
            ref=oac["Id"],
            version=resp.get("ETag"),
            attributes=payloads.origin_access_control_attributes(
                oac["OriginAccessControlConfig"]
            ),
            outputs={"origin_access_control_id": oac["Id"]},
        )

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        oac_id = self._find_id(key)
        with translate_errors(self.kind, key):
            self._client.update_origin_access_control(
                Id=oac_id,
                IfMatch=version,
                OriginAccessControlConfig=payloads.origin_access_control_config(key),
            )
        return self.get(key)

    def delete(self, key: str, version: str | None = None) -> None:
        current = self.get(key)
        with translate_errors(self.kind, key):
            self._client.delete_origin_access_control(
                Id=current.ref, IfMatch=version or current.version
            )

    def get_status(self, ref: str) -> str:
        try:
            with translate_errors(self.kind, ref):
                self._client.get_origin_access_control(Id=ref)
        except ResourceNotFound:
            return Status.ABSENT
        return Status.DEPLOYED


class DistributionApi:
    """CloudFront distribution.  Key: the S3 origin domain it fronts.

    ``ref`` is the distribution id, ``version`` the ETag that
    ``update_distribution`` / ``delete_distribution`` must present.
    Updates merge the declared attributes into the live config, so
    settings not declared here survive.
    """

    kind = ResourceKind.DISTRIBUTION

    def __init__(self, client: Any) -> None:
        self._client = client

    def _summaries(self) -> Iterator[dict[str, Any]]:
        paginator = self._client.get_paginator("list_distributions")
        with translate_errors(self.kind):
            for page in paginator.paginate():
                yield from page.get("DistributionList", {}).get("Items", []) or []

    def find_id(self, origin: str) -> str:
        for summary in self._summaries():
            origins = summary.get("Origins", {}).get("Items", []) or []
            if any(o.get("DomainName") == origin for o in origins):
                return summary["Id"]
        msg = f"No distribution fronts origin {origin}"
        raise ResourceNotFound(msg, kind=self.kind, key=origin)

    def find_id_by_tag(self, name: str) -> str:
        """Return the id of the distribution tagged ``Name=<name>``."""
        for summary in self._summaries():
            with translate_errors(self.kind, summary["Id"]):
                tags = self._client.list_tags_for_resource(Resource=summary["ARN"])
            for tag in tags.get("Tags", {}).get("Items", []) or []:
                if tag.get("Key") == "Name" and tag.get("Value") == name:
                    return summary["Id"]
        msg = f"No distribution tagged Name={name}"
        raise ResourceNotFound(msg, kind=self.kind, key=name)

    def describe(self, distribution_id: str) -> ResourceState:
        """State of a distribution addressed by id rather than origin."""
        with translate_errors(self.kind, distribution_id):
            resp = self._client.get_distribution(Id=distribution_id)
        return self._state(resp)

    def _state(self, resp: dict[str, Any]) -> ResourceState:
        dist = resp["Distribution"]
        config = dist["DistributionConfig"]
        attributes = payloads.distribution_attributes(config)
        return ResourceState(
            kind=self.kind,
            key=attributes["origin_domain"],
            status=dist.get("Status", IN_PROGRESS),
            ref=dist["Id"],
            version=resp.get("ETag"),
            attributes=attributes,
            outputs={
                "distribution_id": dist["Id"],
                "distribution_arn": dist.get("ARN"),
                "distribution_domain": dist.get("DomainName"),
            },
        )

    def get(self, key: str) -> ResourceState:
        return self.describe(self.find_id(key))

    def create(self, spec: ResourceSpec) -> ResourceState:
        bucket = payloads.origin_bucket(spec.key)
        config = payloads.distribution_config(
            bucket, caller_reference=str(int(time.time())), attributes=spec.attributes
        )
        with translate_errors(self.kind, spec.key):
            resp = self._client.create_distribution_with_tags(
                DistributionConfigWithTags={
                    "DistributionConfig": config,
                    "Tags": payloads.name_tags(bucket),
                }
            )
        return self._state(resp)

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        distribution_id = self.find_id(key)
        with translate_errors(self.kind, key):
            current = self._client.get_distribution_config(Id=distribution_id)
        config = payloads.apply_distribution_attributes(
            current["DistributionConfig"], spec.attributes
        )
        with translate_errors(self.kind, key):
            resp = self._client.update_distribution(
                Id=distribution_id,
                IfMatch=version or current["ETag"],
                DistributionConfig=config,
            )
        return self._state(resp)

    def delete(self, key: str, version: str | None = None) -> None:
        distribution_id = self.find_id(key)
        if version is None:
            with translate_errors(self.kind, key):
                version = self._client.get_distribution_config(Id=distribution_id)["ETag"]
        with translate_errors(self.kind, key):
            self._client.delete_distribution(Id=distribution_id, IfMatch=version)

    def get_status(self, ref: str) -> str:
        with translate_errors(self.kind, ref):
            resp = self._client.get_distribution(Id=ref)
        return resp["Distribution"].get("Status", IN_PROGRESS)
