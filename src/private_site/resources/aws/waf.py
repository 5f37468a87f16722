"""WAFv2 IP-set and web ACL Resource APIs (CloudFront scope, us-east-1)."""

from __future__ import annotations

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

AVAILABLE = "available"


class _WafApi:
    """Shared lookup for WAF entities addressed by name.

    WAF returns a ``LockToken`` with every read; it is this resource's
    version token and must accompany each update or delete.
    """

    kind: ResourceKind
    _list_operation: str
    _list_field: str

    def __init__(self, client: Any) -> None:
        self._client = client

    def _summaries(self) -> Iterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {"Scope": payloads.WAF_SCOPE, "Limit": 100}
        while True:
            with translate_errors(self.kind):
                resp = getattr(self._client, self._list_operation)(**kwargs)
            yield from resp.get(self._list_field, [])
            marker = resp.get("NextMarker")
            if not marker:
                return
            kwargs["NextMarker"] = marker

    def summary(self, name: str) -> dict[str, Any]:
        for item in self._summaries():
            if item.get("Name") == name:
                return item
        msg = f"No {self.kind.value} named {name} in scope {payloads.WAF_SCOPE}"
        raise ResourceNotFound(msg, kind=self.kind, key=name)

    def get_status(self, ref: str) -> str:
        if any(item.get("ARN") == ref for item in self._summaries()):
            return AVAILABLE
        return Status.ABSENT


class IpSetApi(_WafApi):
    """IPv4 allow-list.  Key: IP-set name.  Attribute ``addresses``."""

    kind = ResourceKind.IP_SET
    _list_operation = "list_ip_sets"
    _list_field = "IPSets"

    def get(self, key: str) -> ResourceState:
        summary = self.summary(key)
        with translate_errors(self.kind, key):
            resp = self._client.get_ip_set(
                Name=key, Scope=payloads.WAF_SCOPE, Id=summary["Id"]
            )
        ip_set = resp["IPSet"]
        return ResourceState(
            kind=self.kind,
            key=key,
            status=AVAILABLE,
            ref=ip_set["ARN"],
            version=resp.get("LockToken"),
            attributes={"addresses": list(ip_set.get("Addresses", []))},
            outputs={"ip_set_arn": ip_set["ARN"], "ip_set_id": ip_set["Id"]},
        )

    def create(self, spec: ResourceSpec) -> ResourceState:
        addresses = payloads.ip_set_addresses(spec.attributes.get("addresses", []))
        with translate_errors(self.kind, spec.key):
            resp = self._client.create_ip_set(
                Name=spec.key,
                Scope=payloads.WAF_SCOPE,
                IPAddressVersion="IPV4",
                Addresses=addresses,
                Description="Allowed source networks",
            )
        summary = resp["Summary"]
        return ResourceState(
            kind=self.kind,
            key=spec.key,
            status=Status.PENDING,
            ref=summary["ARN"],
            version=summary.get("LockToken"),
            attributes={"addresses": addresses},
            outputs={"ip_set_arn": summary["ARN"], "ip_set_id": summary["Id"]},
        )

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        summary = self.summary(key)
        with translate_errors(self.kind, key):
            self._client.update_ip_set(
                Name=key,
                Scope=payloads.WAF_SCOPE,
                Id=summary["Id"],
                Addresses=payloads.ip_set_addresses(spec.attributes.get("addresses", [])),
                LockToken=version or summary["LockToken"],
            )
        return self.get(key)

    def delete(self, key: str, version: str | None = None) -> None:
        summary = self.summary(key)
        with translate_errors(self.kind, key):
            self._client.delete_ip_set(
                Name=key,
                Scope=payloads.WAF_SCOPE,
                Id=summary["Id"],
                LockToken=version or summary["LockToken"],
            )


class WebAclApi(_WafApi):
    """Default-block web ACL allowing one or more IP-sets.  Key: ACL name."""

    kind = ResourceKind.WEB_ACL
    _list_operation = "list_web_acls"
    _list_field = "WebACLs"

    def __init__(self, client: Any, rule_name: str = "AllowListedNetworks") -> None:
        super().__init__(client)
        self._rule_name = rule_name

    def _body(self, spec: ResourceSpec) -> dict[str, Any]:
        return payloads.web_acl_body(
            spec.key, list(spec.attributes.get("ip_set_arns", [])), self._rule_name
        )

    def get(self, key: str) -> ResourceState:
        summary = self.summary(key)
        with translate_errors(self.kind, key):
            resp = self._client.get_web_acl(
                Name=key, Scope=payloads.WAF_SCOPE, Id=summary["Id"]
            )
        web_acl = resp["WebACL"]
        return ResourceState(
            kind=self.kind,
            key=key,
            status=AVAILABLE,
            ref=web_acl["ARN"],
            version=resp.get("LockToken"),
            attributes=payloads.web_acl_attributes(web_acl),
            outputs={"web_acl_arn": web_acl["ARN"], "web_acl_id": web_acl["Id"]},
        )

    def create(self, spec: ResourceSpec) -> ResourceState:
        with translate_errors(self.kind, spec.key):
            resp = self._client.create_web_acl(**self._body(spec))
        summary = resp["Summary"]
        return ResourceState(
            kind=self.kind,
            key=spec.key,
            status=AVAILABLE,
            ref=summary["ARN"],
            version=summary.get("LockToken"),
            attributes={
                "default_action": "block",
                "ip_set_arns": list(spec.attributes.get("ip_set_arns", [])),
            },
            outputs={"web_acl_arn": summary["ARN"], "web_acl_id": summary["Id"]},
        )

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        summary = self.summary(key)
        body = self._body(spec)
        body.pop("Name")
        body.pop("Scope")
        with translate_errors(self.kind, key):
            self._client.update_web_acl(
                Name=key,
                Scope=payloads.WAF_SCOPE,
                Id=summary["Id"],
                LockToken=version or summary["LockToken"],
                **body,
            )
        return self.get(key)

    def delete(self, key: str, version: str | None = None) -> None:
        summary = self.summary(key)
        with translate_errors(self.kind, key):
            self._client.delete_web_acl(
                Name=key,
                Scope=payloads.WAF_SCOPE,
                Id=summary["Id"],
                LockToken=version or summary["LockToken"],
            )
