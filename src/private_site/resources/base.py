"""Resource API protocol and the desired/observed value types it trades in."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable


class ResourceKind(StrEnum):
    """Kinds of remote resource a site is built from."""

    BUCKET = "bucket"
    ORIGIN_ACCESS = "origin-access"
    DISTRIBUTION = "distribution"
    BUCKET_POLICY = "bucket-policy"
    IP_SET = "ip-set"
    WEB_ACL = "web-acl"
    DNS_RECORD = "dns-record"
    CERTIFICATE = "certificate"


class Status(StrEnum):
    """Generic statuses for resources without a provider-specific lifecycle."""

    ABSENT = "absent"
    PENDING = "pending"
    DEPLOYED = "deployed"
    ERROR = "error"


def _frozen(attributes: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(attributes))


@dataclass(frozen=True)
class ResourceSpec:
    """Desired configuration of one resource.

    ``key`` identifies the resource for the lifetime of a run.  Specs with
    ``managed=False`` describe shared resources that are only ever read.
    """

    kind: ResourceKind
    key: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    managed: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _frozen(self.attributes))


@dataclass(frozen=True)
class ResourceState:
    """Observed state of a resource as reported by its Resource API.

    ``ref`` is the provider handle (id or ARN) used for polling; ``version``
    is the optimistic-concurrency token that must accompany an update.
    """

    kind: ResourceKind
    key: str
    exists: bool = True
    status: str = Status.DEPLOYED
    version: str | None = None
    ref: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    outputs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _frozen(self.attributes))
        object.__setattr__(self, "outputs", _frozen(self.outputs))


def attribute_drift(
    desired: Mapping[str, Any], observed: Mapping[str, Any]
) -> dict[str, tuple[Any, Any]]:
    """Return ``{name: (desired, observed)}`` for every declared attribute that differs.

    Only attributes named in *desired* are compared; anything else the
    provider reports is ignored.
    """
    drift: dict[str, tuple[Any, Any]] = {}
    for name, want in desired.items():
        have = observed.get(name)
        if _normalize(want) != _normalize(have):
            drift[name] = (want, have)
    return drift


def _normalize(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_normalize(v) for v in value]
        try:
            return sorted(items)
        except TypeError:
            return items
    return value


@runtime_checkable
class ResourceApi(Protocol):
    """Control-plane operations for one kind of resource.

    ``get`` and ``delete`` raise :class:`~private_site.errors.ResourceNotFound`
    for a missing key; ``update`` raises
    :class:`~private_site.errors.ConflictError` for a stale version token.
    """

    kind: ResourceKind

    def get(self, key: str) -> ResourceState:
        """Return the current state of *key*."""
        ...

    def create(self, spec: ResourceSpec) -> ResourceState:
        """Create the resource described by *spec*."""
        ...

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        """Update *key* to match *spec*, presenting *version*."""
        ...

    def delete(self, key: str, version: str | None = None) -> None:
        """Delete *key*."""
        ...

    def get_status(self, ref: str) -> str:
        """Return the provider status of the resource behind *ref*."""
        ...
