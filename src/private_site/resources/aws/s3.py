"""S3 bucket and bucket-policy Resource APIs."""

from __future__ import annotations

import json
from typing import Any

import structlog

from private_site.errors import (
    ConflictError,
    OwnershipError,
    PermissionDeniedError,
    ProvisioningError,
    ResourceNotFound,
)
from private_site.resources.aws import payloads
from private_site.resources.aws.errors import translate_errors
from private_site.resources.base import (
    ResourceKind,
    ResourceSpec,
    ResourceState,
    Status,
)

logger = structlog.get_logger()


class BucketApi:
    """Origin bucket.  Key: bucket name.

    Attributes: ``region`` and ``public_access_block``.  A bucket that
    exists in another region or another account is an ownership error,
    never something to update.
    """

    kind = ResourceKind.BUCKET

    def __init__(self, client: Any, region: str) -> None:
        self._client = client
        self._region = region

    def get(self, key: str) -> ResourceState:
        try:
            with translate_errors(self.kind, key):
                self._client.head_bucket(Bucket=key)
        except PermissionDeniedError as exc:
            if isinstance(exc, OwnershipError):
                raise
            msg = f"Bucket {key} exists but this identity cannot access it"
            raise OwnershipError(msg, kind=self.kind, key=key) from exc

        with translate_errors(self.kind, key):
            location = self._client.get_bucket_location(Bucket=key)
        region = payloads.bucket_region(location.get("LocationConstraint"))
        return ResourceState(
            kind=self.kind,
            key=key,
            ref=key,
            attributes={
                "region": region,
                "public_access_block": self._public_access_block(key),
            },
            outputs={
                "bucket_name": key,
                "bucket_region": region,
                "origin_domain": payloads.origin_domain(key),
            },
        )

    def _public_access_block(self, key: str) -> dict[str, bool]:
        try:
            with translate_errors(self.kind, key):
                resp = self._client.get_public_access_block(Bucket=key)
        except ResourceNotFound:
            return {}
        return dict(resp.get("PublicAccessBlockConfiguration", {}))

    def create(self, spec: ResourceSpec) -> ResourceState:
        region = spec.attributes.get("region", self._region)
        with translate_errors(self.kind, spec.key):
            self._client.create_bucket(**payloads.create_bucket_request(spec.key, region))
        self._apply_public_access_block(spec)
        return self.get(spec.key)

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        current = self.get(key)
        want_region = spec.attributes.get("region")
        if want_region is not None and current.attributes["region"] != want_region:
            msg = (
                f"Bucket {key} exists in {current.attributes['region']} "
                f"instead of {want_region}"
            )
            raise OwnershipError(msg, kind=self.kind, key=key)
        self._apply_public_access_block(spec)
        return self.get(key)

    def _apply_public_access_block(self, spec: ResourceSpec) -> None:
        block = spec.attributes.get("public_access_block")
        if block is None:
            return
        with translate_errors(self.kind, spec.key):
            self._client.put_public_access_block(
                Bucket=spec.key, PublicAccessBlockConfiguration=dict(block)
            )
        logger.info("bucket.public_access_blocked", key=spec.key)

    def is_empty(self, key: str) -> bool:
        with translate_errors(self.kind, key):
            resp = self._client.list_objects_v2(Bucket=key, MaxKeys=1)
        return resp.get("KeyCount", 0) == 0

    def delete(self, key: str, version: str | None = None) -> None:
        if not self.is_empty(key):
            msg = f"Bucket {key} must be empty before it can be deleted"
            raise ProvisioningError(msg, kind=self.kind, key=key)
        with translate_errors(self.kind, key):
            self._client.delete_bucket(Bucket=key)

    def get_status(self, ref: str) -> str:
        try:
            self.get(ref)
        except ResourceNotFound:
            return Status.ABSENT
        return Status.DEPLOYED


class BucketPolicyApi:
    """Resource-based policy on the origin bucket.  Key: bucket name.

    Attribute ``document`` holds the full policy.  S3 offers no etag for
    policies, so the version token is a content hash that is re-checked
    immediately before every write.
    """

    kind = ResourceKind.BUCKET_POLICY

    def __init__(self, client: Any) -> None:
        self._client = client

    def get(self, key: str) -> ResourceState:
        with translate_errors(self.kind, key):
            resp = self._client.get_bucket_policy(Bucket=key)
        document = json.loads(resp["Policy"])
        return ResourceState(
            kind=self.kind,
            key=key,
            ref=key,
            version=payloads.policy_version(document),
            attributes={"document": document},
        )

    def create(self, spec: ResourceSpec) -> ResourceState:
        self._put(spec)
        return self.get(spec.key)

    def update(self, key: str, spec: ResourceSpec, version: str | None) -> ResourceState:
        current = self.get(key)
        if version is not None and current.version != version:
            msg = f"Bucket policy on {key} changed since it was read"
            raise ConflictError(msg, kind=self.kind, key=key)
        self._put(spec)
        return self.get(key)

    def _put(self, spec: ResourceSpec) -> None:
        document = spec.attributes["document"]
        with translate_errors(self.kind, spec.key):
            self._client.put_bucket_policy(Bucket=spec.key, Policy=json.dumps(document))

    def delete(self, key: str, version: str | None = None) -> None:
        with translate_errors(self.kind, key):
            self._client.delete_bucket_policy(Bucket=key)

    def get_status(self, ref: str) -> str:
        try:
            self.get(ref)
        except ResourceNotFound:
            return Status.ABSENT
        return Status.DEPLOYED
