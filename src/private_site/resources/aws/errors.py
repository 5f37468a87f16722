"""Translate botocore ``ClientError`` codes into the provisioning taxonomy."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from botocore.exceptions import ClientError

from private_site.errors import (
    ConflictError,
    OwnershipError,
    PermissionDeniedError,
    ProvisioningError,
    ResourceAlreadyExists,
    ResourceNotFound,
)

NOT_FOUND_CODES = frozenset(
    {
        "404",
        "NotFound",
        "NoSuchBucket",
        "NoSuchBucketPolicy",
        "NoSuchPublicAccessBlockConfiguration",
        "NoSuchDistribution",
        "NoSuchOriginAccessControl",
        "NoSuchResource",
        "NoSuchHostedZone",
        "NoSuchChange",
        "WAFNonexistentItemException",
        "ResourceNotFoundException",
    }
)
CONFLICT_CODES = frozenset(
    {
        "PreconditionFailed",
        "InvalidIfMatchVersion",
        "WAFOptimisticLockException",
        "OperationAborted",
        "PriorRequestNotComplete",
    }
)
ALREADY_EXISTS_CODES = frozenset(
    {
        "BucketAlreadyOwnedByYou",
        "DistributionAlreadyExists",
        "OriginAccessControlAlreadyExists",
        "WAFDuplicateItemException",
    }
)
OWNERSHIP_CODES = frozenset(
    {
        "BucketAlreadyExists",
        "301",
        "PermanentRedirect",
        "AuthorizationHeaderMalformed",
        "IllegalLocationConstraintException",
    }
)
PERMISSION_CODES = frozenset(
    {
        "403",
        "AccessDenied",
        "AccessDeniedException",
        "AuthFailure",
        "UnauthorizedOperation",
        "WAFAccessDeniedException",
    }
)


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def translate(exc: ClientError, kind: str, key: str | None) -> ProvisioningError | None:
    """Map *exc* onto the taxonomy, or return ``None`` when it has no mapping."""
    code = error_code(exc)
    message = str(exc.response.get("Error", {}).get("Message", "")) or str(exc)
    text = f"{kind} {key}: {code} {message}".strip()

    if code in NOT_FOUND_CODES:
        return ResourceNotFound(text, kind=kind, key=key)
    if code in ALREADY_EXISTS_CODES:
        return ResourceAlreadyExists(text, kind=kind, key=key)
    if code in CONFLICT_CODES:
        return ConflictError(text, kind=kind, key=key)
    if code in OWNERSHIP_CODES:
        return OwnershipError(text, kind=kind, key=key)
    if code in PERMISSION_CODES:
        return PermissionDeniedError(text, kind=kind, key=key)
    if code == "InvalidChangeBatch":
        # Route 53 reports record-level create/delete races in the message.
        lowered = message.lower()
        if "already exists" in lowered:
            return ResourceAlreadyExists(text, kind=kind, key=key)
        if "not found" in lowered:
            return ResourceNotFound(text, kind=kind, key=key)
    return None


@contextmanager
def translate_errors(kind: str, key: str | None = None) -> Iterator[None]:
    """Re-raise mapped ``ClientError``s as provisioning errors."""
    try:
        yield
    except ClientError as exc:
        translated = translate(exc, kind, key)
        if translated is None:
            raise
        raise translated from exc
