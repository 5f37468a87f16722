"""Exception taxonomy shared by the Resource API and the provisioner."""

from __future__ import annotations

from typing import Any


class ProvisioningError(Exception):
    """Base class for every error raised while reconciling site resources."""

    def __init__(self, message: str, *, kind: str | None = None, key: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.key = key


class ResourceNotFound(ProvisioningError):
    """The resource does not exist. Drives the create branch of a reconcile."""


class ConflictError(ProvisioningError):
    """A stale version token was presented with an update."""


class ResourceAlreadyExists(ConflictError):
    """A create lost the race against another writer for the same key."""


class PermissionDeniedError(ProvisioningError):
    """The caller lacks rights on the resource. Never retried."""


class OwnershipError(PermissionDeniedError):
    """The key collides with a resource in another account or region."""


class TerminalRemoteError(ProvisioningError):
    """The remote resource entered a failure state (e.g. validation failed)."""

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        key: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message, kind=kind, key=key)
        self.status = status


class ConvergenceTimeout(ProvisioningError):
    """A polled resource never reached its target status within the bound.

    Distinct from an error: the remote change may still complete, so the
    operator should check manually rather than assume failure.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        key: str | None = None,
        target_status: str | None = None,
        last_status: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message, kind=kind, key=key)
        self.target_status = target_status
        self.last_status = last_status
        self.attempts = attempts


class LockoutError(ProvisioningError):
    """An access restriction would exclude the operator's declared networks."""


class StepFailed(ProvisioningError):
    """A pipeline step failed; the run stopped without rolling back."""

    def __init__(
        self,
        step: str,
        cause: BaseException,
        *,
        completed: list[str],
        outputs: dict[str, Any],
        key: str | None = None,
    ) -> None:
        kind = getattr(cause, "kind", None)
        key = getattr(cause, "key", None) or key
        detail = f" ({kind} {key})" if kind and key else (f" ({key})" if key else "")
        super().__init__(f"Step '{step}' failed{detail}: {cause}", kind=kind, key=key)
        self.step = step
        self.cause = cause
        self.completed = completed
        self.outputs = outputs

    @property
    def timed_out(self) -> bool:
        return isinstance(self.cause, ConvergenceTimeout)

    @property
    def last_status(self) -> str | None:
        if isinstance(self.cause, ConvergenceTimeout):
            return self.cause.last_status
        return None
