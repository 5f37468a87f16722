"""Check-then-create-or-update reconciliation of a single resource."""

from __future__ import annotations

from enum import StrEnum

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from private_site.errors import ConflictError, ResourceNotFound
from private_site.resources.base import (
    ResourceApi,
    ResourceSpec,
    ResourceState,
    attribute_drift,
)

logger = structlog.get_logger()


class Action(StrEnum):
    """What a reconcile did to the remote resource."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    OBSERVED = "observed"


class Reconciler:
    """Brings one resource in line with its :class:`ResourceSpec`.

    A present resource whose declared attributes already match is left
    alone, so reconciling the same spec twice issues no second write.
    A stale version token (or a create that lost a race) triggers a fresh
    read and exactly ``conflict_retries`` further attempts before the
    :class:`ConflictError` surfaces.  Permission and ownership errors are
    never retried.  With ``create_missing=False`` an absent resource raises
    :class:`ResourceNotFound` instead of being created.
    """

    def __init__(
        self, api: ResourceApi, *, conflict_retries: int = 1, create_missing: bool = True
    ) -> None:
        self._api = api
        self._conflict_retries = conflict_retries
        self._create_missing = create_missing
        self.last_action: Action | None = None

    @property
    def api(self) -> ResourceApi:
        return self._api

    def reconcile(self, spec: ResourceSpec) -> ResourceState:
        if not spec.managed:
            return self._observe(spec)

        retryer = Retrying(
            retry=retry_if_exception_type(ConflictError),
            stop=stop_after_attempt(1 + self._conflict_retries),
            before_sleep=lambda rs: logger.warning(
                "reconcile.conflict_retry",
                kind=spec.kind.value,
                key=spec.key,
                attempt=rs.attempt_number,
            ),
            reraise=True,
        )
        return retryer(self._apply, spec)

    def _apply(self, spec: ResourceSpec) -> ResourceState:
        try:
            current = self._api.get(spec.key)
        except ResourceNotFound:
            if not self._create_missing:
                raise
            state = self._api.create(spec)
            self.last_action = Action.CREATED
            logger.info(f"{spec.kind.value}.created", key=spec.key, ref=state.ref)
            return state

        drift = attribute_drift(spec.attributes, current.attributes)
        if not drift:
            self.last_action = Action.UNCHANGED
            logger.info(f"{spec.kind.value}.exists", key=spec.key, ref=current.ref)
            return current

        logger.info(
            f"{spec.kind.value}.drift",
            key=spec.key,
            attributes=sorted(drift),
        )
        state = self._api.update(spec.key, spec, current.version)
        self.last_action = Action.UPDATED
        logger.info(f"{spec.kind.value}.updated", key=spec.key, ref=state.ref)
        return state

    def _observe(self, spec: ResourceSpec) -> ResourceState:
        """Read a shared resource without ever writing to it."""
        current = self._api.get(spec.key)
        drift = attribute_drift(spec.attributes, current.attributes)
        if drift:
            logger.warning(
                f"{spec.kind.value}.unmanaged_drift",
                key=spec.key,
                attributes=sorted(drift),
            )
        self.last_action = Action.OBSERVED
        return current


def reconcile(api: ResourceApi, spec: ResourceSpec) -> ResourceState:
    """Reconcile *spec* against *api* with the default conflict policy."""
    return Reconciler(api).reconcile(spec)
