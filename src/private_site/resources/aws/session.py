"""boto3 sessions keyed by the identity that owns each resource kind."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import Any

import boto3
import structlog

from private_site.config.models import Identities

logger = structlog.get_logger()


class IdentityRole(StrEnum):
    """Account boundaries a site spans."""

    STORAGE = "storage"
    CDN = "cdn"
    DNS = "dns"
    CERT = "cert"


class Sessions:
    """Hands out boto3 clients for an explicit :class:`Identities` config.

    The profile for each role comes from the config only; nothing here
    consults the process environment for profile or region selection.
    """

    def __init__(
        self,
        identities: Identities,
        session_factory: Callable[..., Any] = boto3.Session,
    ) -> None:
        self._identities = identities
        self._session_factory = session_factory
        self._sessions: dict[tuple[str | None, str], Any] = {}

    @property
    def identities(self) -> Identities:
        return self._identities

    def profile_for(self, role: IdentityRole) -> str | None:
        return getattr(self._identities, f"{role.value}_identity")

    def session(self, role: IdentityRole, region: str | None = None) -> Any:
        profile = self.profile_for(role)
        region = region or self._identities.region
        cache_key = (profile, region)
        if cache_key not in self._sessions:
            logger.debug("aws.session_created", role=role.value, profile=profile, region=region)
            self._sessions[cache_key] = self._session_factory(
                profile_name=profile, region_name=region
            )
        return self._sessions[cache_key]

    def client(self, role: IdentityRole, service: str, region: str | None = None) -> Any:
        return self.session(role, region).client(service)
