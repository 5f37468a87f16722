"""EC2 lookups that feed the access allow-list."""

from __future__ import annotations

from typing import Any

import structlog

from private_site.errors import ResourceNotFound
from private_site.resources.aws.errors import translate_errors

logger = structlog.get_logger()


def nat_gateway_public_ips(client: Any, environment: str) -> list[str]:
    """Public IPs of available NAT gateways tagged ``Environment=<environment>``."""
    with translate_errors("nat-gateway", environment):
        resp = client.describe_nat_gateways(
            Filters=[
                {"Name": "tag:Environment", "Values": [environment]},
                {"Name": "state", "Values": ["available"]},
            ]
        )
    ips = [
        address["PublicIp"]
        for gateway in resp.get("NatGateways", [])
        for address in gateway.get("NatGatewayAddresses", [])
        if address.get("PublicIp")
    ]
    if not ips:
        msg = f"No available NAT gateway tagged Environment={environment}"
        raise ResourceNotFound(msg, kind="nat-gateway", key=environment)
    logger.info("nat_gateway.found", environment=environment, public_ips=ips)
    return ips
