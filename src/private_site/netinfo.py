"""Discovery of the operator's network: public IP and (on EC2) VPC id."""

from __future__ import annotations

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from private_site.config.models import normalize_cidr
from private_site.errors import ProvisioningError

logger = structlog.get_logger()

CHECKIP_URL = "https://checkip.amazonaws.com"
IMDS_URL = "http://169.254.169.254"
IMDS_TOKEN_TTL = "21600"


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, max=4),
    retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
    reraise=True,
)
def _fetch_public_ip(client: httpx.Client, url: str) -> str:
    resp = client.get(url)
    resp.raise_for_status()
    return resp.text.strip()


def public_ip(
    *, url: str = CHECKIP_URL, timeout: float = 5.0, client: httpx.Client | None = None
) -> str:
    """Return the caller's public address as a ``/32`` CIDR."""
    owned = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        text = _fetch_public_ip(client, url)
    except httpx.HTTPError as exc:
        msg = f"Could not determine public IP from {url}: {exc}"
        raise ProvisioningError(msg) from exc
    finally:
        if owned:
            client.close()
    try:
        cidr = normalize_cidr(text)
    except ValueError as exc:
        msg = f"{url} returned something that is not an IP address: {text!r}"
        raise ProvisioningError(msg) from exc
    logger.info("netinfo.public_ip", cidr=cidr)
    return cidr


def instance_vpc_id(
    *, base_url: str = IMDS_URL, timeout: float = 2.0, client: httpx.Client | None = None
) -> str | None:
    """Return the VPC id of the EC2 instance we run on via IMDSv2.

    ``None`` when no metadata service answers, i.e. not running on EC2.
    """
    owned = client is None
    client = client or httpx.Client(timeout=timeout)
    try:
        token_resp = client.put(
            f"{base_url}/latest/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": IMDS_TOKEN_TTL},
        )
        token_resp.raise_for_status()
        headers = {"X-aws-ec2-metadata-token": token_resp.text}
        mac = client.get(f"{base_url}/latest/meta-data/mac", headers=headers)
        mac.raise_for_status()
        vpc = client.get(
            f"{base_url}/latest/meta-data/network/interfaces/macs/{mac.text.strip()}/vpc-id",
            headers=headers,
        )
        vpc.raise_for_status()
    except httpx.TransportError as exc:
        logger.info("netinfo.no_instance_metadata", error=str(exc))
        return None
    except httpx.HTTPStatusError as exc:
        msg = f"Instance metadata lookup failed: {exc}"
        raise ProvisioningError(msg) from exc
    finally:
        if owned:
            client.close()
    vpc_id = vpc.text.strip()
    logger.info("netinfo.vpc_id", vpc_id=vpc_id)
    return vpc_id
