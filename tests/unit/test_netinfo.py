"""Unit tests for public-IP and instance-metadata discovery."""

from __future__ import annotations

import httpx
import pytest
import respx

from private_site.errors import ProvisioningError
from private_site.netinfo import CHECKIP_URL, IMDS_URL, _fetch_public_ip, instance_vpc_id, public_ip

TOKEN_URL = f"{IMDS_URL}/latest/api/token"
MAC_URL = f"{IMDS_URL}/latest/meta-data/mac"
VPC_URL = f"{IMDS_URL}/latest/meta-data/network/interfaces/macs/0e:49:61:0f:c3:11/vpc-id"


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(_fetch_public_ip.retry, "sleep", lambda seconds: None)


class TestPublicIp:
    @respx.mock
    def test_returns_host_cidr(self):
        respx.get(CHECKIP_URL).mock(return_value=httpx.Response(200, text="198.51.100.7\n"))
        assert public_ip() == "198.51.100.7/32"

    @respx.mock
    def test_retries_transient_failure(self):
        route = respx.get(CHECKIP_URL).mock(
            side_effect=[httpx.Response(503), httpx.Response(200, text="198.51.100.7")]
        )
        assert public_ip() == "198.51.100.7/32"
        assert route.call_count == 2

    @respx.mock
    def test_gives_up_after_three_attempts(self):
        route = respx.get(CHECKIP_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(ProvisioningError, match="public IP"):
            public_ip()
        assert route.call_count == 3

    @respx.mock
    def test_garbage_body_rejected(self):
        respx.get(CHECKIP_URL).mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ProvisioningError, match="not an IP address"):
            public_ip()


class TestInstanceVpcId:
    @respx.mock
    def test_imdsv2_sequence(self):
        respx.put(TOKEN_URL).mock(return_value=httpx.Response(200, text="tok"))
        respx.get(MAC_URL).mock(return_value=httpx.Response(200, text="0e:49:61:0f:c3:11"))
        vpc = respx.get(VPC_URL).mock(return_value=httpx.Response(200, text="vpc-0abc\n"))

        assert instance_vpc_id() == "vpc-0abc"
        assert vpc.calls.last.request.headers["X-aws-ec2-metadata-token"] == "tok"

    @respx.mock
    def test_not_on_ec2(self):
        respx.put(TOKEN_URL).mock(side_effect=httpx.ConnectError)
        assert instance_vpc_id() is None

    @respx.mock
    def test_metadata_error_raises(self):
        respx.put(TOKEN_URL).mock(return_value=httpx.Response(403))
        with pytest.raises(ProvisioningError, match="metadata"):
            instance_vpc_id()
