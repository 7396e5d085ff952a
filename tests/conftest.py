from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from gsmboot.control.config import InstanceConfig, InstanceIdentity


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "uses_moto: test uses moto @mock_aws (allows boto3 calls)"
    )


@pytest.fixture(autouse=True)
def _block_real_aws(request, monkeypatch):
    """Prevent any test from making real AWS API calls."""
    if request.node.get_closest_marker("uses_moto"):
        return

    def _blocked_client(service, *a, **kw):
        raise RuntimeError(
            f"Unmocked boto3.client('{service}') call! "
            f"Add a @patch or fixture mock for this AWS call."
        )

    monkeypatch.setattr(boto3, "client", _blocked_client)


# ── Record factories ──


@pytest.fixture
def make_config():
    """Factory for InstanceConfig with sensible defaults. Override any field via kwargs."""
    def _make(**overrides):
        defaults = dict(
            hosted_zone="Z123", dns_name="game.example.com", volume_id="vol-123",
            run_path="/opt/game/run", stop_path="/opt/game/stop",
            idle_path="/opt/game/idle", idle_interval=30,
            idle_consecutive_threshold=5,
        )
        defaults.update(overrides)
        return InstanceConfig(**defaults)
    return _make


@pytest.fixture
def identity():
    return InstanceIdentity(instance_id="i-test123", public_ip="54.1.2.3", region="us-east-1")


@pytest.fixture
def make_client_error():
    """Factory for botocore ClientError."""
    def _make(code: str, message: str = "error"):
        return ClientError({"Error": {"Code": code, "Message": message}}, "TestOp")
    return _make


@pytest.fixture
def mock_metadata():
    """MetadataClient stand-in serving a valid config and identity."""
    metadata = MagicMock()
    metadata.user_data.return_value = "Z123|game.example.com|vol-123|/opt/game/run|/opt/game/stop|/opt/game/idle|30|5\n"
    metadata.instance_id.return_value = "i-test123"
    metadata.public_ipv4.return_value = "54.1.2.3"
    metadata.region.return_value = "us-east-1"
    metadata.termination_status.return_value = 404
    return metadata
