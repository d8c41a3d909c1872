"""Pytest configuration and fixtures."""

import random
import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for nsx_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from nsx_mock import FakeClock, MockPolicyTransport  # noqa: E402

from nsxt_infra.catalog import Catalog  # noqa: E402
from nsxt_infra.models import InfraSpec  # noqa: E402
from nsxt_infra.tasks import TaskContext  # noqa: E402

SPEC_DATA = {
    "clusterName": "shoot1",
    "gardenName": "garden1",
    "workersNetwork": "10.250.0.0/16",
    "tier0GatewayName": "tier0-gw",
    "edgeClusterName": "edge-cluster-1",
    "transportZoneName": "tz-overlay",
    "snatIpPoolName": "snat-pool",
}


@pytest.fixture
def spec() -> InfraSpec:
    return InfraSpec.model_validate(SPEC_DATA)


@pytest.fixture
def transport() -> MockPolicyTransport:
    transport = MockPolicyTransport(page_size=2)
    transport.seed_shared_objects()
    return transport


@pytest.fixture
def catalog(transport: MockPolicyTransport) -> Catalog:
    return Catalog(transport)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ctx(catalog: Catalog, clock: FakeClock) -> TaskContext:
    return TaskContext(
        catalog=catalog,
        rng=random.Random(42),
        realization_timeout_seconds=5.0,
        realization_poll_interval_seconds=1.0,
        sleep=clock.sleep,
        clock=clock,
    )
