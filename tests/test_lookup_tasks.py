"""Tests for shared object lookups."""

import pytest
from nsx_mock import MockPolicyTransport

from nsxt_infra.errors import LookupNotFoundError, Phase, TaskPhaseError
from nsxt_infra.lookup_tasks import (
    LookupEdgeClusterTask,
    LookupSnatIpPoolTask,
    LookupTier0GatewayTask,
    LookupTransportZoneTask,
    _LookupTask,
)
from nsxt_infra.models import InfraSpec, InfraState, Reference
from nsxt_infra.tasks import Outcome, TaskContext


class TestPaginatedLookup:
    """Tests for lookups that page through a listing."""

    def test_found_on_first_page(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test resolving the tier-0 gateway by display name."""
        state = InfraState()

        outcome = LookupTier0GatewayTask().ensure(ctx, spec, state)

        assert outcome == Outcome.FOUND
        assert state.tier0_gateway_ref == Reference(id="t0-1", path="/infra/tier-0s/t0-1")

    def test_found_on_later_page(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that the scan follows cursors."""
        transport.objects.clear()
        for i in range(5):
            transport.seed("/infra/ip-pools", f"p{i}", f"pool-{i}")
        transport.seed("/infra/ip-pools", "wanted", spec.snat_ip_pool_name)
        state = InfraState()

        LookupSnatIpPoolTask().ensure(ctx, spec, state)

        assert state.snat_ip_pool_ref is not None
        assert state.snat_ip_pool_ref.id == "wanted"
        assert len(transport.calls_to("GET")) == 3

    def test_match_is_exact_and_case_sensitive(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that near-miss names do not match."""
        transport.objects.clear()
        transport.seed("/infra/tier-0s", "a", spec.tier0_gateway_name.upper())
        transport.seed("/infra/tier-0s", "b", f"{spec.tier0_gateway_name}-2")

        with pytest.raises(LookupNotFoundError, match=f"not found: {spec.tier0_gateway_name}"):
            LookupTier0GatewayTask().ensure(ctx, spec, InfraState())

    def test_not_found_stops_after_total_count(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that the scan ends once every item was seen."""
        transport.objects.clear()
        for i in range(4):
            transport.seed("/infra/tier-0s", f"t{i}", f"other-{i}")

        with pytest.raises(LookupNotFoundError):
            LookupTier0GatewayTask().ensure(ctx, spec, InfraState())

        assert len(transport.calls_to("GET")) == 2

    def test_found_on_later_page_without_total(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that the cursor alone drives the scan when no total is reported."""
        transport.objects.clear()
        transport.report_result_count = False
        transport.seed("/infra/tier-0s", "a", "other-a")
        transport.seed("/infra/tier-0s", "b", "other-b")
        transport.seed("/infra/tier-0s", "wanted", spec.tier0_gateway_name)
        state = InfraState()

        assert LookupTier0GatewayTask().ensure(ctx, spec, state) == Outcome.FOUND

        assert state.tier0_gateway_ref == Reference(id="wanted", path="/infra/tier-0s/wanted")
        assert len(transport.calls_to("GET")) == 2

    def test_not_found_without_total_stops_at_last_cursor(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that a missing total does not end the scan before the last page."""
        transport.objects.clear()
        transport.report_result_count = False
        for i in range(5):
            transport.seed("/infra/tier-0s", f"t{i}", f"other-{i}")

        with pytest.raises(LookupNotFoundError):
            LookupTier0GatewayTask().ensure(ctx, spec, InfraState())

        assert len(transport.calls_to("GET")) == 3

    def test_empty_listing(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test lookup in an empty collection."""
        transport.objects.clear()

        with pytest.raises(LookupNotFoundError):
            LookupSnatIpPoolTask().ensure(ctx, spec, InfraState())

    def test_listing_failure(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that a failed listing is reported as a phase error."""
        transport.fail("GET", "/infra/tier-0s", status_code=503, message="unavailable")

        with pytest.raises(TaskPhaseError) as exc_info:
            LookupTier0GatewayTask().ensure(ctx, spec, InfraState())

        assert exc_info.value.phase == Phase.LISTING
        assert "unavailable" in str(exc_info.value)


class TestSingleListLookup:
    """Tests for site-scoped lookups."""

    def test_edge_cluster_and_transport_zone(
        self, ctx: TaskContext, spec: InfraSpec
    ) -> None:
        """Test resolving site-scoped objects."""
        state = InfraState()

        LookupEdgeClusterTask().ensure(ctx, spec, state)
        LookupTransportZoneTask().ensure(ctx, spec, state)

        assert state.edge_cluster_ref is not None
        assert state.edge_cluster_ref.id == "ec-1"
        assert state.transport_zone_ref is not None
        assert state.transport_zone_ref.path.endswith("/transport-zones/tz-1")

    def test_only_first_page_is_searched(
        self, ctx: TaskContext, spec: InfraSpec, transport: MockPolicyTransport
    ) -> None:
        """Test that site-scoped lookups make a single listing call."""
        collection = "/infra/sites/default/enforcement-points/default/edge-clusters"
        transport.objects.clear()
        transport.seed(collection, "a", "first")
        transport.seed(collection, "b", "second")
        transport.seed(collection, "c", spec.edge_cluster_name)

        with pytest.raises(LookupNotFoundError):
            LookupEdgeClusterTask().ensure(ctx, spec, InfraState())

        assert len(transport.calls_to("GET")) == 1

    def test_lookup_refreshes_existing_reference(
        self, ctx: TaskContext, spec: InfraSpec
    ) -> None:
        """Test that lookups always resolve anew."""
        state = InfraState(transport_zone_ref=Reference(id="stale", path="/old"))

        LookupTransportZoneTask().ensure(ctx, spec, state)

        assert state.transport_zone_ref is not None
        assert state.transport_zone_ref.id == "tz-1"


class TestLookupContract:
    """Tests for the lookup base class."""

    def test_collection_is_required(self) -> None:
        """Test that a lookup without a collection cannot be instantiated."""

        class Incomplete(_LookupTask):
            attr = "tier0_gateway_ref"
            name_field = "tier0_gateway_name"

        with pytest.raises(TypeError):
            Incomplete("incomplete")  # type: ignore[abstract]
