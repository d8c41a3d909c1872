"""Tasks for objects this pipeline creates, keeps in shape and tears down.

Each task computes its desired object from the spec plus references
produced by earlier tasks, so the runner must execute them in dependency
order: tier-1 gateway, locale service, segment, SNAT address allocation,
SNAT address realization, SNAT rule.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from .catalog import ListResult
from .errors import (
    Phase,
    RealizationFailedError,
    RealizationTimeoutError,
    StateInvariantError,
    TaskPhaseError,
)
from .models import (
    TAG_SCOPE_CLUSTER,
    IpAddressAllocation,
    InfraSpec,
    InfraState,
    LocaleServices,
    PolicyNatRule,
    PolicyObject,
    Reference,
    Segment,
    SegmentSubnet,
    Tier1,
)
from .tasks import (
    DESCRIPTION,
    ManagedResourceTask,
    NameMatch,
    Outcome,
    Task,
    TaskContext,
    cidr_host_and_prefix,
    equal_strings,
    equal_tags,
    generate_id,
    random_string,
    require,
)

logger = logging.getLogger(__name__)

FAILOVER_MODE_PREEMPTIVE = "PREEMPTIVE"
ROUTE_ADVERTISEMENT_TYPES = [
    "TIER1_STATIC_ROUTES",
    "TIER1_NAT",
    "TIER1_LB_VIP",
    "TIER1_LB_SNAT",
]

# A tier-1 gateway has exactly one locale service in this fixed slot
DEFAULT_LOCALE_SERVICE_ID = "default"

SEGMENT_NAME_SUFFIX_LENGTH = 8
SNAT_ALLOCATION_NAME_SUFFIX = "_SNAT"

SNAT_ACTION = "SNAT"
SNAT_RULE_SEQUENCE_NUMBER = 100

REALIZED_IP_ATTRIBUTE = "allocation_ip"
REALIZED_STATE_ERROR = "ERROR"


class Tier1GatewayTask(ManagedResourceTask[Tier1]):
    def __init__(self) -> None:
        super().__init__("tier-1 gateway")

    def reference(self, state: InfraState) -> Reference | None:
        return state.tier1_gateway_ref

    def desired(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Tier1:
        tier0 = require(state.tier0_gateway_ref, "tier-0 gateway")
        return Tier1(
            display_name=spec.full_cluster_name,
            description=DESCRIPTION,
            failover_mode=FAILOVER_MODE_PREEMPTIVE,
            tags=spec.create_tags(),
            route_advertisement_types=list(ROUTE_ADVERTISEMENT_TYPES),
            tier0_path=tier0.path,
        )

    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> Tier1:
        return ctx.catalog.tier1s.get(ref.id)

    def matches(self, spec: InfraSpec, current: Tier1, desired: Tier1) -> bool:
        return (
            current.display_name == desired.display_name
            and current.failover_mode == desired.failover_mode
            and current.tier0_path == desired.tier0_path
            and equal_strings(current.route_advertisement_types, desired.route_advertisement_types)
            and equal_tags(current.tags, desired.tags)
        )

    def patch(self, ctx: TaskContext, state: InfraState, ref: Reference, desired: Tier1) -> None:
        ctx.catalog.tier1s.patch(ref.id, obj=desired)

    def create(self, ctx: TaskContext, state: InfraState, desired: Tier1) -> None:
        created = ctx.catalog.tier1s.update(generate_id("tier1gw", ctx.rng), obj=desired)
        state.tier1_gateway_ref = created.to_reference()

    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        ctx.catalog.tier1s.delete(ref.id)

    def clear(self, state: InfraState) -> None:
        state.tier1_gateway_ref = None

    def _store(self, state: InfraState, ref: Reference) -> None:
        state.tier1_gateway_ref = ref

    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        return NameMatch(spec.full_cluster_name)

    def list_all(self, ctx: TaskContext, state: InfraState, cursor: str | None) -> ListResult[Any]:
        return ctx.catalog.tier1s.list(cursor=cursor)


class Tier1GatewayLocaleServiceTask(ManagedResourceTask[LocaleServices]):
    """Locale service in the fixed slot of the tier-1 gateway.

    Its reference ID is the tier-1 gateway ID by convention; the object
    itself lives at ``(tier1 ID, "default")``. Creation is a patch of that
    slot, never a separate create call.
    """

    def __init__(self) -> None:
        super().__init__("tier-1 gateway locale service")

    def reference(self, state: InfraState) -> Reference | None:
        return state.locale_service_ref

    def desired(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> LocaleServices:
        edge_cluster = require(state.edge_cluster_ref, "edge cluster")
        return LocaleServices(
            display_name=spec.full_cluster_name,
            description=DESCRIPTION,
            edge_cluster_path=edge_cluster.path,
            tags=spec.create_tags(),
        )

    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> LocaleServices:
        return ctx.catalog.locale_services.get(ref.id, DEFAULT_LOCALE_SERVICE_ID)

    def matches(self, spec: InfraSpec, current: LocaleServices, desired: LocaleServices) -> bool:
        return (
            current.display_name == desired.display_name
            and current.edge_cluster_path == desired.edge_cluster_path
            and equal_tags(current.tags, desired.tags)
        )

    def patch(
        self, ctx: TaskContext, state: InfraState, ref: Reference, desired: LocaleServices
    ) -> None:
        ctx.catalog.locale_services.patch(ref.id, DEFAULT_LOCALE_SERVICE_ID, obj=desired)

    def create(self, ctx: TaskContext, state: InfraState, desired: LocaleServices) -> None:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        ctx.catalog.locale_services.patch(tier1_id, DEFAULT_LOCALE_SERVICE_ID, obj=desired)
        state.locale_service_ref = Reference(id=tier1_id)

    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        ctx.catalog.locale_services.delete(ref.id, DEFAULT_LOCALE_SERVICE_ID)

    def clear(self, state: InfraState) -> None:
        state.locale_service_ref = None

    def _store(self, state: InfraState, ref: Reference) -> None:
        state.locale_service_ref = ref

    def set_recovered_reference(
        self, state: InfraState, ref: Reference, name: str | None
    ) -> None:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        state.locale_service_ref = Reference(id=tier1_id)

    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        return NameMatch(spec.full_cluster_name)

    def list_all(self, ctx: TaskContext, state: InfraState, cursor: str | None) -> ListResult[Any]:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        return ctx.catalog.locale_services.list(tier1_id, cursor=cursor)


class SegmentTask(ManagedResourceTask[Segment]):
    """Workers segment attached to the tier-1 gateway.

    The display name carries a random suffix per creation, so comparison
    only checks the cluster-name prefix.
    """

    def __init__(self) -> None:
        super().__init__("segment")

    def reference(self, state: InfraState) -> Reference | None:
        return state.segment_ref

    def desired(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Segment:
        tier1 = require(state.tier1_gateway_ref, "tier-1 gateway")
        transport_zone = require(state.transport_zone_ref, "transport zone")
        gateway_address = cidr_host_and_prefix(spec.workers_network, 1)
        display_name = (
            f"{spec.full_cluster_name}-{random_string(SEGMENT_NAME_SUFFIX_LENGTH, ctx.rng)}"
        )
        return Segment(
            display_name=display_name,
            description=DESCRIPTION,
            connectivity_path=tier1.path,
            transport_zone_path=transport_zone.path,
            tags=spec.create_tags(),
            subnets=[SegmentSubnet(gateway_address=gateway_address)],
        )

    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> Segment:
        return ctx.catalog.segments.get(ref.id)

    def matches(self, spec: InfraSpec, current: Segment, desired: Segment) -> bool:
        desired_gateway = (desired.subnets or [SegmentSubnet()])[0].gateway_address
        return (
            (current.display_name or "").startswith(spec.full_cluster_name)
            and current.connectivity_path == desired.connectivity_path
            and current.transport_zone_path == desired.transport_zone_path
            and len(current.subnets or []) == 1
            and (current.subnets or [SegmentSubnet()])[0].gateway_address == desired_gateway
            and equal_tags(current.tags, desired.tags)
        )

    def patch(self, ctx: TaskContext, state: InfraState, ref: Reference, desired: Segment) -> None:
        # Keep the existing name; only the prefix is significant
        if state.segment_name:
            desired = desired.model_copy(update={"display_name": state.segment_name})
        ctx.catalog.segments.patch(ref.id, obj=desired)

    def create(self, ctx: TaskContext, state: InfraState, desired: Segment) -> None:
        created = ctx.catalog.segments.update(generate_id("segment", ctx.rng), obj=desired)
        state.segment_ref = created.to_reference()
        state.segment_name = created.display_name

    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        ctx.catalog.segments.delete(ref.id)

    def clear(self, state: InfraState) -> None:
        state.segment_ref = None
        state.segment_name = None

    def _store(self, state: InfraState, ref: Reference) -> None:
        state.segment_ref = ref

    def set_recovered_reference(
        self, state: InfraState, ref: Reference, name: str | None
    ) -> None:
        state.segment_ref = ref
        state.segment_name = name

    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        return NameMatch(f"{spec.full_cluster_name}-", prefix=True)

    def recovers(self, spec: InfraSpec, item: PolicyObject) -> bool:
        """Prefix match plus the cluster ownership tag.

        A sibling cluster whose name extends ours shares the prefix; only
        the tag tells them apart.
        """
        if not super().recovers(spec, item):
            return False
        return any(
            t.scope == TAG_SCOPE_CLUSTER and t.tag == spec.cluster_name for t in item.tags or []
        )

    def list_all(self, ctx: TaskContext, state: InfraState, cursor: str | None) -> ListResult[Any]:
        return ctx.catalog.segments.list(cursor=cursor)


class SnatIpAddressAllocationTask(ManagedResourceTask[IpAddressAllocation]):
    """Address reserved from the SNAT pool. Never updated once created."""

    def __init__(self) -> None:
        super().__init__("SNAT IP address allocation")

    def reference(self, state: InfraState) -> Reference | None:
        return state.snat_ip_address_alloc_ref

    def desired(
        self, ctx: TaskContext, spec: InfraSpec, state: InfraState
    ) -> IpAddressAllocation:
        require(state.snat_ip_pool_ref, "SNAT IP pool")
        return IpAddressAllocation(
            display_name=f"{spec.full_cluster_name}{SNAT_ALLOCATION_NAME_SUFFIX}",
            description=f"SNAT IP address for all nodes. {DESCRIPTION}",
            tags=spec.create_tags(),
        )

    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> IpAddressAllocation:
        pool_id = require(state.snat_ip_pool_ref, "SNAT IP pool").id
        return ctx.catalog.ip_allocations.get(pool_id, ref.id)

    def matches(
        self, spec: InfraSpec, current: IpAddressAllocation, desired: IpAddressAllocation
    ) -> bool:
        return True

    def patch(
        self, ctx: TaskContext, state: InfraState, ref: Reference, desired: IpAddressAllocation
    ) -> None:
        """Never called: an existing allocation always matches."""
        raise NotImplementedError(f"{self.label} is never updated")

    def create(self, ctx: TaskContext, state: InfraState, desired: IpAddressAllocation) -> None:
        pool_id = require(state.snat_ip_pool_ref, "SNAT IP pool").id
        created = ctx.catalog.ip_allocations.update(
            pool_id, generate_id("snatippool", ctx.rng), obj=desired
        )
        state.snat_ip_address_alloc_ref = created.to_reference()

    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        pool_id = require(state.snat_ip_pool_ref, "SNAT IP pool").id
        ctx.catalog.ip_allocations.delete(pool_id, ref.id)

    def clear(self, state: InfraState) -> None:
        state.snat_ip_address_alloc_ref = None
        state.snat_ip_address = None

    def _store(self, state: InfraState, ref: Reference) -> None:
        state.snat_ip_address_alloc_ref = ref

    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        return NameMatch(f"{spec.full_cluster_name}{SNAT_ALLOCATION_NAME_SUFFIX}")

    def list_all(self, ctx: TaskContext, state: InfraState, cursor: str | None) -> ListResult[Any]:
        pool_id = require(state.snat_ip_pool_ref, "SNAT IP pool").id
        return ctx.catalog.ip_allocations.list(pool_id, cursor=cursor)


class SnatIpAddressRealizationTask(Task):
    """Wait for the remote IPAM to assign the allocation a concrete address."""

    def __init__(self) -> None:
        super().__init__("SNAT IP address realization")

    def reference(self, state: InfraState) -> Reference | None:
        if state.snat_ip_address is None:
            return None
        return Reference(id=state.snat_ip_address)

    def ensure(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Outcome:
        allocation = require(state.snat_ip_address_alloc_ref, "SNAT IP address allocation")
        state.snat_ip_address = self._wait_for_address(ctx, allocation.path)
        return Outcome.FOUND

    def _wait_for_address(self, ctx: TaskContext, intent_path: str) -> str:
        deadline = ctx.clock() + ctx.realization_timeout_seconds
        while True:
            try:
                entities = ctx.catalog.realized_entities(intent_path)
            except ResourceNotFoundError:
                # Realization record not written yet
                entities = []
            except HttpResponseError as e:
                raise TaskPhaseError(Phase.READING, self.label, e) from e

            for entity in entities:
                if entity.state == REALIZED_STATE_ERROR:
                    raise RealizationFailedError(
                        f"realization of {intent_path} failed: {entity.display_name or entity.id}"
                    )
                addresses = entity.attribute(REALIZED_IP_ATTRIBUTE)
                if addresses and addresses[0]:
                    return addresses[0]

            if ctx.clock() >= deadline:
                raise RealizationTimeoutError(
                    f"no address realized for {intent_path} "
                    f"within {ctx.realization_timeout_seconds:g}s"
                )
            logger.debug("Waiting for address realization", extra={"intent_path": intent_path})
            ctx.sleep(ctx.realization_poll_interval_seconds)


class SnatRuleTask(ManagedResourceTask[PolicyNatRule]):
    """SNAT rule translating the workers network to the realized address."""

    def __init__(self) -> None:
        super().__init__("SNAT rule")

    def reference(self, state: InfraState) -> Reference | None:
        return state.snat_rule_ref

    def desired(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> PolicyNatRule:
        require(state.tier1_gateway_ref, "tier-1 gateway")
        if state.snat_ip_address is None:
            raise StateInvariantError("SNAT IP address missing from state")
        return PolicyNatRule(
            display_name=spec.full_cluster_name,
            description=DESCRIPTION,
            action=SNAT_ACTION,
            enabled=True,
            logging=True,
            sequence_number=SNAT_RULE_SEQUENCE_NUMBER,
            tags=spec.create_tags(),
            source_network=spec.workers_network,
            translated_network=f"{state.snat_ip_address}/32",
        )

    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> PolicyNatRule:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        return ctx.catalog.nat_rules.get(tier1_id, ref.id)

    def matches(self, spec: InfraSpec, current: PolicyNatRule, desired: PolicyNatRule) -> bool:
        return (
            current.display_name == desired.display_name
            and current.action == desired.action
            and current.enabled == desired.enabled
            and current.logging == desired.logging
            and current.sequence_number == desired.sequence_number
            and current.source_network == desired.source_network
            and current.translated_network == desired.translated_network
            and current.destination_network is None
            and equal_tags(current.tags, desired.tags)
        )

    def patch(
        self, ctx: TaskContext, state: InfraState, ref: Reference, desired: PolicyNatRule
    ) -> None:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        ctx.catalog.nat_rules.patch(tier1_id, ref.id, obj=desired)

    def create(self, ctx: TaskContext, state: InfraState, desired: PolicyNatRule) -> None:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        created = ctx.catalog.nat_rules.update(
            tier1_id, generate_id("snatrule", ctx.rng), obj=desired
        )
        state.snat_rule_ref = created.to_reference()

    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        ctx.catalog.nat_rules.delete(tier1_id, ref.id)

    def clear(self, state: InfraState) -> None:
        state.snat_rule_ref = None

    def _store(self, state: InfraState, ref: Reference) -> None:
        state.snat_rule_ref = ref

    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        return NameMatch(spec.full_cluster_name)

    def list_all(self, ctx: TaskContext, state: InfraState, cursor: str | None) -> ListResult[Any]:
        tier1_id = require(state.tier1_gateway_ref, "tier-1 gateway").id
        return ctx.catalog.nat_rules.list(tier1_id, cursor=cursor)
