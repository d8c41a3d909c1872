"""Pydantic models for the desired spec, the state document and remote objects.

These models provide:
1. Type-safe YAML parsing of the desired infrastructure spec
2. A lossless JSON state document tracking which remote object backs each slot
3. Typed views of the policy API objects the tasks read and write
"""

from __future__ import annotations

import ipaddress
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Tag scopes attached to every object this pipeline creates
TAG_SCOPE_CLUSTER = "nsxt-infra/cluster"
TAG_SCOPE_GARDEN = "nsxt-infra/garden"

# =============================================================================
# References and State
# =============================================================================


class Reference(BaseModel):
    """Opaque remote identifier plus the hierarchical path dependents point at."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    path: str = ""


class InfraState(BaseModel):
    """Convergence record: one optional reference per logical resource slot.

    A slot is set iff the remote object is believed to exist. Each slot is
    written only by its owning task.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tier0_gateway_ref: Reference | None = Field(None, alias="tier0GatewayRef")
    edge_cluster_ref: Reference | None = Field(None, alias="edgeClusterRef")
    transport_zone_ref: Reference | None = Field(None, alias="transportZoneRef")
    snat_ip_pool_ref: Reference | None = Field(None, alias="snatIpPoolRef")
    tier1_gateway_ref: Reference | None = Field(None, alias="tier1GatewayRef")
    locale_service_ref: Reference | None = Field(None, alias="localeServiceRef")
    segment_ref: Reference | None = Field(None, alias="segmentRef")
    segment_name: str | None = Field(None, alias="segmentName")
    snat_ip_address_alloc_ref: Reference | None = Field(None, alias="snatIpAddressAllocRef")
    snat_ip_address: str | None = Field(None, alias="snatIpAddress")
    snat_rule_ref: Reference | None = Field(None, alias="snatRuleRef")

    def to_json(self) -> str:
        """Serialize to the persisted document shape."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    @classmethod
    def from_json(cls, data: str | bytes) -> InfraState:
        """Parse a persisted state document."""
        return cls.model_validate_json(data)


# =============================================================================
# Desired Spec
# =============================================================================


class Tag(BaseModel):
    """Scope/tag pair attached to a policy object."""

    model_config = ConfigDict(extra="ignore")

    scope: str = ""
    tag: str = ""


class InfraSpec(BaseModel):
    """Desired infrastructure for one cluster."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cluster_name: str = Field(alias="clusterName", min_length=1, max_length=200)
    garden_name: str | None = Field(None, alias="gardenName")
    workers_network: str = Field(alias="workersNetwork")

    # Pre-existing shared objects, resolved by display name
    tier0_gateway_name: str = Field(alias="tier0GatewayName", min_length=1)
    edge_cluster_name: str = Field(alias="edgeClusterName", min_length=1)
    transport_zone_name: str = Field(alias="transportZoneName", min_length=1)
    snat_ip_pool_name: str = Field(alias="snatIpPoolName", min_length=1)

    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("workers_network")
    @classmethod
    def validate_workers_network(cls, v: str) -> str:
        try:
            network = ipaddress.ip_network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"workersNetwork must be in CIDR notation: {e}") from e
        if network.num_addresses < 4:
            raise ValueError("workersNetwork is too small to hold a gateway address")
        return v

    @property
    def full_cluster_name(self) -> str:
        """Name used for created objects; includes the garden when one is set."""
        if self.garden_name:
            return f"{self.garden_name}--{self.cluster_name}"
        return self.cluster_name

    def create_tags(self) -> list[Tag]:
        """Ownership tags attached to every created object."""
        tags = [Tag(scope=TAG_SCOPE_CLUSTER, tag=self.cluster_name)]
        if self.garden_name:
            tags.append(Tag(scope=TAG_SCOPE_GARDEN, tag=self.garden_name))
        for scope in sorted(self.tags):
            tags.append(Tag(scope=scope, tag=self.tags[scope]))
        return tags


# =============================================================================
# Remote Objects (policy API wire format)
# =============================================================================


class PolicyObject(BaseModel):
    """Fields shared by every policy API object."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    path: str | None = None
    display_name: str | None = None
    description: str | None = None
    tags: list[Tag] | None = None

    def to_body(self) -> dict[str, Any]:
        """Request body without unset fields."""
        return self.model_dump(exclude_none=True)

    def to_reference(self) -> Reference:
        """Reference to this object as returned by the API."""
        return Reference(id=self.id or "", path=self.path or "")


class Tier0(PolicyObject):
    pass


class EdgeCluster(PolicyObject):
    pass


class TransportZone(PolicyObject):
    pass


class IpPool(PolicyObject):
    pass


class Tier1(PolicyObject):
    failover_mode: str | None = None
    route_advertisement_types: list[str] | None = None
    tier0_path: str | None = None


class LocaleServices(PolicyObject):
    edge_cluster_path: str | None = None


class SegmentSubnet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    gateway_address: str | None = None


class Segment(PolicyObject):
    connectivity_path: str | None = None
    transport_zone_path: str | None = None
    subnets: list[SegmentSubnet] | None = None


class IpAddressAllocation(PolicyObject):
    allocation_ip: str | None = None


class PolicyNatRule(PolicyObject):
    action: str | None = None
    enabled: bool | None = None
    logging: bool | None = None
    sequence_number: int | None = None
    source_network: str | None = None
    translated_network: str | None = None
    destination_network: str | None = None


class AttributeVal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str | None = None
    values: list[str] | None = None


class RealizedEntity(PolicyObject):
    """Realized state of an intent object, as reported by the manager."""

    entity_type: str | None = None
    intent_paths: list[str] | None = None
    state: str | None = None
    extended_attributes: list[AttributeVal] | None = None

    def attribute(self, key: str) -> list[str]:
        """Values of an extended attribute, empty if absent."""
        for attr in self.extended_attributes or []:
            if attr.key == key:
                return list(attr.values or [])
        return []
