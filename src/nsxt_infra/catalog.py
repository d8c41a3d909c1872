"""Policy API catalog client built on the azure-core HTTP pipeline.

The remote system is modeled as a catalog of collections addressed by
hierarchical paths. Each collection supports cursor-paginated listing,
get by ID, patch, create-or-replace by client-chosen ID, and delete.

Errors follow the azure-core taxonomy:
- 404 raises ResourceNotFoundError (tasks treat this as "absent")
- 401/403 raise ClientAuthenticationError
- Any other non-2xx status raises HttpResponseError

The client holds no cache: every call goes to the remote system.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar
from urllib.parse import quote

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline import PipelineRequest
from azure.core.pipeline.policies import (
    HeadersPolicy,
    NetworkTraceLoggingPolicy,
    RetryPolicy,
    SansIOHTTPPolicy,
    UserAgentPolicy,
)
from azure.core.pipeline.transport import RequestsTransport
from azure.core.rest import HttpRequest

from .config import Config
from .models import (
    EdgeCluster,
    IpAddressAllocation,
    IpPool,
    LocaleServices,
    PolicyNatRule,
    PolicyObject,
    RealizedEntity,
    Segment,
    Tier0,
    Tier1,
    TransportZone,
)

logger = logging.getLogger(__name__)

USER_AGENT = "nsxt-infra/0.1"

# Edge clusters and transport zones are scoped to a fixed site/enforcement point
DEFAULT_SITE = "default"
DEFAULT_ENFORCEMENT_POINT = "default"

# NAT section holding user-defined rules on a tier-1 gateway
NAT_TYPE_USER = "USER"

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    403: ClientAuthenticationError,
    404: ResourceNotFoundError,
}

T = TypeVar("T", bound=PolicyObject)


class CatalogTransport(Protocol):
    """Raw request interface of the remote catalog."""

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Send a request and return the decoded JSON body, if any."""
        ...

    def close(self) -> None:
        """Release the underlying connection pool."""
        ...


class BasicAuthPolicy(SansIOHTTPPolicy):  # type: ignore[type-arg]
    """Attach HTTP basic credentials to every request."""

    def __init__(self, username: str, password: str) -> None:
        super().__init__()
        token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        self._authorization = f"Basic {token}"

    def on_request(self, request: PipelineRequest) -> None:  # type: ignore[type-arg]
        request.http_request.headers["Authorization"] = self._authorization


class PolicyApiTransport:
    """CatalogTransport speaking JSON to the NSX-T policy API."""

    def __init__(self, config: Config) -> None:
        self._base_url = config.base_url
        transport = RequestsTransport(
            connection_verify=not config.insecure,
            connection_timeout=config.api_timeout_seconds,
            read_timeout=config.api_timeout_seconds,
        )
        policies = [
            HeadersPolicy({"Accept": "application/json"}),
            UserAgentPolicy(USER_AGENT),
            RetryPolicy(retry_total=config.api_retries),
            BasicAuthPolicy(config.username, config.password),
            NetworkTraceLoggingPolicy(),
        ]
        self._client: PipelineClient = PipelineClient(  # type: ignore[type-arg]
            base_url=self._base_url,
            policies=policies,
            transport=transport,
        )

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        http_request = HttpRequest(
            method,
            f"{self._base_url}{path}",
            params={k: v for k, v in (params or {}).items() if v is not None},
            json=body,
        )
        response = self._client.send_request(http_request)
        if response.status_code not in (200, 201, 204):
            map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
            raise HttpResponseError(response=response)
        if not response.content:
            return None
        result: dict[str, Any] = response.json()
        return result

    def close(self) -> None:
        self._client.close()


@dataclass
class ListResult(Generic[T]):
    """One page of a collection listing.

    ``result_count`` is the total number of items across all pages as
    reported by the server; ``cursor`` is None on the last page.
    """

    results: list[T] = field(default_factory=list)
    cursor: str | None = None
    result_count: int | None = None


class CatalogCollection(Generic[T]):
    """A collection of policy objects below a parent path.

    ``template`` contains one ``{}`` placeholder per parent ID, for example
    ``/infra/tier-1s/{}/locale-services``. Item operations take the parent
    IDs followed by the item ID.
    """

    def __init__(self, transport: CatalogTransport, template: str, model: type[T]) -> None:
        self._transport = transport
        self._template = template
        self._model = model
        self._parents = template.count("{}")

    def _collection_path(self, parent_ids: tuple[str, ...]) -> str:
        if len(parent_ids) != self._parents:
            raise ValueError(
                f"{self._template} needs {self._parents} parent IDs, got {len(parent_ids)}"
            )
        return self._template.format(*(quote(p, safe="") for p in parent_ids))

    def _item_path(self, ids: tuple[str, ...]) -> str:
        if not ids:
            raise ValueError(f"{self._template} item operation needs an ID")
        return f"{self._collection_path(ids[:-1])}/{quote(ids[-1], safe='')}"

    def list(self, *parent_ids: str, cursor: str | None = None) -> ListResult[T]:
        payload = self._transport.request(
            "GET", self._collection_path(parent_ids), params={"cursor": cursor}
        ) or {}
        return ListResult(
            results=[self._model.model_validate(item) for item in payload.get("results") or []],
            cursor=payload.get("cursor") or None,
            result_count=payload.get("result_count"),
        )

    def get(self, *ids: str) -> T:
        payload = self._transport.request("GET", self._item_path(ids))
        return self._model.model_validate(payload or {})

    def patch(self, *ids: str, obj: T) -> None:
        self._transport.request("PATCH", self._item_path(ids), body=obj.to_body())

    def update(self, *ids: str, obj: T) -> T:
        """Create or replace the object with the given (client-chosen) ID."""
        payload = self._transport.request("PUT", self._item_path(ids), body=obj.to_body())
        return self._model.model_validate(payload or {})

    def delete(self, *ids: str) -> None:
        self._transport.request("DELETE", self._item_path(ids))


class Catalog:
    """Typed access to the policy objects used by the reconciliation tasks."""

    def __init__(self, transport: CatalogTransport) -> None:
        self.transport = transport
        ep = f"/infra/sites/{DEFAULT_SITE}/enforcement-points/{DEFAULT_ENFORCEMENT_POINT}"
        self.tier0s = CatalogCollection(transport, "/infra/tier-0s", Tier0)
        self.tier1s = CatalogCollection(transport, "/infra/tier-1s", Tier1)
        self.locale_services = CatalogCollection(
            transport, "/infra/tier-1s/{}/locale-services", LocaleServices
        )
        self.segments = CatalogCollection(transport, "/infra/segments", Segment)
        self.ip_pools = CatalogCollection(transport, "/infra/ip-pools", IpPool)
        self.ip_allocations = CatalogCollection(
            transport, "/infra/ip-pools/{}/ip-allocations", IpAddressAllocation
        )
        self.nat_rules = CatalogCollection(
            transport, f"/infra/tier-1s/{{}}/nat/{NAT_TYPE_USER}/nat-rules", PolicyNatRule
        )
        self.edge_clusters = CatalogCollection(transport, f"{ep}/edge-clusters", EdgeCluster)
        self.transport_zones = CatalogCollection(
            transport, f"{ep}/transport-zones", TransportZone
        )

    def close(self) -> None:
        self.transport.close()

    def realized_entities(self, intent_path: str) -> list[RealizedEntity]:
        """Realized state of the object at ``intent_path``."""
        payload = self.transport.request(
            "GET",
            "/infra/realized-state/realized-entities",
            params={"intent_path": intent_path},
        ) or {}
        return [RealizedEntity.model_validate(item) for item in payload.get("results") or []]


def build_catalog(config: Config) -> Catalog:
    """Catalog talking to the policy API described by ``config``."""
    logger.info(
        "Connecting to policy API",
        extra={"host": config.host, "insecure": config.insecure},
    )
    return Catalog(PolicyApiTransport(config))
