"""Lookup-only tasks resolving pre-existing shared objects by display name.

The catalog offers no query-by-name, so lookups page through the listing
and compare display names exactly (case-sensitive). The first match wins.
These tasks never create, update or delete; a missing object is fatal.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Callable

from azure.core.exceptions import HttpResponseError

from .catalog import CatalogCollection, ListResult
from .config import MAX_LIST_PAGES
from .errors import LookupNotFoundError, Phase, TaskPhaseError
from .models import InfraSpec, InfraState, PolicyObject, Reference
from .tasks import Outcome, Task, TaskContext

logger = logging.getLogger(__name__)


def find_by_display_name(
    label: str,
    list_page: Callable[[str | None], ListResult[PolicyObject]],
    name: str,
) -> Reference:
    """Page through a listing until an item named ``name`` is found.

    The first page may report the total item count; the scan stops with
    LookupNotFoundError once the items seen reach that total or the server
    stops handing out cursors. Without a total only the cursor ends it.

    Raises:
        LookupNotFoundError: No item has the display name.
        TaskPhaseError: A listing call failed.
    """
    cursor: str | None = None
    total: int | None = None
    count = 0
    for page_number in range(MAX_LIST_PAGES):
        try:
            page = list_page(cursor)
        except HttpResponseError as e:
            raise TaskPhaseError(Phase.LISTING, label, e) from e
        for item in page.results:
            if item.display_name == name:
                return item.to_reference()
        if page_number == 0:
            total = page.result_count
        count += len(page.results)
        if page.cursor is None or (total is not None and count >= total):
            break
        cursor = page.cursor
    else:
        logger.warning(
            "Listing exceeded page limit",
            extra={"task": label, "pages": MAX_LIST_PAGES},
        )
    raise LookupNotFoundError(label, name)


class _LookupTask(Task):
    """Resolve a shared object by name into one state slot."""

    attr: str
    name_field: str

    def name_to_log(self, spec: InfraSpec) -> str | None:
        return str(getattr(spec, self.name_field))

    def reference(self, state: InfraState) -> Reference | None:
        ref: Reference | None = getattr(state, self.attr)
        return ref

    @abstractmethod
    def collection(self, ctx: TaskContext) -> CatalogCollection[PolicyObject]:
        ...

    def ensure(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Outcome:
        name = str(getattr(spec, self.name_field))
        collection = self.collection(ctx)
        ref = find_by_display_name(
            self.label, lambda cursor: collection.list(cursor=cursor), name
        )
        setattr(state, self.attr, ref)
        return Outcome.FOUND


class _SingleListLookupTask(_LookupTask):
    """Lookup over a site-scoped listing fetched with a single call."""

    def ensure(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Outcome:
        name = str(getattr(spec, self.name_field))
        try:
            page = self.collection(ctx).list()
        except HttpResponseError as e:
            raise TaskPhaseError(Phase.LISTING, self.label, e) from e
        for item in page.results:
            if item.display_name == name:
                setattr(state, self.attr, item.to_reference())
                return Outcome.FOUND
        raise LookupNotFoundError(self.label, name)


class LookupTier0GatewayTask(_LookupTask):
    attr = "tier0_gateway_ref"
    name_field = "tier0_gateway_name"

    def __init__(self) -> None:
        super().__init__("tier-0 gateway lookup")

    def collection(self, ctx: TaskContext) -> CatalogCollection[PolicyObject]:
        return ctx.catalog.tier0s  # type: ignore[return-value]


class LookupEdgeClusterTask(_SingleListLookupTask):
    attr = "edge_cluster_ref"
    name_field = "edge_cluster_name"

    def __init__(self) -> None:
        super().__init__("edge cluster lookup")

    def collection(self, ctx: TaskContext) -> CatalogCollection[PolicyObject]:
        return ctx.catalog.edge_clusters  # type: ignore[return-value]


class LookupTransportZoneTask(_SingleListLookupTask):
    attr = "transport_zone_ref"
    name_field = "transport_zone_name"

    def __init__(self) -> None:
        super().__init__("transport zone lookup")

    def collection(self, ctx: TaskContext) -> CatalogCollection[PolicyObject]:
        return ctx.catalog.transport_zones  # type: ignore[return-value]


class LookupSnatIpPoolTask(_LookupTask):
    attr = "snat_ip_pool_ref"
    name_field = "snat_ip_pool_name"

    def __init__(self) -> None:
        super().__init__("SNAT IP pool lookup")

    def collection(self, ctx: TaskContext) -> CatalogCollection[PolicyObject]:
        return ctx.catalog.ip_pools  # type: ignore[return-value]
