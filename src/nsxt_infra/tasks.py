"""Task contract shared by all reconciliation steps.

A task is a stateless strategy for one logical infrastructure object. It is
parameterized at call time by the desired spec and the mutable state
document, and reports what it did as an Outcome.

Capabilities are layered:
- Task: ensure + reference (lookup-only tasks stop here)
- Recoverable: recovers + list_all + set_recovered_reference, used by recovery
- Deletable: ensure_deleted, for objects this pipeline owns
"""

from __future__ import annotations

import ipaddress
import logging
import random
import string
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from .catalog import Catalog, ListResult
from .config import DEFAULT_REALIZATION_POLL_INTERVAL_SECONDS, DEFAULT_REALIZATION_TIMEOUT_SECONDS
from .errors import Phase, StateInvariantError, TaskPhaseError
from .models import InfraSpec, InfraState, PolicyObject, Reference, Tag

logger = logging.getLogger(__name__)

DESCRIPTION = "created by nsxt-infra"

RANDOM_ALPHABET = string.ascii_lowercase + string.digits

T = TypeVar("T", bound=PolicyObject)


class Outcome(str, Enum):
    """What a task did to its object."""

    FOUND = "found"
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"

    @property
    def changed(self) -> bool:
        return self in (Outcome.CREATED, Outcome.UPDATED)


@dataclass
class TaskContext:
    """Collaborators handed to every task call.

    ``rng`` drives generated IDs and names; inject a seeded instance for
    deterministic runs. ``sleep`` and ``clock`` drive realization polling.
    """

    catalog: Catalog
    rng: random.Random = field(default_factory=random.Random)
    realization_timeout_seconds: float = DEFAULT_REALIZATION_TIMEOUT_SECONDS
    realization_poll_interval_seconds: float = DEFAULT_REALIZATION_POLL_INTERVAL_SECONDS
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic


@dataclass(frozen=True)
class NameMatch:
    """How recovery recognizes an object created by a previous run."""

    name: str
    prefix: bool = False

    def matches(self, display_name: str | None) -> bool:
        if display_name is None:
            return False
        if self.prefix:
            return display_name.startswith(self.name)
        return display_name == self.name


class Task(ABC):
    """A named reconciliation step."""

    def __init__(self, label: str) -> None:
        self.label = label

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r})"

    def name_to_log(self, spec: InfraSpec) -> str | None:
        """Name of the object this task resolves, for log output."""
        return None

    @abstractmethod
    def reference(self, state: InfraState) -> Reference | None:
        """Current reference for this task's slot."""

    @abstractmethod
    def ensure(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Outcome:
        """Bring the object in line with the spec and record it in state."""


class Recoverable(ABC):
    """Tasks whose objects can be re-associated with state by name."""

    @abstractmethod
    def recovery_match(self, spec: InfraSpec) -> NameMatch:
        """Name (or prefix) a previous run gave the object."""

    def recovers(self, spec: InfraSpec, item: PolicyObject) -> bool:
        """Whether a listed object is the one a previous run created."""
        return self.recovery_match(spec).matches(item.display_name)

    @abstractmethod
    def list_all(
        self, ctx: TaskContext, state: InfraState, cursor: str | None
    ) -> ListResult[Any]:
        """One page of all objects of this kind."""

    @abstractmethod
    def set_recovered_reference(
        self, state: InfraState, ref: Reference, name: str | None
    ) -> None:
        """Splice a rediscovered object back into state."""


class Deletable(ABC):
    """Tasks whose objects are owned and torn down by this pipeline."""

    @abstractmethod
    def ensure_deleted(self, ctx: TaskContext, state: InfraState) -> bool:
        """Delete the object if referenced. Returns False if nothing was deleted."""


class ManagedResourceTask(Task, Recoverable, Deletable, Generic[T]):
    """Create/compare/patch cycle for objects this pipeline owns.

    Subclasses describe the desired object and how to read, compare, create,
    patch and delete it; the cycle itself lives in ``ensure``. A stale
    reference (remote object deleted out-of-band) is cleared and the create
    path runs once in the same call.
    """

    @abstractmethod
    def desired(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> T:
        ...

    @abstractmethod
    def read(self, ctx: TaskContext, state: InfraState, ref: Reference) -> T:
        ...

    @abstractmethod
    def matches(self, spec: InfraSpec, current: T, desired: T) -> bool:
        ...

    @abstractmethod
    def patch(self, ctx: TaskContext, state: InfraState, ref: Reference, desired: T) -> None:
        """Bring the existing object in line with ``desired``."""

    @abstractmethod
    def create(self, ctx: TaskContext, state: InfraState, desired: T) -> None:
        """Create the object and record its reference in state."""

    @abstractmethod
    def delete(self, ctx: TaskContext, state: InfraState, ref: Reference) -> None:
        ...

    @abstractmethod
    def clear(self, state: InfraState) -> None:
        """Drop the reference and any derived fields."""

    def ensure(self, ctx: TaskContext, spec: InfraSpec, state: InfraState) -> Outcome:
        desired = self.desired(ctx, spec, state)
        ref = self.reference(state)
        if ref is not None:
            try:
                current = self.read(ctx, state, ref)
            except ResourceNotFoundError:
                logger.warning(
                    "Referenced object is gone, recreating",
                    extra={"task": self.label, "id": ref.id},
                )
                self.clear(state)
            except HttpResponseError as e:
                raise TaskPhaseError(Phase.READING, self.label, e) from e
            else:
                if self.matches(spec, current, desired):
                    return Outcome.UNCHANGED
                try:
                    self.patch(ctx, state, ref, desired)
                except HttpResponseError as e:
                    raise TaskPhaseError(Phase.UPDATING, self.label, e) from e
                return Outcome.UPDATED

        try:
            self.create(ctx, state, desired)
        except HttpResponseError as e:
            raise TaskPhaseError(Phase.CREATING, self.label, e) from e
        return Outcome.CREATED

    def ensure_deleted(self, ctx: TaskContext, state: InfraState) -> bool:
        ref = self.reference(state)
        if ref is None:
            return False
        try:
            self.delete(ctx, state, ref)
        except ResourceNotFoundError:
            logger.info(
                "Object already absent",
                extra={"task": self.label, "id": ref.id},
            )
            self.clear(state)
            return False
        except HttpResponseError as e:
            raise TaskPhaseError(Phase.DELETING, self.label, e) from e
        self.clear(state)
        return True

    def set_recovered_reference(
        self, state: InfraState, ref: Reference, name: str | None
    ) -> None:
        self._store(state, ref)

    @abstractmethod
    def _store(self, state: InfraState, ref: Reference) -> None:
        ...


def require(ref: Reference | None, what: str) -> Reference:
    """Dependency reference that must already be in state."""
    if ref is None:
        raise StateInvariantError(f"{what} reference missing from state")
    return ref


def equal_tags(a: Sequence[Tag] | None, b: Sequence[Tag] | None) -> bool:
    """Tag sets compared as unordered scope/tag mappings."""
    a_map = {t.scope: t.tag for t in a or []}
    b_map = {t.scope: t.tag for t in b or []}
    return a_map == b_map


def equal_strings(a: Sequence[str] | None, b: Sequence[str] | None) -> bool:
    """Ordered sequence equality; None equals empty."""
    return list(a or []) == list(b or [])


def random_string(n: int, rng: random.Random) -> str:
    return "".join(rng.choice(RANDOM_ALPHABET) for _ in range(n))


def generate_id(prefix: str, rng: random.Random) -> str:
    """Client-chosen ID for idempotent creation."""
    return f"{prefix}-{random_string(10, rng)}"


def cidr_host_and_prefix(cidr: str, host: int) -> str:
    """Address ``host`` of the network, with the network's prefix length.

    >>> cidr_host_and_prefix("10.250.0.0/16", 1)
    '10.250.0.1/16'
    """
    network = ipaddress.ip_network(cidr, strict=False)
    if host >= network.num_addresses:
        raise ValueError(f"host {host} outside of {cidr}")
    return f"{network.network_address + host}/{network.prefixlen}"
