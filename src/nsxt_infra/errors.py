"""Error taxonomy for reconciliation runs.

Three kinds of failure are distinguished:
- Remote absence (azure-core ResourceNotFoundError). Expected; tasks self-heal
  by recreating the object. Fatal only for shared objects that must pre-exist,
  which surface as LookupNotFoundError.
- Phase failures (TaskPhaseError). A remote call failed while reading,
  creating, updating or deleting. Retryable by the caller's outer loop.
- Misconfiguration (LookupNotFoundError, StateInvariantError). No retry
  can fix these; they must reach the operator.
"""

from __future__ import annotations

import json
from enum import Enum

from azure.core.exceptions import AzureError, HttpResponseError


class Phase(str, Enum):
    """Operation phase a remote failure happened in."""

    READING = "reading"
    CREATING = "creating"
    UPDATING = "updating"
    DELETING = "deleting"
    LISTING = "listing"


class InfraError(Exception):
    """Base class for reconciliation failures."""

    retryable = False


class LookupNotFoundError(InfraError):
    """A required pre-existing shared object does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"not found: {name}")
        self.kind = kind
        self.name = name


class StateInvariantError(InfraError):
    """A task needs a dependency reference that is missing from state."""

    pass


class TaskPhaseError(InfraError):
    """A remote call failed during one phase of a task."""

    retryable = True

    def __init__(self, phase: Phase, label: str, cause: Exception) -> None:
        self.phase = phase
        self.label = label
        self.cause = cause
        super().__init__(f"{phase.value} {label} failed: {api_error_message(cause)}")


class RealizationTimeoutError(InfraError):
    """The remote system did not realize an allocation in time."""

    retryable = True


class RealizationFailedError(InfraError):
    """The remote system reported the allocation realization as failed."""

    pass


def api_error_message(err: BaseException) -> str:
    """Extract a readable message from a policy API error.

    The policy API answers failures with a JSON body carrying
    ``error_message`` and optionally ``related_errors``. Falls back to the
    exception text when no such body is available.
    """
    if isinstance(err, HttpResponseError) and err.response is not None:
        try:
            payload = json.loads(err.response.text())
        except (ValueError, TypeError, AttributeError):
            payload = None
        if isinstance(payload, dict) and payload.get("error_message"):
            parts = [str(payload["error_message"])]
            for related in payload.get("related_errors") or []:
                if isinstance(related, dict) and related.get("error_message"):
                    parts.append(str(related["error_message"]))
            message = "; ".join(parts)
            if err.status_code:
                return f"{message} (HTTP {err.status_code})"
            return message
    if isinstance(err, AzureError) and err.message:
        return str(err.message)
    return str(err)


def is_retryable(err: BaseException) -> bool:
    """Whether the outer run loop may retry after this error."""
    if isinstance(err, InfraError):
        return err.retryable
    # Unwrapped transport errors (e.g. connection resets during a lookup)
    return isinstance(err, AzureError)
