"""Re-association of remote objects whose state reference was lost.

A crash between remote creation and state persistence leaves an object
that exists remotely but not in state. Before such a task creates a
duplicate, recovery pages through all objects of its kind and splices the
first one a previous run would have created (by name, and for segments
also by ownership tag) back into state. No match is not an error; normal
creation then proceeds.
"""

from __future__ import annotations

import logging

from azure.core.exceptions import HttpResponseError

from .config import MAX_LIST_PAGES
from .errors import Phase, TaskPhaseError
from .models import InfraSpec, InfraState
from .tasks import Recoverable, Task, TaskContext

logger = logging.getLogger(__name__)


def try_recover(ctx: TaskContext, task: Task, spec: InfraSpec, state: InfraState) -> bool:
    """Recover the reference of ``task`` if its slot is empty.

    Returns:
        True if a remote object was associated back into state.

    Raises:
        TaskPhaseError: A listing call failed.
    """
    if not isinstance(task, Recoverable) or task.reference(state) is not None:
        return False

    match = task.recovery_match(spec)
    cursor: str | None = None
    total: int | None = None
    count = 0
    for page_number in range(MAX_LIST_PAGES):
        try:
            page = task.list_all(ctx, state, cursor)
        except HttpResponseError as e:
            raise TaskPhaseError(Phase.LISTING, task.label, e) from e

        for item in page.results:
            if task.recovers(spec, item):
                ref = item.to_reference()
                task.set_recovered_reference(state, ref, item.display_name)
                logger.info(
                    "Recovered reference",
                    extra={"task": task.label, "id": ref.id, "object_name": item.display_name},
                )
                return True

        if page_number == 0:
            total = page.result_count
        count += len(page.results)
        if page.cursor is None or (total is not None and count >= total):
            break
        cursor = page.cursor

    logger.debug("Nothing to recover", extra={"task": task.label, "object_name": match.name})
    return False
