"""Main entry point for the NSX-T infrastructure reconciler.

A run loads the desired spec and the state document, then either ensures
all infrastructure objects or tears the owned ones down. State is written
back after every completed task, so a crash loses at most one task's
progress (and recovery re-associates that object on the next run).

Retryable failures are retried with exponential backoff; fatal ones
(missing shared objects, broken state invariants) end the run at once.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import random
import signal
import sys
from datetime import UTC, datetime

from .catalog import Catalog, build_catalog
from .config import RETRY_BACKOFF_BASE_SECONDS, Action, Config, ConfigurationError
from .errors import is_retryable
from .models import InfraSpec, InfraState
from .runner import RunResult, TaskRunner
from .spec_loader import SpecLoadError, load_spec, load_state, save_state
from .tasks import TaskContext

logger = logging.getLogger(__name__)

_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP pipeline
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def _run_with_retries(
    config: Config, runner: TaskRunner, spec: InfraSpec | None, state: InfraState
) -> RunResult:
    result: RunResult | None = None
    for attempt in range(1, config.max_run_attempts + 1):
        if spec is not None:
            result = await runner.ensure(spec, state)
        else:
            result = await runner.ensure_deleted(state)

        if result.success or result.cancelled:
            break
        assert result.error is not None
        if not is_retryable(result.error) or attempt == config.max_run_attempts:
            break

        backoff = RETRY_BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
        wait_time = backoff + random.uniform(0, backoff * 0.2)
        logger.warning(
            "Run failed, retrying",
            extra={
                "attempt": attempt,
                "max_attempts": config.max_run_attempts,
                "wait_seconds": wait_time,
                "error": str(result.error),
            },
        )
        await asyncio.sleep(wait_time)

    assert result is not None
    return result


async def execute(
    config: Config,
    action: Action,
    *,
    catalog: Catalog | None = None,
    rng: random.Random | None = None,
    install_signal_handlers: bool = True,
) -> int:
    """Run ensure or teardown with the outer retry loop.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        state = load_state(config.state_file)
        spec = load_spec(config.spec_file) if action == Action.ENSURE else None
    except SpecLoadError as e:
        logger.error("Failed to load documents", extra={"error": str(e)})
        return 1

    owns_catalog = catalog is None
    if catalog is None:
        catalog = build_catalog(config)
    ctx = TaskContext(
        catalog=catalog,
        rng=rng or random.Random(),
        realization_timeout_seconds=config.realization_timeout_seconds,
        realization_poll_interval_seconds=config.realization_poll_interval_seconds,
    )

    def persist(current: InfraState) -> None:
        save_state(config.state_file, current)

    runner = TaskRunner(ctx, on_progress=persist, recover=config.recover)

    if install_signal_handlers:
        loop = asyncio.get_event_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            runner.cancel()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        result = await _run_with_retries(config, runner, spec, state)
    finally:
        if owns_catalog:
            catalog.close()

    if result.success:
        logger.info(
            "Infrastructure reconciled" if action == Action.ENSURE else "Infrastructure deleted",
            extra={"changed": result.changed, "state_file": str(config.state_file)},
        )
        return 0
    if result.cancelled:
        return 130
    return 1


async def main() -> int:
    """Run one reconciliation as configured by the environment.

    INFRA_ACTION selects "ensure" (default) or "delete".
    """
    setup_logging()

    try:
        config = Config.from_env()
        action = Action(os.environ.get("INFRA_ACTION", Action.ENSURE.value))
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1
    except ValueError:
        valid = [a.value for a in Action]
        logger.error("Configuration error", extra={"error": f"INFRA_ACTION must be one of {valid}"})
        return 1

    logger.info(
        "Starting NSX-T infrastructure reconciler",
        extra={"host": config.host, "action": action.value, "spec_file": str(config.spec_file)},
    )
    return await execute(config, action)


def run() -> None:
    """Entry point for the reconciler process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
