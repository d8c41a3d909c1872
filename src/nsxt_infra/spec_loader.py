"""Spec and state document loading with validation.

SECURITY: Spec files are size-checked before reading. State documents are
written atomically so a crash mid-write never leaves a truncated file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import InfraSpec, InfraState

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec or state loading or validation fails."""

    pass


def _format_validation_error(path: Path, e: ValidationError) -> str:
    errors = []
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        errors.append(f"  - {loc}: {error['msg']}")
    return f"Validation failed for {path}:\n" + "\n".join(errors)


def load_spec(spec_path: Path) -> InfraSpec:
    """Load and validate the desired infrastructure spec from YAML.

    Both a flat mapping and a Kubernetes-style document (apiVersion, kind,
    metadata, spec) are accepted.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    if not spec_path.exists():
        raise SpecLoadError(f"Spec file not found: {spec_path}")

    try:
        file_size = spec_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat spec file {spec_path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Spec file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {spec_path}"
        )

    try:
        content = spec_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read spec file {spec_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    try:
        spec = InfraSpec.model_validate(spec_data)
    except ValidationError as e:
        raise SpecLoadError(_format_validation_error(spec_path, e)) from e

    logger.info("Loaded spec for cluster '%s' from %s", spec.cluster_name, spec_path)
    return spec


def load_state(state_path: Path) -> InfraState:
    """Load the state document; a missing file is an empty state.

    Raises:
        SpecLoadError: If the file exists but is not a valid state document.
    """
    if not state_path.exists():
        logger.info("No state document at %s, starting empty", state_path)
        return InfraState()

    try:
        content = state_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read state file {state_path}: {e}") from e

    if not content.strip():
        return InfraState()

    try:
        return InfraState.from_json(content)
    except ValidationError as e:
        raise SpecLoadError(_format_validation_error(state_path, e)) from e


def save_state(state_path: Path, state: InfraState) -> None:
    """Write the state document atomically (temp file + rename)."""
    directory = state_path.parent if str(state_path.parent) else Path(".")
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=f".{state_path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(state.to_json())
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, state_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
