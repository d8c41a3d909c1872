"""Configuration management with validation.

Connection settings for the NSX-T policy API and the timing bounds of a
reconciliation run are validated at load time so a misconfigured process
fails before it touches the remote catalog.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Action(str, Enum):
    """What a run does with the infrastructure."""

    ENSURE = "ensure"
    DELETE = "delete"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REALIZATION_TIMEOUT_SECONDS = 15.0
MAX_REALIZATION_TIMEOUT_SECONDS = 300.0
DEFAULT_REALIZATION_POLL_INTERVAL_SECONDS = 1.0

DEFAULT_API_TIMEOUT_SECONDS = 30
MAX_API_TIMEOUT_SECONDS = 600

# Transport-level retries; task failures are retried by the outer run loop
DEFAULT_API_RETRIES = 0
MAX_API_RETRIES = 5

DEFAULT_MAX_RUN_ATTEMPTS = 3
MAX_RUN_ATTEMPTS = 10
RETRY_BACKOFF_BASE_SECONDS = 5

MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024
MAX_LIST_PAGES = 1000  # Upper bound on pages fetched by a single listing

POLICY_API_BASE_PATH = "/policy/api/v1"

VALID_HOST_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9.\-]*(:[0-9]{1,5})?$"


@dataclass(frozen=True)
class Config:
    """Runtime configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    # Policy API connection
    host: str
    username: str
    password: str = field(repr=False)
    insecure: bool = False

    # Documents
    spec_file: Path = field(default_factory=lambda: Path("infra.yaml"))
    state_file: Path = field(default_factory=lambda: Path("infra-state.json"))

    # Timing
    realization_timeout_seconds: float = DEFAULT_REALIZATION_TIMEOUT_SECONDS
    realization_poll_interval_seconds: float = DEFAULT_REALIZATION_POLL_INTERVAL_SECONDS
    api_timeout_seconds: int = DEFAULT_API_TIMEOUT_SECONDS
    api_retries: int = DEFAULT_API_RETRIES

    # Behavior
    max_run_attempts: int = DEFAULT_MAX_RUN_ATTEMPTS
    recover: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.host:
            errors.append("NSXT_HOST is required")
        elif not re.match(VALID_HOST_PATTERN, self.host):
            errors.append(f"NSXT_HOST must be a hostname or IP with optional port: {self.host}")

        if not self.username:
            errors.append("NSXT_USERNAME is required")

        if not self.password:
            errors.append("NSXT_PASSWORD or NSXT_PASSWORD_FILE is required")

        if not (0 < self.realization_timeout_seconds <= MAX_REALIZATION_TIMEOUT_SECONDS):
            errors.append(
                f"REALIZATION_TIMEOUT must be between 0 and {MAX_REALIZATION_TIMEOUT_SECONDS} seconds"
            )

        if self.realization_poll_interval_seconds <= 0:
            errors.append("REALIZATION_POLL_INTERVAL must be positive")
        elif self.realization_poll_interval_seconds > self.realization_timeout_seconds:
            errors.append("REALIZATION_POLL_INTERVAL cannot exceed REALIZATION_TIMEOUT")

        if not (1 <= self.api_timeout_seconds <= MAX_API_TIMEOUT_SECONDS):
            errors.append(f"API_TIMEOUT must be between 1 and {MAX_API_TIMEOUT_SECONDS} seconds")

        if not (0 <= self.api_retries <= MAX_API_RETRIES):
            errors.append(f"API_RETRIES must be between 0 and {MAX_API_RETRIES}")

        if not (1 <= self.max_run_attempts <= MAX_RUN_ATTEMPTS):
            errors.append(f"MAX_RUN_ATTEMPTS must be between 1 and {MAX_RUN_ATTEMPTS}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_url(self) -> str:
        """Root URL of the policy API."""
        return f"https://{self.host}{POLICY_API_BASE_PATH}"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            NSXT_HOST: NSX-T manager host (optionally with port)
            NSXT_USERNAME: Policy API user
            NSXT_PASSWORD: Policy API password
            NSXT_PASSWORD_FILE: File holding the password (used if NSXT_PASSWORD is unset)
            NSXT_INSECURE: If "true", skip TLS certificate verification
            SPEC_FILE: Desired infrastructure YAML (default: infra.yaml)
            STATE_FILE: State document JSON (default: infra-state.json)
            REALIZATION_TIMEOUT: Seconds to wait for the SNAT address (default: 15)
            REALIZATION_POLL_INTERVAL: Seconds between realization polls (default: 1)
            API_TIMEOUT: Per-request timeout in seconds (default: 30)
            API_RETRIES: Transport retries per request (default: 0)
            MAX_RUN_ATTEMPTS: Outer retry attempts for retryable failures (default: 3)
            RECOVER: If "false", skip recovery of lost references (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_password() -> str:
            password = os.environ.get("NSXT_PASSWORD", "")
            if password:
                return password
            password_file = os.environ.get("NSXT_PASSWORD_FILE")
            if not password_file:
                return ""
            try:
                return Path(password_file).read_text(encoding="utf-8").strip()
            except OSError as e:
                raise ConfigurationError(f"Cannot read NSXT_PASSWORD_FILE {password_file}: {e}") from e

        return cls(
            host=os.environ.get("NSXT_HOST", ""),
            username=os.environ.get("NSXT_USERNAME", ""),
            password=get_password(),
            insecure=get_bool("NSXT_INSECURE", False),
            spec_file=Path(os.environ.get("SPEC_FILE", "infra.yaml")),
            state_file=Path(os.environ.get("STATE_FILE", "infra-state.json")),
            realization_timeout_seconds=get_float(
                "REALIZATION_TIMEOUT", DEFAULT_REALIZATION_TIMEOUT_SECONDS
            ),
            realization_poll_interval_seconds=get_float(
                "REALIZATION_POLL_INTERVAL", DEFAULT_REALIZATION_POLL_INTERVAL_SECONDS
            ),
            api_timeout_seconds=get_int("API_TIMEOUT", DEFAULT_API_TIMEOUT_SECONDS),
            api_retries=get_int("API_RETRIES", DEFAULT_API_RETRIES),
            max_run_attempts=get_int("MAX_RUN_ATTEMPTS", DEFAULT_MAX_RUN_ATTEMPTS),
            recover=get_bool("RECOVER", True),
        )
