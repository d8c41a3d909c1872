"""NSX-T infrastructure CLI (nsxt-infra).

Connection settings come from the environment (see Config.from_env);
options only override the document locations and run behavior.

Usage:
    nsxt-infra ensure --spec infra.yaml --state infra-state.json
    nsxt-infra destroy --state infra-state.json
    nsxt-infra show-state --state infra-state.json
"""

from __future__ import annotations

import asyncio
import dataclasses
from pathlib import Path

import click

from .config import Action, Config, ConfigurationError
from .main import execute, setup_logging
from .spec_loader import SpecLoadError, load_state


def _load_config(spec: str | None, state: str | None, recover: bool | None) -> Config:
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    overrides: dict[str, object] = {}
    if spec is not None:
        overrides["spec_file"] = Path(spec)
    if state is not None:
        overrides["state_file"] = Path(state)
    if recover is not None:
        overrides["recover"] = recover
    return dataclasses.replace(config, **overrides) if overrides else config


def _run(config: Config, action: Action) -> None:
    setup_logging()
    exit_code = asyncio.run(execute(config, action))
    if exit_code != 0:
        raise SystemExit(exit_code)


@click.group()
@click.version_option(version="0.1.0", prog_name="nsxt-infra")
def cli() -> None:
    """NSX-T infrastructure reconciler (nsxt-infra).

    Ensures the tier-1 gateway, segment and SNAT setup of one cluster and
    tears it down again.
    """
    pass


@cli.command()
@click.option("--spec", "spec", type=click.Path(exists=True, dir_okay=False), help="Spec YAML")
@click.option("--state", "state", type=click.Path(dir_okay=False), help="State document")
@click.option("--recover/--no-recover", default=None, help="Re-associate lost references")
def ensure(spec: str | None, state: str | None, recover: bool | None) -> None:
    """Create or update all infrastructure objects."""
    _run(_load_config(spec, state, recover), Action.ENSURE)


@cli.command()
@click.option("--state", "state", type=click.Path(dir_okay=False), help="State document")
def destroy(state: str | None) -> None:
    """Delete all owned infrastructure objects in reverse order."""
    _run(_load_config(None, state, None), Action.DELETE)


@cli.command("show-state")
@click.option(
    "--state",
    "state",
    type=click.Path(dir_okay=False),
    default="infra-state.json",
    envvar="STATE_FILE",
    show_default=True,
    help="State document",
)
def show_state(state: str) -> None:
    """Print the state document in its persisted form."""
    try:
        infra_state = load_state(Path(state))
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    click.echo(infra_state.to_json())


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
