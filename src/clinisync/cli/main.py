"""CLI entry point and commands."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from clinisync.core.config import default_config, log_level, serialize_config
from clinisync.storage.fs import (
    CLINISYNC_DIR,
    ClinisyncRootError,
    atomic_write,
    ensure_clinisync_dirs,
    find_root,
)

_LOG_FORMAT = "%(levelname)s: %(message)s"


def _configured_level() -> int:
    """Log level from the project config, or WARNING outside a project."""
    from clinisync.cli.helpers import load_project_config

    try:
        root = find_root()
    except ClinisyncRootError:
        return logging.WARNING
    if root is None:
        return logging.WARNING
    try:
        return log_level(load_project_config(root / CLINISYNC_DIR))
    except (OSError, ValueError):
        return logging.WARNING


@click.group()
@click.option("-v", "--verbose", count=True, help="More log output (-v info, -vv debug).")
def cli(verbose: int) -> None:
    """clinisync: local-first clinical data store with FHIR server sync."""
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = _configured_level()
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    logging.getLogger("clinisync").setLevel(level)


@cli.command()
@click.option(
    "--path",
    "target_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to initialize clinisync in (defaults to current directory).",
)
@click.option("--server", "base_url", default=None, help="FHIR server base URL to sync with.")
@click.option("--bundle-size", type=int, default=None, help="Changes per transaction bundle.")
def init(target_path: str, base_url: str | None, bundle_size: int | None) -> None:
    """Initialize a new clinisync project."""
    from clinisync.core.config import validate_config

    root = Path(target_path)
    data_dir = root / CLINISYNC_DIR

    # Idempotency: if .clinisync/ already exists as a directory, skip
    if data_dir.is_dir():
        click.echo(f"clinisync already initialized in {CLINISYNC_DIR}/")
        return

    if data_dir.exists():
        raise click.ClickException(
            f"Cannot initialize: '{CLINISYNC_DIR}' exists but is not a directory. "
            "Remove it and try again."
        )

    config: dict = dict(default_config())
    if base_url:
        config["server"] = {**config["server"], "base_url": base_url.rstrip("/")}
    if bundle_size is not None:
        config["sync"] = {**config["sync"], "bundle_size": bundle_size}
    problems = validate_config(config)
    if problems:
        raise click.ClickException("; ".join(problems))

    try:
        ensure_clinisync_dirs(root)
        atomic_write(data_dir / "config.json", serialize_config(config))
    except PermissionError:
        raise click.ClickException(f"Permission denied: cannot create {CLINISYNC_DIR}/ in {root}")
    except OSError as e:
        raise click.ClickException(f"Failed to initialize clinisync: {e}")

    click.echo(f"clinisync initialized in {CLINISYNC_DIR}/")
    if base_url:
        click.echo(f"Server: {config['server']['base_url']}")


def main() -> None:
    cli()


# ---------------------------------------------------------------------------
# Register command modules (must be after cli group is defined)
# ---------------------------------------------------------------------------
from clinisync.cli import record_cmds as _record_cmds  # noqa: E402, F401
from clinisync.cli import search_cmds as _search_cmds  # noqa: E402, F401
from clinisync.cli import sync_cmds as _sync_cmds  # noqa: E402, F401

if __name__ == "__main__":
    main()
