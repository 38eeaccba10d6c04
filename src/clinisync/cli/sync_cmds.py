"""CLI commands for syncing with a FHIR server."""

from __future__ import annotations

from pathlib import Path

import click

from clinisync.cli.helpers import (
    json_envelope,
    json_option,
    load_project_config,
    open_database,
    output_error,
    output_result,
    require_root,
)
from clinisync.cli.main import cli
from clinisync.sync.bundle import (
    BundleGeneratorConfig,
    TransactionBundleGenerator,
    UnsupportedVerbCombinationError,
)
from clinisync.sync.datasource import DataSourceError, HttpDataSource
from clinisync.sync.synchronizer import Synchronizer


def _synchronizer(data_dir: Path, server: str | None, is_json: bool) -> Synchronizer:
    config = load_project_config(data_dir)
    base_url = server or config["server"].get("base_url")
    if not base_url:
        output_error(
            "No server configured. Pass --server or set server.base_url in config.json.",
            "NO_SERVER",
            is_json,
        )
    try:
        generator = TransactionBundleGenerator(BundleGeneratorConfig.from_config(config))
    except UnsupportedVerbCombinationError as e:
        output_error(str(e), "INVALID_CONFIG", is_json)
    data_source = HttpDataSource(base_url, timeout=config["server"].get("timeout_seconds", 30))
    return Synchronizer(
        open_database(data_dir),
        data_source,
        generator=generator,
        bundle_size=config["sync"].get("bundle_size", 50),
    )


@cli.group()
def sync() -> None:
    """Exchange records with a FHIR server."""


@sync.command("push")
@click.option("--server", default=None, help="FHIR server base URL (overrides config).")
@json_option
def sync_push(server: str | None, output_json: bool) -> None:
    """Upload pending changes as transaction bundles."""
    data_dir = require_root(output_json)
    report = _synchronizer(data_dir, server, output_json).upload()

    human = (
        f"Uploaded {report.changes_uploaded} change(s) in {report.bundles_succeeded} bundle(s); "
        f"{report.bundles_failed} bundle(s) failed, {report.changes_pending} change(s) pending."
    )
    for failure in report.failures:
        for issue in failure.outcome.get("issue", []):
            detail = issue.get("diagnostics") or issue.get("code")
            human += f"\n  {issue.get('severity', 'error')}: {detail}"

    if output_json and not report.ok:
        click.echo(json_envelope(False, data=report.to_dict()))
        raise SystemExit(1)
    output_result(
        data=report.to_dict(),
        human_message=human,
        quiet_value=str(report.changes_uploaded),
        is_json=output_json,
        is_quiet=False,
    )
    if not report.ok:
        raise SystemExit(1)


@sync.command("pull")
@click.argument("path")
@click.option("--server", default=None, help="FHIR server base URL (overrides config).")
@json_option
def sync_pull(path: str, server: str | None, output_json: bool) -> None:
    """Download records from PATH (e.g. 'Patient?_count=100') into the local store."""
    data_dir = require_root(output_json)
    synchronizer = _synchronizer(data_dir, server, output_json)
    try:
        count = synchronizer.download(path)
    except DataSourceError as e:
        output_error(str(e), "SYNC_FAILED", output_json)
    output_result(
        data={"downloaded": count},
        human_message=f"Downloaded {count} record(s).",
        quiet_value=str(count),
        is_json=output_json,
        is_quiet=False,
    )
