"""CLI commands for local records and pending changes."""

from __future__ import annotations

import json

import click

from clinisync.cli.helpers import (
    common_options,
    open_database,
    output_error,
    output_result,
    read_resource_file,
    require_root,
)
from clinisync.cli.main import cli
from clinisync.core.patch import IncompatibleVersionError
from clinisync.core.records import InvalidResourceError, ResourceNotFoundError
from clinisync.storage.locks import LockTimeout


# ---------------------------------------------------------------------------
# clinisync insert / insert-remote / update
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False))
@common_options
def insert(file: str, output_json: bool, quiet: bool) -> None:
    """Store records created locally and queue them for upload."""
    is_json = output_json
    data_dir = require_root(is_json)
    resources = read_resource_file(file, is_json)
    db = open_database(data_dir)
    try:
        ids = db.insert(*resources)
    except InvalidResourceError as e:
        output_error(str(e), "INVALID_RESOURCE", is_json)
    except LockTimeout as e:
        output_error(str(e), "LOCK_TIMEOUT", is_json)
    keys = [f"{r['resourceType']}/{i}" for r, i in zip(resources, ids)]
    output_result(
        data={"inserted": keys},
        human_message="\n".join(f"Inserted {k}" for k in keys),
        quiet_value="\n".join(ids),
        is_json=is_json,
        is_quiet=quiet,
    )


@cli.command("insert-remote")
@click.argument("file", type=click.Path(dir_okay=False))
@common_options
def insert_remote(file: str, output_json: bool, quiet: bool) -> None:
    """Store records that already exist on the server (no change is queued)."""
    is_json = output_json
    data_dir = require_root(is_json)
    resources = read_resource_file(file, is_json)
    db = open_database(data_dir)
    try:
        count = db.insert_remote(*resources)
    except InvalidResourceError as e:
        output_error(str(e), "INVALID_RESOURCE", is_json)
    except LockTimeout as e:
        output_error(str(e), "LOCK_TIMEOUT", is_json)
    output_result(
        data={"stored": count},
        human_message=f"Stored {count} remote record(s)",
        quiet_value=str(count),
        is_json=is_json,
        is_quiet=quiet,
    )


@cli.command()
@click.argument("file", type=click.Path(dir_okay=False))
@common_options
def update(file: str, output_json: bool, quiet: bool) -> None:
    """Replace stored records and queue the differences for upload."""
    is_json = output_json
    data_dir = require_root(is_json)
    resources = read_resource_file(file, is_json)
    db = open_database(data_dir)
    try:
        db.update(*resources)
    except ResourceNotFoundError as e:
        output_error(str(e), "NOT_FOUND", is_json)
    except (InvalidResourceError, IncompatibleVersionError) as e:
        output_error(str(e), "INVALID_RESOURCE", is_json)
    except LockTimeout as e:
        output_error(str(e), "LOCK_TIMEOUT", is_json)
    keys = [f"{r['resourceType']}/{r['id']}" for r in resources]
    output_result(
        data={"updated": keys},
        human_message="\n".join(f"Updated {k}" for k in keys),
        quiet_value="\n".join(keys),
        is_json=is_json,
        is_quiet=quiet,
    )


# ---------------------------------------------------------------------------
# clinisync delete / show
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("resource_type")
@click.argument("resource_id")
@common_options
def delete(resource_type: str, resource_id: str, output_json: bool, quiet: bool) -> None:
    """Delete a stored record and queue the deletion for upload."""
    is_json = output_json
    data_dir = require_root(is_json)
    db = open_database(data_dir)
    try:
        deleted = db.delete(resource_type, resource_id)
    except LockTimeout as e:
        output_error(str(e), "LOCK_TIMEOUT", is_json)
    key = f"{resource_type}/{resource_id}"
    output_result(
        data={"deleted": deleted, "key": key},
        human_message=f"Deleted {key}" if deleted else f"{key} is not stored; nothing to delete",
        quiet_value=key if deleted else "",
        is_json=is_json,
        is_quiet=quiet,
    )


@cli.command()
@click.argument("resource_type")
@click.argument("resource_id")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def show(resource_type: str, resource_id: str, output_json: bool) -> None:
    """Print a stored record."""
    is_json = output_json
    data_dir = require_root(is_json)
    db = open_database(data_dir)
    try:
        resource = db.select(resource_type, resource_id)
    except ResourceNotFoundError as e:
        output_error(str(e), "NOT_FOUND", is_json)
    if is_json:
        output_result(data=resource, human_message="", quiet_value="", is_json=True, is_quiet=False)
    else:
        click.echo(json.dumps(resource, indent=2, sort_keys=True, ensure_ascii=False))


# ---------------------------------------------------------------------------
# clinisync changes
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--raw", is_flag=True, help="List individual ledger entries instead of net changes.")
@click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")
def changes(raw: bool, output_json: bool) -> None:
    """List pending local changes."""
    data_dir = require_root(output_json)
    db = open_database(data_dir)

    if raw:
        entries = [c.to_dict() for c in db.local_changes()]
    else:
        entries = [
            {**s.local_change.to_dict(), "token": list(s.token.ids)}
            for s in db.get_all_local_changes()
        ]

    if output_json:
        click.echo(json.dumps({"ok": True, "data": entries}, sort_keys=True, indent=2))
        return
    if not entries:
        click.echo("No pending changes.")
        return
    for entry in entries:
        ids = entry.get("token", [entry["id"]])
        click.echo(
            f"{entry['type']:<7} {entry['resourceType']}/{entry['resourceId']}"
            f"  (ledger {', '.join(str(i) for i in ids)})"
        )
