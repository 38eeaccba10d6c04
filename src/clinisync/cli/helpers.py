"""Shared CLI helpers, decorators, and output utilities."""

from __future__ import annotations

import json
from pathlib import Path
from typing import NoReturn

import click

from clinisync.core.config import default_config, load_config
from clinisync.storage.database import Database
from clinisync.storage.fs import CLINISYNC_DIR, ClinisyncRootError, find_root


# ---------------------------------------------------------------------------
# Root & config
# ---------------------------------------------------------------------------


def require_root(is_json: bool = False) -> Path:
    """Find .clinisync/ directory or exit with error."""
    try:
        root = find_root()
    except ClinisyncRootError as e:
        output_error(str(e), "NOT_INITIALIZED", is_json)
    if root is None:
        output_error(
            "Not a clinisync project (no .clinisync/ found). Run 'clinisync init' first.",
            "NOT_INITIALIZED",
            is_json,
        )
    return root / CLINISYNC_DIR


def load_project_config(data_dir: Path) -> dict:
    """Load config.json from the data directory, filling in defaults."""
    config_path = data_dir / "config.json"
    if not config_path.exists():
        return dict(default_config())
    return load_config(config_path.read_text())


def open_database(data_dir: Path) -> Database:
    return Database.open(data_dir)


def read_resource_file(path: str, is_json: bool) -> list[dict]:
    """Read one resource, a JSON array of resources, or a Bundle's entries."""
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        output_error(f"Cannot read {path}: {e}", "INVALID_INPUT", is_json)
    if isinstance(data, list):
        resources = data
    elif isinstance(data, dict) and data.get("resourceType") == "Bundle":
        resources = [e["resource"] for e in data.get("entry") or [] if e.get("resource")]
    else:
        resources = [data]
    if not all(isinstance(r, dict) for r in resources):
        output_error(f"{path} does not contain JSON resources.", "INVALID_INPUT", is_json)
    return resources


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2) + "\n"


def json_error_obj(code: str, message: str) -> dict:
    """Build an error object for the JSON envelope."""
    return {"code": code, "message": message}


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error=json_error_obj(code, message)))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def output_result(
    *,
    data: object,
    human_message: str,
    quiet_value: str,
    is_json: bool,
    is_quiet: bool,
) -> None:
    """Print success result in the appropriate format."""
    if is_json:
        click.echo(json_envelope(True, data=data))
    elif is_quiet:
        click.echo(quiet_value)
    else:
        click.echo(human_message)


def json_option(f):  # noqa: ANN001, ANN201
    """Decorator adding ``--json`` (bound to ``output_json``)."""
    return click.option("--json", "output_json", is_flag=True, help="Output structured JSON.")(f)


def common_options(f):  # noqa: ANN001, ANN201
    """Decorator adding the output-format options every command shares."""
    f = click.option("--quiet", is_flag=True, help="Print only the primary value.")(f)
    return json_option(f)
