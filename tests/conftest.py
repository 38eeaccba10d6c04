"""Shared test fixtures."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner

# 2021-08-09T13:38:21Z, the fixed "now" for date searches.
FIXED_NOW = datetime.fromtimestamp(1628516301, tz=timezone.utc)


@pytest.fixture()
def clinisync_root(tmp_path: Path) -> Path:
    """Return a temporary directory suitable for initializing .clinisync/ in."""
    return tmp_path


@pytest.fixture()
def initialized_root(clinisync_root: Path) -> Path:
    """Return a temporary directory with .clinisync/ already initialized."""
    from clinisync.core.config import default_config, serialize_config
    from clinisync.storage.fs import CLINISYNC_DIR, atomic_write, ensure_clinisync_dirs

    ensure_clinisync_dirs(clinisync_root)
    atomic_write(
        clinisync_root / CLINISYNC_DIR / "config.json", serialize_config(default_config())
    )
    return clinisync_root


@pytest.fixture()
def data_dir(initialized_root: Path) -> Path:
    from clinisync.storage.fs import CLINISYNC_DIR

    return initialized_root / CLINISYNC_DIR


@pytest.fixture()
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture()
def db(data_dir: Path):
    """A Database whose clock is pinned to FIXED_NOW."""
    from clinisync.storage.database import Database

    return Database(data_dir, clock=lambda: FIXED_NOW)


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def cli_env(initialized_root: Path) -> dict[str, str]:
    """Return env dict with CLINISYNC_ROOT pointing to initialized_root."""
    return {"CLINISYNC_ROOT": str(initialized_root)}


@pytest.fixture()
def invoke(cli_runner: CliRunner, cli_env: dict[str, str]):
    """Return a helper that invokes CLI commands with the right environment.

    Usage::

        result = invoke("show", "Patient", "p1")
    """
    from clinisync.cli.main import cli

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(cli, list(args), env=cli_env, **kwargs)

    return _invoke


@pytest.fixture()
def invoke_json(invoke):
    """Like invoke, but appends --json and parses the response.

    Returns (parsed_dict, exit_code) tuple.
    """

    def _invoke_json(*args: str) -> tuple[dict, int]:
        result = invoke(*args, "--json")
        parsed = json.loads(result.output)
        return parsed, result.exit_code

    return _invoke_json


@pytest.fixture()
def write_json(tmp_path: Path):
    """Write a JSON document to a scratch file and return its path as a string."""
    counter = {"n": 0}

    def _write(data: object) -> str:
        counter["n"] += 1
        path = tmp_path / f"input-{counter['n']}.json"
        path.write_text(json.dumps(data))
        return str(path)

    return _write


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def patient(resource_id: str, *given: str, family: str | None = None, **fields: object) -> dict:
    name: dict = {}
    if given:
        name["given"] = list(given)
    if family:
        name["family"] = family
    body: dict = {"resourceType": "Patient", "id": resource_id, **fields}
    if name:
        body["name"] = [name]
    return body


@pytest.fixture()
def make_patient():
    return patient
