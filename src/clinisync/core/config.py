"""Default config generation and validation."""

from __future__ import annotations

import json
import logging
from typing import TypedDict

VERB_PUT = "PUT"
VERB_PATCH = "PATCH"
VERB_POST = "POST"

VALID_VERBS: tuple[str, ...] = (VERB_PUT, VERB_PATCH, VERB_POST)
VALID_LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ServerConfig(TypedDict, total=False):
    base_url: str | None
    timeout_seconds: float


class SyncConfig(TypedDict, total=False):
    create_verb: str
    update_verb: str
    bundle_size: int


class SearchConfig(TypedDict, total=False):
    approximate_tolerance: float


class ClinisyncConfig(TypedDict, total=False):
    schema_version: int
    server: ServerConfig
    sync: SyncConfig
    search: SearchConfig
    log_level: str


def default_config() -> ClinisyncConfig:
    """Return the default clinisync configuration.

    The returned dict, when serialized with
    ``json.dumps(data, sort_keys=True, indent=2) + "\\n"``,
    produces the canonical default config.json.
    """
    return {
        "schema_version": 1,
        "server": {
            "base_url": None,
            "timeout_seconds": 30,
        },
        "sync": {
            "create_verb": VERB_PUT,
            "update_verb": VERB_PATCH,
            "bundle_size": 50,
        },
        "search": {
            "approximate_tolerance": 0.1,
        },
        "log_level": "WARNING",
    }


def serialize_config(config: ClinisyncConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def load_config(raw: str) -> dict:
    """Parse a JSON config string and return the config dict.

    This is a pure function (no I/O).  The CLI layer reads the file
    and passes the raw string here.  Sections missing from *raw* are
    filled in from :func:`default_config`.
    """
    data = json.loads(raw)
    merged: dict = dict(default_config())
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def validate_config(config: dict) -> list[str]:
    """Return a list of human-readable problems with *config* (empty if valid)."""
    problems: list[str] = []

    server = config.get("server", {})
    base_url = server.get("base_url")
    if base_url is not None and not (
        isinstance(base_url, str) and base_url.startswith(("http://", "https://"))
    ):
        problems.append(f"server.base_url must be an http(s) URL, got {base_url!r}")
    timeout = server.get("timeout_seconds", 30)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        problems.append(f"server.timeout_seconds must be a positive number, got {timeout!r}")

    sync = config.get("sync", {})
    for field in ("create_verb", "update_verb"):
        verb = sync.get(field)
        if verb is not None and verb not in VALID_VERBS:
            problems.append(f"sync.{field} must be one of {', '.join(VALID_VERBS)}, got {verb!r}")
    bundle_size = sync.get("bundle_size", 50)
    if isinstance(bundle_size, bool) or not isinstance(bundle_size, int) or bundle_size < 1:
        problems.append(f"sync.bundle_size must be a positive integer, got {bundle_size!r}")

    tolerance = config.get("search", {}).get("approximate_tolerance", 0.1)
    if isinstance(tolerance, bool) or not isinstance(tolerance, (int, float)) or tolerance < 0:
        problems.append(
            f"search.approximate_tolerance must be a non-negative number, got {tolerance!r}"
        )

    level = config.get("log_level", "WARNING")
    if level not in VALID_LOG_LEVELS:
        problems.append(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}, got {level!r}")

    return problems


def log_level(config: dict) -> int:
    """Return the numeric logging level configured in *config*."""
    return getattr(logging, str(config.get("log_level", "WARNING")).upper(), logging.WARNING)
