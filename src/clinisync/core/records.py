"""Record bodies, canonical serialization, and store envelopes."""

from __future__ import annotations

import copy
import json

from clinisync.core.ids import validate_resource_id, validate_resource_type


class ResourceNotFoundError(Exception):
    """Raised when a record is not present in the local store."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"Resource not found with type {resource_type} and id {resource_id}!"
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidResourceError(ValueError):
    """Raised when a body lacks a usable ``resourceType`` or ``id``."""


def canonical_json(body: dict | list) -> str:
    """Serialize *body* in canonical form (sorted keys, compact separators)."""
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def resource_key(resource: dict) -> tuple[str, str]:
    """Return ``(resourceType, id)`` for *resource*.

    Raises:
        InvalidResourceError: If either part is missing or malformed.
    """
    if not isinstance(resource, dict):
        raise InvalidResourceError("Resource must be a JSON object.")
    resource_type = resource.get("resourceType")
    resource_id = resource.get("id")
    if not validate_resource_type(resource_type):
        raise InvalidResourceError(f"Invalid resourceType: {resource_type!r}")
    if not validate_resource_id(resource_id):
        raise InvalidResourceError(f"Invalid id for {resource_type}: {resource_id!r}")
    return resource_type, resource_id


def strip_local_meta(resource: dict) -> dict:
    """Return a copy of *resource* without server-managed meta fields.

    ``meta.versionId`` and ``meta.lastUpdated`` are owned by the server and
    tracked on the envelope instead, so they never leak into local diffs.
    An emptied ``meta`` object is dropped.
    """
    body = copy.deepcopy(resource)
    meta = body.get("meta")
    if isinstance(meta, dict):
        meta.pop("versionId", None)
        meta.pop("lastUpdated", None)
        if not meta:
            body.pop("meta")
    return body


def remote_meta(resource: dict) -> tuple[str | None, str | None]:
    """Return ``(versionId, lastUpdated)`` from ``resource.meta`` if present."""
    meta = resource.get("meta")
    if not isinstance(meta, dict):
        return None, None
    return meta.get("versionId"), meta.get("lastUpdated")


def with_remote_meta(
    body: dict,
    version_id: str | None,
    last_updated: str | None,
) -> dict:
    """Return a copy of *body* with ``meta.versionId``/``meta.lastUpdated`` restored."""
    result = copy.deepcopy(body)
    if version_id is None and last_updated is None:
        return result
    meta = result.setdefault("meta", {})
    if version_id is not None:
        meta["versionId"] = version_id
    if last_updated is not None:
        meta["lastUpdated"] = last_updated
    return result


def make_envelope(
    resource: dict,
    index: dict,
    *,
    version_id: str | None = None,
    last_updated_remote: str | None = None,
) -> dict:
    """Build the stored envelope for *resource*."""
    resource_type, resource_id = resource_key(resource)
    return {
        "schema_version": 1,
        "resourceType": resource_type,
        "resourceId": resource_id,
        "resource": resource,
        "versionId": version_id,
        "lastUpdatedRemote": last_updated_remote,
        "index": index,
    }


def serialize_envelope(envelope: dict) -> str:
    """Pretty-print an envelope as sorted JSON with trailing newline."""
    return json.dumps(envelope, sort_keys=True, indent=2, ensure_ascii=False) + "\n"
