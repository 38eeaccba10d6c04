"""Local change entries, tokens, and the per-record squash fold.

A local change is one mutation of one record, written to the ledger in the
order it happened.  Before an upload the history of each record is folded
into its net effect (a *squashed* change) together with a token naming the
ledger ids that went into it.  The token is what gets deleted once the
server confirms the upload, so changes appended after the squash survive.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace

from clinisync.core.patch import apply_patch, merge, parse_patch, serialize_patch
from clinisync.core.records import canonical_json

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

CHANGE_TYPES: frozenset[str] = frozenset({INSERT, UPDATE, DELETE})


@dataclass(frozen=True)
class LocalChange:
    """One ledger entry.

    ``payload`` holds the canonical body for INSERT, the serialized JSON
    patch for UPDATE and an empty string for DELETE.  ``version_id`` is the
    remote version the change was based on, if the record had been synced.
    """

    id: int
    resource_type: str
    resource_id: str
    type: str
    payload: str = ""
    version_id: str | None = None
    timestamp: str | None = None

    def __post_init__(self) -> None:
        if self.type not in CHANGE_TYPES:
            raise ValueError(f"Unknown local change type: {self.type!r}")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "type": self.type,
            "payload": self.payload,
            "versionId": self.version_id,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> LocalChange:
        return cls(
            id=int(d["id"]),
            resource_type=d["resourceType"],
            resource_id=d["resourceId"],
            type=d["type"],
            payload=d.get("payload") or "",
            version_id=d.get("versionId"),
            timestamp=d.get("timestamp"),
        )


@dataclass(frozen=True)
class LocalChangeToken:
    """Opaque handle on the exact ledger ids a squashed change represents."""

    ids: tuple[int, ...] = field(default_factory=tuple)

    def __contains__(self, change_id: object) -> bool:
        return change_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(frozen=True)
class SquashedLocalChange:
    token: LocalChangeToken
    local_change: LocalChange


def serialize_change(change: LocalChange) -> str:
    """Serialize a change to compact JSONL (one line, trailing newline)."""
    return json.dumps(change.to_dict(), sort_keys=True, separators=(",", ":")) + "\n"


def squash(changes: list[LocalChange]) -> SquashedLocalChange | None:
    """Fold the ordered history of a single record into its net effect.

    Returns ``None`` when the history cancels out (the record was created
    and deleted locally without ever reaching the server).  The token always
    lists every id in *changes*, including cancelled ones, so they are
    cleared together with the rest.

    Raises:
        ValueError: If *changes* is empty or spans more than one record.
    """
    if not changes:
        raise ValueError("Cannot squash an empty change list")
    key = (changes[0].resource_type, changes[0].resource_id)
    for change in changes:
        if (change.resource_type, change.resource_id) != key:
            raise ValueError(
                f"Cannot squash changes for different records: {key} and "
                f"{(change.resource_type, change.resource_id)}"
            )

    acc: LocalChange | None = None
    for change in changes:
        acc = _fold(acc, change)

    if acc is None:
        return None
    token = LocalChangeToken(tuple(change.id for change in changes))
    return SquashedLocalChange(token=token, local_change=acc)


def _fold(acc: LocalChange | None, nxt: LocalChange) -> LocalChange | None:
    if acc is None:
        return nxt

    if acc.type == INSERT:
        if nxt.type == UPDATE:
            body = apply_patch(json.loads(acc.payload), parse_patch(nxt.payload))
            return replace(acc, id=nxt.id, payload=canonical_json(body), timestamp=nxt.timestamp)
        if nxt.type == DELETE:
            return None
        # A second INSERT replaces the body wholesale.
        return replace(acc, id=nxt.id, payload=nxt.payload, timestamp=nxt.timestamp)

    if acc.type == UPDATE:
        if nxt.type == UPDATE:
            merged = merge(parse_patch(acc.payload), parse_patch(nxt.payload))
            return replace(acc, id=nxt.id, payload=serialize_patch(merged), timestamp=nxt.timestamp)
        if nxt.type == DELETE:
            return replace(acc, id=nxt.id, type=DELETE, payload="", timestamp=nxt.timestamp)
        # INSERT over a pending UPDATE: the full body wins, and PUT upserts.
        return replace(acc, id=nxt.id, type=INSERT, payload=nxt.payload, timestamp=nxt.timestamp)

    # acc is DELETE
    if nxt.type == INSERT:
        # Re-created locally after a delete; PUT-by-id recreates it remotely.
        return replace(acc, id=nxt.id, type=INSERT, payload=nxt.payload, timestamp=nxt.timestamp)
    return acc


def squash_all(changes: list[LocalChange]) -> list[SquashedLocalChange]:
    """Group *changes* by record and squash each group.

    Groups keep their internal order and are returned ordered by the first
    ledger id of each group.  Records whose history cancels out produce
    nothing.
    """
    groups: dict[tuple[str, str], list[LocalChange]] = {}
    for change in sorted(changes, key=lambda c: c.id):
        groups.setdefault((change.resource_type, change.resource_id), []).append(change)

    result: list[SquashedLocalChange] = []
    for history in groups.values():
        squashed = squash(history)
        if squashed is not None:
            result.append(squashed)
    return result
