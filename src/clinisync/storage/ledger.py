"""Local change ledger.

Pending changes live in ``changes/pending.jsonl``, one compact JSON object
per line in id order.  The next id is kept in ``changes/seq.json`` so ids
are never reused, even after entries are deleted.  Every operation holds
the ledger-wide ``ledger`` lock, so appends from writers and deletions
from the upload path never interleave.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from clinisync.core.changes import (
    LocalChange,
    LocalChangeToken,
    SquashedLocalChange,
    serialize_change,
    squash_all,
)
from clinisync.storage.fs import atomic_write, iter_jsonl, jsonl_append
from clinisync.storage.locks import store_lock

logger = logging.getLogger(__name__)

LEDGER_LOCK = "ledger"


def utc_now() -> str:
    """Return the current UTC time as an ISO 8601 string with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Ledger:
    def __init__(
        self,
        data_dir: Path,
        *,
        lock_timeout: float = 10,
        clock: Callable[[], str] = utc_now,
    ) -> None:
        self.changes_dir = data_dir / "changes"
        self.locks_dir = data_dir / "locks"
        self.pending_path = self.changes_dir / "pending.jsonl"
        self.seq_path = self.changes_dir / "seq.json"
        self.lock_timeout = lock_timeout
        self._clock = clock

    def _lock(self):
        return store_lock(self.locks_dir, LEDGER_LOCK, timeout=self.lock_timeout)

    # -- internals (caller holds the ledger lock) ---------------------------

    def _read(self) -> list[LocalChange]:
        changes: list[LocalChange] = []
        for lineno, line in iter_jsonl(self.pending_path):
            try:
                changes.append(LocalChange.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError) as exc:
                # A torn final line from a crash mid-append is dropped.
                logger.warning("Skipping malformed ledger line %d: %s", lineno, exc)
        return changes

    def _next_id(self) -> int:
        if self.seq_path.exists():
            next_id = json.loads(self.seq_path.read_text(encoding="utf-8"))["next_id"]
        else:
            existing = self._read()
            next_id = max((c.id for c in existing), default=0) + 1
        atomic_write(self.seq_path, json.dumps({"next_id": next_id + 1}, sort_keys=True) + "\n")
        return next_id

    # -- public API ---------------------------------------------------------

    def append(
        self,
        resource_type: str,
        resource_id: str,
        type: str,
        payload: str = "",
        version_id: str | None = None,
    ) -> LocalChange:
        """Record a change and return it with its newly assigned id."""
        with self._lock():
            change = LocalChange(
                id=self._next_id(),
                resource_type=resource_type,
                resource_id=resource_id,
                type=type,
                payload=payload,
                version_id=version_id,
                timestamp=self._clock(),
            )
            jsonl_append(self.pending_path, serialize_change(change))
        logger.debug("Ledger %s #%d %s/%s", type, change.id, resource_type, resource_id)
        return change

    def all_changes(self) -> list[LocalChange]:
        """Return a snapshot of every pending change, ordered by id."""
        with self._lock():
            changes = self._read()
        return sorted(changes, key=lambda c: c.id)

    def changes_for(self, resource_type: str, resource_id: str) -> list[LocalChange]:
        return [
            c
            for c in self.all_changes()
            if c.resource_type == resource_type and c.resource_id == resource_id
        ]

    def squash_all(self) -> list[SquashedLocalChange]:
        """Squash a snapshot of the ledger into one net change per record."""
        return squash_all(self.all_changes())

    def delete_by_token(self, token: LocalChangeToken) -> int:
        """Remove exactly the ids in *token*.  Returns how many were removed.

        Ids that are already gone are ignored, so repeating a deletion is
        harmless.
        """
        doomed = set(token.ids)
        if not doomed:
            return 0
        with self._lock():
            changes = self._read()
            kept = [c for c in changes if c.id not in doomed]
            removed = len(changes) - len(kept)
            if removed:
                atomic_write(self.pending_path, "".join(serialize_change(c) for c in kept))
        logger.debug("Ledger removed %d change(s)", removed)
        return removed

    def __len__(self) -> int:
        return len(self.all_changes())
