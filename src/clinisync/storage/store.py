"""Record store: one JSON envelope per record under ``records/<Type>/<id>.json``.

Writes go through :func:`atomic_write`.  The store does no locking of its
own; callers hold the per-record lock from :meth:`RecordStore.lock` (or
:meth:`RecordStore.lock_many`) around any read-modify-write.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Generator, Iterable, Iterator
from pathlib import Path

from clinisync.core.records import make_envelope, serialize_envelope
from clinisync.search.index import extract_index
from clinisync.storage.fs import atomic_write
from clinisync.storage.locks import lock_key, multi_lock, store_lock

logger = logging.getLogger(__name__)


class RecordStore:
    def __init__(self, data_dir: Path, *, lock_timeout: float = 10) -> None:
        self.data_dir = data_dir
        self.records_dir = data_dir / "records"
        self.locks_dir = data_dir / "locks"
        self.lock_timeout = lock_timeout

    # -- locking ------------------------------------------------------------

    @staticmethod
    def record_lock_key(resource_type: str, resource_id: str) -> str:
        return lock_key("record", resource_type, resource_id)

    @contextlib.contextmanager
    def lock(self, resource_type: str, resource_id: str) -> Generator[None, None, None]:
        with store_lock(
            self.locks_dir,
            self.record_lock_key(resource_type, resource_id),
            timeout=self.lock_timeout,
        ):
            yield

    @contextlib.contextmanager
    def lock_many(self, keys: Iterable[tuple[str, str]]) -> Generator[None, None, None]:
        with multi_lock(
            self.locks_dir,
            [self.record_lock_key(t, i) for t, i in keys],
            timeout=self.lock_timeout,
        ):
            yield

    # -- paths --------------------------------------------------------------

    def _path(self, resource_type: str, resource_id: str) -> Path:
        return self.records_dir / resource_type / f"{resource_id}.json"

    # -- CRUD ---------------------------------------------------------------

    def get(self, resource_type: str, resource_id: str) -> dict | None:
        """Return the envelope for a record, or ``None`` if it is not stored."""
        path = self._path(resource_type, resource_id)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def exists(self, resource_type: str, resource_id: str) -> bool:
        return self._path(resource_type, resource_id).is_file()

    def put(self, envelope: dict) -> None:
        """Write *envelope* (caller holds the record lock)."""
        path = self._path(envelope["resourceType"], envelope["resourceId"])
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(path, serialize_envelope(envelope))

    def put_resource(
        self,
        resource: dict,
        *,
        version_id: str | None = None,
        last_updated_remote: str | None = None,
    ) -> dict:
        """Index *resource*, wrap it in an envelope, write it, and return the envelope."""
        envelope = make_envelope(
            resource,
            extract_index(resource),
            version_id=version_id,
            last_updated_remote=last_updated_remote,
        )
        self.put(envelope)
        return envelope

    def insert_all(self, resources: Iterable[tuple[dict, str | None, str | None]]) -> int:
        """Batch write ``(resource, version_id, last_updated)`` triples.

        Locks for every record are taken up front in sorted order.
        """
        items = list(resources)
        keys = [(r["resourceType"], r["id"]) for r, _, _ in items]
        with self.lock_many(keys):
            for resource, version_id, last_updated in items:
                self.put_resource(resource, version_id=version_id, last_updated_remote=last_updated)
        return len(items)

    def delete(self, resource_type: str, resource_id: str) -> bool:
        """Remove a record (caller holds the record lock).  Returns whether it existed."""
        path = self._path(resource_type, resource_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    # -- iteration ----------------------------------------------------------

    def resource_types(self) -> list[str]:
        if not self.records_dir.is_dir():
            return []
        return sorted(p.name for p in self.records_dir.iterdir() if p.is_dir())

    def iter_type(self, resource_type: str) -> Iterator[dict]:
        """Yield every envelope of *resource_type*, ordered by id."""
        type_dir = self.records_dir / resource_type
        if not type_dir.is_dir():
            return
        for path in sorted(type_dir.glob("*.json"), key=lambda p: p.stem):
            try:
                yield json.loads(path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                # Deleted between listing and reading.
                continue

    def count(self, resource_type: str | None = None) -> int:
        types = [resource_type] if resource_type else self.resource_types()
        return sum(1 for t in types for _ in (self.records_dir / t).glob("*.json"))

    def reindex(self) -> int:
        """Recompute the search index of every stored record.

        Needed after registering new search parameters.
        """
        total = 0
        for resource_type in self.resource_types():
            for envelope in list(self.iter_type(resource_type)):
                with self.lock(resource_type, envelope["resourceId"]):
                    current = self.get(resource_type, envelope["resourceId"])
                    if current is None:
                        continue
                    current["index"] = extract_index(current["resource"])
                    self.put(current)
                    total += 1
        logger.info("Reindexed %d record(s)", total)
        return total
