"""Database facade: local record CRUD that records every mutation in the ledger.

Each mutation takes the record's lock, appends the ledger entry, then
writes the record.  A crash between the two leaves a ledger entry for a
write that never landed, which re-applies harmlessly on upload; the
opposite order could lose a change.
"""

from __future__ import annotations

import logging
from pathlib import Path

from clinisync.core.changes import (
    DELETE,
    INSERT,
    UPDATE,
    LocalChange,
    LocalChangeToken,
    SquashedLocalChange,
    squash,
)
from clinisync.core.config import default_config, load_config
from clinisync.core.ids import generate_resource_id
from clinisync.core.patch import diff, serialize_patch
from clinisync.core.records import (
    ResourceNotFoundError,
    canonical_json,
    remote_meta,
    resource_key,
    strip_local_meta,
    with_remote_meta,
)
from clinisync.search.compiler import DEFAULT_APPROXIMATE_TOLERANCE, compile_spec
from clinisync.search.dates import Clock
from clinisync.search.spec import SearchSpec
from clinisync.storage.ledger import Ledger
from clinisync.storage.store import RecordStore

logger = logging.getLogger(__name__)


class Database:
    def __init__(
        self,
        data_dir: Path,
        *,
        clock: Clock | None = None,
        approximate_tolerance: float = DEFAULT_APPROXIMATE_TOLERANCE,
        lock_timeout: float = 10,
    ) -> None:
        self.data_dir = data_dir
        self.store = RecordStore(data_dir, lock_timeout=lock_timeout)
        self.ledger = Ledger(data_dir, lock_timeout=lock_timeout)
        self.clock = clock
        self.approximate_tolerance = approximate_tolerance

    @classmethod
    def open(cls, data_dir: Path, *, clock: Clock | None = None) -> Database:
        """Open the database in *data_dir*, reading ``config.json`` if present."""
        config_path = data_dir / "config.json"
        if config_path.exists():
            config = load_config(config_path.read_text(encoding="utf-8"))
        else:
            config = default_config()
        return cls(
            data_dir,
            clock=clock,
            approximate_tolerance=config["search"]["approximate_tolerance"],
        )

    # -- local mutations ----------------------------------------------------

    def insert(self, *resources: dict) -> list[str]:
        """Store locally created records and record an INSERT for each.

        Records without an ``id`` get a generated one.  Returns the ids in
        input order.
        """
        ids: list[str] = []
        for resource in resources:
            body = strip_local_meta(resource)
            if not body.get("id"):
                body["id"] = generate_resource_id()
            resource_type, resource_id = resource_key(body)
            with self.store.lock(resource_type, resource_id):
                self.ledger.append(resource_type, resource_id, INSERT, canonical_json(body))
                self.store.put_resource(body)
            ids.append(resource_id)
        return ids

    def update(self, *resources: dict) -> None:
        """Replace stored records and record the difference as an UPDATE.

        An update that changes nothing records nothing.

        Raises:
            ResourceNotFoundError: If a record is not stored locally.
        """
        for resource in resources:
            body = strip_local_meta(resource)
            resource_type, resource_id = resource_key(body)
            with self.store.lock(resource_type, resource_id):
                envelope = self.store.get(resource_type, resource_id)
                if envelope is None:
                    raise ResourceNotFoundError(resource_type, resource_id)
                ops = diff(envelope["resource"], body)
                if not ops:
                    logger.debug("No changes for %s/%s", resource_type, resource_id)
                    continue
                self.ledger.append(
                    resource_type,
                    resource_id,
                    UPDATE,
                    serialize_patch(ops),
                    version_id=envelope.get("versionId"),
                )
                self.store.put_resource(
                    body,
                    version_id=envelope.get("versionId"),
                    last_updated_remote=envelope.get("lastUpdatedRemote"),
                )

    def delete(self, resource_type: str, resource_id: str) -> bool:
        """Delete a record and record a DELETE.  Missing records are a no-op."""
        with self.store.lock(resource_type, resource_id):
            envelope = self.store.get(resource_type, resource_id)
            if envelope is None:
                return False
            self.ledger.append(
                resource_type, resource_id, DELETE, "", version_id=envelope.get("versionId")
            )
            self.store.delete(resource_type, resource_id)
        return True

    # -- remote data --------------------------------------------------------

    def insert_remote(self, *resources: dict) -> int:
        """Store records downloaded from the server without recording changes.

        ``meta.versionId`` and ``meta.lastUpdated`` move to the envelope.
        """
        items = []
        for resource in resources:
            version_id, last_updated = remote_meta(resource)
            body = strip_local_meta(resource)
            resource_key(body)
            items.append((body, version_id, last_updated))
        return self.store.insert_all(items)

    def update_version_id_and_last_updated(
        self,
        resource_type: str,
        resource_id: str,
        version_id: str | None,
        last_updated: str | None,
    ) -> bool:
        """Record server-confirmed metadata.  Records deleted meanwhile are skipped."""
        with self.store.lock(resource_type, resource_id):
            envelope = self.store.get(resource_type, resource_id)
            if envelope is None:
                return False
            if version_id is not None:
                envelope["versionId"] = version_id
            if last_updated is not None:
                envelope["lastUpdatedRemote"] = last_updated
            self.store.put(envelope)
        return True

    # -- reads --------------------------------------------------------------

    def select_entity(self, resource_type: str, resource_id: str) -> dict:
        """Return the stored envelope.

        Raises:
            ResourceNotFoundError: If the record is not stored locally.
        """
        envelope = self.store.get(resource_type, resource_id)
        if envelope is None:
            raise ResourceNotFoundError(resource_type, resource_id)
        return envelope

    def select(self, resource_type: str, resource_id: str) -> dict:
        """Return the record body with its remote meta restored."""
        return _body(self.select_entity(resource_type, resource_id))

    def search(self, spec: SearchSpec) -> list[dict]:
        plan = compile_spec(spec, clock=self.clock, tolerance=self.approximate_tolerance)
        return [_body(envelope) for envelope in plan.execute(self.store)]

    def count(self, spec: SearchSpec) -> int:
        """Number of matches ignoring pagination."""
        plan = compile_spec(spec, clock=self.clock, tolerance=self.approximate_tolerance)
        return len(plan.matching(self.store))

    # -- ledger -------------------------------------------------------------

    def get_all_local_changes(self) -> list[SquashedLocalChange]:
        return self.ledger.squash_all()

    def get_local_change(self, resource_type: str, resource_id: str) -> SquashedLocalChange | None:
        """Return the squashed pending change of one record, if any."""
        history = self.ledger.changes_for(resource_type, resource_id)
        if not history:
            return None
        return squash(history)

    def local_changes(self) -> list[LocalChange]:
        return self.ledger.all_changes()

    def delete_updates(self, token: LocalChangeToken) -> int:
        return self.ledger.delete_by_token(token)

    def reindex(self) -> int:
        return self.store.reindex()


def _body(envelope: dict) -> dict:
    return with_remote_meta(
        envelope["resource"], envelope.get("versionId"), envelope.get("lastUpdatedRemote")
    )
