"""Upload and download cycles between the local database and a data source."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from clinisync.core.changes import DELETE, LocalChangeToken, SquashedLocalChange
from clinisync.core.ids import parse_reference
from clinisync.storage.database import Database
from clinisync.storage.locks import LockTimeout
from clinisync.sync.bundle import TransactionBundleGenerator, group_changes
from clinisync.sync.datasource import DataSource, DataSourceError, is_operation_outcome
from clinisync.sync.uploader import (
    BundleUploader,
    CancellationToken,
    UploadFailure,
    UploadSuccess,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncReport:
    bundles_succeeded: int = 0
    bundles_failed: int = 0
    changes_uploaded: int = 0
    changes_pending: int = 0
    failures: tuple[UploadFailure, ...] = ()
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.bundles_failed == 0 and not self.cancelled

    def to_dict(self) -> dict:
        return {
            "bundles_succeeded": self.bundles_succeeded,
            "bundles_failed": self.bundles_failed,
            "changes_uploaded": self.changes_uploaded,
            "changes_pending": self.changes_pending,
            "cancelled": self.cancelled,
            "failures": [f.outcome for f in self.failures],
        }


def parse_etag(etag: str | None) -> str | None:
    """``W/"3"`` -> ``3``."""
    if not etag:
        return None
    value = etag[2:] if etag.startswith("W/") else etag
    return value.strip('"') or None


def response_meta(entry: dict) -> tuple[str | None, str | None]:
    """Return ``(versionId, lastUpdated)`` from a transaction-response entry."""
    response = entry.get("response") or {}
    version_id = parse_etag(response.get("etag"))
    last_updated = response.get("lastModified")
    if version_id is None and response.get("location"):
        parsed = parse_reference(response["location"])
        if parsed is not None:
            version_id = parsed[2]
    meta = (entry.get("resource") or {}).get("meta") or {}
    return version_id or meta.get("versionId"), last_updated or meta.get("lastUpdated")


class Synchronizer:
    def __init__(
        self,
        database: Database,
        data_source: DataSource,
        *,
        generator: TransactionBundleGenerator | None = None,
        bundle_size: int = 50,
    ) -> None:
        self.database = database
        self.data_source = data_source
        self.uploader = BundleUploader(data_source, generator)
        self.bundle_size = bundle_size

    def upload(self, cancel: CancellationToken | None = None) -> SyncReport:
        """Push every pending change and return what happened.

        Changes appended while the upload runs are not part of this cycle.
        """
        squashed = self.database.get_all_local_changes()
        by_token: dict[LocalChangeToken, SquashedLocalChange] = {s.token: s for s in squashed}
        groups = group_changes(squashed, self.bundle_size)
        logger.info("Uploading %d change(s) in %d bundle(s)", len(squashed), len(groups))

        succeeded = failed = uploaded = 0
        failures: list[UploadFailure] = []
        for result in self.uploader.upload(groups, cancel):
            if isinstance(result, UploadSuccess):
                self._apply_success(result, by_token)
                succeeded += 1
                uploaded += len(result.tokens)
            else:
                failures.append(result)
                failed += 1

        finished = succeeded + failed
        cancelled = cancel is not None and cancel.is_cancelled() and finished < len(groups)
        return SyncReport(
            bundles_succeeded=succeeded,
            bundles_failed=failed,
            changes_uploaded=uploaded,
            changes_pending=len(squashed) - uploaded,
            failures=tuple(failures),
            cancelled=cancelled,
        )

    def _apply_success(
        self,
        result: UploadSuccess,
        by_token: dict[LocalChangeToken, SquashedLocalChange],
    ) -> None:
        entries = result.response.get("entry") or []
        for position, token in enumerate(result.tokens):
            change = by_token[token].local_change
            try:
                if change.type != DELETE and position < len(entries):
                    self._stamp(change.resource_type, change.resource_id, entries[position])
            finally:
                # The server has applied the change; it must not be sent again.
                self.database.delete_updates(token)

    def _stamp(self, resource_type: str, resource_id: str, entry: dict) -> None:
        version_id, last_updated = response_meta(entry)
        try:
            self.database.update_version_id_and_last_updated(
                resource_type, resource_id, version_id, last_updated
            )
        except LockTimeout as exc:
            logger.warning(
                "Uploaded %s/%s but could not record its server version: %s",
                resource_type,
                resource_id,
                exc,
            )

    def download(self, path: str) -> int:
        """Load a searchset from *path*, following ``next`` links.

        Returns the number of records stored.

        Raises:
            DataSourceError: If the server answers with an OperationOutcome
                or anything other than a bundle.
        """
        total = 0
        visited: set[str] = set()
        next_path: str | None = path
        while next_path is not None and next_path not in visited:
            visited.add(next_path)
            bundle = self.data_source.load(next_path)
            if is_operation_outcome(bundle) or bundle.get("resourceType") != "Bundle":
                raise DataSourceError(f"Expected a Bundle from {next_path}")
            resources = [
                entry["resource"] for entry in bundle.get("entry") or [] if entry.get("resource")
            ]
            if resources:
                total += self.database.insert_remote(*resources)
            logger.info("Downloaded %d record(s) from %s", len(resources), next_path)
            next_path = _next_link(bundle)
        return total


def _next_link(bundle: dict) -> str | None:
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return link["url"]
    return None
