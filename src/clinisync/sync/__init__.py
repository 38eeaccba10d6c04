"""Upload of pending changes to a FHIR server and download of remote records."""

from __future__ import annotations

from clinisync.sync.bundle import (
    BundleGeneratorConfig,
    TransactionBundleGenerator,
    UnsupportedVerbCombinationError,
    group_changes,
)
from clinisync.sync.datasource import DataSource, DataSourceError, HttpDataSource
from clinisync.sync.synchronizer import Synchronizer, SyncReport
from clinisync.sync.uploader import (
    BundleUploader,
    CancellationToken,
    UploadFailure,
    UploadResult,
    UploadSuccess,
)

__all__ = [
    "BundleGeneratorConfig",
    "BundleUploader",
    "CancellationToken",
    "DataSource",
    "DataSourceError",
    "HttpDataSource",
    "SyncReport",
    "Synchronizer",
    "TransactionBundleGenerator",
    "UnsupportedVerbCombinationError",
    "UploadFailure",
    "UploadResult",
    "UploadSuccess",
    "group_changes",
]
