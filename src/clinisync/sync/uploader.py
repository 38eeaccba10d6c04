"""Bundle upload with per-bundle results.

:meth:`BundleUploader.upload` is a generator: it posts one bundle, yields
its result, and only then moves on.  A failed bundle never stops the
loop; its changes simply stay pending.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Union

from clinisync.core.changes import LocalChangeToken, SquashedLocalChange
from clinisync.sync.bundle import TransactionBundleGenerator
from clinisync.sync.datasource import DataSource, DataSourceError

logger = logging.getLogger(__name__)

RESPONSE_BUNDLE = "transaction-response"
RESPONSE_OUTCOME = "outcome"
RESPONSE_OTHER = "other"


class CancellationToken:
    """Cooperative cancellation flag shared between threads."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class UploadSuccess:
    tokens: list[LocalChangeToken]
    response: dict


@dataclass(frozen=True)
class UploadFailure:
    tokens: list[LocalChangeToken]
    outcome: dict


UploadResult = Union[UploadSuccess, UploadFailure]


def synthetic_outcome(code: str, diagnostics: str) -> dict:
    return {
        "resourceType": "OperationOutcome",
        "issue": [{"severity": "error", "code": code, "diagnostics": diagnostics}],
    }


def classify_response(response: object) -> str:
    """Read the response discriminator once."""
    if not isinstance(response, dict):
        return RESPONSE_OTHER
    resource_type = response.get("resourceType")
    if resource_type == "Bundle" and response.get("type") == RESPONSE_BUNDLE:
        return RESPONSE_BUNDLE
    if resource_type == "OperationOutcome":
        return RESPONSE_OUTCOME
    return RESPONSE_OTHER


class BundleUploader:
    def __init__(
        self,
        data_source: DataSource,
        generator: TransactionBundleGenerator | None = None,
    ) -> None:
        self.data_source = data_source
        self.generator = generator or TransactionBundleGenerator()

    def upload(
        self,
        groups: Iterable[list[SquashedLocalChange]],
        cancel: CancellationToken | None = None,
    ) -> Iterator[UploadResult]:
        """Upload each group as one transaction, yielding results in order.

        Cancellation is checked before every bundle; a bundle already sent
        always has its result yielded.
        """
        for number, group in enumerate(groups, start=1):
            if not group:
                continue
            if cancel is not None and cancel.is_cancelled():
                logger.info("Upload cancelled before bundle %d", number)
                return
            bundle, tokens = self.generator.generate_bundle(group)
            yield self._submit(number, bundle, tokens)

    def _submit(self, number: int, bundle: dict, tokens: list[LocalChangeToken]) -> UploadResult:
        entries = len(bundle["entry"])
        logger.info("Uploading bundle %d (%d entries)", number, entries)
        try:
            response = self.data_source.post_bundle(json.dumps(bundle, sort_keys=True))
        except DataSourceError as exc:
            logger.warning("Bundle %d failed in transport: %s", number, exc)
            return UploadFailure(tokens, synthetic_outcome("exception", str(exc)))
        except Exception as exc:
            # Data sources other than HttpDataSource may raise anything.
            logger.warning("Bundle %d failed: %r", number, exc)
            return UploadFailure(tokens, synthetic_outcome("exception", str(exc) or repr(exc)))

        kind = classify_response(response)
        if kind == RESPONSE_BUNDLE:
            logger.info("Bundle %d accepted", number)
            return UploadSuccess(tokens, response)
        if kind == RESPONSE_OUTCOME:
            logger.warning("Bundle %d rejected by server", number)
            return UploadFailure(tokens, response)
        logger.warning("Bundle %d got an unexpected response", number)
        return UploadFailure(
            tokens,
            synthetic_outcome(
                "processing",
                f"Unexpected response to transaction: {_describe(response)}",
            ),
        )


def _describe(response: object) -> str:
    if isinstance(response, dict):
        return f"{response.get('resourceType')} (type={response.get('type')})"
    return type(response).__name__
