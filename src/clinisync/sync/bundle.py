"""Transaction bundle generation.

Each squashed change becomes one bundle entry through a table keyed on
the change type.  Entry requests always target ``Type/id`` so an INSERT
is an idempotent PUT of the record's own id.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from clinisync.core.changes import (
    DELETE,
    INSERT,
    UPDATE,
    LocalChange,
    LocalChangeToken,
    SquashedLocalChange,
)
from clinisync.core.config import VERB_PATCH, VERB_PUT
from clinisync.core.ids import format_reference

SUPPORTED_VERBS: tuple[tuple[str, str], ...] = ((VERB_PUT, VERB_PATCH),)


class UnsupportedVerbCombinationError(ValueError):
    """Raised when a generator is configured with verbs it cannot emit."""


@dataclass(frozen=True)
class BundleGeneratorConfig:
    create_verb: str = VERB_PUT
    update_verb: str = VERB_PATCH

    @classmethod
    def from_config(cls, config: dict) -> BundleGeneratorConfig:
        sync = config.get("sync", {})
        return cls(
            create_verb=sync.get("create_verb", VERB_PUT),
            update_verb=sync.get("update_verb", VERB_PATCH),
        )


DEFAULT_GENERATOR_CONFIG = BundleGeneratorConfig()


def _url(change: LocalChange) -> str:
    return format_reference(change.resource_type, change.resource_id)


def _put_entry(change: LocalChange) -> dict:
    url = _url(change)
    return {
        "fullUrl": url,
        "request": {"method": VERB_PUT, "url": url},
        "resource": json.loads(change.payload),
    }


def _patch_entry(change: LocalChange) -> dict:
    url = _url(change)
    return {
        "fullUrl": url,
        "request": {"method": VERB_PATCH, "url": url},
        "resource": {
            "resourceType": "Binary",
            "contentType": "application/json-patch+json",
            "data": base64.b64encode(change.payload.encode("utf-8")).decode("ascii"),
        },
    }


def _delete_entry(change: LocalChange) -> dict:
    url = _url(change)
    return {
        "fullUrl": url,
        "request": {"method": "DELETE", "url": url},
    }


ENTRY_BUILDERS: dict[str, Callable[[LocalChange], dict]] = {
    INSERT: _put_entry,
    UPDATE: _patch_entry,
    DELETE: _delete_entry,
}


def build_entry(change: LocalChange) -> dict:
    """Return the bundle entry for one (squashed) change."""
    return ENTRY_BUILDERS[change.type](change)


def group_changes(
    changes: Iterable[SquashedLocalChange],
    bundle_size: int,
) -> list[list[SquashedLocalChange]]:
    """Split *changes* into consecutive groups of at most *bundle_size*."""
    if bundle_size < 1:
        raise ValueError(f"bundle_size must be positive, got {bundle_size}")
    items = list(changes)
    return [items[i : i + bundle_size] for i in range(0, len(items), bundle_size)]


class TransactionBundleGenerator:
    def __init__(self, config: BundleGeneratorConfig = DEFAULT_GENERATOR_CONFIG) -> None:
        if (config.create_verb, config.update_verb) not in SUPPORTED_VERBS:
            raise UnsupportedVerbCombinationError(
                f"Unsupported verb combination: create={config.create_verb}, "
                f"update={config.update_verb} (only create=PUT, update=PATCH is supported)"
            )
        self.config = config

    def generate_bundle(
        self, group: list[SquashedLocalChange]
    ) -> tuple[dict, list[LocalChangeToken]]:
        bundle = {
            "resourceType": "Bundle",
            "type": "transaction",
            "entry": [build_entry(squashed.local_change) for squashed in group],
        }
        return bundle, [squashed.token for squashed in group]

    def generate(
        self, groups: Iterable[list[SquashedLocalChange]]
    ) -> list[tuple[dict, list[LocalChangeToken]]]:
        """Build one transaction bundle per non-empty group, in order."""
        return [self.generate_bundle(group) for group in groups if group]
