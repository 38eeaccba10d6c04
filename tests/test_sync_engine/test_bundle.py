"""Tests for transaction bundle generation."""

from __future__ import annotations

import base64
import json

import pytest

from clinisync.core.changes import (
    DELETE,
    INSERT,
    UPDATE,
    LocalChange,
    LocalChangeToken,
    SquashedLocalChange,
)
from clinisync.sync.bundle import (
    BundleGeneratorConfig,
    TransactionBundleGenerator,
    UnsupportedVerbCombinationError,
    build_entry,
    group_changes,
)


def _squashed(change_id: int, type_: str, payload: str = "", rid: str = "p1") -> SquashedLocalChange:
    change = LocalChange(change_id, "Patient", rid, type_, payload)
    return SquashedLocalChange(LocalChangeToken((change_id,)), change)


class TestEntries:
    def test_insert_is_put_of_own_id(self) -> None:
        body = {"resourceType": "Patient", "id": "p1", "gender": "female"}
        entry = build_entry(_squashed(1, INSERT, json.dumps(body)).local_change)
        assert entry["request"] == {"method": "PUT", "url": "Patient/p1"}
        assert entry["fullUrl"] == "Patient/p1"
        assert entry["resource"] == body

    def test_update_is_patch_with_binary(self) -> None:
        patch = '[{"op":"replace","path":"/gender","value":"male"}]'
        entry = build_entry(_squashed(1, UPDATE, patch).local_change)
        assert entry["request"] == {"method": "PATCH", "url": "Patient/p1"}
        resource = entry["resource"]
        assert resource["resourceType"] == "Binary"
        assert resource["contentType"] == "application/json-patch+json"
        assert base64.b64decode(resource["data"]).decode("utf-8") == patch

    def test_delete_has_no_resource(self) -> None:
        entry = build_entry(_squashed(1, DELETE).local_change)
        assert entry["request"] == {"method": "DELETE", "url": "Patient/p1"}
        assert "resource" not in entry


class TestGenerator:
    def test_bundle_shape_and_tokens(self) -> None:
        group = [_squashed(1, DELETE, rid="a"), _squashed(2, DELETE, rid="b")]
        bundle, tokens = TransactionBundleGenerator().generate_bundle(group)
        assert bundle["resourceType"] == "Bundle"
        assert bundle["type"] == "transaction"
        assert [e["request"]["url"] for e in bundle["entry"]] == ["Patient/a", "Patient/b"]
        assert tokens == [LocalChangeToken((1,)), LocalChangeToken((2,))]

    def test_skips_empty_groups(self) -> None:
        groups = [[], [_squashed(1, DELETE)], []]
        assert len(TransactionBundleGenerator().generate(groups)) == 1

    def test_unsupported_verbs(self) -> None:
        with pytest.raises(UnsupportedVerbCombinationError, match="create=POST"):
            TransactionBundleGenerator(BundleGeneratorConfig(create_verb="POST"))

    def test_config_from_project_config(self) -> None:
        config = BundleGeneratorConfig.from_config({"sync": {"update_verb": "PUT"}})
        assert config == BundleGeneratorConfig(create_verb="PUT", update_verb="PUT")
        with pytest.raises(UnsupportedVerbCombinationError):
            TransactionBundleGenerator(config)


class TestGroupChanges:
    def test_consecutive_groups(self) -> None:
        changes = [_squashed(n, DELETE, rid=f"p{n}") for n in range(1, 6)]
        groups = group_changes(changes, 2)
        assert [[s.token.ids[0] for s in g] for g in groups] == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert group_changes([], 10) == []

    def test_bundle_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            group_changes([], 0)
