"""Tests for local change squashing."""

from __future__ import annotations

import json

import pytest
from hypothesis import given, settings, strategies as st

from clinisync.core.changes import (
    DELETE,
    INSERT,
    UPDATE,
    LocalChange,
    LocalChangeToken,
    squash,
    squash_all,
)
from clinisync.core.patch import apply_patch, diff, parse_patch, serialize_patch
from clinisync.core.records import canonical_json


def _insert(change_id: int, body: dict) -> LocalChange:
    return LocalChange(change_id, body["resourceType"], body["id"], INSERT, canonical_json(body))


def _update(change_id: int, old: dict, new: dict, version_id: str | None = None) -> LocalChange:
    return LocalChange(
        change_id,
        old["resourceType"],
        old["id"],
        UPDATE,
        serialize_patch(diff(old, new)),
        version_id=version_id,
    )


def _delete(change_id: int, resource_type: str = "Patient", resource_id: str = "p1") -> LocalChange:
    return LocalChange(change_id, resource_type, resource_id, DELETE, "")


BASE = {"resourceType": "Patient", "id": "p1", "gender": "female", "name": [{"given": ["Eve"]}]}


class TestLocalChange:
    def test_round_trips_through_dict(self) -> None:
        change = LocalChange(7, "Patient", "p1", UPDATE, "[]", version_id="3", timestamp="t")
        assert LocalChange.from_dict(change.to_dict()) == change

    def test_rejects_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="Unknown local change type"):
            LocalChange(1, "Patient", "p1", "UPSERT")

    def test_token_membership(self) -> None:
        token = LocalChangeToken((1, 4))
        assert 4 in token
        assert 2 not in token
        assert len(token) == 2


class TestSquash:
    """squash() folds one record's history into its net effect."""

    def test_single_change_is_unchanged(self) -> None:
        change = _insert(1, BASE)
        result = squash([change])
        assert result.local_change == change
        assert result.token.ids == (1,)

    def test_insert_then_updates_is_insert_with_final_body(self) -> None:
        v2 = {**BASE, "gender": "other"}
        v3 = {**v2, "birthDate": "1990-01-01"}
        result = squash([_insert(1, BASE), _update(2, BASE, v2), _update(3, v2, v3)])

        assert result.local_change.type == INSERT
        assert json.loads(result.local_change.payload) == v3
        assert result.token.ids == (1, 2, 3)

    def test_insert_then_delete_emits_nothing(self) -> None:
        assert squash([_insert(1, BASE), _delete(2)]) is None

    def test_insert_update_delete_emits_nothing(self) -> None:
        v2 = {**BASE, "gender": "other"}
        assert squash([_insert(1, BASE), _update(2, BASE, v2), _delete(3)]) is None

    def test_updates_merge_and_keep_earliest_version(self) -> None:
        v2 = {**BASE, "gender": "other"}
        v3 = {**v2, "gender": "male", "active": True}
        result = squash([_update(1, BASE, v2, "1"), _update(2, v2, v3, "2")])

        assert result.local_change.type == UPDATE
        assert result.local_change.version_id == "1"
        ops = parse_patch(result.local_change.payload)
        assert ops == [
            {"op": "add", "path": "/active", "value": True},
            {"op": "replace", "path": "/gender", "value": "male"},
        ]
        assert apply_patch(BASE, ops) == v3

    def test_update_then_delete_is_delete(self) -> None:
        v2 = {**BASE, "gender": "other"}
        result = squash([_update(1, BASE, v2, "4"), _delete(2)])

        assert result.local_change.type == DELETE
        assert result.local_change.payload == ""
        assert result.local_change.version_id == "4"
        assert result.token.ids == (1, 2)

    def test_delete_absorbs_later_updates(self) -> None:
        v2 = {**BASE, "gender": "other"}
        result = squash([_delete(1), _update(2, BASE, v2), _delete(3)])
        assert result.local_change.type == DELETE

    def test_delete_then_insert_is_insert(self) -> None:
        result = squash([_delete(1), _insert(2, BASE)])
        assert result.local_change.type == INSERT
        assert json.loads(result.local_change.payload) == BASE

    def test_insert_after_cancelled_pair_starts_fresh(self) -> None:
        v2 = {**BASE, "gender": "other"}
        result = squash([_insert(1, BASE), _delete(2), _insert(3, v2)])
        assert result.local_change.type == INSERT
        assert json.loads(result.local_change.payload) == v2
        assert result.token.ids == (1, 2, 3)

    def test_rejects_mixed_records(self) -> None:
        with pytest.raises(ValueError, match="different records"):
            squash([_insert(1, BASE), _delete(2, resource_id="p2")])

    def test_rejects_empty_history(self) -> None:
        with pytest.raises(ValueError):
            squash([])


class TestSquashAll:
    def test_groups_ordered_by_first_change(self) -> None:
        other = {"resourceType": "Patient", "id": "p2"}
        changes = [
            _insert(1, other),
            _insert(2, BASE),
            _update(3, other, {**other, "active": True}),
        ]
        result = squash_all(changes)
        assert [s.local_change.resource_id for s in result] == ["p2", "p1"]
        assert result[0].token.ids == (1, 3)

    def test_cancelled_records_are_omitted(self) -> None:
        other = {"resourceType": "Patient", "id": "p2"}
        result = squash_all([_insert(1, BASE), _insert(2, other), _delete(3)])
        assert [s.local_change.resource_id for s in result] == ["p2"]


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

field_values = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(-5, 5),
    st.text(max_size=4),
    st.lists(st.text(max_size=3), max_size=3),
)
edits = st.dictionaries(
    st.sampled_from(["gender", "active", "birthDate", "alias", "note"]),
    field_values,
    max_size=4,
)


def _apply_edit(body: dict, edit: dict) -> dict:
    result = dict(body)
    for key, value in edit.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = value
    return result


@given(st.lists(edits, min_size=1, max_size=6))
@settings(max_examples=80)
def test_insert_then_updates_squash_to_final_body(edit_list: list[dict]) -> None:
    versions = [BASE]
    for edit in edit_list:
        versions.append(_apply_edit(versions[-1], edit))

    changes = [_insert(1, BASE)]
    for n, (old, new) in enumerate(zip(versions, versions[1:]), start=2):
        changes.append(_update(n, old, new))

    result = squash(changes)
    assert result.local_change.type == INSERT
    assert json.loads(result.local_change.payload) == versions[-1]
    assert result.token.ids == tuple(range(1, len(changes) + 1))


@given(st.lists(edits, min_size=2, max_size=6))
@settings(max_examples=80)
def test_merged_updates_equal_sequential_application(edit_list: list[dict]) -> None:
    versions = [BASE]
    for edit in edit_list:
        versions.append(_apply_edit(versions[-1], edit))

    changes = [
        _update(n, old, new) for n, (old, new) in enumerate(zip(versions, versions[1:]), start=1)
    ]
    result = squash(changes)
    merged = parse_patch(result.local_change.payload)
    assert apply_patch(BASE, merged) == versions[-1]


@given(st.lists(st.sampled_from([INSERT, UPDATE]), max_size=5))
def test_history_ending_in_delete(prefix: list[str]) -> None:
    changes: list[LocalChange] = []
    body = BASE
    for n, kind in enumerate(prefix, start=1):
        if kind == INSERT:
            changes.append(_insert(n, body))
        else:
            new = {**body, "gender": f"g{n}"}
            changes.append(_update(n, body, new))
            body = new
    changes.append(_delete(len(changes) + 1))

    result = squash(changes)
    if INSERT in prefix:
        # Created locally, so nothing reaches the server
        assert result is None
    else:
        assert result.local_change.type == DELETE
