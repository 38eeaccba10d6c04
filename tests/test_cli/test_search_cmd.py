"""Tests for the `clinisync search` command."""

from __future__ import annotations

import json

import pytest

from clinisync.cli.helpers import json_envelope


@pytest.fixture()
def seeded(invoke, write_json, make_patient):
    invoke(
        "insert-remote",
        write_json(
            [
                make_patient("p1", "Evelyn", birthDate="1990-04-01"),
                make_patient("p2", "Bob", birthDate="1985-01-01"),
                make_patient("p3", "Eve", family="Adams"),
                {
                    "resourceType": "Condition",
                    "id": "c1",
                    "subject": {"reference": "Patient/p2"},
                    "code": {"coding": [{"code": "44054006"}]},
                },
            ]
        ),
    )
    return invoke


class TestSearchCommand:
    def test_ids_output(self, seeded) -> None:
        result = seeded("search", "Patient", "given=eve", "--ids")
        assert result.exit_code == 0
        assert result.output.splitlines() == ["Patient/p1", "Patient/p3"]

    def test_json_output(self, seeded) -> None:
        result = seeded("search", "Patient", "given:exact=Eve", "--json")
        parsed = json.loads(result.output)
        assert parsed["ok"] is True
        assert [r["id"] for r in parsed["data"]] == ["p3"]

    def test_sort_and_count(self, seeded) -> None:
        result = seeded("search", "Patient", "_sort=-birthdate", "_count=2", "--ids")
        assert result.output.splitlines() == ["Patient/p1", "Patient/p2"]

    def test_has(self, seeded) -> None:
        result = seeded("search", "Patient", "_has:Condition:subject:code=44054006", "--ids")
        assert result.output.splitlines() == ["Patient/p2"]

    def test_full_records_by_default(self, seeded) -> None:
        result = seeded("search", "Patient", "family=adams")
        assert json.loads(result.output)["id"] == "p3"

    def test_no_matches(self, seeded) -> None:
        assert seeded("search", "Patient", "given=zed").output.strip() == "No matches."


class TestSearchErrors:
    def test_unsupported_parameter(self, invoke_json) -> None:
        parsed, code = invoke_json("search", "Patient", "shoe-size=9")
        assert code == 1
        assert parsed["error"]["code"] == "UNSUPPORTED_PARAMETER"

    def test_missing_equals(self, invoke_json) -> None:
        parsed, code = invoke_json("search", "Patient", "given")
        assert code == 1
        assert parsed["error"]["code"] == "INVALID_QUERY"

    def test_bad_count(self, invoke_json) -> None:
        parsed, code = invoke_json("search", "Patient", "_count=-2")
        assert parsed["error"]["code"] == "INVALID_QUERY"


class TestSearchJsonEnvelope:
    def test_matches_shared_envelope(self, seeded) -> None:
        result = seeded("search", "Patient", "family=adams", "--json")
        parsed = json.loads(result.output)
        assert result.output == json_envelope(True, data=parsed["data"]) + "\n"

    def test_empty_result_keeps_data(self, seeded) -> None:
        result = seeded("search", "Patient", "given=zed", "--json")
        assert json.loads(result.output) == {"ok": True, "data": []}
