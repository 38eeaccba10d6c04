"""Reverse chaining: select records referenced by other matching records."""

from __future__ import annotations

import pytest

from clinisync.search.compiler import UnsupportedParameterError
from clinisync.search.spec import (
    InvalidSearchSpecError,
    Search,
    StringFilter,
    TokenFilter,
)

DIABETES = "44054006"
HYPERTENSION = "38341003"


def _condition(resource_id: str, subject: str, code: str) -> dict:
    return {
        "resourceType": "Condition",
        "id": resource_id,
        "subject": {"reference": subject},
        "code": {"coding": [{"system": "http://snomed.info/sct", "code": code}]},
    }


@pytest.fixture()
def clinic(db, make_patient):
    db.insert_remote(
        {"resourceType": "Practitioner", "id": "dr1", "name": [{"family": "House"}]},
        {"resourceType": "Practitioner", "id": "dr2", "name": [{"family": "Grey"}]},
        make_patient("p1", "Ann", generalPractitioner=[{"reference": "Practitioner/dr1"}]),
        make_patient("p2", "Bob", generalPractitioner=[{"reference": "Practitioner/dr2"}]),
        make_patient("p3", "Cy"),
        _condition("c1", "Patient/p1", DIABETES),
        _condition("c2", "Patient/p2", HYPERTENSION),
        _condition("c3", "Patient/p1", HYPERTENSION),
        {
            "resourceType": "CarePlan",
            "id": "cp1",
            "status": "active",
            "subject": {"reference": "Patient/p2"},
            "activity": [{"detail": {"performer": [{"reference": "Patient/p1"}]}}],
        },
    )
    return db


def _ids(results: list[dict]) -> list[str]:
    return [r["id"] for r in results]


class TestHas:
    def test_only_the_named_reference_counts(self, clinic) -> None:
        spec = Search("Patient").has("CarePlan", "subject").build()
        assert _ids(clinic.search(spec)) == ["p2"]

    def test_with_filter_on_related_record(self, clinic) -> None:
        spec = (
            Search("Patient")
            .has("Condition", "subject", lambda c: c.filter(TokenFilter("code", DIABETES)))
            .build()
        )
        assert _ids(clinic.search(spec)) == ["p1"]

    def test_each_match_reported_once(self, clinic) -> None:
        spec = Search("Patient").has("Condition", "subject").build()
        assert _ids(clinic.search(spec)) == ["p1", "p2"]

    def test_combined_with_own_filters(self, clinic) -> None:
        spec = (
            Search("Patient")
            .filter(StringFilter("given", "bob"))
            .has("Condition", "subject", lambda c: c.filter(TokenFilter("code", HYPERTENSION)))
            .build()
        )
        assert _ids(clinic.search(spec)) == ["p2"]

    def test_two_hops(self, clinic) -> None:
        spec = (
            Search("Practitioner")
            .has(
                "Patient",
                "general-practitioner",
                lambda p: p.has(
                    "Condition", "subject", lambda c: c.filter(TokenFilter("code", DIABETES))
                ),
            )
            .build()
        )
        assert _ids(clinic.search(spec)) == ["dr1"]

    def test_accepts_prebuilt_spec(self, clinic) -> None:
        sub = Search("Condition").filter(TokenFilter("code", HYPERTENSION)).build()
        spec = Search("Patient").has("Condition", "subject", sub).build()
        assert _ids(clinic.search(spec)) == ["p1", "p2"]

    def test_prebuilt_spec_must_match_type(self) -> None:
        sub = Search("Observation").build()
        with pytest.raises(InvalidSearchSpecError):
            Search("Patient").has("Condition", "subject", sub)


class TestHasValidation:
    def test_reference_param_required(self, clinic) -> None:
        spec = Search("Patient").has("Condition", "code").build()
        with pytest.raises(UnsupportedParameterError, match="not a reference"):
            clinic.search(spec)

    def test_target_type_must_fit(self, clinic) -> None:
        spec = Search("Practitioner").has("Condition", "patient").build()
        with pytest.raises(UnsupportedParameterError, match="cannot reference"):
            clinic.search(spec)

    def test_unknown_reference_param(self, clinic) -> None:
        spec = Search("Patient").has("Condition", "asserter").build()
        with pytest.raises(UnsupportedParameterError):
            clinic.search(spec)
