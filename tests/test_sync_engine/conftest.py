"""Fixtures for the sync engine tests: a scripted in-memory data source."""

from __future__ import annotations

import json
from collections.abc import Callable

import pytest


def transaction_response(bundle: dict, version: str = "1") -> dict:
    """Answer every entry of *bundle* the way a FHIR server would."""
    entries = []
    for entry in bundle["entry"]:
        method = entry["request"]["method"]
        url = entry["request"]["url"]
        if method == "DELETE":
            entries.append({"response": {"status": "204 No Content"}})
        else:
            entries.append(
                {
                    "response": {
                        "status": "200 OK",
                        "location": f"{url}/_history/{version}",
                        "etag": f'W/"{version}"',
                        "lastModified": "2021-08-09T13:38:21Z",
                    }
                }
            )
    return {"resourceType": "Bundle", "type": "transaction-response", "entry": entries}


class FakeDataSource:
    """Records every call; answers bundles through a responder callable.

    The responder receives the parsed bundle and the 1-based call number
    and returns the response, or raises to simulate a transport failure.
    """

    def __init__(self, responder: Callable[[dict, int], dict] | None = None) -> None:
        self.responder = responder or (lambda bundle, n: transaction_response(bundle))
        self.bundles: list[dict] = []
        self.pages: dict[str, dict] = {}
        self.loaded: list[str] = []

    def load(self, path: str) -> dict:
        self.loaded.append(path)
        return self.pages[path]

    def insert(self, resource_type: str, resource_id: str, payload: str) -> dict:
        raise NotImplementedError

    def update(self, resource_type: str, resource_id: str, patch_payload: str) -> dict:
        raise NotImplementedError

    def delete(self, resource_type: str, resource_id: str) -> dict:
        raise NotImplementedError

    def post_bundle(self, payload: str) -> dict:
        bundle = json.loads(payload)
        self.bundles.append(bundle)
        return self.responder(bundle, len(self.bundles))


@pytest.fixture()
def fake_source() -> FakeDataSource:
    return FakeDataSource()


@pytest.fixture()
def make_source():
    return FakeDataSource


@pytest.fixture()
def respond():
    return transaction_response
