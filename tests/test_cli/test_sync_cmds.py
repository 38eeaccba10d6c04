"""Tests for `clinisync sync push` and `clinisync sync pull`."""

from __future__ import annotations

import json

import pytest

from clinisync.cli import sync_cmds
from clinisync.sync.datasource import DataSourceError


class StubSource:
    """Stands in for HttpDataSource; accepts every transaction."""

    instances: list[StubSource] = []

    def __init__(self, base_url: str, *, timeout: float = 30, **_: object) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.bundles: list[dict] = []
        self.fail = False
        StubSource.instances.append(self)

    def post_bundle(self, payload: str) -> dict:
        bundle = json.loads(payload)
        self.bundles.append(bundle)
        if self.fail:
            raise ConnectionError("server down")
        return {
            "resourceType": "Bundle",
            "type": "transaction-response",
            "entry": [{"response": {"status": "200", "etag": 'W/"1"'}} for _ in bundle["entry"]],
        }

    def load(self, path: str) -> dict:
        if path == "broken":
            raise DataSourceError("GET broken failed with HTTP 500", status=500)
        return {
            "resourceType": "Bundle",
            "type": "searchset",
            "entry": [{"resource": {"resourceType": "Patient", "id": "remote1"}}],
        }


@pytest.fixture()
def stub(monkeypatch):
    StubSource.instances = []
    monkeypatch.setattr(sync_cmds, "HttpDataSource", StubSource)
    return StubSource


class TestPush:
    def test_requires_server(self, invoke_json) -> None:
        parsed, code = invoke_json("sync", "push")
        assert code == 1
        assert parsed["error"]["code"] == "NO_SERVER"

    def test_uploads_pending(self, stub, invoke, invoke_json, write_json, make_patient) -> None:
        invoke("insert", write_json([make_patient("p1"), make_patient("p2")]))
        parsed, code = invoke_json("sync", "push", "--server", "http://srv/fhir")

        assert code == 0
        assert parsed["data"]["changes_uploaded"] == 2
        assert parsed["data"]["changes_pending"] == 0
        [source] = stub.instances
        assert source.base_url == "http://srv/fhir"
        assert len(source.bundles) == 1

        shown = json.loads(invoke("show", "Patient", "p1").output)
        assert shown["meta"]["versionId"] == "1"

    def test_failure_exits_nonzero(
        self, stub, monkeypatch, invoke, invoke_json, write_json, make_patient
    ) -> None:
        class Failing(StubSource):
            def __init__(self, *args, **kwargs) -> None:
                super().__init__(*args, **kwargs)
                self.fail = True

        monkeypatch.setattr(sync_cmds, "HttpDataSource", Failing)
        invoke("insert", write_json(make_patient("p1")))

        parsed, code = invoke_json("sync", "push", "--server", "http://srv/fhir")
        assert code == 1
        assert parsed["ok"] is False
        assert parsed["data"]["bundles_failed"] == 1
        assert parsed["data"]["failures"][0]["issue"][0]["diagnostics"] == "server down"

        pending, _ = invoke_json("changes")
        assert len(pending["data"]) == 1

    def test_human_output(self, stub, invoke, write_json, make_patient) -> None:
        invoke("insert", write_json(make_patient("p1")))
        result = invoke("sync", "push", "--server", "http://srv/fhir")
        assert result.exit_code == 0
        assert "Uploaded 1 change(s) in 1 bundle(s)" in result.output

    def test_invalid_verbs(self, stub, invoke_json, initialized_root) -> None:
        config_path = initialized_root / ".clinisync" / "config.json"
        config = json.loads(config_path.read_text())
        config["sync"]["create_verb"] = "POST"
        config_path.write_text(json.dumps(config))

        parsed, code = invoke_json("sync", "push", "--server", "http://srv/fhir")
        assert code == 1
        assert parsed["error"]["code"] == "INVALID_CONFIG"


class TestPull:
    def test_downloads(self, stub, invoke, invoke_json) -> None:
        parsed, code = invoke_json("sync", "pull", "Patient", "--server", "http://srv/fhir")
        assert code == 0
        assert parsed["data"] == {"downloaded": 1}
        assert json.loads(invoke("show", "Patient", "remote1").output)["id"] == "remote1"

    def test_server_from_config(self, stub, invoke_json, initialized_root) -> None:
        config_path = initialized_root / ".clinisync" / "config.json"
        config = json.loads(config_path.read_text())
        config["server"]["base_url"] = "http://configured/fhir"
        config_path.write_text(json.dumps(config))

        _, code = invoke_json("sync", "pull", "Patient")
        assert code == 0
        assert stub.instances[0].base_url == "http://configured/fhir"

    def test_error(self, stub, invoke_json) -> None:
        parsed, code = invoke_json("sync", "pull", "broken", "--server", "http://srv/fhir")
        assert code == 1
        assert parsed["error"]["code"] == "SYNC_FAILED"
