"""Tests for config defaults, loading, and validation."""

from __future__ import annotations

import json
import logging

from clinisync.core.config import (
    default_config,
    load_config,
    log_level,
    serialize_config,
    validate_config,
)


class TestDefaultConfig:
    def test_is_valid(self) -> None:
        assert validate_config(default_config()) == []

    def test_serialization_is_canonical(self) -> None:
        text = serialize_config(default_config())
        assert text.endswith("\n")
        assert text == json.dumps(json.loads(text), sort_keys=True, indent=2) + "\n"

    def test_sync_defaults(self) -> None:
        sync = default_config()["sync"]
        assert sync["create_verb"] == "PUT"
        assert sync["update_verb"] == "PATCH"
        assert sync["bundle_size"] == 50


class TestLoadConfig:
    def test_missing_sections_filled(self) -> None:
        config = load_config('{"server": {"base_url": "http://srv/fhir"}}')
        assert config["server"]["base_url"] == "http://srv/fhir"
        assert config["server"]["timeout_seconds"] == 30
        assert config["sync"]["bundle_size"] == 50

    def test_top_level_override(self) -> None:
        assert load_config('{"log_level": "DEBUG"}')["log_level"] == "DEBUG"


class TestValidateConfig:
    def _with(self, section: str, **values: object) -> dict:
        config = default_config()
        config[section] = {**config[section], **values}  # type: ignore[literal-required]
        return config

    def test_bad_url(self) -> None:
        problems = validate_config(self._with("server", base_url="ftp://x"))
        assert any("base_url" in p for p in problems)

    def test_bad_verb(self) -> None:
        problems = validate_config(self._with("sync", create_verb="GET"))
        assert any("create_verb" in p for p in problems)

    def test_bad_bundle_size(self) -> None:
        assert validate_config(self._with("sync", bundle_size=0))
        assert validate_config(self._with("sync", bundle_size=True))

    def test_negative_tolerance(self) -> None:
        assert validate_config(self._with("search", approximate_tolerance=-1))

    def test_bad_log_level(self) -> None:
        config = default_config()
        config["log_level"] = "LOUD"
        assert any("log_level" in p for p in validate_config(config))


def test_log_level() -> None:
    assert log_level({"log_level": "DEBUG"}) == logging.DEBUG
    assert log_level({}) == logging.WARNING
