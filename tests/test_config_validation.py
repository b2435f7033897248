from __future__ import annotations

from copy import deepcopy
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from tracker_engine.config import AppConfig, load_config


def _valid_config() -> dict:
    return {
        "enabled": True,
        "generation": {"mode": "external", "update_depth": 6, "user_name": "Mira"},
        "trackers": {"user_stats": True, "info_box": True, "character_thoughts": False},
        "features": {"dialogue_coloring": True},
        "suppression": {"skip_mode": "guided"},
        "history": {
            "enabled": True,
            "message_count": 3,
            "injection_position": "user_message_end",
        },
        "external_api": {
            "base_url": "https://llm.example.test/v1",
            "model": "tracker-small",
            "api_key": "${ENV:TRACKER_EXTERNAL_API_KEY}",
        },
        "slots": {"prefix": "rpg"},
    }


def _write(path: Path, payload: dict) -> Path:
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_load_config_requires_existing_file(tmp_path: Path) -> None:
    missing_path = tmp_path / "missing-config.yaml"
    with pytest.raises(FileNotFoundError):
        load_config(missing_path)


def test_load_config_rejects_empty_and_non_mapping_files(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    listing = tmp_path / "list.yaml"
    listing.write_text("- one\n- two\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(empty)
    with pytest.raises(TypeError):
        load_config(listing)


def test_load_config_expands_env_refs(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")
    monkeypatch.setenv("TRACKER_EXTERNAL_API_KEY", "sk-test")
    cfg_path = _write(tmp_path / "config.yaml", _valid_config())

    config = load_config(cfg_path)

    assert config.external_api.api_key == "sk-test"
    assert config.generation.mode == "external"
    assert config.trackers.enabled_fields() == ["user_stats", "info_box"]
    assert config.slots.prefix == "rpg"


def test_missing_env_ref_becomes_none(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")
    monkeypatch.delenv("TRACKER_EXTERNAL_API_KEY", raising=False)
    cfg_path = _write(tmp_path / "config.yaml", _valid_config())

    assert load_config(cfg_path).external_api.api_key is None


def test_load_config_reads_dotenv_file(tmp_path: Path, monkeypatch) -> None:
    env_path = tmp_path / "tracker.env"
    env_path.write_text("TRACKER_EXTERNAL_API_KEY=from-dotenv\n", encoding="utf-8")
    monkeypatch.delenv("TRACKER_ENGINE_DISABLE_DOTENV", raising=False)
    monkeypatch.setenv("TRACKER_EXTERNAL_API_KEY", "unset")
    monkeypatch.delenv("TRACKER_EXTERNAL_API_KEY")
    monkeypatch.setenv("TRACKER_ENGINE_DOTENV_PATH", str(env_path))
    cfg_path = _write(tmp_path / "config.yaml", _valid_config())

    config = load_config(cfg_path)

    assert config.external_api.api_key == "from-dotenv"


def test_defaults_match_documented_behavior() -> None:
    config = AppConfig.model_validate({})

    assert config.enabled is True
    assert config.generation.mode == "together"
    assert config.history.enabled is False
    assert config.history.message_count == 0
    assert config.history.context_preamble == "Context for that moment:"
    assert config.suppression.skip_mode == "none"
    assert not any(config.features.model_dump().values())


def test_history_message_count_accepts_all() -> None:
    payload = deepcopy(_valid_config())
    payload["history"]["message_count"] = "all"

    assert AppConfig.model_validate(payload).history.message_count == 0


def test_config_forbids_unknown_keys() -> None:
    payload = deepcopy(_valid_config())
    payload["generation"]["unknown"] = "value"
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_config_rejects_unknown_generation_mode() -> None:
    payload = deepcopy(_valid_config())
    payload["generation"]["mode"] = "parallel"
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_config_rejects_unknown_persisted_field() -> None:
    payload = deepcopy(_valid_config())
    payload["history"]["persisted_fields"] = ["info_box", "inventory"]
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)


def test_blank_external_api_values_become_none() -> None:
    payload = deepcopy(_valid_config())
    payload["external_api"] = {"base_url": "  ", "model": "", "api_key": " "}

    external = AppConfig.model_validate(payload).external_api

    assert external.base_url is None
    assert external.model is None
    assert external.api_key is None


def test_config_rejects_blank_user_name_and_prefix() -> None:
    payload = deepcopy(_valid_config())
    payload["generation"]["user_name"] = "   "
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)

    payload = deepcopy(_valid_config())
    payload["slots"]["prefix"] = "--"
    with pytest.raises(ValidationError):
        AppConfig.model_validate(payload)
