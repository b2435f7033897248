from __future__ import annotations

import json
from argparse import Namespace
from pathlib import Path

import pytest
import yaml

import tracker_engine.__main__ as cli


def _write_config(path: Path, **overrides: object) -> None:
    payload: dict[str, object] = {
        "generation": {"mode": "together", "user_name": "Mira"},
        "features": {"deception": True},
        "history": {"enabled": True, "message_count": "all"},
        "logging": {"level": "WARNING", "output": "console"},
    }
    payload.update(overrides)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")


def _write_chat(path: Path) -> None:
    payload = {
        "messages": [
            {"text": "Hello", "is_user": True},
            {
                "text": "Hi there",
                "is_user": False,
                "archived": {"0": {"info_box": {"format": "text", "value": "Location: Road"}}},
            },
            {"text": "Go north", "is_user": True},
            {"text": "", "is_user": False},
        ],
        "session": {
            "pending": {"info_box": "Location: Cave"},
            "committed": {"info_box": "Location: Road"},
            "commit_guard": -1,
        },
    }
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_parser_accepts_preview_flags() -> None:
    parser = cli._build_parser()
    args = parser.parse_args(["preview", "--config", "cfg.yaml", "--chat", "chat.json", "--swipe"])
    assert args.command == "preview"
    assert args.config_path == "cfg.yaml"
    assert args.chat_path == "chat.json"
    assert args.swipe is True


def test_preview_requires_chat_path() -> None:
    parser = cli._build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["preview"])


def test_check_config_prints_summary(tmp_path: Path, monkeypatch, capsys) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path)
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")

    rc = cli._cmd_check_config(Namespace(config_path=str(cfg_path)))
    output = capsys.readouterr().out

    assert rc == 0
    assert "Generation mode:     together" in output
    assert "Features:            deception" in output
    assert "messages=all" in output


def test_check_config_reports_external_endpoint(tmp_path: Path, monkeypatch, capsys) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path, generation={"mode": "external"})
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")

    rc = cli._cmd_check_config(Namespace(config_path=str(cfg_path)))
    output = capsys.readouterr().out

    assert rc == 0
    assert "External API:        (missing)" in output


def test_check_config_reports_validation_error(tmp_path: Path, monkeypatch, capsys) -> None:
    cfg_path = tmp_path / "config.yaml"
    _write_config(cfg_path, generation={"mode": "sideways"})
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")

    rc = cli._cmd_check_config(Namespace(config_path=str(cfg_path)))
    output = capsys.readouterr().out

    assert rc == 1
    assert "Config load failed" in output
    assert "ValidationError" in output


def test_check_config_uses_env_path(tmp_path: Path, monkeypatch, capsys) -> None:
    cfg_path = tmp_path / "from-env.yaml"
    _write_config(cfg_path)
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")
    monkeypatch.setenv("TRACKER_ENGINE_CONFIG", str(cfg_path))

    rc = cli._cmd_check_config(Namespace(config_path=None))

    assert rc == 0
    assert str(cfg_path) in capsys.readouterr().out


def test_preview_prints_slots_and_history(tmp_path: Path, monkeypatch, capsys) -> None:
    cfg_path = tmp_path / "config.yaml"
    chat_path = tmp_path / "chat.json"
    _write_config(cfg_path)
    _write_chat(chat_path)
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")

    rc = cli._cmd_preview(
        Namespace(config_path=str(cfg_path), chat_path=str(chat_path), swipe=True)
    )
    output = capsys.readouterr().out

    assert rc == 0
    assert "[tracker-example] depth=2 role=assistant" in output
    assert "Location: Road" in output
    assert "[tracker-context] (cleared)" in output
    assert "[tracker-deception] depth=0 role=system" in output
    assert "message 1:\nContext for that moment:\nLocation: Road" in output


def test_preview_rejects_non_object_chat(tmp_path: Path, monkeypatch) -> None:
    cfg_path = tmp_path / "config.yaml"
    chat_path = tmp_path / "chat.json"
    _write_config(cfg_path)
    chat_path.write_text('"just a string"', encoding="utf-8")
    monkeypatch.setenv("TRACKER_ENGINE_DISABLE_DOTENV", "1")

    with pytest.raises(TypeError):
        cli._cmd_preview(Namespace(config_path=str(cfg_path), chat_path=str(chat_path), swipe=False))


def test_version_command(capsys) -> None:
    assert cli._cmd_version() == 0
    assert capsys.readouterr().out.strip() == f"tracker-engine {cli.__version__}"
