from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any

from tracker_engine import __version__
from tracker_engine.config import AppConfig, load_config
from tracker_engine.host import InMemoryHost
from tracker_engine.logging_setup import configure_logging
from tracker_engine.orchestration.lifecycle import TrackerEngine
from tracker_engine.state.models import (
    ChatMessage,
    GenerationRequest,
    ParsedTracker,
    TrackerSnapshot,
)


def _resolve_config_path(config_path: str | None) -> Path:
    if config_path:
        return Path(config_path)
    return Path(os.getenv("TRACKER_ENGINE_CONFIG", "config.yaml"))


def _try_load_config(path: Path) -> tuple[AppConfig | None, str | None]:
    try:
        return load_config(path), None
    except Exception as exc:
        return None, f"{exc.__class__.__name__}: {exc}"


def _preview_parser(raw: str) -> ParsedTracker:
    return ParsedTracker(snapshot=TrackerSnapshot(), parsing_failed=True)


def _message_from_payload(item: dict[str, Any]) -> ChatMessage:
    archived_raw = item.get("archived") or {}
    archived = {
        int(swipe_id): TrackerSnapshot.from_payload(snapshot)
        for swipe_id, snapshot in archived_raw.items()
    }
    return ChatMessage(
        text=str(item.get("text") or ""),
        is_user=bool(item.get("is_user")),
        is_system=bool(item.get("is_system")),
        swipe_id=int(item.get("swipe_id") or 0),
        archived=archived,
    )


def _load_chat(path: Path) -> dict[str, Any]:
    loaded = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(loaded, list):
        return {"messages": loaded}
    if not isinstance(loaded, dict):
        raise TypeError(f"Chat file must hold a JSON array or object: {path}")
    return loaded


def _cmd_version() -> int:
    print(f"tracker-engine {__version__}")
    return 0


def _cmd_check_config(args: argparse.Namespace) -> int:
    cfg_path = _resolve_config_path(getattr(args, "config_path", None))
    config, error = _try_load_config(cfg_path)
    if config is None:
        print(f"Config load failed ({cfg_path}): {error}")
        return 1

    enabled_features = [name for name, on in config.features.model_dump().items() if on]
    print("")
    print("Tracker Engine Config")
    print("=====================")
    print(f"Config YAML:         {cfg_path}")
    print(f"Enabled:             {config.enabled}")
    print(f"Generation mode:     {config.generation.mode}")
    print(f"Trackers:            {', '.join(config.trackers.enabled_fields()) or '-'}")
    print(f"Features:            {', '.join(enabled_features) or '-'}")
    print(f"Suppression:         {config.suppression.skip_mode}")
    print(
        f"History persistence: {config.history.enabled} "
        f"(position={config.history.injection_position} "
        f"messages={config.history.message_count or 'all'})"
    )
    if config.generation.mode == "external":
        print(f"External API:        {config.external_api.base_url or '(missing)'}")
        print(f"External model:      {config.external_api.model or '(missing)'}")
    print("")
    return 0


def _cmd_preview(args: argparse.Namespace) -> int:
    cfg_path = _resolve_config_path(getattr(args, "config_path", None))
    config, error = _try_load_config(cfg_path)
    if config is None:
        print(f"Config load failed ({cfg_path}): {error}")
        return 1
    configure_logging(config.logging)

    chat = _load_chat(Path(args.chat_path))
    host = InMemoryHost(
        messages=[_message_from_payload(item) for item in chat.get("messages", [])],
        metadata=dict(chat.get("metadata") or {}),
    )
    engine = TrackerEngine.attach(
        config=config,
        host=host,
        parser=_preview_parser,
        session_payload=chat.get("session"),
    )
    engine.on_generation_start(GenerationRequest(is_swipe=bool(args.swipe)))

    print("")
    print("Prompt slots")
    print("============")
    for name in sorted(host.slots):
        slot = host.slots[name]
        if slot.is_clear:
            print(f"[{name}] (cleared)")
            continue
        print(f"[{name}] depth={slot.depth} role={slot.role.name.lower()}")
        print(slot.text.strip("\n"))
    print("")
    print("Historical context")
    print("==================")
    if not engine.history.context_map:
        print("(none)")
    for index, context in engine.history.context_map.items():
        print(f"message {index}:{context}")
    print("")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tracker-engine")
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("version", help="Print tracker-engine version")

    check_parser = subparsers.add_parser("check-config", help="Validate a config file")
    check_parser.add_argument("--config", dest="config_path", default=None)

    preview_parser = subparsers.add_parser(
        "preview", help="Show slot writes and history context for a saved chat"
    )
    preview_parser.add_argument("--config", dest="config_path", default=None)
    preview_parser.add_argument("--chat", dest="chat_path", required=True)
    preview_parser.add_argument(
        "--swipe",
        action="store_true",
        help="Treat the generation as a regeneration of the last reply",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "version"

    if command == "version":
        raise SystemExit(_cmd_version())
    if command == "check-config":
        raise SystemExit(_cmd_check_config(args))
    if command == "preview":
        raise SystemExit(_cmd_preview(args))
    parser.print_help()
    raise SystemExit(2)


if __name__ == "__main__":
    main()
