from __future__ import annotations

import json
import re
from typing import Any, Iterable

from tracker_engine.state.models import TrackerField, TrackerSnapshot

SECTION_LABELS: dict[str, str] = {
    "user_stats": "{user_name}'s Stats",
    "info_box": "Info Box",
    "character_thoughts": "Present Characters",
}

SECTION_HINTS: dict[str, str] = {
    "user_stats": "{user_name}'s condition, mood, inventory and quests",
    "info_box": "date, weather, temperature, time and location of the scene",
    "character_thoughts": "every character present, with appearance and current thoughts",
}

CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def _label(key: str) -> str:
    words = CAMEL_BOUNDARY_RE.sub(" ", str(key)).replace("_", " ").strip()
    return words[:1].upper() + words[1:]


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _describe_item(item: Any) -> str:
    if not isinstance(item, dict):
        return _scalar(item)
    name = item.get("name") or item.get("title")
    details = [
        f"{_label(k)}: {_scalar(v)}"
        for k, v in item.items()
        if k not in {"name", "title", "id", "locked"} and not isinstance(v, (dict, list))
    ]
    if name and details:
        return f"{name} ({', '.join(details)})"
    if name:
        return str(name)
    return ", ".join(details)


def flatten_json(value: Any, *, indent: str = "") -> list[str]:
    """Render parsed tracker JSON as short ``Label: value`` lines."""
    lines: list[str] = []
    if isinstance(value, dict):
        for key, item in value.items():
            if key == "locked":
                continue
            label = _label(key)
            if isinstance(item, dict):
                nested = flatten_json(item, indent=indent + "  ")
                if nested:
                    lines.append(f"{indent}{label}:")
                    lines.extend(nested)
            elif isinstance(item, list):
                described = [_describe_item(entry) for entry in item]
                described = [entry for entry in described if entry]
                if described:
                    lines.append(f"{indent}{label}: {', '.join(described)}")
            elif item not in (None, ""):
                lines.append(f"{indent}{label}: {_scalar(item)}")
    elif isinstance(value, list):
        for entry in value:
            described = _describe_item(entry)
            if described:
                lines.append(f"{indent}- {described}")
    elif value not in (None, ""):
        lines.append(f"{indent}{_scalar(value)}")
    return lines


def field_as_text(field: TrackerField) -> str:
    if field.format == "json":
        parsed = field.parsed()
        if parsed is not None:
            return "\n".join(flatten_json(parsed)).strip()
    return field.value.strip()


def _present(snapshot: TrackerSnapshot, names: Iterable[str]) -> list[tuple[str, TrackerField]]:
    available = snapshot.fields()
    return [
        (name, available[name])
        for name in names
        if name in available and not available[name].is_blank()
    ]


def render_tracker_instructions(
    base: str,
    *,
    enabled_fields: list[str],
    committed: TrackerSnapshot,
    user_name: str,
) -> str:
    if not enabled_fields:
        return ""
    use_json = any(field.format == "json" for _, field in _present(committed, enabled_fields))
    lines = [base, "", "Tracker sections to include, in this order:"]
    for name in enabled_fields:
        label = SECTION_LABELS[name].format(user_name=user_name)
        hint = SECTION_HINTS[name].format(user_name=user_name)
        lines.append(f"- {label}: {hint}")
    if use_json:
        lines.append("Output the tracker as a single JSON object inside a ```json code block.")
    else:
        lines.append("Output each section as plain text inside one ``` code block.")
    return "\n".join(lines)


def render_tracker_example(snapshot: TrackerSnapshot, *, enabled_fields: list[str]) -> str | None:
    """Render committed data as if the model had produced it last turn."""
    present = _present(snapshot, enabled_fields)
    if not present:
        return None
    if all(field.format == "json" and field.parsed() is not None for _, field in present):
        merged = {name: field.parsed() for name, field in present}
        body = json.dumps(merged, ensure_ascii=False, indent=2)
        return f"```json\n{body}\n```\n"
    body = "\n\n".join(field.value.strip() for _, field in present)
    return f"```\n{body}\n```\n"


def render_contextual_summary(
    snapshot: TrackerSnapshot,
    *,
    enabled_fields: list[str],
    user_name: str,
) -> str:
    blocks: list[str] = []
    for name, field in _present(snapshot, enabled_fields):
        text = field_as_text(field)
        if not text:
            continue
        label = SECTION_LABELS[name].format(user_name=user_name)
        blocks.append(f"{label}:\n{text}")
    return "\n\n".join(blocks)


def render_compact_history(snapshot: TrackerSnapshot, *, persisted_fields: list[str]) -> str:
    parts = [field_as_text(field) for _, field in _present(snapshot, persisted_fields)]
    return "\n".join(part for part in parts if part)
