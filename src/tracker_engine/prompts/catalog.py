from __future__ import annotations

FEATURE_KEYS: tuple[str, ...] = (
    "immersive_markup",
    "dialogue_coloring",
    "deception",
    "omniscience_filter",
    "music_suggestion",
    "choose_your_own_adventure",
)

PROMPT_KEYS: tuple[str, ...] = (
    "tracker_instructions",
    "context_instructions",
    *FEATURE_KEYS,
)


def normalize_prompt_key(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")
