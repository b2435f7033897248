from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from tracker_engine.prompts.catalog import PROMPT_KEYS, normalize_prompt_key

ENV_REF_PATTERN = re.compile(r"^\$\{ENV:([A-Z0-9_]+)\}$")
DOTENV_DISABLE_VALUES = frozenset({"1", "true", "yes", "on"})

GenerationMode = Literal["together", "separate", "external"]
TrackerFieldName = Literal["user_stats", "info_box", "character_thoughts"]


class StrictConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class GenerationConfig(StrictConfigModel):
    mode: GenerationMode = "together"
    update_depth: int = Field(default=4, ge=1)
    user_name: str = "User"

    @field_validator("user_name")
    @classmethod
    def _user_name_non_empty(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("generation.user_name must not be empty.")
        return trimmed


class TrackersConfig(StrictConfigModel):
    user_stats: bool = True
    info_box: bool = True
    character_thoughts: bool = True

    def enabled_fields(self) -> list[str]:
        return [name for name, enabled in self.model_dump().items() if enabled]


class FeaturesConfig(StrictConfigModel):
    immersive_markup: bool = False
    dialogue_coloring: bool = False
    deception: bool = False
    omniscience_filter: bool = False
    music_suggestion: bool = False
    choose_your_own_adventure: bool = False


class SuppressionConfig(StrictConfigModel):
    skip_mode: Literal["none", "guided", "impersonation"] = "none"


class HistoryPersistenceConfig(StrictConfigModel):
    enabled: bool = False
    message_count: int = Field(default=0, ge=0)
    injection_position: Literal["assistant_message_end", "user_message_end"] = (
        "assistant_message_end"
    )
    context_preamble: str = "Context for that moment:"
    persisted_fields: list[TrackerFieldName] = Field(
        default_factory=lambda: ["user_stats", "info_box", "character_thoughts"]
    )

    @field_validator("message_count", mode="before")
    @classmethod
    def _all_means_zero(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "all":
            return 0
        return value

    @field_validator("context_preamble")
    @classmethod
    def _preamble_non_empty(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("history.context_preamble must not be empty.")
        return trimmed


class ExternalApiConfig(StrictConfigModel):
    base_url: str | None = None
    model: str | None = None
    api_key: str | None = None
    max_tokens: int = Field(default=2048, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=60.0, gt=0)

    @field_validator("base_url", "model", "api_key")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None


class PromptsConfig(StrictConfigModel):
    directory: Path | None = None
    auto_reload: bool = True
    overrides: dict[str, str] = Field(default_factory=dict)

    @field_validator("overrides")
    @classmethod
    def _validate_overrides(cls, value: dict[str, str]) -> dict[str, str]:
        normalized: dict[str, str] = {}
        for raw_key, text in value.items():
            key = normalize_prompt_key(raw_key)
            if key not in PROMPT_KEYS:
                raise ValueError(
                    f"Unknown prompt override '{raw_key}'. Known keys: {list(PROMPT_KEYS)}"
                )
            trimmed = text.strip()
            if trimmed:
                normalized[key] = trimmed
        return normalized


class SlotsConfig(StrictConfigModel):
    prefix: str = "tracker"

    @field_validator("prefix")
    @classmethod
    def _prefix_non_empty(cls, value: str) -> str:
        trimmed = value.strip().strip("-")
        if not trimmed:
            raise ValueError("slots.prefix must not be empty.")
        return trimmed


class LoggingConfig(StrictConfigModel):
    level: Literal["ERROR", "WARNING", "INFO", "DEBUG", "TRACE"] = "INFO"
    output: Literal["console", "file", "both"] = "console"
    directory: Path = Path("./data/logs")
    filename: str = "tracker-engine.log"
    daily_rotation: bool = True
    retention_days: int = 14
    utc: bool = True


class AppConfig(StrictConfigModel):
    enabled: bool = True
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    trackers: TrackersConfig = Field(default_factory=TrackersConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    suppression: SuppressionConfig = Field(default_factory=SuppressionConfig)
    history: HistoryPersistenceConfig = Field(default_factory=HistoryPersistenceConfig)
    external_api: ExternalApiConfig = Field(default_factory=ExternalApiConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    slots: SlotsConfig = Field(default_factory=SlotsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _expand_env_refs(node: Any) -> Any:
    """Replace ``${ENV:NAME}`` leaves with the environment value (or None)."""
    if isinstance(node, str):
        ref = ENV_REF_PATTERN.match(node.strip())
        return os.getenv(ref.group(1)) if ref else node
    if isinstance(node, list):
        return [_expand_env_refs(item) for item in node]
    if isinstance(node, dict):
        return {key: _expand_env_refs(item) for key, item in node.items()}
    return node


def _maybe_load_dotenv() -> None:
    flag = os.getenv("TRACKER_ENGINE_DISABLE_DOTENV", "")
    if flag.strip().lower() in DOTENV_DISABLE_VALUES:
        return
    dotenv_path = Path(os.getenv("TRACKER_ENGINE_DOTENV_PATH", ".env"))
    if dotenv_path.is_file():
        # Values already in the environment win over the file.
        load_dotenv(dotenv_path=dotenv_path, override=False)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    _maybe_load_dotenv()
    path = Path(config_path or os.getenv("TRACKER_ENGINE_CONFIG", "config.yaml"))
    if not path.exists():
        raise FileNotFoundError(
            f"Tracker config not found: {path}. "
            "Pass --config, set TRACKER_ENGINE_CONFIG, or copy config.example.yaml."
        )
    document = yaml.safe_load(path.read_text(encoding="utf-8"))
    if document is None:
        raise ValueError(f"Tracker config is empty: {path}")
    if not isinstance(document, dict):
        raise TypeError(f"Tracker config must be a YAML mapping at the top level: {path}")
    return AppConfig.model_validate(_expand_env_refs(document))
