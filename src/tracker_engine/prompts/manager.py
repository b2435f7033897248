from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tracker_engine.config import PromptsConfig
from tracker_engine.logging_setup import get_logger
from tracker_engine.prompts.catalog import PROMPT_KEYS

DEFAULT_PROMPTS: dict[str, str] = {
    "tracker_instructions": (
        "At the very end of your reply, output the updated tracker state for this "
        "scene. Keep every section you were given, change only what the story "
        "changed, and use the same format as the previous tracker block."
    ),
    "context_instructions": (
        "Treat the information above as the current state of the scene. Stay "
        "consistent with it and do not repeat it back verbatim."
    ),
    "immersive_markup": (
        "When it adds to immersion, render in-world documents, screens or signs "
        "with simple inline HTML and CSS."
    ),
    "dialogue_coloring": (
        "Wrap each character's spoken dialogue in a <font color=...> tag, using "
        "one distinct, readable color per character and keeping it stable."
    ),
    "deception": (
        "When a character lies or hides something, add a hidden note in the form "
        "<lie>the truth</lie> right after the deceptive statement."
    ),
    "omniscience_filter": (
        "Characters only know what they witnessed or were told. Never let them "
        "act on information from narration they could not perceive."
    ),
    "music_suggestion": (
        "Suggest one song that fits the current mood of the scene."
    ),
    "choose_your_own_adventure": (
        "End your reply with a short numbered list of possible actions the user "
        "could take next."
    ),
}

MUSIC_FORMAT_INSTRUCTION = 'Format it as: <spotify:Song Title - Artist Name/>'


Fingerprint = tuple[int, int] | None


@dataclass
class _CachedPrompt:
    text: str
    fingerprint: Fingerprint


class PromptManager:
    """Resolves prompt texts: config override, then prompt file, then default.

    Prompt files live at ``<directory>/<key>.md``. With ``auto_reload`` on, a
    file is re-read whenever its mtime or size changes; a missing, empty or
    unreadable file falls back to the built-in text.
    """

    def __init__(self, config: PromptsConfig) -> None:
        self.logger = get_logger(__name__)
        self._dir = config.directory
        self._auto_reload = config.auto_reload
        self._overrides = dict(config.overrides)
        self._cache: dict[str, _CachedPrompt] = {
            key: self._load(key) for key in PROMPT_KEYS
        }
        self.logger.debug(
            "Prompt manager ready dir=%s auto_reload=%s overrides=%s",
            self._dir,
            self._auto_reload,
            sorted(self._overrides),
        )

    @property
    def directory(self) -> Path | None:
        return self._dir

    def _path_for(self, key: str) -> Path | None:
        return self._dir / f"{key}.md" if self._dir is not None else None

    @staticmethod
    def _stat(path: Path | None) -> Fingerprint:
        if path is None:
            return None
        try:
            stat = path.stat()
        except OSError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def _load(self, key: str) -> _CachedPrompt:
        path = self._path_for(key)
        fingerprint = self._stat(path)
        if path is None or fingerprint is None:
            return _CachedPrompt(DEFAULT_PROMPTS[key], fingerprint)
        try:
            text = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.warning(
                "Prompt file unreadable key=%s path=%s error=%s; using built-in text.",
                key,
                path,
                exc.__class__.__name__,
            )
            text = ""
        if not text:
            self.logger.warning("Prompt file empty key=%s path=%s; using built-in text.", key, path)
            text = DEFAULT_PROMPTS[key]
        return _CachedPrompt(text, fingerprint)

    def maybe_reload(self, key: str | None = None) -> list[str]:
        """Re-read prompt files whose fingerprint changed; returns reloaded keys."""
        if not self._auto_reload or self._dir is None:
            return []
        reloaded = []
        for candidate in (key,) if key else PROMPT_KEYS:
            cached = self._cache[candidate]
            if self._stat(self._path_for(candidate)) != cached.fingerprint:
                self._cache[candidate] = self._load(candidate)
                reloaded.append(candidate)
        if reloaded:
            self.logger.info("Prompt files reloaded keys=%s dir=%s", reloaded, self._dir)
        return reloaded

    def get(self, key: str) -> str:
        if key in self._overrides:
            return self._overrides[key]
        if key not in self._cache:
            raise KeyError(f"Unknown prompt key: {key}")
        self.maybe_reload(key)
        return self._cache[key].text
