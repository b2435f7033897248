from __future__ import annotations

import re
from typing import Any

from tracker_engine.config import SuppressionConfig
from tracker_engine.state.models import SuppressionDecision

IMPERSONATION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("first-perspective", re.compile(r"write in first person perspective from", re.I)),
    ("second-perspective", re.compile(r"write in second person perspective from", re.I)),
    ("third-perspective", re.compile(r"write in third person perspective from", re.I)),
    ("you-yours", re.compile(r"using you/yours for", re.I)),
    ("third-person-pronouns", re.compile(r"third-person pronouns for", re.I)),
    ("impersonate-word", re.compile(r"\bimpersonat(e|ion)?\b", re.I)),
    ("assume-role", re.compile(r"assume the role of", re.I)),
    ("play-role", re.compile(r"play the role of", re.I)),
    ("impersonate-command", re.compile(r"/impersonate await=true", re.I)),
    ("generic-first", re.compile(r"\bfirst person\b", re.I)),
    ("generic-second", re.compile(r"\bsecond person\b", re.I)),
    ("generic-third", re.compile(r"\bthird person\b", re.I)),
)


def _instruct_text(metadata: dict[str, Any]) -> tuple[bool, str]:
    injects = metadata.get("script_injects")
    instruct = injects.get("instruct") if isinstance(injects, dict) else None
    if instruct is None or instruct is False or instruct == "":
        return False, ""
    # Any injected instruct script marks a guided generation, even an empty one.
    if isinstance(instruct, dict):
        value = instruct.get("value")
        return True, str(value) if value else str(instruct)
    return True, str(instruct)


def evaluate_suppression(
    settings: SuppressionConfig,
    session_metadata: dict[str, Any],
    request_data: dict[str, Any],
) -> SuppressionDecision:
    """Decide whether tracker injection must be skipped for this request.

    Pure: reads the skip mode, the session's injected ``instruct`` script and
    the request's quiet prompt, and nothing else.
    """
    is_guided, instruct = _instruct_text(session_metadata or {})
    data = request_data or {}
    quiet_prompt = str(data.get("quiet_prompt") or data.get("quietPrompt") or "")
    has_quiet_prompt = bool(quiet_prompt)

    combined = "\n".join(part for part in (instruct, quiet_prompt) if part)
    matched = ""
    if combined:
        for pattern_id, pattern in IMPERSONATION_PATTERNS:
            if pattern.search(combined):
                matched = pattern_id
                break
    is_impersonation = bool(matched)

    skip_mode = settings.skip_mode
    if skip_mode == "guided":
        should_suppress = is_guided or has_quiet_prompt
        reason = "guided-generation" if is_guided else ("quiet-prompt" if has_quiet_prompt else "")
    elif skip_mode == "impersonation":
        should_suppress = is_impersonation
        reason = f"impersonation:{matched}" if matched else ""
    else:
        should_suppress = False
        reason = ""

    return SuppressionDecision(
        should_suppress=should_suppress,
        skip_mode=skip_mode,
        reason=reason,
        is_guided=is_guided,
        is_impersonation=is_impersonation,
        has_quiet_prompt=has_quiet_prompt,
        matched_pattern=matched,
    )
