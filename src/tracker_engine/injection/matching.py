from __future__ import annotations

from tracker_engine.state.models import Span

# Hosts truncate or reformat long messages inside assembled prompts, so a miss
# on the full text falls back to progressively shorter trailing slices.
SUFFIX_LENGTHS: tuple[int, ...] = (500, 300, 200, 100, 50)


def locate(content: str, haystack: str) -> Span | None:
    """Find the most recent occurrence of ``content`` (or its tail) in ``haystack``."""
    if not content or not haystack:
        return None

    index = haystack.rfind(content)
    if index != -1:
        return Span(index, index + len(content))

    for length in SUFFIX_LENGTHS:
        if len(content) <= length:
            continue
        tail = content[-length:]
        index = haystack.rfind(tail)
        if index != -1:
            return Span(index, index + len(tail))
    return None
