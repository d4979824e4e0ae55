"""Text helpers shared by the bot clients."""

from __future__ import annotations

import re

ELLIPSIS = "..."

# Markup characters that must not be left dangling at a cut point.
# Emphasis delimiters are handled by balancing instead.
_TRAILING_MARKUP = "`[(!#>-"

_BREAKS = ("\n\n", "\n", " ")

_LINK_TARGET_RE = re.compile(r"\]\([^)]*\)")
_EMPHASIS_RUN_RE = re.compile(r"\*+|_+|~+")


def _unmatched_emphasis(text: str) -> re.Match | None:
    """The last emphasis delimiter run in ``text`` that has no partner.

    Runs are paired by exact spelling (``*`` with ``*``, ``**`` with
    ``**``). Link targets and intraword underscores are not delimiters.
    """
    masked = _LINK_TARGET_RE.sub(lambda m: " " * len(m.group(0)), text)
    runs: dict[str, list[re.Match]] = {}
    for match in _EMPHASIS_RUN_RE.finditer(masked):
        start, end = match.span()
        if (
            match.group(0)[0] == "_"
            and 0 < start and end < len(masked)
            and masked[start - 1].isalnum() and masked[end].isalnum()
        ):
            continue
        runs.setdefault(match.group(0), []).append(match)

    unmatched = [found[-1] for found in runs.values() if len(found) % 2]
    return max(unmatched, key=lambda m: m.start(), default=None)


def natural_limit(text: str, limit: int) -> str:
    """Shorten ``text`` to at most ``limit`` characters, cutting naturally.

    Prefers cutting at a paragraph break, then a line break, then a space,
    as long as that keeps at least half of the allowed text. An unclosed
    link label is dropped rather than cut in half. An emphasis span left
    open by the cut is dropped the same way, or loses its opening marker
    when it starts in the first half. Telegram rejects messages with
    unbalanced markup, so the result always pairs its delimiters.
    """
    if not text or len(text) <= limit:
        return text or ""
    if limit <= len(ELLIPSIS):
        return text[:limit]

    budget = limit - len(ELLIPSIS)
    cut = text[:budget]

    for separator in _BREAKS:
        index = cut.rfind(separator)
        if index >= budget // 2:
            cut = cut[:index]
            break

    # Never leave a half-written [label](url)
    open_bracket = cut.rfind("[")
    if open_bracket != -1 and not re.search(r"\]\([^)]*\)", cut[open_bracket:]):
        if open_bracket >= budget // 2:
            cut = cut[:open_bracket]

    while True:
        opener = _unmatched_emphasis(cut)
        if opener is None:
            break
        if opener.start() >= budget // 2:
            cut = cut[:opener.start()]
        else:
            cut = cut[:opener.start()] + cut[opener.end():]

    cut = cut.rstrip().rstrip(_TRAILING_MARKUP).rstrip()
    return cut + ELLIPSIS
