"""
Update Relay - Markdown Translator.

Converts the shared markdown dialect used by notifications into the markup
each chat platform understands.

Translation is an ordered pipeline of pure text passes. Every pass is a
non-overlapping regex rewrite of one construct; there is no parse tree, so
malformed or overlapping markup yields best-effort output. Pass order:

    1. links (with optional trailing image URL)
    2. images (with optional trailing link URL)
    3. italic
    4. bold
    5. list items
    6. blockquotes
    7. headers
    8. horizontal separators
    9. blank-line compression

Link and image passes run first so their labels can be cleaned of nested
emphasis before the emphasis passes rewrite the whole text. Italic runs
before bold because the italic pattern refuses doubled delimiters, while
the bold pattern would happily eat a converted single-delimiter span.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

TextPass = Callable[[str], str]

# ---------------------------------------------------------------------------
# Shared dialect patterns
# ---------------------------------------------------------------------------

# [label](url) optionally followed by (imageUrl); not preceded by "!"
LINK_IMAGE_RE = re.compile(r"(?<!!)\[([^\]]*)\]\(([^)\s]+)\)(?:\(([^)\s]+)\))?")

# ![label](imageUrl) optionally followed by (linkUrl)
IMAGE_LINK_RE = re.compile(r"!\[([^\]]*)\]\(([^)\s]+)\)(?:\(([^)\s]+)\))?")

# *text* or _text_, but never **, __ or intraword underscores
ITALIC_RE = re.compile(
    r"(?<![*\w])\*(?![*\s])(.+?)(?<![*\s])\*(?![*\w])"
    r"|(?<![_\w])_(?![_\s])(.+?)(?<![_\s])_(?![_\w])"
)

# **text** or __text__
BOLD_RE = re.compile(
    r"(?<![*\w])\*\*(?![*\s])(.+?)(?<![*\s])\*\*(?![*\w])"
    r"|(?<![_\w])__(?![_\s])(.+?)(?<![_\s])__(?![_\w])"
)

# "- item", "* item", "+ item"; a bullet followed only by rule characters
# is a separator, not a list item
LIST_RE = re.compile(r"^[ \t]*[-*+][ \t]+(?![-*_ \t]+$)(.*)$", re.MULTILINE)

QUOTE_RE = re.compile(r"^>[ \t]?(.*)$", re.MULTILINE)

HEADER_RE = re.compile(r"^[ \t]*#{1,6}[ \t]+(.+?)[ \t#]*$", re.MULTILINE)

SEPARATOR_RE = re.compile(r"^[ \t]*([-*_])(?:[ \t]*\1){2,}[ \t]*$", re.MULTILINE)

# Three or more newlines, whitespace allowed in between
BLANK_LINES_RE = re.compile(r"[ \t]*\n[ \t]*(?:\n[ \t]*){2,}")


def _span_text(match: re.Match) -> str:
    """Inner text of an ITALIC_RE / BOLD_RE match, whichever branch hit."""
    return match.group(1) if match.group(1) is not None else match.group(2)


def strip_emphasis(label: str) -> str:
    """Remove italic and bold markers from ``label``, however deeply nested."""
    while True:
        stripped = ITALIC_RE.sub(_span_text, label)
        stripped = BOLD_RE.sub(_span_text, stripped)
        if stripped == label:
            return stripped
        label = stripped


# ---------------------------------------------------------------------------
# Target dialects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MarkdownDialect:
    """Target markup, described as format strings for each construct."""

    name: str
    link: str        # {label}, {url}
    italic: str      # {text}
    bold: str        # {text}
    list_item: str   # {text}
    quote: str       # {text}
    header: str      # {text}
    separator: str


# Telegram "Markdown" (legacy) parse mode: no headers, quotes or rules.
TELEGRAM_DIALECT = MarkdownDialect(
    name="telegram",
    link="[{label}]({url})",
    italic="_{text}_",
    bold="*{text}*",
    list_item="- {text}",
    quote='"{text}"',
    header="\n\n*{text}*\n",
    separator="\n--\n",
)

# Discord: angle brackets keep masked links from spawning embeds.
DISCORD_DIALECT = MarkdownDialect(
    name="discord",
    link="[{label}](<{url}>)",
    italic="*{text}*",
    bold="**{text}**",
    list_item="- {text}",
    quote="> {text}",
    header="\n\n**{text}**\n",
    separator="\n─────\n",
)


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


def link_pass(dialect: MarkdownDialect) -> TextPass:
    def apply(text: str) -> str:
        def replace(match: re.Match) -> str:
            label, url, image_url = match.groups()
            label = strip_emphasis(label or "") or "Link"
            result = dialect.link.format(label=label, url=url)
            if image_url:
                result += f" ({dialect.link.format(label='image', url=image_url)})"
            return result

        return LINK_IMAGE_RE.sub(replace, text)

    return apply


def image_pass(dialect: MarkdownDialect) -> TextPass:
    def apply(text: str) -> str:
        def replace(match: re.Match) -> str:
            label, image_url, url = match.groups()
            label = strip_emphasis(label or "") or "Image"
            result = dialect.link.format(label=label, url=image_url)
            if url:
                result += f" ({dialect.link.format(label='link', url=url)})"
            return result

        return IMAGE_LINK_RE.sub(replace, text)

    return apply


def _span_pass(pattern: re.Pattern, template: str) -> TextPass:
    def apply(text: str) -> str:
        return pattern.sub(lambda m: template.format(text=_span_text(m)), text)

    return apply


def _line_pass(pattern: re.Pattern, template: str) -> TextPass:
    def apply(text: str) -> str:
        return pattern.sub(lambda m: template.format(text=m.group(1)), text)

    return apply


def separator_pass(dialect: MarkdownDialect) -> TextPass:
    def apply(text: str) -> str:
        return SEPARATOR_RE.sub(lambda _: dialect.separator, text)

    return apply


def compress_blank_lines(text: str) -> str:
    return BLANK_LINES_RE.sub("\n\n", text)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class MarkdownPipeline:
    """An ordered sequence of named text passes.

    Each pass must be a pure ``str -> str`` function; the pipeline adds
    nothing but ordering and the empty-input rule.
    """

    def __init__(self, passes: Sequence[tuple[str, TextPass]]) -> None:
        self._passes = tuple(passes)

    @property
    def pass_names(self) -> list[str]:
        return [name for name, _ in self._passes]

    def translate(self, text: str | None) -> str:
        if not text:
            return ""
        for _, apply in self._passes:
            text = apply(text)
        return text

    __call__ = translate


def build_pipeline(dialect: MarkdownDialect) -> MarkdownPipeline:
    """Assemble the standard nine-pass pipeline for ``dialect``."""
    return MarkdownPipeline([
        ("links", link_pass(dialect)),
        ("images", image_pass(dialect)),
        ("italic", _span_pass(ITALIC_RE, dialect.italic)),
        ("bold", _span_pass(BOLD_RE, dialect.bold)),
        ("lists", _line_pass(LIST_RE, dialect.list_item)),
        ("quotes", _line_pass(QUOTE_RE, dialect.quote)),
        ("headers", _line_pass(HEADER_RE, dialect.header)),
        ("separators", separator_pass(dialect)),
        ("blank_lines", compress_blank_lines),
    ])


telegram_pipeline = build_pipeline(TELEGRAM_DIALECT)
discord_pipeline = build_pipeline(DISCORD_DIALECT)


def to_telegram(text: str | None) -> str:
    """Translate shared-dialect markdown into Telegram legacy Markdown."""
    return telegram_pipeline.translate(text)


def to_discord(text: str | None) -> str:
    """Translate shared-dialect markdown into Discord markdown."""
    return discord_pipeline.translate(text)
