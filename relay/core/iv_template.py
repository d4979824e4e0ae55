"""Telegram Instant View templates.

An Instant View template is registered with Telegram for one site and is
identified by its ``rhash``. Links to that site can be wrapped into a
``t.me/iv`` URL so Telegram renders the article inline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import quote, urlparse

IV_BASE_URL = "https://t.me/iv"


@dataclass(frozen=True)
class TelegramIVTemplate:
    """Instant View template bound to a domain and optional path pattern."""

    domain: str
    rhash: str
    path_pattern: str = ""

    def matches(self, link: str) -> bool:
        if not link:
            return False
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https"):
            return False
        host = (parsed.hostname or "").lower()
        domain = self.domain.lower()
        if host != domain and not host.endswith(f".{domain}"):
            return False
        if self.path_pattern and not re.search(self.path_pattern, parsed.path or "/"):
            return False
        return True

    def test_url(self, link: str) -> str | None:
        """Return the Instant View URL for ``link``, or None if it doesn't apply."""
        if not self.matches(link):
            return None
        return f"{IV_BASE_URL}?url={quote(link, safe='')}&rhash={self.rhash}"
