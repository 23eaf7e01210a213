"""Text cleanup for feed content."""

import html
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class ContentSanitizer:
    """Strips markup and decodes entities from third-party feed text."""

    WHITESPACE_RE = re.compile(r"\s+")

    def strip_markup(self, text: Optional[str]) -> str:
        """Remove HTML tags, scripts and styles, keeping readable text."""
        if not text:
            return ""
        if "<" not in text:
            return text
        soup = BeautifulSoup(text, "html.parser")
        for tag in soup(["script", "style", "iframe"]):
            tag.decompose()
        return soup.get_text(" ")

    def decode_entities(self, text: Optional[str]) -> str:
        """Decode HTML entities, including numeric ones like ``&#8217;``."""
        if not text:
            return ""
        decoded = html.unescape(text)
        return decoded.replace("\xa0", " ")

    def clean(self, text: Optional[str]) -> Optional[str]:
        """Full cleanup used on every feed field; blank input becomes None."""
        if text is None:
            return None
        cleaned = self.decode_entities(self.strip_markup(text))
        cleaned = self.WHITESPACE_RE.sub(" ", cleaned).strip()
        return cleaned or None
