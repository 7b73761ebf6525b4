"""Cleanup of raw model output before it becomes a character turn."""
import re
from typing import Optional


class EmptyResponse(Exception):
    """Raised when nothing usable is left after cleaning a model response."""


class ResponseSanitizer:
    """Strips markdown and quoting artifacts from model completions."""

    BOLD = re.compile(r"^\*\*|\*\*$")
    ITALIC = re.compile(r"^[*_]|[*_]$")
    QUOTES = re.compile(r"^[\"'“”‘’]+|[\"'“”‘’]+$")
    WHITESPACE = re.compile(r"\s+")

    def clean(self, raw: Optional[str], character_name: Optional[str] = None) -> str:
        """
        Clean raw model text.

        Steps, in order: trim, strip bold then italic markers at either end,
        strip surrounding quote characters, drop a leading "Name:" label for
        the character, collapse newlines and repeated whitespace, trim.

        Args:
            raw: Text returned by the language model
            character_name: Character whose speaker label should be removed

        Returns:
            Cleaned single-line text

        Raises:
            EmptyResponse: If the cleaned text is empty
        """
        text = (raw or "").strip()
        text = self.BOLD.sub("", text).strip()
        text = self.ITALIC.sub("", text).strip()
        text = self.QUOTES.sub("", text).strip()

        if character_name:
            label = re.compile(rf"^\**{re.escape(character_name)}\**\s*:\s*", re.IGNORECASE)
            stripped = label.sub("", text)
            if stripped != text:
                text = self.QUOTES.sub("", stripped.strip()).strip()

        text = self.WHITESPACE.sub(" ", text).strip()

        if not text:
            raise EmptyResponse("Model response was empty after cleaning")
        return text
