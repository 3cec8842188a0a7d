"""
Markup content: a piece of text together with the markup it is written in.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

MARKUP_PLAIN_TEXT = "PlainText"
MARKUP_MARKDOWN = "Markdown"

DEFAULT_MARKUP = MARKUP_PLAIN_TEXT

CONTENT_KEY = "content"
MARKUP_KEY = "markup"


class MarkupContent(BaseModel):
    """A ``(content, markup)`` pair stored for description-like fields."""

    model_config = ConfigDict(frozen=True)

    content: str = ""
    markup: str = DEFAULT_MARKUP

    def to_storage(self) -> Dict[str, str]:
        return {CONTENT_KEY: self.content, MARKUP_KEY: self.markup}

    @classmethod
    def from_value(
        cls, value: Any, default_markup: str = DEFAULT_MARKUP
    ) -> Optional["MarkupContent"]:
        """Build markup content from API or storage input.

        Accepts an existing instance, a bare string (taken as content in the
        default markup), or a mapping with ``content`` and optional ``markup``
        keys. Returns ``None`` for ``None``; raises ``ValueError`` otherwise.
        """
        if value is None:
            return None
        if isinstance(value, MarkupContent):
            return value
        if isinstance(value, str):
            return cls(content=value, markup=default_markup)
        if isinstance(value, dict):
            content = value.get(CONTENT_KEY, "")
            markup = value.get(MARKUP_KEY) or default_markup
            if not isinstance(content, str) or not isinstance(markup, str):
                raise ValueError("markup content and markup must be strings")
            return cls(content=content, markup=markup)
        raise ValueError(f"unsupported markup content value: {value!r}")
