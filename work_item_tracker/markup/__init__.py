"""Markup content and its rendering to HTML."""

from .content import (
    DEFAULT_MARKUP,
    MARKUP_MARKDOWN,
    MARKUP_PLAIN_TEXT,
    MarkupContent,
)
from .rendering import MarkupRenderer, WorkItemReference, work_item_href

__all__ = [
    "DEFAULT_MARKUP",
    "MARKUP_MARKDOWN",
    "MARKUP_PLAIN_TEXT",
    "MarkupContent",
    "MarkupRenderer",
    "WorkItemReference",
    "work_item_href",
]
