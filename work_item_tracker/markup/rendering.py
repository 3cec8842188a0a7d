"""
Markup rendering.

Turns description content into HTML. Plain text is HTML-escaped. Markdown is
preprocessed to link ``#N`` references to work items of the same space,
rendered with markdown-it (fenced code highlighted by Pygments), then passed
through the nh3 sanitizer.
"""

from __future__ import annotations

import html
import re
from typing import Callable, Dict, NamedTuple, Optional
from uuid import UUID

import nh3
import structlog
from markdown_it import MarkdownIt
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from ..cancellation import CancellationToken, check_cancelled
from ..config import Settings
from ..db.models import MAX_WORK_ITEM_NUMBER
from ..errors import BadParameterError
from .content import MARKUP_MARKDOWN, MARKUP_PLAIN_TEXT

logger = structlog.get_logger(__name__)

WORK_ITEM_REFERENCE = re.compile(r"#(\d+)")

# [#N](url "title")
MARKDOWN_LINK_TEMPLATE = '[{text}]({url} "{title}")'

CODE_CLASS = re.compile(r"^(language-[a-zA-Z0-9]+|prettyprint)$")
SPAN_CLASS = re.compile(r"^[a-zA-Z0-9_-]+$")


class WorkItemReference(NamedTuple):
    """What the renderer needs to know about a referenced work item."""

    id: UUID
    space_id: UUID
    title: str


WorkItemLookup = Callable[[UUID, int], Optional[WorkItemReference]]


def work_item_href(base_url: str, space_id: UUID, work_item_id: UUID) -> str:
    return f"{base_url.rstrip('/')}/api/spaces/{space_id}/work_items/{work_item_id}"


def _highlight_fence(code: str, lang: str, attrs: str) -> str:
    if not lang:
        return f'<pre><code class="prettyprint">{html.escape(code)}</code></pre>'
    language = re.sub(r"[^a-zA-Z0-9]", "", lang)
    try:
        lexer = get_lexer_by_name(lang)
        body = highlight(code, lexer, HtmlFormatter(nowrap=True))
    except ClassNotFound:
        body = html.escape(code)
    return f'<pre><code class="prettyprint language-{language}">{body}</code></pre>'


def _filter_attribute(tag: str, attribute: str, value: str) -> Optional[str]:
    if attribute != "class":
        return value
    pattern = CODE_CLASS if tag == "code" else SPAN_CLASS if tag == "span" else None
    if pattern is None:
        return None
    kept = [token for token in value.split() if pattern.match(token)]
    return " ".join(kept) or None


def _allowed_attributes() -> Dict[str, set]:
    attributes = {tag: set(names) for tag, names in nh3.ALLOWED_ATTRIBUTES.items()}
    attributes.setdefault("a", set()).update({"href", "title"})
    attributes.setdefault("code", set()).add("class")
    attributes.setdefault("span", set()).add("class")
    return attributes


class MarkupRenderer:
    """Renders markup content to HTML.

    ``lookup`` resolves ``(space_id, number)`` to a work item reference, or
    ``None`` when no such work item exists. It is the only I/O the renderer
    performs.
    """

    def __init__(self, settings: Settings, lookup: Optional[WorkItemLookup] = None):
        self.settings = settings
        self.lookup = lookup
        self._markdown = MarkdownIt(
            "commonmark", {"html": False, "highlight": _highlight_fence}
        ).enable(["table", "strikethrough"])
        self._tags = set(nh3.ALLOWED_TAGS) | {"span", "pre", "code"}
        self._attributes = _allowed_attributes()

    def render(
        self,
        space_id: UUID,
        content: str,
        markup: str,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Render ``content`` written in ``markup`` to HTML."""
        if not self.settings.is_markup_supported(markup):
            raise BadParameterError("markup", markup, expected=self.settings.supported_markups)
        check_cancelled(cancel)
        if markup == MARKUP_MARKDOWN:
            return self._render_markdown(space_id, content, cancel)
        if markup == MARKUP_PLAIN_TEXT:
            return html.escape(content)
        raise BadParameterError("markup", markup, expected=[MARKUP_PLAIN_TEXT, MARKUP_MARKDOWN])

    def _render_markdown(
        self, space_id: UUID, content: str, cancel: Optional[CancellationToken]
    ) -> str:
        source = self.insert_work_item_links(space_id, content, cancel)
        check_cancelled(cancel)
        unsafe = self._markdown.render(source)
        return nh3.clean(
            unsafe,
            tags=self._tags,
            attributes=self._attributes,
            attribute_filter=_filter_attribute,
            link_rel=None,
        )

    def insert_work_item_links(
        self,
        space_id: UUID,
        source: str,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Replace each ``#N`` naming a work item of the space with a markdown link."""
        if self.lookup is None:
            return source
        resolved: Dict[int, Optional[WorkItemReference]] = {}

        def replace(match: "re.Match[str]") -> str:
            number = int(match.group(1))
            if not 1 <= number <= MAX_WORK_ITEM_NUMBER:
                return match.group(0)
            if number not in resolved:
                check_cancelled(cancel)
                resolved[number] = self.lookup(space_id, number)
            reference = resolved[number]
            if reference is None:
                return match.group(0)
            title = reference.title.replace("\\", "\\\\").replace('"', '\\"')
            return MARKDOWN_LINK_TEMPLATE.format(
                text=match.group(0),
                url=work_item_href(self.settings.api_base_url, reference.space_id, reference.id),
                title=title,
            )

        result = WORK_ITEM_REFERENCE.sub(replace, source)
        logger.debug("Work item references resolved", space_id=str(space_id), count=len(resolved))
        return result
