"""
Tests for markup rendering and work item cross-references.
"""

from uuid import uuid4

import pytest

from work_item_tracker.cancellation import CancellationToken
from work_item_tracker.errors import BadParameterError, OperationCancelledError
from work_item_tracker.markup.rendering import MarkupRenderer, WorkItemReference
from work_item_tracker.workitem.system_types import SYSTEM_BUG


class TestPlainText:
    """Tests for plain text rendering."""

    def test_escapes_html(self, settings):
        renderer = MarkupRenderer(settings)
        assert renderer.render(uuid4(), "<b>x</b> & y", "PlainText") == "&lt;b&gt;x&lt;/b&gt; &amp; y"

    def test_unsupported_markup(self, settings):
        with pytest.raises(BadParameterError) as exc_info:
            MarkupRenderer(settings).render(uuid4(), "x", "AsciiDoc")
        assert exc_info.value.parameter == "markup"


class TestMarkdown:
    """Tests for markdown rendering and sanitizing."""

    def test_paragraph(self, settings):
        html = MarkupRenderer(settings).render(uuid4(), "Hello *world*", "Markdown")
        assert html.strip() == "<p>Hello <em>world</em></p>"

    def test_raw_html_is_not_passed_through(self, settings):
        html = MarkupRenderer(settings).render(
            uuid4(), "<script>alert(1)</script>\n\ntext", "Markdown"
        )
        assert "<script>" not in html

    def test_javascript_links_are_dropped(self, settings):
        html = MarkupRenderer(settings).render(uuid4(), "[x](javascript:alert(1))", "Markdown")
        assert 'href="javascript' not in html

    def test_fenced_code_is_highlighted(self, settings):
        html = MarkupRenderer(settings).render(
            uuid4(), "```python\nprint('hi')\n```", "Markdown"
        )
        assert '<code class="prettyprint language-python">' in html
        assert "<span" in html

    def test_fence_without_language(self, settings):
        html = MarkupRenderer(settings).render(uuid4(), "```\nplain <code>\n```", "Markdown")
        assert '<code class="prettyprint">' in html
        assert "&lt;code&gt;" in html

    def test_table_extension(self, settings):
        html = MarkupRenderer(settings).render(uuid4(), "| a | b |\n|---|---|\n| 1 | 2 |", "Markdown")
        assert "<table>" in html

    def test_cancelled_render(self, settings):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            MarkupRenderer(settings).render(uuid4(), "x", "Markdown", token)


class TestWorkItemLinks:
    """Tests for #N cross-references."""

    def test_reference_becomes_link(self, settings):
        space_id, wi_id = uuid4(), uuid4()
        calls = []

        def lookup(space, number):
            calls.append(number)
            if number == 1:
                return WorkItemReference(id=wi_id, space_id=space, title="First")
            return None

        html = MarkupRenderer(settings, lookup).render(space_id, "See #1, #1 and #2.", "Markdown")

        href = f"{settings.api_base_url}/api/spaces/{space_id}/work_items/{wi_id}"
        assert html.count(f'href="{href}"') == 2
        assert ">#1</a>" in html
        assert "#2</a>" not in html
        assert "#2." in html
        assert calls == [1, 2]

    def test_reference_to_stored_work_item(self, settings, repo, space, owner):
        w1 = repo.create(space, SYSTEM_BUG, {"system.title": "First", "system.state": "new"}, owner)
        repo.create(
            space,
            SYSTEM_BUG,
            {
                "system.title": "Second",
                "system.state": "new",
                "system.description": {"content": "See #1.", "markup": "Markdown"},
            },
            owner,
        )
        renderer = MarkupRenderer(settings, repo.lookup_reference)

        html = renderer.render(space, "See #1.", "Markdown")

        assert html.startswith('<p>See <a href="')
        assert f'href="{settings.api_base_url}/api/spaces/{space}/work_items/{w1.id}"' in html
        assert 'title="First"' in html
        assert html.strip().endswith(">#1</a>.</p>")

    def test_oversized_number_stays_text(self, settings, repo, space, owner):
        """A number no work item can have is never looked up."""
        repo.create(space, SYSTEM_BUG, {"system.title": "First", "system.state": "new"}, owner)
        calls = []

        def lookup(space_id, number):
            calls.append(number)
            return repo.lookup_reference(space_id, number)

        html = MarkupRenderer(settings, lookup).render(
            space, "See #1 and #99999999999999999999999.", "Markdown"
        )

        assert calls == [1]
        assert ">#1</a>" in html
        assert "#99999999999999999999999.</p>" in html

    def test_plain_text_has_no_links(self, settings):
        def lookup(space, number):
            raise AssertionError("plain text must not resolve references")

        html = MarkupRenderer(settings, lookup).render(uuid4(), "See #1.", "PlainText")
        assert html == "See #1."
