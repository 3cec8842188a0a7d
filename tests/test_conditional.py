"""
Tests for entity tags and conditional request evaluation.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import UUID

from work_item_tracker import conditional


def entity(version=0, updated_at=datetime(2026, 5, 1, 12, 0, 0, 500000, tzinfo=timezone.utc)):
    return SimpleNamespace(id=UUID(int=1), version=version, updated_at=updated_at)


class TestEntityTags:
    """Tests for computing tags."""

    def test_same_state_same_tag(self):
        assert conditional.compute(entity()) == conditional.compute(entity())

    def test_version_changes_tag(self):
        assert conditional.compute(entity(0))[0] != conditional.compute(entity(1))[0]

    def test_last_modified_is_truncated(self):
        _, last_modified = conditional.compute(entity())
        assert last_modified == datetime(2026, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_list_tag_depends_on_order(self):
        a = entity(0)
        b = SimpleNamespace(id=UUID(int=2), version=0, updated_at=a.updated_at)
        assert conditional.compute_list([a, b])[0] != conditional.compute_list([b, a])[0]

    def test_list_last_modified_is_latest(self):
        a = entity()
        b = entity(updated_at=a.updated_at + timedelta(hours=1))
        _, last_modified = conditional.compute_list([a, b])
        assert last_modified == datetime(2026, 5, 1, 13, 0, 0, tzinfo=timezone.utc)

    def test_empty_list_has_stable_tag(self):
        assert conditional.compute_list([])[0] == conditional.compute_list([])[0]

    def test_naive_timestamps_are_utc(self):
        naive = entity(updated_at=datetime(2026, 5, 1, 12, 0, 0, 500000))
        assert conditional.compute(naive) == conditional.compute(entity())


class TestNotModified:
    """Tests for If-None-Match / If-Modified-Since evaluation."""

    def setup_method(self):
        self.tag, self.last_modified = conditional.compute(entity())

    def test_matching_tag(self):
        header = conditional.format_etag(self.tag)
        assert conditional.is_not_modified(header, None, self.tag, self.last_modified)

    def test_weak_and_listed_tags(self):
        header = f'"other", W/"{self.tag}"'
        assert conditional.is_not_modified(header, None, self.tag, self.last_modified)

    def test_star_matches(self):
        assert conditional.is_not_modified("*", None, self.tag, self.last_modified)

    def test_other_tag(self):
        assert not conditional.is_not_modified('"other"', None, self.tag, self.last_modified)

    def test_modified_since(self):
        header = conditional.format_http_date(self.last_modified)
        assert conditional.is_not_modified(None, header, self.tag, self.last_modified)
        earlier = conditional.format_http_date(self.last_modified - timedelta(seconds=1))
        assert not conditional.is_not_modified(None, earlier, self.tag, self.last_modified)

    def test_if_none_match_wins(self):
        header = conditional.format_http_date(self.last_modified)
        assert not conditional.is_not_modified('"other"', header, self.tag, self.last_modified)

    def test_unparseable_date(self):
        assert not conditional.is_not_modified(None, "yesterday", self.tag, self.last_modified)

    def test_no_conditions(self):
        assert not conditional.is_not_modified(None, None, self.tag, self.last_modified)
