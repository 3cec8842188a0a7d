"""
Tests for the filter[expression] query language and its SQL compilation.
"""

import json

import pytest
from sqlalchemy.dialects import postgresql

from work_item_tracker.errors import BadParameterError
from work_item_tracker.workitem import criteria
from work_item_tracker.workitem.compiler import compile_expression
from work_item_tracker.workitem.query import parse, parse_json
from work_item_tracker.workitem.system_types import SYSTEM_BUG


def create(repo, space, owner, title, state="new", **fields):
    values = {"system.title": title, "system.state": state}
    values.update(fields)
    return repo.create(space, SYSTEM_BUG, values, owner)


class TestParse:
    """Tests for turning query trees into expressions."""

    def test_equality_leaf(self):
        assert parse({"state": "new"}) == criteria.equals("system.state", "new")

    def test_aliases(self):
        assert parse({"space": "x"}) == criteria.equals("space_id", "x")
        assert parse({"workitemtype": "t"}) == criteria.equals("type", "t")
        assert parse({"assignee": "u"}) == criteria.equals("system.assignees", "u")

    def test_null_means_unset(self):
        assert parse({"assignee": None}) == criteria.is_null("system.assignees")

    def test_not_equal_operator(self):
        assert parse({"state": {"$NE": "new"}}) == criteria.not_equals("system.state", "new")

    def test_negate_flips_not_equal(self):
        tree = {"state": {"$NE": "new"}, "negate": True}
        assert parse(tree) == criteria.equals("system.state", "new")

    def test_in_becomes_or(self):
        expression = parse({"state": {"$IN": ["new", "open"]}})
        assert expression == criteria.or_(
            criteria.equals("system.state", "new"),
            criteria.equals("system.state", "open"),
        )

    def test_negated_in_becomes_and(self):
        expression = parse({"state": {"$IN": ["new", "open"]}, "negate": True})
        assert expression == criteria.and_(
            criteria.not_equals("system.state", "new"),
            criteria.not_equals("system.state", "open"),
        )

    def test_and_or(self):
        expression = parse({"$AND": [{"state": "new"}, {"$OR": [{"area": "a"}, {"area": "b"}]}]})
        assert isinstance(expression, criteria.And)
        assert isinstance(expression.operands[1], criteria.Or)
        assert list(criteria.literals(expression)) == ["new", "a", "b"]

    def test_negate_null_is_rejected(self):
        with pytest.raises(BadParameterError) as exc_info:
            parse({"assignee": None, "negate": True})
        assert "negate for null not supported" in exc_info.value.message

    def test_unknown_field(self):
        with pytest.raises(BadParameterError):
            parse({"priority": "high"})

    def test_unknown_operator(self):
        with pytest.raises(BadParameterError):
            parse({"state": {"$GT": 1}})

    def test_malformed_json(self):
        with pytest.raises(BadParameterError) as exc_info:
            parse_json("{not json")
        assert exc_info.value.parameter == "filter[expression]"

    def test_empty_combinator(self):
        with pytest.raises(BadParameterError):
            parse({"$AND": []})


class TestCompile:
    """Tests for compiling expressions to SQL."""

    def test_parameters_in_order(self):
        compiled = compile_expression(parse({"state": {"$IN": ["new", "open"]}}), "sqlite")
        assert compiled.parameters == ["new", "open"]

    def test_postgres_list_containment(self):
        compiled = compile_expression(criteria.equals("system.assignees", "u"), "postgresql")
        sql = str(compiled.clause.compile(dialect=postgresql.dialect()))
        assert "@>" in sql

    def test_bad_uuid_for_column(self):
        with pytest.raises(BadParameterError):
            compile_expression(criteria.equals("space_id", "nope"), "sqlite")


class TestQueryExecution:
    """Tests running compiled queries against the store."""

    def test_filter_with_in(self, repo, space, owner):
        create(repo, space, owner, "a", "new")
        create(repo, space, owner, "b", "open")
        create(repo, space, owner, "c", "closed")
        create(repo, space, owner, "d", "open")

        expression = parse_json(json.dumps({"state": {"$IN": ["new", "open"]}}))
        items, total = repo.list(space, expression)

        assert total == 3
        assert [wi.title for wi in items] == ["d", "b", "a"]
        assert all(wi.state in ("new", "open") for wi in items)

    def test_assignee_containment(self, repo, space, owner, other_user):
        create(repo, space, owner, "mine", **{"system.assignees": [str(owner), str(other_user)]})
        create(repo, space, owner, "theirs", **{"system.assignees": [str(other_user)]})
        create(repo, space, owner, "nobody")

        items, _ = repo.list(space, parse({"assignee": str(owner)}))
        assert [wi.title for wi in items] == ["mine"]

        items, _ = repo.list(space, parse({"assignee": None}))
        assert [wi.title for wi in items] == ["nobody"]

    def test_space_column(self, repo, space, owner):
        create(repo, space, owner, "a")
        items, _ = repo.list(space, parse({"$AND": [{"space": str(space)}, {"state": "new"}]}))
        assert len(items) == 1

    def test_type_column(self, repo, space, owner):
        create(repo, space, owner, "a")
        items, _ = repo.list(space, parse({"type": str(SYSTEM_BUG)}))
        assert len(items) == 1
