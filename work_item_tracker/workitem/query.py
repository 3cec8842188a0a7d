"""
The ``filter[expression]`` query language.

A query is a JSON tree::

    {"$AND": [{"space": "<uuid>"}, {"state": {"$IN": ["new", "open"]}}]}

Leaves are ``{name: value}`` (equality; ``null`` means absent or unset),
``{name: {"$EQ": v}}``, ``{name: {"$NE": v}}`` and ``{name: {"$IN": [...]}}``.
A leaf may also carry ``"negate": true``. ``$AND`` and ``$OR`` combine
sub-queries. Names go through a fixed alias table; anything else is rejected.
"""

import json
from typing import Any, Dict, List

from ..errors import BadParameterError
from . import criteria
from .constants import SYSTEM_AREA, SYSTEM_ASSIGNEES, SYSTEM_ITERATION, SYSTEM_STATE

Q_AND = "$AND"
Q_OR = "$OR"
Q_EQ = "$EQ"
Q_NE = "$NE"
Q_IN = "$IN"
Q_NEGATE = "negate"

PARAMETER = "filter[expression]"

FIELD_ALIASES: Dict[str, str] = {
    "space": "space_id",
    "state": SYSTEM_STATE,
    "workitemstate": SYSTEM_STATE,
    "assignee": SYSTEM_ASSIGNEES,
    "area": SYSTEM_AREA,
    "iteration": SYSTEM_ITERATION,
    "type": "type",
    "workitemtype": "type",
}


def parse_json(text: str) -> criteria.Expression:
    """Parse the raw ``filter[expression]`` parameter."""
    try:
        tree = json.loads(text)
    except ValueError:
        raise BadParameterError(PARAMETER, text, expected="a JSON object") from None
    return parse(tree)


def parse(tree: Any) -> criteria.Expression:
    """Turn a query tree into a predicate expression."""
    if not isinstance(tree, dict) or not tree:
        raise BadParameterError(PARAMETER, tree, expected="a non-empty JSON object")

    for combinator in (Q_AND, Q_OR):
        if combinator in tree:
            if len(tree) != 1:
                raise BadParameterError(PARAMETER, tree, expected=f"{combinator} alone")
            children = tree[combinator]
            if not isinstance(children, list) or not children:
                raise BadParameterError(
                    PARAMETER, children, expected=f"a non-empty list under {combinator}"
                )
            operands = [parse(child) for child in children]
            if combinator == Q_AND:
                return criteria.and_(*operands)
            return criteria.or_(*operands)

    negate = tree.get(Q_NEGATE, False)
    if not isinstance(negate, bool):
        raise BadParameterError(PARAMETER, negate, expected="a boolean 'negate'")
    names = [key for key in tree if key != Q_NEGATE]
    if len(names) != 1 or not names[0]:
        raise BadParameterError(PARAMETER, tree, expected="exactly one field name")
    name = names[0]
    return _parse_leaf(_translate(name), tree[name], negate)


def _translate(name: str) -> str:
    try:
        return FIELD_ALIASES[name]
    except KeyError:
        raise BadParameterError(
            PARAMETER, name, expected=f"one of {sorted(FIELD_ALIASES)}"
        ) from None


def _parse_leaf(field: str, value: Any, negate: bool) -> criteria.Expression:
    if isinstance(value, dict):
        if len(value) != 1:
            raise BadParameterError(PARAMETER, value, expected="exactly one operator")
        operator, operand = next(iter(value.items()))
        if operator == Q_EQ:
            return _comparison(field, operand, negate)
        if operator == Q_NE:
            return _comparison(field, operand, not negate)
        if operator == Q_IN:
            return _membership(field, operand, negate)
        raise BadParameterError(PARAMETER, operator, expected=[Q_EQ, Q_NE, Q_IN])
    return _comparison(field, value, negate)


def _comparison(field: str, value: Any, negate: bool) -> criteria.Expression:
    if isinstance(value, (dict, list)):
        raise BadParameterError(PARAMETER, value, expected="a scalar value")
    if value is None:
        if negate:
            raise BadParameterError(PARAMETER, field, expected="negate for null not supported")
        return criteria.is_null(field)
    if negate:
        return criteria.not_equals(field, value)
    return criteria.equals(field, value)


def _membership(field: str, values: Any, negate: bool) -> criteria.Expression:
    if not isinstance(values, list) or not values:
        raise BadParameterError(PARAMETER, values, expected=f"a non-empty list under {Q_IN}")
    comparisons: List[criteria.Expression] = [_comparison(field, v, negate) for v in values]
    if negate:
        return criteria.and_(*comparisons)
    return criteria.or_(*comparisons)
