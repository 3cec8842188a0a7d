"""
Predicate expressions over work items.

Expressions are immutable trees. ``Field`` names either a column of the
``work_items`` table or a key of its JSON ``fields`` column; the store turns
a tree into a SQL clause with :func:`work_item_tracker.workitem.compiler.compile_expression`.
"""

from dataclasses import dataclass
from typing import Any, Iterator, Tuple, Union

# columns of work_items that queries may name directly
COLUMN_FIELDS = frozenset({"space_id", "type", "number", "id"})


@dataclass(frozen=True)
class Field:
    name: str

    @property
    def is_column(self) -> bool:
        return self.name in COLUMN_FIELDS


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Equals:
    left: Field
    right: Literal


@dataclass(frozen=True)
class NotEquals:
    left: Field
    right: Literal


@dataclass(frozen=True)
class IsNull:
    field: Field


@dataclass(frozen=True)
class Not:
    operand: "Expression"


@dataclass(frozen=True)
class And:
    operands: Tuple["Expression", ...]


@dataclass(frozen=True)
class Or:
    operands: Tuple["Expression", ...]


Expression = Union[Equals, NotEquals, IsNull, Not, And, Or]


def and_(*operands: Expression) -> Expression:
    if len(operands) == 1:
        return operands[0]
    return And(tuple(operands))


def or_(*operands: Expression) -> Expression:
    if len(operands) == 1:
        return operands[0]
    return Or(tuple(operands))


def equals(name: str, value: Any) -> Equals:
    return Equals(Field(name), Literal(value))


def not_equals(name: str, value: Any) -> NotEquals:
    return NotEquals(Field(name), Literal(value))


def is_null(name: str) -> IsNull:
    return IsNull(Field(name))


def literals(expression: Expression) -> Iterator[Any]:
    """Literal values of ``expression`` in depth-first order."""
    if isinstance(expression, (Equals, NotEquals)):
        yield expression.right.value
    elif isinstance(expression, Not):
        yield from literals(expression.operand)
    elif isinstance(expression, (And, Or)):
        for operand in expression.operands:
            yield from literals(operand)
