"""
Compiles predicate expressions into SQLAlchemy clauses over ``work_items``.

Column fields compare against table columns. Other fields are keys of the
JSON ``fields`` column; equality on a list field means "contains". The JSON
access is rendered per dialect: SQLite uses ``json_extract``/``json_each``,
PostgreSQL uses ``->>`` and ``@>`` on ``jsonb``.
"""

from dataclasses import dataclass, field
from typing import Any, FrozenSet, List
from uuid import UUID

from sqlalchemy import and_, cast, literal, not_, or_, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.sql.elements import ColumnElement

from ..db.models import WorkItemModel
from ..errors import BadParameterError
from . import criteria
from .constants import SYSTEM_ASSIGNEES
from .query import PARAMETER

DEFAULT_LIST_FIELDS = frozenset({SYSTEM_ASSIGNEES})


@dataclass
class CompiledPredicate:
    clause: ColumnElement
    parameters: List[Any] = field(default_factory=list)


class ExpressionCompiler:
    """Turns an expression tree into a WHERE clause.

    ``dialect`` is the SQLAlchemy dialect name of the target database.
    ``list_fields`` names the JSON fields that hold lists.
    """

    def __init__(self, dialect: str, list_fields: FrozenSet[str] = DEFAULT_LIST_FIELDS):
        self.dialect = dialect
        self.list_fields = list_fields

    def compile(self, expression: criteria.Expression) -> CompiledPredicate:
        parameters: List[Any] = []
        clause = self._visit(expression, parameters)
        return CompiledPredicate(clause=clause, parameters=parameters)

    def _visit(self, expression: criteria.Expression, parameters: List[Any]) -> ColumnElement:
        if isinstance(expression, criteria.And):
            return and_(*(self._visit(operand, parameters) for operand in expression.operands))
        if isinstance(expression, criteria.Or):
            return or_(*(self._visit(operand, parameters) for operand in expression.operands))
        if isinstance(expression, criteria.Not):
            return not_(self._visit(expression.operand, parameters))
        if isinstance(expression, criteria.IsNull):
            return self._is_null(expression.field)
        if isinstance(expression, criteria.Equals):
            parameters.append(expression.right.value)
            return self._equals(expression.left, expression.right.value)
        if isinstance(expression, criteria.NotEquals):
            parameters.append(expression.right.value)
            return self._not_equals(expression.left, expression.right.value)
        raise BadParameterError(PARAMETER, repr(expression), expected="a known expression")

    def _equals(self, target: criteria.Field, value: Any) -> ColumnElement:
        if target.is_column:
            return self._column(target) == self._column_value(target, value)
        if target.name in self.list_fields:
            return self._contains(target.name, value)
        return self._json_value(target.name, value) == value

    def _not_equals(self, target: criteria.Field, value: Any) -> ColumnElement:
        if target.is_column:
            return self._column(target) != self._column_value(target, value)
        if target.name in self.list_fields:
            return not_(self._contains(target.name, value))
        return self._json_value(target.name, value) != value

    def _is_null(self, target: criteria.Field) -> ColumnElement:
        if target.is_column:
            return self._column(target).is_(None)
        return WorkItemModel.fields[target.name].as_string().is_(None)

    @staticmethod
    def _column(target: criteria.Field) -> ColumnElement:
        return getattr(WorkItemModel, target.name)

    @staticmethod
    def _column_value(target: criteria.Field, value: Any) -> Any:
        if target.name in ("space_id", "type", "id"):
            try:
                return value if isinstance(value, UUID) else UUID(str(value))
            except ValueError:
                raise BadParameterError(PARAMETER, value, expected="a UUID") from None
        return value

    @staticmethod
    def _json_value(name: str, value: Any) -> ColumnElement:
        element = WorkItemModel.fields[name]
        if isinstance(value, bool):
            return element.as_boolean()
        if isinstance(value, int):
            return element.as_integer()
        if isinstance(value, float):
            return element.as_float()
        return element.as_string()

    def _contains(self, name: str, value: Any) -> ColumnElement:
        if self.dialect == "postgresql":
            return cast(WorkItemModel.fields, JSONB)[name].contains([value])
        elements = func.json_each(WorkItemModel.fields, f'$."{name}"').table_valued("value")
        return (
            select(literal(1))
            .select_from(elements)
            .where(elements.c.value == value)
            .correlate(WorkItemModel)
            .exists()
        )


def compile_expression(expression: criteria.Expression, dialect: str) -> CompiledPredicate:
    return ExpressionCompiler(dialect).compile(expression)
