"""
Field definitions for work item types.

A field type is one of three variants, each carrying its own conversion pair:

- ``SimpleType``: a scalar kind (string, integer, instant, user reference, ...)
- ``EnumType``: a simple base kind restricted to an ordered set of values
- ``ListType``: a list whose elements all have one simple kind

``to_storage`` validates an API value and returns its JSON storage form;
``from_storage`` turns a storage value back into the API value. For every
value a field accepts, ``from_storage(to_storage(v)) == v`` once ``v`` is in
its normalised form (canonical UUID strings, UTC instants, markup content
objects).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Union
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, conint, constr
from typing_extensions import Annotated

from ..errors import BadParameterError
from ..markup.content import DEFAULT_MARKUP, MarkupContent


SimpleKind = Literal[
    "string",
    "integer",
    "float",
    "boolean",
    "instant",
    "duration",
    "uuid",
    "url",
    "user",
    "iteration",
    "area",
    "markup",
    "codebase",
]

REFERENCE_KINDS = {"uuid", "user", "iteration", "area"}


class CodebaseContent(BaseModel):
    """A pointer into a source repository."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    repository: constr(min_length=1)
    branch: constr(min_length=1)
    filename: constr(min_length=1)
    line_number: conint(ge=0)


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not an instant: {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SimpleType(BaseModel):
    """A scalar field type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: SimpleKind

    def to_storage(self, name: str, value: Any, default_markup: str = DEFAULT_MARKUP) -> Any:
        if value is None:
            return None
        try:
            return self._convert(value, default_markup)
        except (TypeError, ValueError, ValidationError):
            raise BadParameterError(name, value, expected=self.kind) from None

    def from_storage(self, name: str, value: Any) -> Any:
        if value is None:
            return None
        kind = self.kind
        if kind == "instant":
            return _parse_instant(value)
        if kind == "float":
            return float(value)
        if kind == "markup":
            return MarkupContent.from_value(value)
        if kind == "codebase":
            return CodebaseContent.model_validate(value)
        return value

    def _convert(self, value: Any, default_markup: str) -> Any:
        kind = self.kind
        if kind == "string":
            if not isinstance(value, str):
                raise TypeError(value)
            return value
        if kind in ("integer", "duration"):
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(value)
            return value
        if kind == "float":
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(value)
            return float(value)
        if kind == "boolean":
            if not isinstance(value, bool):
                raise TypeError(value)
            return value
        if kind == "instant":
            return _parse_instant(value).isoformat()
        if kind in REFERENCE_KINDS:
            if isinstance(value, UUID):
                return str(value)
            if not isinstance(value, str):
                raise TypeError(value)
            return str(UUID(value))
        if kind == "url":
            if not isinstance(value, str):
                raise TypeError(value)
            parsed = urlparse(value)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(value)
            return value
        if kind == "markup":
            return MarkupContent.from_value(value, default_markup).to_storage()
        if kind == "codebase":
            if isinstance(value, CodebaseContent):
                return value.model_dump()
            if not isinstance(value, dict):
                raise TypeError(value)
            return CodebaseContent.model_validate(value).model_dump()
        raise ValueError(f"unknown kind {kind}")


class EnumType(BaseModel):
    """A simple base kind restricted to an ordered set of allowed values."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["enum"] = "enum"
    base_type: SimpleType = Field(default_factory=lambda: SimpleType(kind="string"))
    values: List[Any]

    def to_storage(self, name: str, value: Any, default_markup: str = DEFAULT_MARKUP) -> Any:
        converted = self.base_type.to_storage(name, value, default_markup)
        if converted is None:
            return None
        if converted not in self.values:
            raise BadParameterError(name, value, expected=self.values)
        return converted

    def from_storage(self, name: str, value: Any) -> Any:
        return self.base_type.from_storage(name, value)


class ListType(BaseModel):
    """A list of values of one simple kind. Order is kept, duplicates allowed.

    An empty list clears the field: it is stored as ``None``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["list"] = "list"
    component_type: SimpleType

    def to_storage(self, name: str, value: Any, default_markup: str = DEFAULT_MARKUP) -> Any:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            raise BadParameterError(name, value, expected=f"list of {self.component_type.kind}")
        if not value:
            return None
        return [self.component_type.to_storage(name, item, default_markup) for item in value]

    def from_storage(self, name: str, value: Any) -> Any:
        if value is None:
            return None
        return [self.component_type.from_storage(name, item) for item in value]


FieldType = Annotated[Union[SimpleType, EnumType, ListType], Field(discriminator="kind")]


class FieldDefinition(BaseModel):
    """A named field of a work item type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    label: str = ""
    description: str = ""
    required: bool = False
    read_only: bool = False
    type: FieldType

    def to_storage(self, name: str, value: Any, default_markup: str = DEFAULT_MARKUP) -> Any:
        converted = self.type.to_storage(name, value, default_markup)
        if self.required and (converted is None or converted == ""):
            raise BadParameterError(name, value, expected="a non-empty value")
        return converted

    def from_storage(self, name: str, value: Any) -> Any:
        return self.type.from_storage(name, value)

    @property
    def kind(self) -> str:
        return self.type.kind

    def references(self, kind: str) -> bool:
        """Whether values of this field are (lists of) ``kind`` references."""
        field_type = self.type
        if isinstance(field_type, ListType):
            return field_type.component_type.kind == kind
        if isinstance(field_type, EnumType):
            return field_type.base_type.kind == kind
        return field_type.kind == kind


def simple(kind: str) -> SimpleType:
    return SimpleType(kind=kind)


def enum_of(values: List[Any], base_kind: str = "string") -> EnumType:
    return EnumType(base_type=SimpleType(kind=base_kind), values=values)


def list_of(kind: str) -> ListType:
    return ListType(component_type=SimpleType(kind=kind))
