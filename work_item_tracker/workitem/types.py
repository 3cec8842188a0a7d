"""
Work item types and the type registry.

A type names and types the fields its work items carry. Types form a
single-parent hierarchy encoded in ``path``: the ``/``-joined names of the
ancestors, never ending with the type's own name.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..config import Settings
from ..db.models import WorkItemTypeModel
from ..errors import BadParameterError, NotFoundError
from ..markup.content import MARKUP_KEY
from .constants import (
    STORE_MAINTAINED_FIELDS,
    SYSTEM_CREATED_AT,
    SYSTEM_ORDER,
    SYSTEM_UPDATED_AT,
)
from .fields import FieldDefinition, SimpleType

logger = structlog.get_logger(__name__)

PATH_SEPARATOR = "/"


class WorkItemType(BaseModel):
    """A work item type: its field schema and its ancestry."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    description: Optional[str] = None
    version: int = 0
    path: str = ""
    fields: Dict[str, FieldDefinition] = Field(default_factory=dict)
    extra_fields_allowed: bool = False

    @property
    def ancestors(self) -> List[str]:
        return [segment for segment in self.path.split(PATH_SEPARATOR) if segment]

    def is_of(self, name: str) -> bool:
        """Whether this type is ``name`` or inherits from it."""
        return name == self.name or name in self.ancestors

    @classmethod
    def from_model(cls, row: WorkItemTypeModel) -> "WorkItemType":
        return cls(
            id=row.id,
            name=row.name,
            description=row.description,
            version=row.version,
            path=row.path or "",
            fields={
                name: FieldDefinition.model_validate(definition)
                for name, definition in (row.fields or {}).items()
            },
            extra_fields_allowed=bool(row.extra_fields_allowed),
        )

    def to_model(self) -> WorkItemTypeModel:
        return WorkItemTypeModel(
            id=self.id,
            name=self.name,
            description=self.description,
            version=self.version,
            path=self.path,
            fields={
                name: definition.model_dump(mode="json")
                for name, definition in self.fields.items()
            },
            extra_fields_allowed=self.extra_fields_allowed,
        )


class TypeRegistry:
    """Loads work item types and converts field values for them.

    Types only change through administrative migrations, so a registry keeps
    what it has loaded for its lifetime.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self._by_id: Dict[UUID, WorkItemType] = {}

    def load(self, type_id: UUID) -> WorkItemType:
        """Get a type by ID, or raise NotFoundError."""
        cached = self._by_id.get(type_id)
        if cached is not None:
            return cached
        row = self.db.get(WorkItemTypeModel, type_id)
        if row is None:
            raise NotFoundError("work item type", type_id)
        wit = WorkItemType.from_model(row)
        self._by_id[wit.id] = wit
        logger.debug("Work item type loaded", wit_id=str(wit.id), wit_name=wit.name)
        return wit

    def list(self) -> List[WorkItemType]:
        rows = self.db.query(WorkItemTypeModel).order_by(WorkItemTypeModel.name).all()
        return [WorkItemType.from_model(row) for row in rows]

    def list_derived(self, name: str) -> List[WorkItemType]:
        """Every type that is-a ``name``, ``name`` itself included."""
        return [wit for wit in self.list() if wit.is_of(name)]

    def convert_to_storage(self, wit: WorkItemType, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Validate API field values and return their storage form.

        Every field of the type is converted, so required fields missing from
        ``fields`` are rejected. Unset values are left out of the result.
        """
        unknown = [
            name
            for name in fields
            if name not in wit.fields and name not in STORE_MAINTAINED_FIELDS
        ]
        if unknown and not wit.extra_fields_allowed:
            raise BadParameterError(unknown[0], fields[unknown[0]], expected=f"a field of {wit.name}")

        result: Dict[str, Any] = {}
        for name, definition in wit.fields.items():
            if name in STORE_MAINTAINED_FIELDS:
                continue
            converted = definition.to_storage(
                name, fields.get(name), self.settings.default_markup
            )
            if converted is None:
                continue
            if definition.kind == "markup":
                markup = converted[MARKUP_KEY]
                if not self.settings.is_markup_supported(markup):
                    raise BadParameterError(
                        f"{name}.markup", markup, expected=self.settings.supported_markups
                    )
            result[name] = converted
        for name in unknown:
            if fields[name] is not None:
                result[name] = fields[name]
        return result

    def convert_from_storage(
        self,
        wit: WorkItemType,
        storage_fields: Dict[str, Any],
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        execution_order: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Hydrate stored field values into API values.

        The result also carries the store-maintained creation time, update
        time and execution order.
        """
        result: Dict[str, Any] = {}
        for name, value in (storage_fields or {}).items():
            definition = wit.fields.get(name)
            if definition is None:
                result[name] = value
                continue
            result[name] = definition.from_storage(name, value)
        instant = SimpleType(kind="instant")
        if created_at is not None:
            result[SYSTEM_CREATED_AT] = instant.from_storage(SYSTEM_CREATED_AT, created_at)
        if updated_at is not None:
            result[SYSTEM_UPDATED_AT] = instant.from_storage(SYSTEM_UPDATED_AT, updated_at)
        if execution_order is not None:
            result[SYSTEM_ORDER] = float(execution_order)
        return result
