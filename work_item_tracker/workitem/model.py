"""
Work item and revision models as exchanged with the store.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .constants import (
    SYSTEM_AREA,
    SYSTEM_ASSIGNEES,
    SYSTEM_CREATOR,
    SYSTEM_DESCRIPTION,
    SYSTEM_ITERATION,
    SYSTEM_STATE,
    SYSTEM_TITLE,
)


class WorkItem(BaseModel):
    """A hydrated work item.

    ``fields`` holds API values, keyed by field name, as produced by the type
    registry. The store-maintained timestamps and order are mirrored there.
    """

    id: UUID
    type: UUID
    space_id: UUID
    number: int
    version: int = 0
    execution_order: float = 0.0
    fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    commented_at: Optional[datetime] = None
    linked_at: Optional[datetime] = None

    @property
    def title(self) -> Optional[str]:
        return self.fields.get(SYSTEM_TITLE)

    @property
    def state(self) -> Optional[str]:
        return self.fields.get(SYSTEM_STATE)

    @property
    def description(self) -> Any:
        return self.fields.get(SYSTEM_DESCRIPTION)

    @property
    def creator(self) -> Optional[str]:
        return self.fields.get(SYSTEM_CREATOR)

    @property
    def assignees(self) -> Optional[list]:
        return self.fields.get(SYSTEM_ASSIGNEES)

    @property
    def iteration(self) -> Optional[str]:
        return self.fields.get(SYSTEM_ITERATION)

    @property
    def area(self) -> Optional[str]:
        return self.fields.get(SYSTEM_AREA)


class WorkItemUpdate(BaseModel):
    """Changes to apply to a stored work item.

    Only names present in ``fields`` are touched; a ``None`` value (or an
    empty list for list fields) clears the field.
    """

    number: int
    version: int
    fields: Dict[str, Any] = Field(default_factory=dict)
    type: Optional[UUID] = None


class Revision(BaseModel):
    """One entry of the work item revision log."""

    sequence: int
    work_item_id: UUID
    actor_id: UUID
    kind: str
    at: datetime
    snapshot: Dict[str, Any]


class IterationCounts(BaseModel):
    total: int = 0
    closed: int = 0
