"""
The work item core: types and fields, the store, ordering, links, revisions
and the filter query language.
"""

from .model import IterationCounts, Revision, WorkItem, WorkItemUpdate
from .ordering import Direction
from .repository import WorkItemRepository
from .types import TypeRegistry, WorkItemType

__all__ = [
    "Direction",
    "IterationCounts",
    "Revision",
    "TypeRegistry",
    "WorkItem",
    "WorkItemRepository",
    "WorkItemType",
    "WorkItemUpdate",
]
