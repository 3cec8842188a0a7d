"""
Work Item Tracker

Typed work items with versioned updates, revisions, links and ordering.
"""

import importlib.metadata

__version__ = importlib.metadata.version("work-item-tracker")

from .errors import (
    BadParameterError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    OperationCancelledError,
    TrackerError,
    TransactionTimeoutError,
    UnauthorizedError,
    VersionConflictError,
)

__all__ = [
    "BadParameterError",
    "ForbiddenError",
    "InternalError",
    "NotFoundError",
    "OperationCancelledError",
    "TrackerError",
    "TransactionTimeoutError",
    "UnauthorizedError",
    "VersionConflictError",
]
