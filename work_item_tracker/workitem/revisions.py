"""
Work item revision log.

Every accepted create, save and delete appends exactly one entry, in the
session of the mutation, so a rollback discards it together with the change.
Entries are never updated or deleted.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from ..db.models import WorkItemRevisionModel
from ..timestamps import as_utc, utc_now
from .model import Revision

REVISION_CREATE = "create"
REVISION_UPDATE = "update"
REVISION_DELETE = "delete"


class RevisionLog:
    """Append-only revision log.

    Usage:
        revisions = RevisionLog(db)
        revisions.append(wi_id, actor_id, REVISION_UPDATE, row.to_dict())
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        kind: str,
        snapshot: Dict[str, Any],
        at: Optional[datetime] = None,
    ) -> WorkItemRevisionModel:
        """Record one mutation of a work item.

        Args:
            work_item_id: ID of the mutated work item
            actor_id: identity that performed the mutation
            kind: "create", "update" or "delete"
            snapshot: the work item as stored after the mutation (or, for
                deletes, as it was before)
            at: when the mutation happened, defaults to now

        Returns:
            The appended WorkItemRevisionModel
        """
        entry = WorkItemRevisionModel(
            work_item_id=work_item_id,
            actor_id=actor_id,
            kind=kind,
            at=at or utc_now(),
            snapshot=snapshot,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list(self, work_item_id: UUID) -> List[Revision]:
        """Revisions of a work item, oldest first."""
        rows = (
            self.db.query(WorkItemRevisionModel)
            .filter(WorkItemRevisionModel.work_item_id == work_item_id)
            .order_by(WorkItemRevisionModel.at, WorkItemRevisionModel.sequence)
            .all()
        )
        return [
            Revision(
                sequence=row.sequence,
                work_item_id=row.work_item_id,
                actor_id=row.actor_id,
                kind=row.kind,
                at=as_utc(row.at),
                snapshot=row.snapshot,
            )
            for row in rows
        ]
