"""
Link graph over work items.

Links are directed and typed. The link type whose forward name is
"parent of" defines the parent/child relation used by child listing and by
the ``parent_exists`` list filter. Links are soft-deleted; creating or
deleting one refreshes ``linked_at`` on both endpoints and appends a link
revision.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import Select, desc, func, select
from sqlalchemy.orm import Session

from ..cancellation import CancellationToken
from ..config import Settings
from ..db.base import transactional
from ..db.models import (
    WorkItemLinkModel,
    WorkItemLinkRevisionModel,
    WorkItemLinkTypeModel,
    WorkItemModel,
)
from ..errors import BadParameterError, NotFoundError
from ..timestamps import utc_now
from .constants import PARENT_OF

logger = structlog.get_logger(__name__)

LINK_REVISION_CREATE = "create"
LINK_REVISION_DELETE = "delete"


def parent_link_targets() -> Select:
    """IDs of work items that are the target of a live "parent of" link."""
    return (
        select(WorkItemLinkModel.target_id)
        .join(
            WorkItemLinkTypeModel,
            WorkItemLinkTypeModel.id == WorkItemLinkModel.link_type_id,
        )
        .where(
            WorkItemLinkTypeModel.forward_name == PARENT_OF,
            WorkItemLinkModel.deleted_at.is_(None),
        )
    )


class LinkRepository:
    """Creates, deletes and queries work item links."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def _transaction(self, cancel: Optional[CancellationToken]):
        return transactional(self.db, self.settings.transaction_timeout_seconds, cancel)

    def _live_work_item(self, work_item_id: UUID) -> WorkItemModel:
        row = (
            self.db.query(WorkItemModel)
            .filter(WorkItemModel.id == work_item_id, WorkItemModel.deleted_at.is_(None))
            .first()
        )
        if row is None:
            raise NotFoundError("work item", work_item_id)
        return row

    def _touch(self, work_item_ids: List[UUID], at: datetime) -> None:
        if not work_item_ids:
            return
        (
            self.db.query(WorkItemModel)
            .filter(WorkItemModel.id.in_(work_item_ids), WorkItemModel.deleted_at.is_(None))
            .update({WorkItemModel.linked_at: at}, synchronize_session="fetch")
        )

    def _log(self, link: WorkItemLinkModel, actor_id: UUID, kind: str, at: datetime) -> None:
        self.db.add(
            WorkItemLinkRevisionModel(
                link_id=link.id,
                source_id=link.source_id,
                target_id=link.target_id,
                link_type_id=link.link_type_id,
                actor_id=actor_id,
                kind=kind,
                at=at,
            )
        )

    def load_link_type(self, link_type_id: UUID) -> WorkItemLinkTypeModel:
        link_type = self.db.get(WorkItemLinkTypeModel, link_type_id)
        if link_type is None:
            raise NotFoundError("work item link type", link_type_id)
        return link_type

    def load(self, link_id: UUID) -> WorkItemLinkModel:
        link = (
            self.db.query(WorkItemLinkModel)
            .filter(WorkItemLinkModel.id == link_id, WorkItemLinkModel.deleted_at.is_(None))
            .first()
        )
        if link is None:
            raise NotFoundError("work item link", link_id)
        return link

    def create(
        self,
        source_id: UUID,
        target_id: UUID,
        link_type_id: UUID,
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> WorkItemLinkModel:
        """Link ``source_id`` to ``target_id``. Both endpoints must exist."""
        with self._transaction(cancel) as tx:
            if source_id == target_id:
                raise BadParameterError("target", target_id, expected="a different work item")
            self.load_link_type(link_type_id)
            self._live_work_item(source_id)
            self._live_work_item(target_id)
            tx.checkpoint()

            now = utc_now()
            link = WorkItemLinkModel(
                id=uuid.uuid4(),
                source_id=source_id,
                target_id=target_id,
                link_type_id=link_type_id,
                version=0,
                created_at=now,
            )
            self.db.add(link)
            self._touch([source_id, target_id], now)
            self._log(link, actor_id, LINK_REVISION_CREATE, now)
            self.db.flush()

        logger.info(
            "Work item link created",
            link_id=str(link.id),
            source_id=str(source_id),
            target_id=str(target_id),
        )
        return link

    def delete(
        self,
        link_id: UUID,
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        with self._transaction(cancel):
            link = self.load(link_id)
            now = utc_now()
            link.deleted_at = now
            link.version = (link.version or 0) + 1
            self._touch([link.source_id, link.target_id], now)
            self._log(link, actor_id, LINK_REVISION_DELETE, now)
            self.db.flush()
        logger.info("Work item link deleted", link_id=str(link_id))

    def delete_incident(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        """Delete every live link with ``work_item_id`` as source or target."""
        with self._transaction(cancel) as tx:
            links = self.list_incident(work_item_id)
            now = utc_now()
            others = []
            for link in links:
                tx.checkpoint()
                link.deleted_at = now
                link.version = (link.version or 0) + 1
                self._log(link, actor_id, LINK_REVISION_DELETE, now)
                other = link.target_id if link.source_id == work_item_id else link.source_id
                others.append(other)
            self._touch(others, now)
            self.db.flush()
        if links:
            logger.info("Incident links deleted", wi_id=str(work_item_id), count=len(links))
        return len(links)

    def list_incident(self, work_item_id: UUID) -> List[WorkItemLinkModel]:
        """Live links with ``work_item_id`` as source or target."""
        return (
            self.db.query(WorkItemLinkModel)
            .filter(
                (WorkItemLinkModel.source_id == work_item_id)
                | (WorkItemLinkModel.target_id == work_item_id),
                WorkItemLinkModel.deleted_at.is_(None),
            )
            .order_by(WorkItemLinkModel.created_at)
            .all()
        )

    def _children_query(self, parent_id: UUID):
        return (
            self.db.query(WorkItemModel)
            .join(WorkItemLinkModel, WorkItemLinkModel.target_id == WorkItemModel.id)
            .join(
                WorkItemLinkTypeModel,
                WorkItemLinkTypeModel.id == WorkItemLinkModel.link_type_id,
            )
            .filter(
                WorkItemLinkModel.source_id == parent_id,
                WorkItemLinkModel.deleted_at.is_(None),
                WorkItemLinkTypeModel.forward_name == PARENT_OF,
                WorkItemModel.deleted_at.is_(None),
            )
        )

    def has_children(self, parent_id: UUID) -> bool:
        return self.db.query(self._children_query(parent_id).exists()).scalar()

    def list_children(self, parent_id: UUID) -> List[UUID]:
        """IDs of the children of a work item, by descending execution order."""
        rows = (
            self._children_query(parent_id)
            .with_entities(WorkItemModel.id)
            .order_by(desc(WorkItemModel.execution_order))
            .all()
        )
        return [row.id for row in rows]

    def list_work_item_children(
        self,
        parent_id: UUID,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[WorkItemModel], int]:
        """Child rows of a work item, by descending execution order, and their count."""
        query = self._children_query(parent_id)
        total = query.with_entities(func.count(WorkItemModel.id)).scalar() or 0
        query = query.order_by(desc(WorkItemModel.execution_order)).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all(), total
