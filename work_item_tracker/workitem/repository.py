"""
Work item store.

Persists work items keyed by UUID plus a per-space number, hydrating every
row through the type registry. Writes are version checked: a save based on a
stale version fails with VersionConflictError and leaves the row untouched.
Each public operation runs as one transaction (see ``db.base.transactional``)
that also carries the revision entry for the change.
"""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import case, desc, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..cancellation import CancellationToken, check_cancelled
from ..config import Settings
from ..db.base import transactional
from ..db.models import (
    MAX_WORK_ITEM_NUMBER,
    AreaModel,
    IterationModel,
    WorkItemModel,
    WorkItemNumberSequenceModel,
)
from ..errors import BadParameterError, InternalError, NotFoundError, VersionConflictError
from ..markup.rendering import WorkItemReference
from ..spaces import AreaRepository, IdentityRepository, IterationRepository, SpaceRepository
from ..timestamps import as_utc, next_after, utc_now
from . import criteria
from .compiler import ExpressionCompiler
from .constants import (
    MAX_PAGE_VALUE,
    STATE_CLOSED,
    STORE_MAINTAINED_FIELDS,
    SYSTEM_AREA,
    SYSTEM_CREATOR,
    SYSTEM_ITERATION,
    SYSTEM_STATE,
    SYSTEM_TITLE,
)
from .links import LinkRepository, parent_link_targets
from .model import IterationCounts, Revision, WorkItem, WorkItemUpdate
from .ordering import Direction, next_order, place
from .revisions import REVISION_CREATE, REVISION_DELETE, REVISION_UPDATE, RevisionLog
from .system_types import PLANNER_ITEM
from .types import TypeRegistry, WorkItemType

logger = structlog.get_logger(__name__)


def check_page(offset: int, limit: Optional[int]) -> None:
    """Reject paging parameters the database cannot take."""
    if not 0 <= offset <= MAX_PAGE_VALUE:
        raise BadParameterError("start", offset, expected=f"an offset in 0..{MAX_PAGE_VALUE}")
    if limit is not None and not 1 <= limit <= MAX_PAGE_VALUE:
        raise BadParameterError("limit", limit, expected=f"a limit in 1..{MAX_PAGE_VALUE}")


class WorkItemRepository:
    """Store for work items.

    Usage:
        repo = WorkItemRepository(db, settings)
        wi = repo.create(space_id, SYSTEM_BUG, {"system.title": "hi", "system.state": "new"}, actor_id)
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        registry: Optional[TypeRegistry] = None,
        links: Optional[LinkRepository] = None,
        revisions: Optional[RevisionLog] = None,
    ):
        self.db = db
        self.settings = settings
        self.registry = registry or TypeRegistry(db, settings)
        self.links = links or LinkRepository(db, settings)
        self.revisions = revisions or RevisionLog(db)
        self.spaces = SpaceRepository(db)
        self.identities = IdentityRepository(db)
        self.areas = AreaRepository(db)
        self.iterations = IterationRepository(db)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _transaction(self, cancel: Optional[CancellationToken]):
        return transactional(self.db, self.settings.transaction_timeout_seconds, cancel)

    @contextmanager
    def _store_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error("Work item store failure", operation=operation, error=str(e))
            raise InternalError(f"unable to {operation} work item", cause=e) from e

    def _live(self) -> Query:
        return self.db.query(WorkItemModel).filter(WorkItemModel.deleted_at.is_(None))

    def _hydrate(self, row: WorkItemModel, wit: Optional[WorkItemType] = None) -> WorkItem:
        wit = wit or self.registry.load(row.type)
        return WorkItem(
            id=row.id,
            type=row.type,
            space_id=row.space_id,
            number=row.number,
            version=row.version,
            execution_order=row.execution_order,
            fields=self.registry.convert_from_storage(
                wit,
                row.fields,
                created_at=row.created_at,
                updated_at=row.updated_at,
                execution_order=row.execution_order,
            ),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
            commented_at=as_utc(row.commented_at),
            linked_at=as_utc(row.linked_at),
        )

    def _next_number(self, space_id: UUID) -> int:
        sequence = (
            self.db.query(WorkItemNumberSequenceModel)
            .filter(WorkItemNumberSequenceModel.space_id == space_id)
            .with_for_update()
            .first()
        )
        if sequence is None:
            sequence = WorkItemNumberSequenceModel(space_id=space_id, current_val=0)
            self.db.add(sequence)
        sequence.current_val += 1
        self.db.flush()
        return sequence.current_val

    def _substitute_roots(self, space_id: UUID, wit: WorkItemType, fields: Dict[str, Any]) -> None:
        if SYSTEM_ITERATION in wit.fields and not fields.get(SYSTEM_ITERATION):
            fields[SYSTEM_ITERATION] = str(self.iterations.root(space_id).id)
        if SYSTEM_AREA in wit.fields and not fields.get(SYSTEM_AREA):
            fields[SYSTEM_AREA] = str(self.areas.root(space_id).id)

    def _check_references(
        self, space_id: UUID, wit: WorkItemType, storage: Dict[str, Any]
    ) -> None:
        """Reject references to unknown identities, iterations and areas."""
        for name, definition in wit.fields.items():
            value = storage.get(name)
            if value is None:
                continue
            values = value if isinstance(value, list) else [value]
            if definition.references("user") and name != SYSTEM_CREATOR:
                ids = [UUID(v) for v in values]
                known = {identity.id for identity in self.identities.list_by_ids(ids)}
                for identity_id in ids:
                    if identity_id not in known:
                        raise BadParameterError(name, str(identity_id), expected="a known identity")
            elif definition.references("iteration"):
                for v in values:
                    iteration = self.db.get(IterationModel, UUID(v))
                    if iteration is None or iteration.space_id != space_id:
                        raise BadParameterError(name, v, expected="an iteration of the space")
            elif definition.references("area"):
                for v in values:
                    area = self.db.get(AreaModel, UUID(v))
                    if area is None or area.space_id != space_id:
                        raise BadParameterError(name, v, expected="an area of the space")

    def _to_storage(
        self, space_id: UUID, wit: WorkItemType, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._substitute_roots(space_id, wit, fields)
        storage = self.registry.convert_to_storage(wit, fields)
        self._check_references(space_id, wit, storage)
        return storage

    def _load_for_update(self, space_id: UUID, number: int) -> WorkItemModel:
        row = (
            self._live()
            .filter(WorkItemModel.space_id == space_id, WorkItemModel.number == number)
            .with_for_update()
            .first()
        )
        if row is None:
            raise NotFoundError("work item", f"{space_id}/{number}")
        return row

    def _write_version(
        self,
        row: WorkItemModel,
        expected_version: int,
        values: Dict[Any, Any],
        actor_id: UUID,
    ) -> None:
        """Persist ``values`` as version+1 and append an update revision."""
        updated_at = next_after(row.updated_at)
        values = dict(values)
        values[WorkItemModel.version] = expected_version + 1
        values[WorkItemModel.updated_at] = updated_at
        affected = (
            self.db.query(WorkItemModel)
            .filter(
                WorkItemModel.id == row.id,
                WorkItemModel.version == expected_version,
                WorkItemModel.deleted_at.is_(None),
            )
            .update(values, synchronize_session=False)
        )
        if affected == 0:
            logger.warning("Concurrent work item update", wi_id=str(row.id), version=expected_version)
            raise VersionConflictError()
        self.db.refresh(row)
        self.revisions.append(row.id, actor_id, REVISION_UPDATE, row.to_dict(), at=updated_at)

    def _compiler(self) -> ExpressionCompiler:
        return ExpressionCompiler(self.db.get_bind().dialect.name)

    def _filtered(
        self,
        space_id: UUID,
        expression: Optional[criteria.Expression],
        parent_exists: Optional[bool] = None,
    ) -> Query:
        query = self._live().filter(WorkItemModel.space_id == space_id)
        if expression is not None:
            query = query.filter(self._compiler().compile(expression).clause)
        if parent_exists is False:
            query = query.filter(WorkItemModel.id.not_in(parent_link_targets()))
        return query

    # ------------------------------------------------------------------
    # create / read
    # ------------------------------------------------------------------

    def create(
        self,
        space_id: UUID,
        type_id: UUID,
        fields: Dict[str, Any],
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> WorkItem:
        """Create a work item of ``type_id`` in a space, created by ``actor_id``."""
        with self._store_errors("create"), self._transaction(cancel) as tx:
            wit = self.registry.load(type_id)
            self.spaces.load(space_id)

            number = self._next_number(space_id)
            current_max = (
                self.db.query(func.max(WorkItemModel.execution_order))
                .filter(WorkItemModel.space_id == space_id, WorkItemModel.deleted_at.is_(None))
                .scalar()
            )
            fields = {k: v for k, v in fields.items() if k not in STORE_MAINTAINED_FIELDS}
            fields[SYSTEM_CREATOR] = str(actor_id)
            storage = self._to_storage(space_id, wit, fields)
            tx.checkpoint()

            now = utc_now()
            row = WorkItemModel(
                id=uuid.uuid4(),
                type=wit.id,
                version=0,
                execution_order=next_order(current_max),
                space_id=space_id,
                number=number,
                fields=storage,
                created_at=now,
                updated_at=now,
                linked_at=now,
            )
            self.db.add(row)
            self.db.flush()
            self.revisions.append(row.id, actor_id, REVISION_CREATE, row.to_dict(), at=now)
            tx.checkpoint()
            result = self._hydrate(row, wit)

        logger.info(
            "Work item created",
            wi_id=str(result.id),
            space_id=str(space_id),
            wi_number=result.number,
            wit_name=wit.name,
        )
        return result

    def load_by_id(
        self, work_item_id: UUID, cancel: Optional[CancellationToken] = None
    ) -> WorkItem:
        check_cancelled(cancel)
        with self._store_errors("load"):
            row = self._live().filter(WorkItemModel.id == work_item_id).first()
            if row is None:
                raise NotFoundError("work item", work_item_id)
            return self._hydrate(row)

    def load(
        self, space_id: UUID, number: int, cancel: Optional[CancellationToken] = None
    ) -> WorkItem:
        check_cancelled(cancel)
        if not 1 <= number <= MAX_WORK_ITEM_NUMBER:
            raise NotFoundError("work item", f"{space_id}/{number}")
        with self._store_errors("load"):
            row = (
                self._live()
                .filter(WorkItemModel.space_id == space_id, WorkItemModel.number == number)
                .first()
            )
            if row is None:
                raise NotFoundError("work item", f"{space_id}/{number}")
            return self._hydrate(row)

    def lookup_reference(self, space_id: UUID, number: int) -> Optional[WorkItemReference]:
        """Resolve ``#number`` for the markup renderer; ``None`` if unknown."""
        if not 1 <= number <= MAX_WORK_ITEM_NUMBER:
            return None
        with self._store_errors("look up"):
            row = (
                self._live()
                .filter(WorkItemModel.space_id == space_id, WorkItemModel.number == number)
                .first()
            )
        if row is None:
            return None
        title = (row.fields or {}).get(SYSTEM_TITLE) or ""
        return WorkItemReference(id=row.id, space_id=row.space_id, title=str(title))

    # ------------------------------------------------------------------
    # update / delete
    # ------------------------------------------------------------------

    def save(
        self,
        space_id: UUID,
        update: WorkItemUpdate,
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> WorkItem:
        """Apply ``update`` to the stored work item, version checked.

        The type and the creator always stay as stored. Fields not named in
        ``update.fields`` keep their stored values.
        """
        with self._store_errors("save"), self._transaction(cancel) as tx:
            row = self._load_for_update(space_id, update.number)
            if row.version != update.version:
                logger.warning(
                    "Work item version conflict",
                    wi_id=str(row.id),
                    stored_version=row.version,
                    version=update.version,
                )
                raise VersionConflictError()

            wit = self.registry.load(row.type)
            fields = self.registry.convert_from_storage(wit, row.fields)
            for name, value in update.fields.items():
                if name in STORE_MAINTAINED_FIELDS or name == SYSTEM_CREATOR:
                    continue
                fields[name] = value
            storage = self._to_storage(space_id, wit, fields)
            tx.checkpoint()

            self._write_version(row, update.version, {WorkItemModel.fields: storage}, actor_id)
            tx.checkpoint()
            result = self._hydrate(row, wit)

        logger.info(
            "Work item updated",
            wi_id=str(result.id),
            space_id=str(space_id),
            wi_number=result.number,
            version=result.version,
        )
        return result

    def set_commented_at(
        self,
        work_item_id: UUID,
        at: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Record the time of the last comment change. The version is unchanged."""
        with self._store_errors("update"), self._transaction(cancel):
            affected = (
                self._live()
                .filter(WorkItemModel.id == work_item_id)
                .update({WorkItemModel.commented_at: at or utc_now()}, synchronize_session="fetch")
            )
            if affected == 0:
                raise NotFoundError("work item", work_item_id)

    def delete(
        self,
        work_item_id: UUID,
        actor_id: UUID,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Delete a work item and every link incident to it."""
        with self._store_errors("delete"), self._transaction(cancel) as tx:
            row = self._live().filter(WorkItemModel.id == work_item_id).with_for_update().first()
            if row is None:
                raise NotFoundError("work item", work_item_id)
            snapshot = row.to_dict()
            self.links.delete_incident(work_item_id, actor_id, cancel)
            tx.checkpoint()

            now = next_after(row.updated_at)
            row.deleted_at = now
            self.db.flush()
            self.revisions.append(row.id, actor_id, REVISION_DELETE, snapshot, at=now)

        logger.info("Work item deleted", wi_id=str(work_item_id), wi_number=snapshot["number"])

    # ------------------------------------------------------------------
    # ordering
    # ------------------------------------------------------------------

    def reorder(
        self,
        space_id: UUID,
        work_item_id: UUID,
        version: int,
        direction: Direction,
        actor_id: UUID,
        target_id: Optional[UUID] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> WorkItem:
        """Move a work item above/below another one, or to the top/bottom.

        Neighbours whose keys change in a rebalance get a new version and a
        revision of their own.
        """
        with self._store_errors("reorder"), self._transaction(cancel) as tx:
            row = (
                self._live()
                .filter(WorkItemModel.id == work_item_id, WorkItemModel.space_id == space_id)
                .with_for_update()
                .first()
            )
            if row is None:
                raise NotFoundError("work item", work_item_id)
            if row.version != version:
                logger.warning("Work item version conflict", wi_id=str(row.id), version=version)
                raise VersionConflictError()

            rows = (
                self.db.query(WorkItemModel.id, WorkItemModel.execution_order)
                .filter(WorkItemModel.space_id == space_id, WorkItemModel.deleted_at.is_(None))
                .order_by(desc(WorkItemModel.execution_order))
                .all()
            )
            ordered = [(wi_id, order) for wi_id, order in rows]
            placement = place(ordered, row.id, row.execution_order, direction, target_id)
            tx.checkpoint()

            for neighbour_id, order in placement.rebalanced.items():
                neighbour = self._live().filter(WorkItemModel.id == neighbour_id).with_for_update().one()
                self._write_version(
                    neighbour,
                    neighbour.version,
                    {WorkItemModel.execution_order: order},
                    actor_id,
                )
                tx.checkpoint()

            new_order = placement.order if placement.order is not None else row.execution_order
            self._write_version(row, version, {WorkItemModel.execution_order: new_order}, actor_id)
            result = self._hydrate(row)

        logger.info(
            "Work item reordered",
            wi_id=str(work_item_id),
            direction=direction.value,
            execution_order=result.execution_order,
            rebalanced=len(placement.rebalanced),
        )
        return result

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def list(
        self,
        space_id: UUID,
        expression: Optional[criteria.Expression] = None,
        parent_exists: Optional[bool] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Tuple[List[WorkItem], int]:
        """List work items of a space, highest execution order first.

        Returns the page and the total count of matches regardless of paging.
        """
        check_page(offset, limit)
        with self._store_errors("list"), self._transaction(cancel) as tx:
            query = self._filtered(space_id, expression, parent_exists)
            total = query.count()
            tx.checkpoint()
            query = query.order_by(desc(WorkItemModel.execution_order)).offset(offset)
            if limit is not None:
                query = query.limit(limit)
            items = [self._hydrate(row) for row in query.all()]
        return items, total

    def count(
        self,
        space_id: UUID,
        expression: Optional[criteria.Expression] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        with self._store_errors("count"), self._transaction(cancel):
            return self._filtered(space_id, expression).count()

    def fetch(
        self,
        space_id: UUID,
        expression: criteria.Expression,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[WorkItem]:
        """The first matching work item, or ``None``."""
        items, _ = self.list(space_id, expression, limit=1, cancel=cancel)
        return items[0] if items else None

    def list_children(
        self,
        parent_id: UUID,
        offset: int = 0,
        limit: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Tuple[List[WorkItem], int]:
        check_page(offset, limit)
        with self._store_errors("list"), self._transaction(cancel):
            self.load_by_id(parent_id)
            rows, total = self.links.list_work_item_children(parent_id, offset, limit)
            return [self._hydrate(row) for row in rows], total

    # ------------------------------------------------------------------
    # planner backlog
    # ------------------------------------------------------------------

    def backlog_expression(
        self, space_id: UUID, expression: Optional[criteria.Expression] = None
    ) -> Optional[criteria.Expression]:
        """Open planner items of the root iteration, narrowed by ``expression``.

        ``None`` when no type derives from planneritem, so nothing can match.
        """
        planner_types = self.registry.list_derived(PLANNER_ITEM)
        if not planner_types:
            return None
        root = self.iterations.root(space_id)
        conjuncts = [] if expression is None else [expression]
        conjuncts += [
            criteria.not_equals(SYSTEM_STATE, STATE_CLOSED),
            criteria.equals(SYSTEM_ITERATION, str(root.id)),
            criteria.or_(*(criteria.equals("type", wit.id) for wit in planner_types)),
        ]
        return criteria.and_(*conjuncts)

    def list_backlog(
        self,
        space_id: UUID,
        expression: Optional[criteria.Expression] = None,
        parent_exists: Optional[bool] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Tuple[List[WorkItem], int]:
        """The backlog page of a space and the backlog size."""
        check_page(offset, limit)
        with self._store_errors("list"), self._transaction(cancel):
            self.spaces.load(space_id)
            backlog = self.backlog_expression(space_id, expression)
            if backlog is None:
                return [], 0
            return self.list(space_id, backlog, parent_exists, offset, limit, cancel)

    def count_backlog(self, space_id: UUID, cancel: Optional[CancellationToken] = None) -> int:
        with self._store_errors("count"), self._transaction(cancel):
            backlog = self.backlog_expression(space_id)
            if backlog is None:
                return 0
            return self.count(space_id, backlog, cancel)

    def list_revisions(self, work_item_id: UUID) -> List[Revision]:
        """Revisions of a work item, oldest first. Includes deleted work items."""
        with self._store_errors("list revisions of"):
            revisions = self.revisions.list(work_item_id)
        if not revisions:
            raise NotFoundError("work item", work_item_id)
        return revisions

    def _iteration_counts(self, *conditions) -> Dict[str, IterationCounts]:
        iteration = WorkItemModel.fields[SYSTEM_ITERATION].as_string()
        closed = func.sum(
            case((WorkItemModel.fields[SYSTEM_STATE].as_string() == STATE_CLOSED, 1), else_=0)
        )
        rows = (
            self.db.query(iteration, func.count(WorkItemModel.id), closed)
            .filter(WorkItemModel.deleted_at.is_(None), iteration.is_not(None), *conditions)
            .group_by(iteration)
            .all()
        )
        return {
            str(iteration_id): IterationCounts(total=total or 0, closed=closed_count or 0)
            for iteration_id, total, closed_count in rows
        }

    def get_counts_per_iteration(
        self, space_id: UUID, cancel: Optional[CancellationToken] = None
    ) -> Dict[str, IterationCounts]:
        """``iteration id -> (total, closed)`` for every iteration of a space."""
        with self._store_errors("count"), self._transaction(cancel):
            counts = self._iteration_counts(WorkItemModel.space_id == space_id)
            result = {str(it.id): IterationCounts() for it in self.iterations.list(space_id)}
        result.update(counts)
        return result

    def get_counts_for_iteration(
        self, iteration_id: UUID, cancel: Optional[CancellationToken] = None
    ) -> IterationCounts:
        with self._store_errors("count"), self._transaction(cancel):
            iteration = self.iterations.load(iteration_id)
            counts = self._iteration_counts(
                WorkItemModel.space_id == iteration.space_id,
                WorkItemModel.fields[SYSTEM_ITERATION].as_string() == str(iteration_id),
            )
        return counts.get(str(iteration_id), IterationCounts())
