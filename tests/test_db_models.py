"""
Tests for the storage models.

Verifies:
- table structure and constraints
- to_dict() snapshots
- spaces come with a root area and a root iteration
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from work_item_tracker.db.models import (
    AreaModel,
    IterationModel,
    WorkItemModel,
    WorkItemRevisionModel,
)
from work_item_tracker.spaces import AreaRepository, IterationRepository, SpaceRepository
from work_item_tracker.workitem.system_types import SYSTEM_BUG


class TestWorkItemModel:
    """Tests for the work item row."""

    def test_model_has_required_columns(self):
        columns = {c.name for c in WorkItemModel.__table__.columns}
        required = {
            "id", "type", "version", "execution_order", "space_id", "number",
            "fields", "created_at", "updated_at", "commented_at", "linked_at",
            "deleted_at",
        }
        assert required.issubset(columns)

    def test_to_dict_output(self):
        at = datetime(2026, 1, 26, 12, 0, 0, tzinfo=timezone.utc)
        row = WorkItemModel(
            id=uuid.UUID(int=1),
            type=SYSTEM_BUG,
            version=3,
            execution_order=1000.0,
            space_id=uuid.UUID(int=2),
            number=7,
            fields={"system.title": "t"},
            created_at=at,
            updated_at=at,
            linked_at=at,
        )
        result = row.to_dict()
        assert result["id"] == str(uuid.UUID(int=1))
        assert result["type"] == str(SYSTEM_BUG)
        assert result["number"] == 7
        assert result["fields"] == {"system.title": "t"}
        assert result["updated_at"] == "2026-01-26T12:00:00+00:00"
        assert result["commented_at"] is None

    def test_number_is_unique_per_space(self, db_session, space):
        at = datetime.now(timezone.utc)
        for _ in range(2):
            db_session.add(
                WorkItemModel(
                    id=uuid.uuid4(),
                    type=SYSTEM_BUG,
                    execution_order=1000.0,
                    space_id=space,
                    number=1,
                    fields={},
                    created_at=at,
                    updated_at=at,
                    linked_at=at,
                )
            )
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()

    def test_revision_columns(self):
        columns = {c.name for c in WorkItemRevisionModel.__table__.columns}
        assert {"sequence", "work_item_id", "actor_id", "kind", "at", "snapshot"} <= columns


class TestSpaces:
    """Tests for spaces and their root area and iteration."""

    def test_space_has_roots(self, db_session, space):
        area = AreaRepository(db_session).root(space)
        iteration = IterationRepository(db_session).root(space)
        assert area.path == ""
        assert iteration.path == ""
        assert area.name == iteration.name == "Tracker"

    def test_child_paths(self, db_session, space):
        areas = AreaRepository(db_session)
        root = areas.root(space)
        child = areas.create_child(root, "Backend")
        grandchild = areas.create_child(child, "Storage")
        assert child.path == str(root.id)
        assert grandchild.path == f"{root.id}/{child.id}"
        assert db_session.query(AreaModel).filter_by(space_id=space).count() == 3

    def test_iterations_listed(self, db_session, space):
        iterations = IterationRepository(db_session)
        iterations.create_child(iterations.root(space), "Sprint 1")
        listed = iterations.list(space)
        assert [it.name for it in listed] == ["Tracker", "Sprint 1"]
        assert db_session.query(IterationModel).count() == 2

    def test_space_names_are_unique(self, db_session, owner, space):
        with pytest.raises(IntegrityError):
            SpaceRepository(db_session).create("Tracker", owner)
        db_session.rollback()
