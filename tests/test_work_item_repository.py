"""
Tests for the work item store.

Verifies:
- create numbers work items per space and fills in defaults
- save is version checked and leaves the type and creator alone
- delete cascades to links and records a final revision
- listing, counting and iteration counts
"""

from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from work_item_tracker.cancellation import CancellationToken
from work_item_tracker.db.base import Base
from work_item_tracker.db.models import WorkItemModel
from work_item_tracker.errors import (
    BadParameterError,
    NotFoundError,
    OperationCancelledError,
    VersionConflictError,
)
from work_item_tracker.spaces import (
    AreaRepository,
    IdentityRepository,
    IterationRepository,
    SpaceRepository,
)
from work_item_tracker.workitem import criteria
from work_item_tracker.workitem.constants import STATE_CLOSED
from work_item_tracker.workitem.model import WorkItemUpdate
from work_item_tracker.workitem.repository import WorkItemRepository
from work_item_tracker.workitem.system_types import (
    SYSTEM_BUG,
    SYSTEM_LINK_TYPE_PARENTING,
    SYSTEM_TASK,
    seed_system_types,
)


def new_bug(repo, space, actor, title="hi", **fields):
    values = {"system.title": title, "system.state": "new"}
    values.update(fields)
    return repo.create(space, SYSTEM_BUG, values, actor)


class TestCreate:
    """Tests for creating work items."""

    def test_create_in_empty_space(self, repo, db_session, space, owner):
        """First work item of a space gets number 1 and the default placements."""
        wi = new_bug(repo, space, owner)

        assert wi.number == 1
        assert wi.version == 0
        assert wi.execution_order == 1000.0
        assert wi.creator == str(owner)
        assert wi.iteration == str(IterationRepository(db_session).root(space).id)
        assert wi.area == str(AreaRepository(db_session).root(space).id)

    def test_numbers_and_orders_increase(self, repo, space, owner):
        first = new_bug(repo, space, owner, "one")
        second = new_bug(repo, space, owner, "two")
        assert second.number == first.number + 1
        assert second.execution_order == first.execution_order + 1000.0

    def test_deleted_top_item_does_not_raise_next_order(self, repo, space, owner):
        """The next order follows the highest live work item."""
        new_bug(repo, space, owner, "A")
        top = new_bug(repo, space, owner, "B")
        repo.delete(top.id, owner)

        created = new_bug(repo, space, owner, "C")

        assert created.execution_order == 2000.0
        assert created.number == top.number + 1

    def test_numbers_are_per_space(self, repo, db_session, space, owner):
        other = SpaceRepository(db_session).create("Other", owner)
        db_session.commit()
        new_bug(repo, space, owner)
        assert new_bug(repo, other.id, owner).number == 1

    def test_creator_cannot_be_chosen(self, repo, space, owner, other_user):
        wi = new_bug(repo, space, owner, **{"system.creator": str(other_user)})
        assert wi.creator == str(owner)

    def test_unknown_type(self, repo, space, owner):
        with pytest.raises(NotFoundError):
            repo.create(space, uuid4(), {"system.title": "x", "system.state": "new"}, owner)

    def test_unknown_space(self, repo, owner):
        with pytest.raises(NotFoundError):
            new_bug(repo, uuid4(), owner)

    def test_unknown_assignee(self, repo, db_session, space, owner):
        with pytest.raises(BadParameterError) as exc_info:
            new_bug(repo, space, owner, **{"system.assignees": [str(uuid4())]})
        assert exc_info.value.parameter == "system.assignees"
        assert db_session.query(WorkItemModel).count() == 0

    def test_iteration_of_another_space(self, repo, db_session, space, owner):
        other = SpaceRepository(db_session).create("Other", owner)
        db_session.commit()
        foreign = IterationRepository(db_session).root(other.id)
        with pytest.raises(BadParameterError):
            new_bug(repo, space, owner, **{"system.iteration": str(foreign.id)})

    def test_child_iteration(self, repo, db_session, space, owner):
        iterations = IterationRepository(db_session)
        sprint = iterations.create_child(iterations.root(space), "Sprint 1")
        db_session.commit()
        wi = new_bug(repo, space, owner, **{"system.iteration": str(sprint.id)})
        assert wi.iteration == str(sprint.id)

    def test_create_records_revision(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        revisions = repo.list_revisions(wi.id)
        assert [r.kind for r in revisions] == ["create"]
        assert revisions[0].actor_id == owner
        assert revisions[0].snapshot["number"] == 1

    def test_cancelled_create_leaves_no_trace(self, repo, db_session, space, owner):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            repo.create(space, SYSTEM_BUG, {"system.title": "x", "system.state": "new"}, owner, token)
        assert db_session.query(WorkItemModel).count() == 0


class TestSave:
    """Tests for version-checked updates."""

    def test_save_bumps_version(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        saved = repo.save(
            space, WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "a"}), owner
        )
        assert saved.version == 1
        assert saved.title == "a"
        assert saved.updated_at > wi.updated_at
        assert saved.state == "new"

    def test_stale_version_conflicts(self, repo, space, owner):
        """Two saves based on version 0: the first wins, the second conflicts."""
        wi = new_bug(repo, space, owner)
        repo.save(space, WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "a"}), owner)

        with pytest.raises(VersionConflictError):
            repo.save(
                space,
                WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "b"}),
                owner,
            )

        stored = repo.load(space, wi.number)
        assert stored.title == "a"
        assert stored.version == 1

    def test_concurrent_save_from_another_session(self, settings, tmp_path, monkeypatch):
        """A write from another session between read and update loses the race."""
        engine = create_engine(f"sqlite:///{tmp_path / 'tracker.db'}")
        Base.metadata.create_all(engine)
        make_session = sessionmaker(bind=engine, autoflush=False)
        first, second, third = make_session(), make_session(), make_session()
        try:
            seed_system_types(first)
            actor = IdentityRepository(first).create("racer").id
            space = SpaceRepository(first).create("Race", actor).id
            first.commit()
            repo_a = WorkItemRepository(first, settings)
            repo_b = WorkItemRepository(second, settings)
            wi = new_bug(repo_a, space, actor)

            to_storage = repo_b._to_storage

            def save_a_first(*args):
                repo_a.save(
                    space,
                    WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "a"}),
                    actor,
                )
                return to_storage(*args)

            monkeypatch.setattr(repo_b, "_to_storage", save_a_first)
            with pytest.raises(VersionConflictError):
                repo_b.save(
                    space,
                    WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "b"}),
                    actor,
                )

            stored = WorkItemRepository(third, settings).load(space, wi.number)
            assert stored.title == "a"
            assert stored.version == 1
            assert [r.kind for r in repo_a.list_revisions(wi.id)] == ["create", "update"]
        finally:
            first.close()
            second.close()
            third.close()
            engine.dispose()

    def test_type_and_creator_are_kept(self, repo, space, owner, other_user):
        wi = new_bug(repo, space, owner)
        saved = repo.save(
            space,
            WorkItemUpdate(
                number=wi.number,
                version=0,
                type=SYSTEM_TASK,
                fields={"system.creator": str(other_user)},
            ),
            owner,
        )
        assert saved.type == SYSTEM_BUG
        assert saved.creator == str(owner)

    def test_assignees_cleared_by_empty_list(self, repo, space, owner, other_user):
        wi = new_bug(repo, space, owner, **{"system.assignees": [str(other_user)]})
        assert wi.assignees == [str(other_user)]

        kept = repo.save(
            space, WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "x"}), owner
        )
        assert kept.assignees == [str(other_user)]

        cleared = repo.save(
            space, WorkItemUpdate(number=wi.number, version=1, fields={"system.assignees": []}), owner
        )
        assert cleared.assignees is None

    def test_invalid_state_leaves_row_unchanged(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        with pytest.raises(BadParameterError):
            repo.save(
                space,
                WorkItemUpdate(number=wi.number, version=0, fields={"system.state": "done"}),
                owner,
            )
        assert repo.load(space, wi.number).version == 0

    def test_save_records_revision(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        repo.save(space, WorkItemUpdate(number=wi.number, version=0, fields={"system.title": "a"}), owner)
        revisions = repo.list_revisions(wi.id)
        assert [r.kind for r in revisions] == ["create", "update"]
        assert revisions[-1].snapshot["fields"]["system.title"] == "a"

    def test_commented_at_does_not_bump_version(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        repo.set_commented_at(wi.id)
        reloaded = repo.load_by_id(wi.id)
        assert reloaded.version == 0
        assert reloaded.commented_at is not None


class TestDelete:
    """Tests for deleting work items."""

    def test_delete_cascades_links(self, repo, space, owner):
        w1 = new_bug(repo, space, owner, "parent")
        w2 = new_bug(repo, space, owner, "child")
        repo.links.create(w1.id, w2.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        repo.delete(w1.id, owner)

        assert repo.links.list_incident(w2.id) == []
        assert repo.load_by_id(w2.id).title == "child"
        with pytest.raises(NotFoundError):
            repo.load_by_id(w1.id)

    def test_delete_records_final_revision(self, repo, space, owner):
        wi = new_bug(repo, space, owner)
        repo.delete(wi.id, owner)
        revisions = repo.list_revisions(wi.id)
        assert revisions[-1].kind == "delete"
        assert revisions[-1].snapshot["id"] == str(wi.id)

    def test_delete_unknown(self, repo, owner):
        with pytest.raises(NotFoundError):
            repo.delete(uuid4(), owner)

    def test_revisions_of_unknown(self, repo):
        with pytest.raises(NotFoundError):
            repo.list_revisions(uuid4())


class TestLinkGraph:
    """Tests for the parent/child queries of the link graph."""

    def test_has_and_list_children(self, repo, space, owner):
        parent = new_bug(repo, space, owner, "parent")
        first = new_bug(repo, space, owner, "first")
        second = new_bug(repo, space, owner, "second")
        assert not repo.links.has_children(parent.id)

        repo.links.create(parent.id, first.id, SYSTEM_LINK_TYPE_PARENTING, owner)
        repo.links.create(parent.id, second.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        assert repo.links.has_children(parent.id)
        assert not repo.links.has_children(first.id)
        assert repo.links.list_children(parent.id) == [second.id, first.id]

    def test_deleted_child_is_not_listed(self, repo, space, owner):
        parent = new_bug(repo, space, owner, "parent")
        child = new_bug(repo, space, owner, "child")
        repo.links.create(parent.id, child.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        repo.delete(child.id, owner)

        assert not repo.links.has_children(parent.id)
        assert repo.links.list_children(parent.id) == []

    def test_link_refreshes_linked_at(self, repo, space, owner):
        parent = new_bug(repo, space, owner, "parent")
        child = new_bug(repo, space, owner, "child")

        repo.links.create(parent.id, child.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        reloaded = repo.load_by_id(child.id)
        assert reloaded.linked_at >= child.linked_at
        assert reloaded.version == child.version


class TestList:
    """Tests for listing and counting."""

    def test_list_is_descending_by_order(self, repo, space, owner):
        for title in ("a", "b", "c"):
            new_bug(repo, space, owner, title)
        items, total = repo.list(space)
        assert total == 3
        assert [wi.title for wi in items] == ["c", "b", "a"]

    def test_list_by_state(self, repo, space, owner):
        new_bug(repo, space, owner, "a")
        new_bug(repo, space, owner, "b", **{"system.state": "closed"})
        items, total = repo.list(space, criteria.equals("system.state", "closed"))
        assert total == 1
        assert items[0].title == "b"

    def test_offset_past_end(self, repo, space, owner):
        new_bug(repo, space, owner)
        items, total = repo.list(space, offset=10, limit=5)
        assert items == []
        assert total == 1

    def test_paging_parameters(self, repo, space):
        with pytest.raises(BadParameterError) as exc_info:
            repo.list(space, offset=-1)
        assert exc_info.value.parameter == "start"
        with pytest.raises(BadParameterError) as exc_info:
            repo.list(space, limit=0)
        assert exc_info.value.parameter == "limit"

    def test_paging_beyond_database_range(self, repo, space, owner):
        """Offsets and limits past the 64-bit range are rejected, not passed to the driver."""
        parent = new_bug(repo, space, owner)
        items, total = repo.list(space, offset=2**62, limit=2**62)
        assert (items, total) == ([], 1)

        with pytest.raises(BadParameterError) as exc_info:
            repo.list(space, offset=2**70)
        assert exc_info.value.parameter == "start"
        with pytest.raises(BadParameterError) as exc_info:
            repo.list(space, limit=2**64)
        assert exc_info.value.parameter == "limit"
        with pytest.raises(BadParameterError) as exc_info:
            repo.list_children(parent.id, offset=2**63)
        assert exc_info.value.parameter == "start"

    def test_parent_exists_false_hides_children(self, repo, space, owner):
        parent = new_bug(repo, space, owner, "parent")
        child = new_bug(repo, space, owner, "child")
        repo.links.create(parent.id, child.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        items, total = repo.list(space, parent_exists=False)
        assert total == 1
        assert items[0].id == parent.id

        children, count = repo.list_children(parent.id)
        assert count == 1
        assert children[0].id == child.id

    def test_count_and_fetch(self, repo, space, owner):
        new_bug(repo, space, owner, "a")
        new_bug(repo, space, owner, "b")
        assert repo.count(space) == 2
        found = repo.fetch(space, criteria.equals("system.title", "a"))
        assert found is not None and found.title == "a"
        assert repo.fetch(space, criteria.equals("system.title", "zzz")) is None

    def test_iteration_counts(self, repo, db_session, space, owner):
        root = IterationRepository(db_session).root(space)
        new_bug(repo, space, owner, "a")
        new_bug(repo, space, owner, "b", **{"system.state": "closed"})

        counts = repo.get_counts_per_iteration(space)
        assert counts[str(root.id)].total == 2
        assert counts[str(root.id)].closed == 1

        single = repo.get_counts_for_iteration(root.id)
        assert (single.total, single.closed) == (2, 1)


class TestReferences:
    """Tests for resolving #N references."""

    def test_lookup_reference(self, repo, space, owner):
        wi = new_bug(repo, space, owner, "Target")
        reference = repo.lookup_reference(space, wi.number)
        assert reference.id == wi.id
        assert reference.title == "Target"
        assert repo.lookup_reference(space, 99) is None

    def test_number_beyond_column_range(self, repo, space, owner):
        new_bug(repo, space, owner)
        assert repo.lookup_reference(space, 2**80) is None
        assert repo.lookup_reference(space, 0) is None
        with pytest.raises(NotFoundError):
            repo.load(space, 2**80)


class TestBacklog:
    """Tests for the planner backlog of a space."""

    def test_open_items_of_root_iteration(self, repo, db_session, space, owner):
        iterations = IterationRepository(db_session)
        sprint = iterations.create_child(iterations.root(space), "Sprint 1")
        db_session.commit()
        new_bug(repo, space, owner, "open")
        new_bug(repo, space, owner, "closed", **{"system.state": STATE_CLOSED})
        new_bug(repo, space, owner, "planned", **{"system.iteration": str(sprint.id)})
        task = repo.create(space, SYSTEM_TASK, {"system.title": "task", "system.state": "open"}, owner)

        items, total = repo.list_backlog(space)

        assert total == 2
        assert [wi.title for wi in items] == ["task", "open"]
        assert items[0].id == task.id
        assert repo.count_backlog(space) == 2

    def test_expression_narrows_backlog(self, repo, space, owner):
        new_bug(repo, space, owner, "a")
        new_bug(repo, space, owner, "b")
        items, total = repo.list_backlog(space, criteria.equals("system.title", "a"))
        assert total == 1
        assert items[0].title == "a"

    def test_top_level_only(self, repo, space, owner):
        parent = new_bug(repo, space, owner, "parent")
        child = new_bug(repo, space, owner, "child")
        repo.links.create(parent.id, child.id, SYSTEM_LINK_TYPE_PARENTING, owner)

        items, total = repo.list_backlog(space, parent_exists=False)

        assert total == 1
        assert items[0].id == parent.id

    def test_paging(self, repo, space, owner):
        for title in ("a", "b", "c"):
            new_bug(repo, space, owner, title)
        items, total = repo.list_backlog(space, offset=1, limit=1)
        assert total == 3
        assert [wi.title for wi in items] == ["b"]

    def test_unknown_space(self, repo):
        with pytest.raises(NotFoundError):
            repo.list_backlog(uuid4())
