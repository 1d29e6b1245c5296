"""Tests for the TaskTreeService lifecycle operations."""

import pytest
from unittest.mock import patch

from tasknest.data.store import MemoryNodeStore
from tasknest.hierarchy import MAX_DEPTH
from tasknest.lifecycle import TaskTreeService
from tasknest.models import NodeChanges, TaskStatus
from tasknest.recovery import (
    FieldValidationError,
    FileOperationError,
    InvalidHierarchyError,
    MutationNotPermittedError,
    NodeNotFoundError,
    NotAuthorizedError,
)

U1 = "user-1"
U2 = "user-2"


@pytest.fixture
def math(service):
    """Scenario 2 tree: Math with Algebra and Geometry."""
    math = service.create_node(U1, None, "Math")
    algebra = service.create_node(U1, math.id, "Algebra")
    geometry = service.create_node(U1, math.id, "Geometry")
    return math, algebra, geometry


class TestCreateNode:
    """Test node creation."""

    def test_create_root(self, service):
        """Test creating a top-level node."""
        node = service.create_node(U1, None, "Math")
        assert node.order == 0
        assert node.status == TaskStatus.NOT_STARTED
        assert node.owner_id == U1
        assert node.parent_id is None
        assert service.node_depth(U1, node.id) == 0
        assert service.get_node(U1, node.id) == node

    def test_children_in_creation_order(self, service, math):
        """Test that siblings are appended in order."""
        root, algebra, geometry = math
        children = service.list_children(U1, root.id)
        assert [(c.title, c.order) for c in children] == [("Algebra", 0), ("Geometry", 1)]

    def test_order_continues_after_gap(self, service, math):
        """Test that deleting a sibling does not cause an order reuse."""
        root, algebra, geometry = math
        service.delete_subtree(U1, algebra.id)
        third = service.create_node(U1, root.id, "Calculus")
        assert third.order == 2
        assert [c.title for c in service.list_children(U1, root.id)] == ["Geometry", "Calculus"]

    def test_title_is_stripped_and_required(self, service, store):
        """Test title validation."""
        assert service.create_node(U1, None, "  Physics ").title == "Physics"
        with pytest.raises(FieldValidationError):
            service.create_node(U1, None, "   ")
        with pytest.raises(FieldValidationError):
            service.create_node(U1, None, 123)
        assert store.count() == 1

    def test_missing_parent(self, service, store):
        """Test creating under a parent that does not exist."""
        with pytest.raises(NodeNotFoundError):
            service.create_node(U1, "missing", "Orphan")
        assert store.count() == 0

    def test_foreign_parent(self, service, store):
        """Test creating under another owner's node."""
        theirs = service.create_node(U2, None, "Private")
        with pytest.raises(NotAuthorizedError):
            service.create_node(U1, theirs.id, "Sneaky")
        assert store.count() == 1

    def test_owner_required(self, service):
        """Test that an owner id must be supplied."""
        with pytest.raises(FieldValidationError):
            service.create_node("", None, "Math")

    def test_depth_limit(self, service, store, make_chain):
        """Test depths 0..5 succeed and depth 6 is rejected without writing."""
        chain = make_chain(MAX_DEPTH + 1)
        assert [service.node_depth(U1, n.id) for n in chain] == list(range(MAX_DEPTH + 1))

        with pytest.raises(InvalidHierarchyError) as excinfo:
            service.create_node(U1, chain[-1].id, "Too deep")
        assert excinfo.value.attempted_depth == MAX_DEPTH + 1
        assert excinfo.value.max_depth == MAX_DEPTH
        assert store.count() == MAX_DEPTH + 1

    def test_custom_depth_limit(self, store):
        """Test an overridden depth limit."""
        service = TaskTreeService(store, max_depth=1)
        root = service.create_node(U1, None, "root")
        child = service.create_node(U1, root.id, "child")
        with pytest.raises(InvalidHierarchyError):
            service.create_node(U1, child.id, "grandchild")

    def test_negative_depth_limit(self, store):
        """Test that the depth limit cannot be negative."""
        with pytest.raises(ValueError):
            TaskTreeService(store, max_depth=-1)


class TestReads:
    """Test read operations."""

    def test_list_roots_scoped_to_owner(self, service, math):
        """Test that top-level listing never shows other owners' nodes."""
        service.create_node(U2, None, "Theirs")
        assert [n.title for n in service.list_children(U1)] == ["Math"]
        assert [n.title for n in service.list_children(U2, None)] == ["Theirs"]

    def test_is_leaf(self, service, math):
        """Test leaf detection."""
        root, algebra, _ = math
        assert not service.is_leaf(U1, root.id)
        assert service.is_leaf(U1, algebra.id)

    def test_walk(self, service, math):
        """Test pre-order traversal with depths."""
        root, algebra, geometry = math
        angles = service.create_node(U1, geometry.id, "Angles")
        history = service.create_node(U1, None, "History")

        walked = [(depth, node.title) for depth, node in service.walk(U1)]
        assert walked == [(0, "Math"), (1, "Algebra"), (1, "Geometry"), (2, "Angles"), (0, "History")]

        sub = [(depth, node.id) for depth, node in service.walk(U1, geometry.id)]
        assert sub == [(1, geometry.id), (2, angles.id)]
        assert history.id not in [n.id for _, n in service.walk(U1, root.id)]

    def test_total_time(self, service, math):
        """Test the subtree time rollup."""
        root, algebra, geometry = math
        service.accumulate_time(U1, root.id, 100)
        service.accumulate_time(U1, algebra.id, 200)
        service.accumulate_time(U1, geometry.id, 300)
        assert service.total_time(U1, root.id) == 600
        assert service.total_time(U1, algebra.id) == 200
        # completion stays leaf-authoritative
        service.set_progress(U1, algebra.id, 100)
        assert service.get_node(U1, root.id).completion_percentage == 0


class TestEditNode:
    """Test partial edits."""

    def test_edit_title(self, service, math):
        """Test that only supplied fields change."""
        root, _, _ = math
        service.edit_node(U1, root.id, description="Numbers")
        edited = service.edit_node(U1, root.id, title="Mathematics")
        assert edited.title == "Mathematics"
        assert edited.description == "Numbers"
        assert edited.order == root.order

    def test_edit_with_changes_model(self, service, math):
        """Test passing a NodeChanges instance."""
        root, _, _ = math
        edited = service.edit_node(U1, root.id, NodeChanges(description="x"))
        assert edited.description == "x"
        cleared = service.edit_node(U1, root.id, NodeChanges(description=None))
        assert cleared.description is None

    def test_empty_title_rejected(self, service, math):
        """Test title re-validation on edit."""
        root, _, _ = math
        with pytest.raises(FieldValidationError):
            service.edit_node(U1, root.id, title="  ")
        assert service.get_node(U1, root.id).title == "Math"

    def test_no_changes(self, service, math):
        """Test an empty edit returns the current node."""
        root, _, _ = math
        assert service.edit_node(U1, root.id).title == "Math"

    def test_status_edit_leaving_completed(self, service, math):
        """Test the completion reset when status is set explicitly."""
        root, _, _ = math
        done = service.edit_node(U1, root.id, status=TaskStatus.COMPLETED)
        assert done.completion_percentage == 100
        reset = service.edit_node(U1, root.id, status=TaskStatus.NOT_STARTED)
        assert reset.completion_percentage == 0

        service.edit_node(U1, root.id, status=TaskStatus.COMPLETED)
        kept = service.edit_node(U1, root.id, status=TaskStatus.NOT_STARTED, completion_percentage=30)
        assert kept.completion_percentage == 30

    def test_complete(self, service, math):
        """Test the complete shortcut."""
        _, algebra, _ = math
        node = service.complete(U1, algebra.id)
        assert node.status == TaskStatus.COMPLETED
        assert node.completion_percentage == 100

    def test_complete_refuses_node_with_subtasks(self, service, math):
        """Test that a parent cannot be completed while it has children."""
        root, algebra, geometry = math
        with pytest.raises(InvalidHierarchyError, match="subtasks"):
            service.complete(U1, root.id)
        assert service.get_node(U1, root.id).status == TaskStatus.NOT_STARTED

        service.delete_subtree(U1, algebra.id)
        service.delete_subtree(U1, geometry.id)
        assert service.complete(U1, root.id).status == TaskStatus.COMPLETED

    def test_explicit_none_is_rejected(self, service, math):
        """Test that clearing the title or status fails instead of doing nothing."""
        root, _, _ = math
        with pytest.raises(FieldValidationError):
            service.edit_node(U1, root.id, title=None)
        with pytest.raises(FieldValidationError):
            service.edit_node(U1, root.id, status=None)
        assert service.get_node(U1, root.id).title == "Math"

    def test_percentage_edit_syncs_status(self, service, math):
        """Test a percentage edit moves the status the way set_progress does."""
        _, algebra, _ = math
        service.complete(U1, algebra.id)
        node = service.edit_node(U1, algebra.id, completion_percentage=40)
        assert (node.status, node.completion_percentage) == (TaskStatus.IN_PROGRESS, 40)
        node = service.edit_node(U1, algebra.id, completion_percentage=100)
        assert node.status == TaskStatus.COMPLETED

    def test_missing_node(self, service):
        """Test editing a node that does not exist."""
        with pytest.raises(NodeNotFoundError):
            service.edit_node(U1, "missing", title="x")


class TestStatusAndProgress:
    """Test the status cycle, progress and time."""

    def test_status_cycle(self, service):
        """Test three advances return to not_started with the expected percentages."""
        node = service.create_node(U1, None, "Math")
        node = service.advance_status(U1, node.id)
        assert (node.status, node.completion_percentage) == (TaskStatus.IN_PROGRESS, 0)
        node = service.advance_status(U1, node.id)
        assert (node.status, node.completion_percentage) == (TaskStatus.COMPLETED, 100)
        node = service.advance_status(U1, node.id)
        assert (node.status, node.completion_percentage) == (TaskStatus.NOT_STARTED, 0)

    def test_set_progress(self, service):
        """Test explicit progress values."""
        node = service.create_node(U1, None, "Math")
        node = service.set_progress(U1, node.id, 45)
        assert node.completion_percentage == 45
        assert node.status == TaskStatus.IN_PROGRESS
        with pytest.raises(FieldValidationError):
            service.set_progress(U1, node.id, 101)
        assert service.get_node(U1, node.id).completion_percentage == 45

    def test_time_is_monotonic(self, service):
        """Test repeated accumulation never decreases time_spent."""
        node = service.create_node(U1, None, "Math")
        seen = []
        for delta in [0, 1000, 250, 0, 60000]:
            seen.append(service.accumulate_time(U1, node.id, delta).time_spent)
        assert seen == sorted(seen)
        assert seen[-1] == 61250

    def test_negative_time_rejected(self, service):
        """Test that a negative delta leaves time unchanged."""
        node = service.create_node(U1, None, "Math")
        service.accumulate_time(U1, node.id, 500)
        with pytest.raises(FieldValidationError):
            service.accumulate_time(U1, node.id, -1)
        assert service.get_node(U1, node.id).time_spent == 500

    def test_fractional_and_textual_time_rejected(self, service):
        """Test that only whole milliseconds are accepted."""
        node = service.create_node(U1, None, "Math")
        for delta in (0.9, "5"):
            with pytest.raises(FieldValidationError):
                service.accumulate_time(U1, node.id, delta)
        assert service.get_node(U1, node.id).time_spent == 0

    def test_reset_time(self, service):
        """Test the explicit time reset."""
        node = service.create_node(U1, None, "Math")
        service.accumulate_time(U1, node.id, 500)
        assert service.reset_time(U1, node.id).time_spent == 0


class TestDeleteSubtree:
    """Test cascading deletes."""

    def test_delete_scenario(self, service, store, math):
        """Test deleting Math removes Algebra and Geometry too."""
        root, algebra, geometry = math
        assert service.delete_subtree(U1, root.id) == 3
        assert service.list_children(U1, None) == []
        with pytest.raises(NodeNotFoundError):
            store.get(algebra.id)
        assert store.count() == 0

    def test_delete_deep_tree_completeness(self, service, store, make_chain):
        """Test no descendant survives and the count matches the subtree size."""
        chain = make_chain(MAX_DEPTH + 1)
        for node in chain[:-1]:
            service.create_node(U1, node.id, f"extra under {node.title}")
        keep = service.create_node(U1, None, "Keep")
        subtree_size = len(list(service.walk(U1, chain[1].id)))

        assert service.delete_subtree(U1, chain[1].id) == subtree_size
        remaining = [n for _, n in service.walk(U1)]
        deleted_ids = {n.id for n in chain[1:]}
        assert not deleted_ids & {n.id for n in remaining}
        for n in remaining:
            if n.parent_id is not None:
                store.get(n.parent_id)
        assert keep.id in {n.id for n in remaining}

    def test_delete_wide_subtree(self, service, store):
        """Test a parent with many children and grandchildren is removed in full."""
        root = service.create_node(U1, None, "Wide")
        for i in range(200):
            child = service.create_node(U1, root.id, f"child {i}")
            service.create_node(U1, child.id, f"grandchild {i}")
        assert service.total_time(U1, root.id) == 0
        assert service.delete_subtree(U1, root.id) == 401
        assert store.count() == 0

    def test_delete_leaf(self, service, math):
        """Test deleting a single leaf."""
        root, algebra, _ = math
        assert service.delete_subtree(U1, algebra.id) == 1
        assert [c.title for c in service.list_children(U1, root.id)] == ["Geometry"]

    def test_delete_missing(self, service):
        """Test deleting a node that does not exist."""
        with pytest.raises(NodeNotFoundError):
            service.delete_subtree(U1, "missing")

    def test_failed_delete_leaves_tree_intact(self, service, store, math):
        """Test all-or-nothing deletion when the store fails."""
        root, _, _ = math
        with patch.object(store, "_persist", side_effect=FileOperationError("disk full")):
            with pytest.raises(FileOperationError):
                service.delete_subtree(U1, root.id)
        assert store.count() == 3
        assert len(service.list_children(U1, root.id)) == 2

    def test_edit_after_delete_does_not_resurrect(self, service, store, math):
        """Test an edit racing a delete sees NodeNotFoundError."""
        root, algebra, _ = math
        # the ownership check saw the node before the delete committed
        stale = service.get_node(U1, algebra.id)
        service.delete_subtree(U1, root.id)
        with patch.object(service, "_owned", return_value=stale):
            with pytest.raises(NodeNotFoundError):
                service.accumulate_time(U1, algebra.id, 100)
            with pytest.raises(NodeNotFoundError):
                service.edit_node(U1, algebra.id, title="back")
        assert store.count() == 0


class TestOwnershipIsolation:
    """Test that one owner can never see or change another's nodes."""

    def test_cross_owner_operations(self, service, math):
        """Test every operation fails with NotAuthorizedError for a foreign owner."""
        root, algebra, _ = math
        attempts = [
            lambda: service.list_children(U2, root.id),
            lambda: service.get_node(U2, root.id),
            lambda: service.edit_node(U2, root.id, title="x"),
            lambda: service.advance_status(U2, root.id),
            lambda: service.set_progress(U2, root.id, 50),
            lambda: service.accumulate_time(U2, root.id, 10),
            lambda: service.reset_time(U2, root.id),
            lambda: service.move_node(U2, algebra.id, None),
            lambda: service.reorder_children(U2, root.id, [algebra.id]),
            lambda: service.delete_subtree(U2, root.id),
            lambda: list(service.walk(U2, root.id)),
        ]
        for attempt in attempts:
            with pytest.raises(NotAuthorizedError):
                attempt()

        unchanged = service.get_node(U1, root.id)
        assert unchanged.title == "Math"
        assert unchanged.status == TaskStatus.NOT_STARTED
        assert unchanged.time_spent == 0
        assert len(service.list_children(U1, root.id)) == 2


class TestMoveNode:
    """Test reparenting."""

    def test_move_under_new_parent(self, service, math):
        """Test a move appends to the new parent's children."""
        root, algebra, geometry = math
        moved = service.move_node(U1, geometry.id, algebra.id)
        assert moved.parent_id == algebra.id
        assert moved.order == 0
        assert [c.title for c in service.list_children(U1, root.id)] == ["Algebra"]
        assert service.node_depth(U1, geometry.id) == 2

    def test_move_to_root(self, service, math):
        """Test moving a node to the top level."""
        _, algebra, _ = math
        moved = service.move_node(U1, algebra.id, None)
        assert moved.parent_id is None
        assert moved.order == 1
        assert [n.title for n in service.list_children(U1)] == ["Math", "Algebra"]

    def test_move_same_parent_is_unchanged(self, service, math):
        """Test moving to the current parent keeps the node as is."""
        root, algebra, _ = math
        assert service.move_node(U1, algebra.id, root.id).order == algebra.order

    def test_move_under_self_or_descendant(self, service, math):
        """Test cycle prevention."""
        root, algebra, _ = math
        with pytest.raises(InvalidHierarchyError):
            service.move_node(U1, root.id, root.id)
        with pytest.raises(InvalidHierarchyError):
            service.move_node(U1, root.id, algebra.id)
        assert service.get_node(U1, root.id).parent_id is None

    def test_move_depth_includes_subtree(self, service, make_chain):
        """Test that the moved subtree's deepest node must fit."""
        chain = make_chain(MAX_DEPTH + 1)
        small = service.create_node(U1, None, "small")
        service.create_node(U1, small.id, "small child")
        with pytest.raises(InvalidHierarchyError) as excinfo:
            service.move_node(U1, small.id, chain[-2].id)
        assert excinfo.value.attempted_depth == MAX_DEPTH + 1
        moved = service.move_node(U1, small.id, chain[-3].id)
        assert moved.parent_id == chain[-3].id

    def test_move_to_foreign_parent(self, service, math):
        """Test moving under another owner's node."""
        _, algebra, _ = math
        theirs = service.create_node(U2, None, "Theirs")
        with pytest.raises(NotAuthorizedError):
            service.move_node(U1, algebra.id, theirs.id)


class TestReorderChildren:
    """Test explicit sibling reordering."""

    def test_reorder(self, service, math):
        """Test a full reorder renumbers from zero."""
        root, algebra, geometry = math
        calculus = service.create_node(U1, root.id, "Calculus")
        result = service.reorder_children(U1, root.id, [calculus.id, algebra.id, geometry.id])
        assert [(n.title, n.order) for n in result] == [("Calculus", 0), ("Algebra", 1), ("Geometry", 2)]
        assert [c.title for c in service.list_children(U1, root.id)] == ["Calculus", "Algebra", "Geometry"]

    def test_reorder_roots(self, service):
        """Test reordering top-level nodes."""
        a = service.create_node(U1, None, "a")
        b = service.create_node(U1, None, "b")
        service.reorder_children(U1, None, [b.id, a.id])
        assert [n.title for n in service.list_children(U1)] == ["b", "a"]

    @pytest.mark.parametrize("pick", [
        lambda a, g: [a.id],
        lambda a, g: [a.id, g.id, "stranger"],
        lambda a, g: [a.id, a.id, g.id],
    ])
    def test_reorder_must_name_exact_children(self, service, math, pick):
        """Test incomplete, foreign or duplicated lists are rejected."""
        root, algebra, geometry = math
        with pytest.raises(FieldValidationError):
            service.reorder_children(U1, root.id, pick(algebra, geometry))
        assert [c.title for c in service.list_children(U1, root.id)] == ["Algebra", "Geometry"]


class TestMutationGate:
    """Test the read-only policy switch."""

    def test_read_only_rejects_writes(self, store):
        """Test that every mutation is refused while reads still work."""
        writable = TaskTreeService(store)
        root = writable.create_node(U1, None, "Math")
        frozen = TaskTreeService(store, mutations_enabled=False)

        for attempt in [
            lambda: frozen.create_node(U1, None, "x"),
            lambda: frozen.edit_node(U1, root.id, title="x"),
            lambda: frozen.advance_status(U1, root.id),
            lambda: frozen.set_progress(U1, root.id, 10),
            lambda: frozen.accumulate_time(U1, root.id, 10),
            lambda: frozen.move_node(U1, root.id, None),
            lambda: frozen.delete_subtree(U1, root.id),
        ]:
            with pytest.raises(MutationNotPermittedError):
                attempt()

        assert frozen.get_node(U1, root.id).title == "Math"
        assert store.count() == 1


class TestYamlBackedService:
    """Test the orchestrator over the file backed store."""

    def test_tree_survives_restart(self, yaml_service, yaml_path):
        """Test a tree written by one service is read by the next."""
        from tasknest.data.store import YamlNodeStore

        root = yaml_service.create_node(U1, None, "Math")
        yaml_service.create_node(U1, root.id, "Algebra")
        yaml_service.accumulate_time(U1, root.id, 1234)

        reopened = TaskTreeService(YamlNodeStore(yaml_path))
        assert [n.title for _, n in reopened.walk(U1)] == ["Math", "Algebra"]
        assert reopened.get_node(U1, root.id).time_spent == 1234
        assert reopened.delete_subtree(U1, root.id) == 2
        assert TaskTreeService(YamlNodeStore(yaml_path)).list_children(U1) == []

    def test_memory_store_shared(self):
        """Test two services over one store see the same tree."""
        store = MemoryNodeStore()
        first, second = TaskTreeService(store), TaskTreeService(store)
        node = first.create_node(U1, None, "Shared")
        assert second.get_node(U1, node.id).title == "Shared"
