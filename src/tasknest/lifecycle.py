"""
Lifecycle Orchestrator - the façade over the task tree.

Every operation takes the authenticated owner id first, checks existence and
ownership before writing, and applies its writes to the Node Store as one
atomic step. Failures are raised as typed errors from tasknest.recovery;
nothing is ever silently skipped.

Structural operations (create, move, reorder, delete, template instantiation)
read sibling state and then write, so they are serialized per owner. Field
edits go through NodeStore.update, which fails rather than resurrecting a node
that a concurrent subtree delete has removed.
"""
import threading
import weakref
from collections import deque
from typing import Iterator, List, Optional, Sequence, Tuple

from . import progress
from .data.store import NodeStore
from .hierarchy import MAX_DEPTH, HierarchyCheck, can_nest, can_reparent
from .logs import get_logger
from .models import NodeChanges, ProjectTemplate, TaskNode, TaskStatus
from .ordering import next_order, reorder
from .recovery import (
    CorruptionError,
    FieldValidationError,
    InvalidHierarchyError,
    MutationNotPermittedError,
    NodeNotFoundError,
    NotAuthorizedError,
)
from .templates import expand_template

log = get_logger("lifecycle")

class TaskTreeService:
    """Create, edit, move, complete and delete task nodes for many owners."""

    def __init__(self, store: NodeStore, max_depth: int = MAX_DEPTH, mutations_enabled: bool = True):
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        self.store = store
        self.max_depth = max_depth
        self.mutations_enabled = mutations_enabled
        # entries vanish once no operation holds the owner's lock
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ---- guards ----

    def _structure_lock(self, owner_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = self._locks[owner_id] = threading.RLock()
            return lock

    def _require_mutable(self, action: str) -> None:
        if not self.mutations_enabled:
            log.warning(f"Rejected {action}: mutations are disabled")
            raise MutationNotPermittedError(f"Cannot {action}: mutations are disabled")

    @staticmethod
    def _require_owner(owner_id: str) -> None:
        if not owner_id or not str(owner_id).strip():
            raise FieldValidationError("owner_id is required")

    @staticmethod
    def _clean_title(title: Optional[str]) -> str:
        if not isinstance(title, str) or not title.strip():
            raise FieldValidationError("title must not be empty")
        return title.strip()

    def _owned(self, owner_id: str, node_id: str) -> TaskNode:
        """Load a node and make sure ``owner_id`` owns it."""
        self._require_owner(owner_id)
        node = self.store.get(node_id)
        if node.owner_id != owner_id:
            log.warning(f"Owner {owner_id} denied access to node {node_id}")
            raise NotAuthorizedError(node_id, owner_id)
        return node

    def _hierarchy_error(self, check: HierarchyCheck) -> InvalidHierarchyError:
        log.warning(f"Hierarchy rejected: {check.reason}")
        return InvalidHierarchyError(check.reason, check.attempted_depth, check.max_depth)

    # ---- tree walking ----

    def _ancestors(self, node: TaskNode) -> List[TaskNode]:
        """Ancestors of ``node``, nearest first."""
        chain = []
        seen = {node.id}
        current = node
        while current.parent_id is not None:
            if current.parent_id in seen:
                raise CorruptionError(f"Task node {node.id} is part of a parent cycle")
            try:
                current = self.store.get(current.parent_id)
            except NodeNotFoundError as e:
                raise CorruptionError(f"Task node {node.id} has a missing ancestor {current.parent_id}") from e
            seen.add(current.id)
            chain.append(current)
        return chain

    def _depth(self, node: TaskNode) -> int:
        return len(self._ancestors(node))

    def _descendants(self, node: TaskNode) -> List[Tuple[int, TaskNode]]:
        """Every descendant of ``node`` with its distance below it, parents first."""
        found = []
        queue = deque((1, child) for child in self.store.list_children(node.owner_id, node.id))
        while queue:
            level, current = queue.popleft()
            found.append((level, current))
            queue.extend((level + 1, child) for child in self.store.list_children(current.owner_id, current.id))
        return found

    def _height(self, node: TaskNode) -> int:
        return max((level for level, _ in self._descendants(node)), default=0)

    # ---- reads ----

    def get_node(self, owner_id: str, node_id: str) -> TaskNode:
        return self._owned(owner_id, node_id)

    def node_depth(self, owner_id: str, node_id: str) -> int:
        return self._depth(self._owned(owner_id, node_id))

    def list_children(self, owner_id: str, parent_id: Optional[str] = None) -> List[TaskNode]:
        """Children of ``parent_id`` (roots when None) belonging to ``owner_id``, in display order."""
        self._require_owner(owner_id)
        if parent_id is not None:
            self._owned(owner_id, parent_id)
        return self.store.list_children(owner_id, parent_id)

    def is_leaf(self, owner_id: str, node_id: str) -> bool:
        self._owned(owner_id, node_id)
        return not self.store.list_children(owner_id, node_id)

    def walk(self, owner_id: str, root_id: Optional[str] = None) -> Iterator[Tuple[int, TaskNode]]:
        """
        Pre-order traversal yielding ``(depth, node)``.

        Walks the subtree rooted at ``root_id``, or every tree of the owner when
        it is None. Siblings are visited in display order.
        """
        self._require_owner(owner_id)
        if root_id is None:
            stack = [(0, node) for node in reversed(self.store.list_children(owner_id, None))]
        else:
            root = self._owned(owner_id, root_id)
            stack = [(self._depth(root), root)]

        while stack:
            depth, node = stack.pop()
            yield depth, node
            children = self.store.list_children(owner_id, node.id)
            stack.extend((depth + 1, child) for child in reversed(children))

    def total_time(self, owner_id: str, node_id: str) -> int:
        """Milliseconds spent on a node and all of its descendants."""
        node = self._owned(owner_id, node_id)
        return progress.total_time([node] + [d for _, d in self._descendants(node)])

    # ---- structural operations ----

    def create_node(self, owner_id: str, parent_id: Optional[str], title: str,
                    description: Optional[str] = None) -> TaskNode:
        """
        Create a node at the end of its sibling list.

        Raises:
            FieldValidationError: If the title is empty.
            NodeNotFoundError: If the parent does not exist.
            NotAuthorizedError: If the parent belongs to another owner.
            InvalidHierarchyError: If the node would be deeper than max_depth.
        """
        self._require_mutable("create a task")
        self._require_owner(owner_id)
        title = self._clean_title(title)

        with self._structure_lock(owner_id):
            parent_depth = None
            if parent_id is not None:
                parent_depth = self._depth(self._owned(owner_id, parent_id))

            check = can_nest(parent_depth, self.max_depth)
            if not check.allowed:
                raise self._hierarchy_error(check)

            siblings = self.store.list_children(owner_id, parent_id)
            node = TaskNode.build(
                owner_id=owner_id,
                parent_id=parent_id,
                title=title,
                description=description,
                order=next_order(s.order for s in siblings),
            )
            self.store.put(node)

        log.info(f"Created node {node.id} '{node.title}' under {parent_id or 'root'} for {owner_id}")
        return node

    def move_node(self, owner_id: str, node_id: str, new_parent_id: Optional[str]) -> TaskNode:
        """
        Move a node (with its subtree) to the end of another parent's children.

        Raises:
            InvalidHierarchyError: On self-parenting, a cycle, or a depth overflow.
        """
        self._require_mutable("move a task")

        with self._structure_lock(owner_id):
            node = self._owned(owner_id, node_id)
            if new_parent_id == node.parent_id:
                return node

            ancestor_ids: List[str] = []
            parent_depth = None
            if new_parent_id is not None:
                new_parent = self._owned(owner_id, new_parent_id)
                chain = self._ancestors(new_parent)
                ancestor_ids = [a.id for a in chain]
                parent_depth = len(chain)

            check = can_reparent(
                node.id,
                new_parent_id,
                new_parent_ancestor_ids=ancestor_ids,
                new_parent_depth=parent_depth,
                subtree_height=self._height(node),
                max_depth=self.max_depth,
            )
            if not check.allowed:
                raise self._hierarchy_error(check)

            siblings = self.store.list_children(owner_id, new_parent_id)
            moved = node.with_changes(parent_id=new_parent_id, order=next_order(s.order for s in siblings))
            self.store.put(moved)

        log.info(f"Moved node {node_id} from {node.parent_id or 'root'} to {new_parent_id or 'root'}")
        return moved

    def reorder_children(self, owner_id: str, parent_id: Optional[str],
                         ordered_ids: Sequence[str]) -> List[TaskNode]:
        """
        Renumber the children of ``parent_id`` to follow ``ordered_ids``.

        The list must name every current child exactly once.
        """
        self._require_mutable("reorder tasks")
        self._require_owner(owner_id)
        ordered_ids = list(ordered_ids)
        positions = reorder(ordered_ids)

        with self._structure_lock(owner_id):
            if parent_id is not None:
                self._owned(owner_id, parent_id)
            current = {s.id: s for s in self.store.list_children(owner_id, parent_id)}
            if set(positions) != set(current):
                raise FieldValidationError("reorder list must name exactly the current children, once each")

            updated = [current[node_id].with_changes(order=positions[node_id]) for node_id in ordered_ids]
            self.store.put_many(updated)

        log.info(f"Reordered {len(updated)} children of {parent_id or 'root'} for {owner_id}")
        return updated

    def delete_subtree(self, owner_id: str, node_id: str) -> int:
        """
        Delete a node and every descendant in one store operation.

        Returns:
            The number of nodes deleted.
        """
        self._require_mutable("delete a task")

        with self._structure_lock(owner_id):
            node = self._owned(owner_id, node_id)
            ids = [node.id] + [d.id for _, d in self._descendants(node)]
            deleted = self.store.delete_many(ids)

        log.info(f"Deleted subtree {node_id} ({deleted} node(s)) for {owner_id}")
        return deleted

    def create_from_template(self, owner_id: str, template: ProjectTemplate,
                             parent_id: Optional[str] = None, title: Optional[str] = None) -> TaskNode:
        """Instantiate ``template`` as a new subtree and return its root node."""
        self._require_mutable("create tasks from a template")
        self._require_owner(owner_id)
        root_title = self._clean_title(title if title is not None else template.title)

        with self._structure_lock(owner_id):
            parent_depth = None
            if parent_id is not None:
                parent_depth = self._depth(self._owned(owner_id, parent_id))

            root = TaskNode.build(
                owner_id=owner_id,
                parent_id=parent_id,
                title=root_title,
                description=template.description,
                order=next_order(s.order for s in self.store.list_children(owner_id, parent_id)),
            )
            # the root is new, so only the depth of its deepest template task matters
            check = can_reparent(
                root.id,
                parent_id,
                new_parent_depth=parent_depth,
                subtree_height=template.height(),
                max_depth=self.max_depth,
            )
            if not check.allowed:
                raise self._hierarchy_error(check)

            nodes = expand_template(template, root)
            self.store.put_many(nodes)

        log.info(f"Created {len(nodes)} node(s) from template '{template.title}' for {owner_id}")
        return root

    # ---- field operations ----

    def edit_node(self, owner_id: str, node_id: str, changes: Optional[NodeChanges] = None,
                  **fields) -> TaskNode:
        """
        Apply a partial update. Pass a NodeChanges or keyword fields
        (title, description, status, completion_percentage).
        """
        self._require_mutable("edit a task")
        if changes is None:
            changes = NodeChanges.of(**fields)
        supplied = changes.supplied()
        self._owned(owner_id, node_id)

        def mutate(node: TaskNode) -> TaskNode:
            updates = {}
            if 'title' in supplied:
                updates['title'] = supplied['title']
            if 'description' in supplied:
                updates['description'] = supplied['description']
            percentage = supplied.get('completion_percentage')
            if 'status' in supplied:
                node = progress.apply_status(node, supplied['status'], percentage)
            elif percentage is not None:
                node = progress.set_progress(node, percentage)
            return node.with_changes(**updates) if updates else node

        if not supplied:
            return self._owned(owner_id, node_id)
        node = self.store.update(node_id, mutate)
        log.info(f"Edited node {node_id} fields={sorted(supplied)}")
        return node

    def advance_status(self, owner_id: str, node_id: str) -> TaskNode:
        """Cycle not_started -> in_progress -> completed -> not_started."""
        self._require_mutable("change task status")
        self._owned(owner_id, node_id)
        node = self.store.update(node_id, progress.advance)
        log.info(f"Node {node_id} is now {node.status.value} ({node.completion_percentage:g}%)")
        return node

    def set_progress(self, owner_id: str, node_id: str, percentage: float) -> TaskNode:
        self._require_mutable("set task progress")
        progress.validate_percentage(percentage)
        self._owned(owner_id, node_id)
        node = self.store.update(node_id, lambda n: progress.set_progress(n, percentage))
        log.info(f"Node {node_id} progress set to {node.completion_percentage:g}%")
        return node

    def accumulate_time(self, owner_id: str, node_id: str, delta_millis: int) -> TaskNode:
        """
        Add elapsed time to a node. Meant to be called by a running timer in
        batches rather than every second.
        """
        self._require_mutable("track time")
        progress.validate_delta(delta_millis)
        self._owned(owner_id, node_id)
        node = self.store.update(node_id, lambda n: progress.accumulate_time(n, delta_millis))
        log.debug(f"Node {node_id} time_spent={node.time_spent}ms (+{delta_millis})")
        return node

    def reset_time(self, owner_id: str, node_id: str) -> TaskNode:
        self._require_mutable("reset tracked time")
        self._owned(owner_id, node_id)
        node = self.store.update(node_id, progress.reset_time)
        log.info(f"Node {node_id} time reset")
        return node

    def complete(self, owner_id: str, node_id: str) -> TaskNode:
        """
        Mark a leaf node completed regardless of its current status.

        Raises:
            InvalidHierarchyError: If the node still has subtasks.
        """
        self._require_mutable("complete a task")
        # held so no child can be created between the leaf check and the write
        with self._structure_lock(owner_id):
            if not self.is_leaf(owner_id, node_id):
                log.warning(f"Rejected completing node {node_id}: it has subtasks")
                raise InvalidHierarchyError("Cannot complete a task that has subtasks; complete or remove them first")
            return self.edit_node(owner_id, node_id, status=TaskStatus.COMPLETED)
