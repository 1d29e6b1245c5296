"""
Node Store - durable storage of task nodes.

Stores hold no business rules beyond the sibling order uniqueness constraint.
Every write is all-or-nothing: it is applied to a snapshot of the table and
only becomes visible once it has been validated (and, for file backed stores,
persisted).
"""
import abc
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

from tasknest.data.io import atomic_write, format_for, load_data_file
from tasknest.data.validate import validate_table_document
from tasknest.logs import get_logger
from tasknest.models import TaskNode, TaskTable
from tasknest.ordering import find_order_conflicts, sibling_key
from tasknest.recovery import CorruptionError, NodeNotFoundError, StorageConflictError, StorageUnavailableError
from tasknest.version import APP_SCHEMA_VERSION

log = get_logger("data.store")

NodeMutation = Callable[[TaskNode], TaskNode]

class NodeStore(abc.ABC):
    """
    Abstract table of task nodes keyed by id.

    Storage errors propagate unchanged; stores never retry.
    """

    @abc.abstractmethod
    def get(self, node_id: str) -> TaskNode:
        """Return the node, raising NodeNotFoundError if it does not exist."""
        pass

    @abc.abstractmethod
    def list_children(self, owner_id: str, parent_id: Optional[str]) -> List[TaskNode]:
        """All nodes of ``owner_id`` under ``parent_id``, ordered by ``order`` ascending."""
        pass

    @abc.abstractmethod
    def put_many(self, nodes: Iterable[TaskNode]) -> None:
        """Upsert a batch of nodes atomically."""
        pass

    @abc.abstractmethod
    def update(self, node_id: str, mutate: NodeMutation) -> TaskNode:
        """
        Atomically read, transform and write back one existing node.

        Raises:
            NodeNotFoundError: If the node no longer exists; nothing is written.
        """
        pass

    @abc.abstractmethod
    def delete_many(self, node_ids: Iterable[str]) -> int:
        """
        Delete every listed node in one step.

        Raises:
            NodeNotFoundError: If any id is missing; nothing is deleted.
        """
        pass

    @abc.abstractmethod
    def count(self) -> int:
        pass

    def put(self, node: TaskNode) -> None:
        """Upsert a single node."""
        self.put_many([node])

class MemoryNodeStore(NodeStore):
    """In-process store; the base for file backed stores."""

    def __init__(self, nodes: Optional[Iterable[TaskNode]] = None):
        self._lock = threading.RLock()
        self._nodes: Dict[str, TaskNode] = {}
        for node in nodes or []:
            self._nodes[node.id] = node.model_copy()
        self._check_constraints(self._nodes.values())

    # ---- hooks ----

    def _persist(self) -> None:
        """Make the current table durable. The in-memory store has nothing to do."""
        return

    # ---- helpers ----

    @staticmethod
    def _check_constraints(nodes: Iterable[TaskNode]) -> None:
        conflicts = find_order_conflicts(nodes)
        if conflicts:
            (owner_id, parent_id), orders = next(iter(conflicts.items()))
            raise StorageConflictError(
                f"Duplicate sibling order {orders} for owner {owner_id} under parent {parent_id}"
            )

    def _commit(self, change: Callable[[Dict[str, TaskNode]], None]) -> None:
        """Apply ``change`` to a copy of the table, validate, persist, then publish it."""
        with self._lock:
            staged = dict(self._nodes)
            change(staged)
            self._check_constraints(staged.values())
            previous = self._nodes
            self._nodes = staged
            try:
                self._persist()
            except Exception:
                self._nodes = previous
                log.error("Write could not be persisted; rolled back to the previous table")
                raise

    # ---- public API ----

    def get(self, node_id: str) -> TaskNode:
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NodeNotFoundError(node_id)
            return node.model_copy()

    def list_children(self, owner_id: str, parent_id: Optional[str]) -> List[TaskNode]:
        with self._lock:
            children = [
                node.model_copy() for node in self._nodes.values()
                if sibling_key(node) == (owner_id, parent_id)
            ]
        return sorted(children, key=lambda node: node.order)

    def put_many(self, nodes: Iterable[TaskNode]) -> None:
        batch = [node.model_copy() for node in nodes]
        if not batch:
            return

        def change(table: Dict[str, TaskNode]) -> None:
            for node in batch:
                table[node.id] = node

        self._commit(change)
        log.debug(f"Stored {len(batch)} node(s)")

    def update(self, node_id: str, mutate: NodeMutation) -> TaskNode:
        with self._lock:
            current = self._nodes.get(node_id)
            if current is None:
                raise NodeNotFoundError(node_id)
            updated = mutate(current.model_copy())
            if updated.id != node_id:
                raise CorruptionError(f"Update of {node_id} tried to change the node id")

            def change(table: Dict[str, TaskNode]) -> None:
                table[node_id] = updated.model_copy()

            self._commit(change)
            return updated.model_copy()

    def delete_many(self, node_ids: Iterable[str]) -> int:
        ids = set(node_ids)
        with self._lock:
            missing = [node_id for node_id in ids if node_id not in self._nodes]
            if missing:
                raise NodeNotFoundError(missing[0], f"Cannot delete missing task node(s): {', '.join(sorted(missing))}")

            def change(table: Dict[str, TaskNode]) -> None:
                for node_id in ids:
                    del table[node_id]

            self._commit(change)
        log.debug(f"Deleted {len(ids)} node(s)")
        return len(ids)

    def count(self) -> int:
        with self._lock:
            return len(self._nodes)

class YamlNodeStore(MemoryNodeStore):
    """
    Store backed by a single YAML (or JSON, by suffix) document.

    The whole table is rewritten with an atomic replace on every write, so a
    crash or I/O error never leaves a partially applied operation on disk.
    """

    def __init__(self, file_path: Union[Path, str]):
        self.file_path = Path(file_path)
        self._data_type = format_for(self.file_path)
        super().__init__(self._load())
        log.info(f"YamlNodeStore ready file={self.file_path} total={self.count()}")

    def _load(self) -> List[TaskNode]:
        data = load_data_file(self.file_path)
        if data is None:
            log.debug(f"No task table at {self.file_path}; starting empty")
            return []

        validate_table_document(data, str(self.file_path))
        try:
            table = TaskTable.model_validate(data)
        except ValueError as e:
            raise CorruptionError(f"{self.file_path} is not a valid task table: {e}") from e

        ids = {node.id for node in table.nodes}
        for node in table.nodes:
            if node.parent_id is not None and node.parent_id not in ids:
                raise CorruptionError(f"Task node {node.id} in {self.file_path} references missing parent {node.parent_id}")
        return table.nodes

    def _persist(self) -> None:
        table = TaskTable(schema_version=APP_SCHEMA_VERSION, nodes=list(self._nodes.values()))
        try:
            atomic_write(self._data_type, self.file_path, table.model_dump(mode="json"), create_dirs=True)
        except StorageUnavailableError:
            raise
        except OSError as e:
            raise StorageUnavailableError(f"Could not write {self.file_path}: {e}") from e

    def reload(self) -> None:
        """Discard the in-memory table and read the file again."""
        nodes = self._load()
        with self._lock:
            fresh = {node.id: node for node in nodes}
            self._check_constraints(fresh.values())
            self._nodes = fresh
