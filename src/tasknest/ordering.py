"""
Sibling ordering for task nodes.

Nodes sharing an ``(owner_id, parent_id)`` pair are displayed by ascending
``order``. New nodes are appended after the current maximum, so gaps left by
deletions are tolerated and never renumbered implicitly. Callers must hold the
owner's structural lock while reading siblings and writing the result.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import TaskNode
from .recovery import FieldValidationError

SiblingKey = Tuple[str, Optional[str]]

def next_order(existing_orders: Iterable[int]) -> int:
    """Return the order for a node appended after the given siblings (0 for none)."""
    orders = list(existing_orders)
    if not orders:
        return 0
    return max(orders) + 1

def reorder(sibling_ids: Sequence[str]) -> Dict[str, int]:
    """
    Assign 0, 1, 2, ... to the sibling ids in the given sequence.

    Raises:
        FieldValidationError: If an id appears more than once.
    """
    if len(set(sibling_ids)) != len(sibling_ids):
        raise FieldValidationError("reorder list contains duplicate ids")
    return {node_id: position for position, node_id in enumerate(sibling_ids)}

def sibling_key(node: TaskNode) -> SiblingKey:
    return (node.owner_id, node.parent_id)

def find_order_conflicts(nodes: Iterable[TaskNode]) -> Dict[SiblingKey, List[int]]:
    """
    Find sibling groups that reuse an order value.

    Returns:
        Mapping of (owner_id, parent_id) to the duplicated order values.
    """
    seen: Dict[SiblingKey, set] = defaultdict(set)
    conflicts: Dict[SiblingKey, List[int]] = defaultdict(list)
    for node in nodes:
        key = sibling_key(node)
        if node.order in seen[key]:
            conflicts[key].append(node.order)
        seen[key].add(node.order)
    return dict(conflicts)
