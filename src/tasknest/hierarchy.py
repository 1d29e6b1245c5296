"""
Depth and ancestry rules for the task tree.

Everything here is a pure function over values the caller already read from
the store. Expected rejections come back as a HierarchyCheck with
``allowed=False``; the orchestrator decides how to report them.
"""
from typing import Optional, Sequence

from pydantic import BaseModel, Field

# Deepest allowed depth; roots are depth 0, so a chain holds MAX_DEPTH + 1 nodes.
MAX_DEPTH = 5

class HierarchyCheck(BaseModel):
    allowed: bool = Field(description="Whether the mutation keeps the tree valid")
    reason: Optional[str] = Field(default=None, description="Why the mutation was rejected")
    attempted_depth: Optional[int] = Field(default=None, description="Deepest depth the mutation would produce")
    max_depth: int = Field(default=MAX_DEPTH, description="The limit that was applied")

def can_nest(parent_depth: Optional[int], max_depth: int = MAX_DEPTH) -> HierarchyCheck:
    """
    Check whether a new node may be created under a parent at ``parent_depth``.

    A ``None`` parent depth means the node becomes a root, which is always legal.
    """
    if parent_depth is None:
        return HierarchyCheck(allowed=True, attempted_depth=0, max_depth=max_depth)

    attempted = parent_depth + 1
    if attempted > max_depth:
        return HierarchyCheck(
            allowed=False,
            reason=f"depth {attempted} exceeds the maximum depth of {max_depth}",
            attempted_depth=attempted,
            max_depth=max_depth,
        )
    return HierarchyCheck(allowed=True, attempted_depth=attempted, max_depth=max_depth)

def can_reparent(node_id: str,
                 new_parent_id: Optional[str],
                 new_parent_ancestor_ids: Sequence[str] = (),
                 new_parent_depth: Optional[int] = None,
                 subtree_height: int = 0,
                 max_depth: int = MAX_DEPTH) -> HierarchyCheck:
    """
    Check whether a node (with its whole subtree) may move under a new parent.

    Args:
        node_id: The node being moved.
        new_parent_id: Target parent, or None to make the node a root.
        new_parent_ancestor_ids: Ancestors of the target parent, nearest first.
        new_parent_depth: Depth of the target parent (ignored for a root move).
        subtree_height: Levels below the moved node (0 for a leaf).
        max_depth: The depth limit to apply.
    """
    if new_parent_id is None:
        attempted = subtree_height
    else:
        if new_parent_id == node_id:
            return HierarchyCheck(
                allowed=False,
                reason="a task node cannot become its own parent",
                max_depth=max_depth,
            )
        if node_id in new_parent_ancestor_ids:
            return HierarchyCheck(
                allowed=False,
                reason="a task node cannot move under one of its own descendants",
                max_depth=max_depth,
            )
        attempted = (new_parent_depth or 0) + 1 + subtree_height

    if attempted > max_depth:
        return HierarchyCheck(
            allowed=False,
            reason=f"moving would place a descendant at depth {attempted}, beyond the maximum of {max_depth}",
            attempted_depth=attempted,
            max_depth=max_depth,
        )
    return HierarchyCheck(allowed=True, attempted_depth=attempted, max_depth=max_depth)
