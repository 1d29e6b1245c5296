"""
Completion and time values for task nodes.

Completion is leaf-authoritative: each node keeps its own percentage, and a
parent's value is never derived from its children. Time can be summed over a
subtree for display, but that total is never stored.
"""
from typing import Iterable, Optional

from .models import TaskNode, TaskStatus
from .recovery import FieldValidationError

COMPLETE = 100.0

_NEXT_STATUS = {
    TaskStatus.NOT_STARTED: TaskStatus.IN_PROGRESS,
    TaskStatus.IN_PROGRESS: TaskStatus.COMPLETED,
    TaskStatus.COMPLETED: TaskStatus.NOT_STARTED,
}

def completion_of(node: TaskNode) -> float:
    return node.completion_percentage or 0.0

def status_advance(current: TaskStatus) -> TaskStatus:
    """not_started -> in_progress -> completed -> not_started."""
    return _NEXT_STATUS[current]

def validate_percentage(percentage: float) -> float:
    if percentage is None or not 0 <= percentage <= 100:
        raise FieldValidationError(f"completion percentage must be between 0 and 100, got {percentage}")
    return float(percentage)

def apply_status(node: TaskNode, status: TaskStatus, percentage: Optional[float] = None) -> TaskNode:
    """
    Move a node to ``status``, keeping completion consistent with it.

    Entering completed forces 100. Leaving completed for not_started drops an
    exact 100 back to 0, while a partial value recorded before a premature
    completion survives. An explicit ``percentage`` wins over both rules except
    that completed is always 100.
    """
    if status == TaskStatus.COMPLETED:
        completion = COMPLETE
    elif percentage is not None:
        completion = validate_percentage(percentage)
    elif (node.status == TaskStatus.COMPLETED and status == TaskStatus.NOT_STARTED
          and completion_of(node) == COMPLETE):
        completion = 0.0
    else:
        completion = completion_of(node)
    return node.with_changes(status=status, completion_percentage=completion)

def advance(node: TaskNode) -> TaskNode:
    return apply_status(node, status_advance(node.status))

def set_progress(node: TaskNode, percentage: float) -> TaskNode:
    """Record an explicit percentage and derive the status from it."""
    completion = validate_percentage(percentage)
    if completion == 0:
        status = TaskStatus.NOT_STARTED
    elif completion == COMPLETE:
        status = TaskStatus.COMPLETED
    else:
        status = TaskStatus.IN_PROGRESS
    return node.with_changes(status=status, completion_percentage=completion)

def validate_delta(delta_millis: int) -> int:
    """Time deltas are whole, non-negative milliseconds."""
    if isinstance(delta_millis, bool) or not isinstance(delta_millis, int):
        raise FieldValidationError(f"time delta must be whole milliseconds, got {delta_millis!r}")
    if delta_millis < 0:
        raise FieldValidationError(f"time delta must be non-negative, got {delta_millis}")
    return delta_millis

def accumulate_time(node: TaskNode, delta_millis: int) -> TaskNode:
    delta_millis = validate_delta(delta_millis)
    return node.with_changes(time_spent=(node.time_spent or 0) + delta_millis)

def reset_time(node: TaskNode) -> TaskNode:
    return node.with_changes(time_spent=0)

def total_time(nodes: Iterable[TaskNode]) -> int:
    """Sum of time_spent over the given nodes, typically one subtree."""
    return sum(node.time_spent or 0 for node in nodes)
