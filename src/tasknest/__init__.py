"""
tasknest - A hierarchical task and progress tracker.

Owners organise work as trees of task nodes (projects -> tasks -> nested
subtasks, at most MAX_DEPTH levels below a root) with sibling ordering,
completion tracking and elapsed time.
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    TaskStatus,
    TaskNode,
    NodeChanges,
    ProjectTemplate,
)
from .hierarchy import MAX_DEPTH
from .data import NodeStore, MemoryNodeStore, YamlNodeStore
from .lifecycle import TaskTreeService
from .settings import Settings

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "MAX_DEPTH",
    "TaskStatus",
    "TaskNode",
    "NodeChanges",
    "ProjectTemplate",
    "NodeStore",
    "MemoryNodeStore",
    "YamlNodeStore",
    "TaskTreeService",
    "Settings",
]
