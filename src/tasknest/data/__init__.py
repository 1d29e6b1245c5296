"""
Data management submodule: node stores and their file persistence.
"""

from .store import NodeStore, MemoryNodeStore, YamlNodeStore

__all__ = [
    'NodeStore',
    'MemoryNodeStore',
    'YamlNodeStore',
]
