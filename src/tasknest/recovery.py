from typing import Optional


class TaskNestError(Exception):
    """Base exception for all tasknest errors."""
    pass

class RecoverableError(TaskNestError):
    """An error the caller can recover from without data loss."""
    pass

class FatalError(TaskNestError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass

class FieldValidationError(RecoverableError):
    """Caller supplied data violates a field level rule."""
    pass

class NodeNotFoundError(RecoverableError):
    """A referenced task node (or parent) does not exist."""

    def __init__(self, node_id: str, message: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message or f"Task node not found: {node_id}")

class NotAuthorizedError(RecoverableError):
    """The task node exists but belongs to a different owner."""

    def __init__(self, node_id: str, owner_id: str):
        self.node_id = node_id
        self.owner_id = owner_id
        super().__init__(f"Task node {node_id} does not belong to owner {owner_id}")

class InvalidHierarchyError(RecoverableError):
    """The mutation would break the depth limit or introduce a cycle."""

    def __init__(self, reason: str, attempted_depth: Optional[int] = None, max_depth: Optional[int] = None):
        self.reason = reason
        self.attempted_depth = attempted_depth
        self.max_depth = max_depth
        super().__init__(reason)

class MutationNotPermittedError(RecoverableError):
    """Mutations are disabled for this service."""
    pass

class StorageUnavailableError(RecoverableError):
    """The underlying persistence failed; nothing was applied."""
    pass

class FileOperationError(StorageUnavailableError):
    """File operation failed but can be retried."""
    pass

class StorageConflictError(RecoverableError):
    """A write would violate the sibling order uniqueness constraint."""
    pass

class MigrationNeededError(RecoverableError):
    """ Data is valid, but may need a migration """
    pass
