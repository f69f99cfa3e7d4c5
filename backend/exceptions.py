"""
Domain and storage errors for the conversation tree engine.

Routes translate these into HTTP responses (see backend.main).
"""

from typing import Optional


class TreeError(Exception):
    """Base class for conversation tree errors."""


class DocumentNotFound(TreeError):
    """No tree document exists yet for (collection_id, owner_id)."""

    def __init__(self, collection_id: str, owner_id: str):
        self.collection_id = collection_id
        self.owner_id = owner_id
        super().__init__(f"Conversation tree not found for collection '{collection_id}' (owner '{owner_id}')")


class NodeNotFound(TreeError):
    """An operation referenced a node id absent from the document."""

    def __init__(self, node_id: str, collection_id: Optional[str] = None):
        self.node_id = node_id
        self.collection_id = collection_id
        where = f" in collection '{collection_id}'" if collection_id else ""
        super().__init__(f"Node '{node_id}' not found{where}")


class StorageError(TreeError):
    """The underlying store failed to read or write."""


class VersionConflict(StorageError):
    """The stored document changed between read and write."""

    def __init__(self, collection_id: str, owner_id: str, expected: int, actual: Optional[int]):
        self.collection_id = collection_id
        self.owner_id = owner_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Tree for collection '{collection_id}' (owner '{owner_id}') is at version {actual}, expected {expected}"
        )
