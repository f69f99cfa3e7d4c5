"""
Rabbithole core data models.

These models define the persisted conversation tree document and the
shapes returned by its traversals. For the HTTP request/response contract,
see shared.schemas.
"""

from backend.models.conversation_tree import (
    AnsweredNode,
    ConversationTurn,
    NodeKind,
    NodeStatus,
    TreeDocument,
    TreeIssue,
    TreeMetadata,
    TreeNode,
    get_tree_document_json_schema,
    write_tree_document_schema_to_file,
)

__all__ = [
    "AnsweredNode",
    "ConversationTurn",
    "NodeKind",
    "NodeStatus",
    "TreeDocument",
    "TreeIssue",
    "TreeMetadata",
    "TreeNode",
    "get_tree_document_json_schema",
    "write_tree_document_schema_to_file",
]
