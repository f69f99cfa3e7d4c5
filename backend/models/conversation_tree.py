"""
Conversation tree data model for Rabbithole.

A tree document holds every question/answer node of one exploration,
keyed by node id. Nodes link to each other through `children` and
`parents` id lists, so the structure is a DAG rather than a strict tree.
The persisted JSON uses camelCase keys (rootIds, nextId, imageUrls, ...);
Python code uses the snake_case attribute names.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class NodeKind(str, Enum):
    """Root nodes start an exploration thread and have no parents."""

    ROOT = "root"
    NODE = "node"


class NodeStatus(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"


# -----------------------------------------------------------------------------
# TreeNode
# -----------------------------------------------------------------------------


class TreeNode(BaseModel):
    """
    A single question/answer unit.

    - question: immutable once the node exists
    - answer: None while the node is pending
    - children: append-only, in creation order
    """

    id: str = Field(..., description="Node id, unique within its tree")
    kind: NodeKind = Field(NodeKind.NODE, description="root or node")
    question: str = Field(..., min_length=1, description="Question text")
    answer: Optional[str] = Field(None, description="Answer text; None while pending")
    parents: list[str] = Field(default_factory=list, description="Parent node ids (empty for roots)")
    children: list[str] = Field(default_factory=list, description="Child node ids, append-only")
    status: NodeStatus = Field(NodeStatus.PENDING, description="pending or answered")
    image_urls: list[str] = Field(default_factory=list, description="Image urls collected with the answer")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp (UTC)")

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    @model_validator(mode="after")
    def _status_matches_answer(self) -> "TreeNode":
        answered = self.answer is not None
        if answered != (self.status == NodeStatus.ANSWERED):
            raise ValueError(f"Node '{self.id}' has status {self.status.value} but answer is {'set' if answered else 'missing'}")
        return self

    @property
    def is_answered(self) -> bool:
        return self.status == NodeStatus.ANSWERED

    def mark_answered(self, answer: str, image_urls: Optional[list[str]] = None) -> None:
        self.answer = answer
        self.status = NodeStatus.ANSWERED
        self.image_urls = list(image_urls or [])


# -----------------------------------------------------------------------------
# TreeDocument
# -----------------------------------------------------------------------------


class TreeMetadata(BaseModel):
    """Summary numbers kept alongside the nodes."""

    total_nodes: int = Field(0, ge=0, description="Number of distinct nodes")
    max_depth: int = Field(0, ge=0, description="Longest root-to-leaf path length")
    last_updated: datetime = Field(default_factory=utcnow, description="Last write timestamp (UTC)")

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class TreeDocument(BaseModel):
    """
    Full persisted state for one (collection_id, owner_id) pair.

    The document is always read and written whole. `next_id` is the next
    identifier the allocator will hand out, kept as a decimal string.
    """

    nodes: dict[str, TreeNode] = Field(default_factory=dict, description="Map of node_id -> TreeNode")
    root_ids: list[str] = Field(default_factory=list, description="Root node ids in creation order")
    next_id: str = Field("0", pattern=r"^[0-9]+$", description="Next node id to allocate")
    metadata: TreeMetadata = Field(default_factory=TreeMetadata)

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def allocate_id(self) -> str:
        """Hand out the next id and advance the counter."""
        node_id = self.next_id
        self.next_id = str(int(node_id) + 1)
        return node_id

    def to_json(self) -> dict[str, Any]:
        """Persisted layout (camelCase keys, ISO timestamps)."""
        return self.model_dump(mode="json", by_alias=True)


# -----------------------------------------------------------------------------
# Traversal results
# -----------------------------------------------------------------------------


class ConversationTurn(BaseModel):
    """One answered question/answer pair on a conversation path."""

    question: str
    answer: str


class AnsweredNode(BaseModel):
    """An answered node with the depth at which breadth-first search found it."""

    node_id: str
    question: str
    answer: str
    depth: int = Field(..., ge=0)


class TreeIssue(BaseModel):
    """A structural problem found in a stored document."""

    code: str = Field(..., description="Issue code (e.g. dangling_child, root_has_parents)")
    message: str = Field(..., description="Human-readable message")
    node_id: Optional[str] = Field(None, description="Relevant node id if applicable")


# -----------------------------------------------------------------------------
# JSON Schema (versioned, for external readers of the stored layout)
# -----------------------------------------------------------------------------

SCHEMA_VERSION = "1.0.0"


def get_tree_document_json_schema() -> dict[str, Any]:
    """
    Return the JSON schema of the persisted tree document (camelCase keys).
    External readers such as the UI validate against this.
    """
    schema = TreeDocument.model_json_schema(by_alias=True)
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "$id": "https://rabbithole.example/schemas/tree_document.json",
        "title": "Rabbithole Conversation Tree",
        "description": "Question/answer DAG persisted per (collection, owner)",
        "version": SCHEMA_VERSION,
        **{k: v for k, v in schema.items() if k not in ("$schema", "$id", "title", "description")},
    }


def write_tree_document_schema_to_file(path: Optional[Union[str, Path]] = None) -> Path:
    """
    Write the tree document JSON schema to a file.
    Default path: project root / shared/schemas/tree_document_schema.json
    """
    if path is None:
        path = Path(__file__).resolve().parent.parent.parent / "shared" / "schemas" / "tree_document_schema.json"
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(get_tree_document_json_schema(), indent=2), encoding="utf-8")
    return path
