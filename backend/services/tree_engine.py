"""
Conversation tree engine: node creation, answer attachment, id allocation,
and the traversals that turn a tree document into answer-generation context.

Every mutation is a whole-document read-modify-write through TreeStore.
Writes carry the version that was read; if another writer got there first
the store raises VersionConflict and the mutation is replayed on the fresh
document, so concurrent writers on one tree never lose each other's nodes.
"""

import logging
import os
import re
import time
from collections import deque
from typing import Callable, Optional, TypeVar

from backend.exceptions import DocumentNotFound, NodeNotFound, VersionConflict
from backend.models.conversation_tree import (
    AnsweredNode,
    ConversationTurn,
    NodeKind,
    NodeStatus,
    TreeDocument,
    TreeIssue,
    TreeNode,
    utcnow,
)
from backend.services.tree_store import TreeStore
from backend.utils.logging import log_tree_mutation, log_tree_validation

logger = logging.getLogger(__name__)

T = TypeVar("T")

WRITE_ATTEMPTS = int(os.getenv("RABBITHOLE_TREE_WRITE_ATTEMPTS", "5"))

_ALLOCATED_ID = re.compile(r"[0-9]+")


def allocator_number(node_id: str) -> Optional[int]:
    """The integer an allocator-style id stands for; None for ids the allocator could never issue."""
    return int(node_id) if _ALLOCATED_ID.fullmatch(node_id) else None


# -----------------------------------------------------------------------------
# Traversals (pure functions over a document)
# -----------------------------------------------------------------------------


def _find_chain(document: TreeDocument, root_id: str, target_id: str) -> Optional[list[TreeNode]]:
    """Depth-first search from one root; returns the nodes from root to target, or None."""
    root = document.nodes.get(root_id)
    if root is None:
        return None
    if root_id == target_id:
        return [root]
    visited = {root_id}
    stack = [(root, iter(root.children))]
    while stack:
        _, children = stack[-1]
        for child_id in children:
            if child_id in visited:
                continue
            visited.add(child_id)
            child = document.nodes.get(child_id)
            if child is None:
                continue
            if child_id == target_id:
                return [node for node, _ in stack] + [child]
            stack.append((child, iter(child.children)))
            break
        else:
            stack.pop()
    return None


def build_conversation_path(document: TreeDocument, node_id: str) -> list[ConversationTurn]:
    """
    Answered question/answer pairs from a root down to node_id.

    Roots are searched in root_ids order with a fresh visited set each;
    the first root that reaches the target wins. Unanswered nodes on the
    chain contribute nothing. An unreachable target yields [].
    """
    for root_id in document.root_ids:
        chain = _find_chain(document, root_id, node_id)
        if chain is not None:
            return [ConversationTurn(question=n.question, answer=n.answer) for n in chain if n.is_answered]
    return []


def collect_answered_nodes_bfs(document: TreeDocument) -> list[AnsweredNode]:
    """Answered nodes in breadth-first order from all roots (depth 0), each id visited once."""
    found: list[AnsweredNode] = []
    visited: set[str] = set()
    queue = deque((root_id, 0) for root_id in document.root_ids)
    while queue:
        node_id, depth = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        node = document.nodes.get(node_id)
        if node is None:
            continue
        if node.is_answered:
            found.append(AnsweredNode(node_id=node_id, question=node.question, answer=node.answer, depth=depth))
        for child_id in node.children:
            if child_id not in visited:
                queue.append((child_id, depth + 1))
    return found


def compute_max_depth(document: TreeDocument) -> int:
    """
    Longest simple path (in edges) from any root.

    Each branch carries its own copy of the visited set, so a node reachable
    through several parents is explored again on every path that reaches it.
    """
    deepest = 0
    for root_id in document.root_ids:
        stack: list[tuple[str, int, frozenset]] = [(root_id, 0, frozenset())]
        while stack:
            node_id, depth, seen = stack.pop()
            deepest = max(deepest, depth)
            if node_id in seen:
                continue
            node = document.nodes.get(node_id)
            if node is None:
                continue
            seen = seen | {node_id}
            for child_id in node.children:
                stack.append((child_id, depth + 1, seen))
    return deepest


def find_tree_issues(document: TreeDocument) -> list[TreeIssue]:
    """Check reference integrity, root shape and allocator bounds."""
    issues: list[TreeIssue] = []
    nodes = document.nodes
    next_id = int(document.next_id)

    for root_id in document.root_ids:
        if root_id not in nodes:
            issues.append(TreeIssue(code="dangling_root", message=f"Root id '{root_id}' is not in nodes", node_id=root_id))

    for node_id, node in nodes.items():
        if node.id != node_id:
            issues.append(TreeIssue(code="id_mismatch", message=f"Node stored under '{node_id}' has id '{node.id}'", node_id=node_id))
        for child_id in node.children:
            if child_id not in nodes:
                issues.append(
                    TreeIssue(code="dangling_child", message=f"Child '{child_id}' of '{node_id}' does not exist", node_id=node_id)
                )
        for parent_id in node.parents:
            if parent_id not in nodes:
                issues.append(
                    TreeIssue(code="dangling_parent", message=f"Parent '{parent_id}' of '{node_id}' does not exist", node_id=node_id)
                )
        if node.kind == NodeKind.ROOT and node.parents:
            issues.append(TreeIssue(code="root_has_parents", message=f"Root '{node_id}' has parents", node_id=node_id))
        number = allocator_number(node_id)
        if number is not None and number >= next_id:
            issues.append(
                TreeIssue(code="id_not_allocated", message=f"Node id '{node_id}' is not below nextId {next_id}", node_id=node_id)
            )
    return issues


def _new_node(
    node_id: str,
    kind: NodeKind,
    question: str,
    answer: Optional[str] = None,
    image_urls: Optional[list[str]] = None,
    parents: Optional[list[str]] = None,
) -> TreeNode:
    answered = bool(answer)
    return TreeNode(
        id=node_id,
        kind=kind,
        question=question,
        answer=answer if answered else None,
        parents=list(parents or []),
        status=NodeStatus.ANSWERED if answered else NodeStatus.PENDING,
        image_urls=list(image_urls or []) if answered else [],
    )


def _refresh_metadata(document: TreeDocument) -> None:
    # A node with several parents is still one node
    document.metadata.total_nodes = len(document.nodes)
    document.metadata.max_depth = compute_max_depth(document)
    document.metadata.last_updated = utcnow()


# -----------------------------------------------------------------------------
# TreeEngine
# -----------------------------------------------------------------------------


class TreeEngine:
    """Structural operations on the conversation tree of one (collection_id, owner_id)."""

    def __init__(self, store: Optional[TreeStore] = None, write_attempts: int = WRITE_ATTEMPTS):
        self.store = store or TreeStore()
        self.write_attempts = max(1, write_attempts)

    def _mutate(
        self,
        operation: str,
        collection_id: str,
        owner_id: str,
        mutation: Callable[[TreeDocument], T],
        create_missing: bool = False,
    ) -> T:
        """Read, apply mutation, write back with a version check; replay on conflict."""
        start = time.perf_counter()
        conflict: Optional[VersionConflict] = None
        for attempt in range(1, self.write_attempts + 1):
            loaded = self.store.get_with_version(collection_id, owner_id)
            if loaded is None:
                if not create_missing:
                    raise DocumentNotFound(collection_id, owner_id)
                document, version = TreeDocument(), 0
            else:
                document, version = loaded
            result = mutation(document)
            _refresh_metadata(document)
            try:
                self.store.put(collection_id, owner_id, document, expected_version=version)
            except VersionConflict as e:
                conflict = e
                logger.warning(
                    "%s on collection %s: concurrent write (attempt %s/%s), retrying",
                    operation, collection_id, attempt, self.write_attempts,
                )
                continue
            log_tree_mutation(
                logger,
                operation,
                collection_id,
                owner_id,
                node_ids=result if isinstance(result, list) else ([result] if isinstance(result, str) else None),
                attempts=attempt,
                duration_sec=round(time.perf_counter() - start, 4),
            )
            return result
        logger.error("%s on collection %s gave up after %s conflicting writes", operation, collection_id, self.write_attempts)
        raise conflict

    # --- reads ---------------------------------------------------------------

    def get_document(self, collection_id: str, owner_id: str) -> TreeDocument:
        document = self.store.get(collection_id, owner_id)
        if document is None:
            raise DocumentNotFound(collection_id, owner_id)
        return document

    def get_node(self, collection_id: str, owner_id: str, node_id: str) -> TreeNode:
        node = self.get_document(collection_id, owner_id).nodes.get(node_id)
        if node is None:
            raise NodeNotFound(node_id, collection_id)
        return node

    def ensure_document(self, collection_id: str, owner_id: str) -> TreeDocument:
        """Return the stored document, creating and persisting an empty one if needed."""
        document = self.store.get(collection_id, owner_id)
        if document is not None:
            return document
        document = TreeDocument()
        try:
            self.store.put(collection_id, owner_id, document, expected_version=0)
        except VersionConflict:
            # Another caller created it first; theirs is authoritative
            return self.get_document(collection_id, owner_id)
        logger.info("Created empty conversation tree for collection %s (owner %s)", collection_id, owner_id)
        return document

    def conversation_path(self, collection_id: str, owner_id: str, node_id: str) -> list[ConversationTurn]:
        """Linear context for answering node_id. Missing document or unreachable node gives []."""
        document = self.store.get(collection_id, owner_id)
        if document is None:
            return []
        return build_conversation_path(document, node_id)

    def breadth_first_answered_nodes(self, collection_id: str, owner_id: str) -> list[AnsweredNode]:
        return collect_answered_nodes_bfs(self.get_document(collection_id, owner_id))

    def max_depth(self, collection_id: str, owner_id: str) -> int:
        return compute_max_depth(self.get_document(collection_id, owner_id))

    def validate(self, collection_id: str, owner_id: str) -> list[TreeIssue]:
        issues = find_tree_issues(self.get_document(collection_id, owner_id))
        log_tree_validation(logger, collection_id, owner_id, [issue.code for issue in issues])
        return issues

    # --- mutations -----------------------------------------------------------

    def create_root(
        self,
        collection_id: str,
        owner_id: str,
        question: str,
        answer: Optional[str] = None,
        image_urls: Optional[list[str]] = None,
    ) -> str:
        def mutation(document: TreeDocument) -> str:
            node_id = document.allocate_id()
            document.nodes[node_id] = _new_node(node_id, NodeKind.ROOT, question, answer, image_urls)
            document.root_ids.append(node_id)
            return node_id

        return self._mutate("create_root", collection_id, owner_id, mutation, create_missing=True)

    def record_pending_node(self, collection_id: str, owner_id: str, node_id: str, question: str) -> None:
        """
        Compatibility path for callers that address a node id the allocator
        never issued (e.g. a client that numbers nodes itself). Inserts a
        pending root under that id unless it already exists. Numeric ids at
        or past next_id push the allocator beyond them.
        """
        existing = self.store.get(collection_id, owner_id)
        if existing is not None and node_id in existing.nodes:
            return

        def mutation(document: TreeDocument) -> None:
            if node_id in document.nodes:
                return
            document.nodes[node_id] = _new_node(node_id, NodeKind.ROOT, question)
            document.root_ids.append(node_id)
            number = allocator_number(node_id)
            if number is not None and number >= int(document.next_id):
                document.next_id = str(number + 1)

        self._mutate("record_pending_node", collection_id, owner_id, mutation, create_missing=True)

    def attach_answer(
        self,
        collection_id: str,
        owner_id: str,
        node_id: str,
        answer_text: str,
        image_urls: Optional[list[str]] = None,
    ) -> None:
        def mutation(document: TreeDocument) -> None:
            node = document.nodes.get(node_id)
            if node is None:
                raise NodeNotFound(node_id, collection_id)
            node.mark_answered(answer_text, image_urls)

        try:
            self._mutate("attach_answer", collection_id, owner_id, mutation)
        except DocumentNotFound as e:
            raise NodeNotFound(node_id, collection_id) from e

    def add_child(
        self,
        collection_id: str,
        owner_id: str,
        parent_id: str,
        question: str,
        answer: Optional[str] = None,
        image_urls: Optional[list[str]] = None,
    ) -> str:
        def mutation(document: TreeDocument) -> str:
            parent = document.nodes.get(parent_id)
            if parent is None:
                raise NodeNotFound(parent_id, collection_id)
            node_id = document.allocate_id()
            document.nodes[node_id] = _new_node(node_id, NodeKind.NODE, question, answer, image_urls, parents=[parent_id])
            parent.children.append(node_id)
            return node_id

        return self._mutate("add_child", collection_id, owner_id, mutation)

    def add_children(self, collection_id: str, owner_id: str, parent_id: str, questions: list[str]) -> list[str]:
        """Pending children for each question, one contiguous id block, one write."""

        def mutation(document: TreeDocument) -> list[str]:
            parent = document.nodes.get(parent_id)
            if parent is None:
                raise NodeNotFound(parent_id, collection_id)
            node_ids = []
            for question in questions:
                node_id = document.allocate_id()
                document.nodes[node_id] = _new_node(node_id, NodeKind.NODE, question, parents=[parent_id])
                parent.children.append(node_id)
                node_ids.append(node_id)
            return node_ids

        return self._mutate("add_children", collection_id, owner_id, mutation)
