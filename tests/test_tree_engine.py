"""Tests for tree mutations, id allocation, and traversals."""

import pytest

from backend.exceptions import DocumentNotFound, NodeNotFound, VersionConflict
from backend.models.conversation_tree import ConversationTurn, NodeKind, NodeStatus, TreeDocument, TreeNode
from backend.services.tree_engine import (
    TreeEngine,
    allocator_number,
    build_conversation_path,
    collect_answered_nodes_bfs,
    compute_max_depth,
    find_tree_issues,
)
from backend.services.tree_store import TreeStore

C, O = "memo-1", "user-1"


def _chain(engine: TreeEngine, answer_middle: bool = True) -> None:
    """root "0" (Q1/A1) -> "1" (Q2/A2) -> "2" (Q3/A3)."""
    assert engine.create_root(C, O, "Q1", "A1") == "0"
    assert engine.add_child(C, O, "0", "Q2", "A2" if answer_middle else None) == "1"
    assert engine.add_child(C, O, "1", "Q3", "A3") == "2"


def _node(node_id, question="q", answer=None, children=(), parents=(), kind=NodeKind.NODE) -> TreeNode:
    return TreeNode(
        id=node_id,
        kind=kind,
        question=question,
        answer=answer,
        status=NodeStatus.ANSWERED if answer is not None else NodeStatus.PENDING,
        children=list(children),
        parents=list(parents),
    )


def _diamond() -> TreeDocument:
    """0 -> 1, 0 -> 2, 1 -> 3, 2 -> 3, 3 -> 4 (node 3 has two parents)."""
    nodes = {
        "0": _node("0", "root?", "r", children=["1", "2"], kind=NodeKind.ROOT),
        "1": _node("1", "left?", "l", children=["3"], parents=["0"]),
        "2": _node("2", "right?", "rt", children=["3"], parents=["0"]),
        "3": _node("3", "join?", "j", children=["4"], parents=["1", "2"]),
        "4": _node("4", "leaf?", "lf", parents=["3"]),
    }
    return TreeDocument(nodes=nodes, root_ids=["0"], next_id="5")


# -----------------------------------------------------------------------------
# ensure_document / create_root / record_pending_node
# -----------------------------------------------------------------------------


def test_ensure_document_creates_empty_tree(tree_engine: TreeEngine, store: TreeStore):
    doc = tree_engine.ensure_document(C, O)
    assert doc.nodes == {}
    assert doc.root_ids == []
    assert doc.next_id == "0"
    assert store.get(C, O) == doc
    assert tree_engine.ensure_document(C, O) == doc


def test_create_root(tree_engine: TreeEngine):
    node_id = tree_engine.create_root(C, O, "How do tides work?", "The moon.", ["https://example.org/moon.png"])
    doc = tree_engine.get_document(C, O)
    node = doc.nodes[node_id]
    assert node_id == "0"
    assert doc.root_ids == ["0"]
    assert doc.next_id == "1"
    assert node.kind == NodeKind.ROOT
    assert node.parents == []
    assert node.status == NodeStatus.ANSWERED
    assert node.image_urls == ["https://example.org/moon.png"]
    assert doc.metadata.total_nodes == 1


def test_create_root_without_answer_is_pending(tree_engine: TreeEngine):
    node_id = tree_engine.create_root(C, O, "Unanswered?", image_urls=["https://example.org/x.png"])
    node = tree_engine.get_node(C, O, node_id)
    assert node.status == NodeStatus.PENDING
    assert node.answer is None
    assert node.image_urls == []


def test_record_pending_node_is_idempotent(tree_engine: TreeEngine):
    tree_engine.record_pending_node(C, O, "abc", "External question?")
    tree_engine.record_pending_node(C, O, "abc", "Different text?")
    doc = tree_engine.get_document(C, O)
    assert doc.root_ids == ["abc"]
    assert doc.nodes["abc"].question == "External question?"
    assert doc.nodes["abc"].status == NodeStatus.PENDING
    assert doc.next_id == "0"


def test_record_pending_node_moves_allocator_past_numeric_id(tree_engine: TreeEngine):
    tree_engine.record_pending_node(C, O, "7", "Numbered by the client?")
    assert tree_engine.get_document(C, O).next_id == "8"
    assert tree_engine.create_root(C, O, "Next?") == "8"
    assert tree_engine.add_child(C, O, "7", "Child?") == "9"


@pytest.mark.parametrize("external_id", ["\u00b2", "\u0663", "client-7", "07a"])
def test_record_pending_node_with_non_allocator_id(tree_engine: TreeEngine, external_id):
    tree_engine.record_pending_node(C, O, external_id, "Numbered elsewhere?")
    doc = tree_engine.get_document(C, O)
    assert doc.root_ids == [external_id]
    assert doc.next_id == "0"
    assert tree_engine.validate(C, O) == []
    assert tree_engine.create_root(C, O, "Next?") == "0"


def test_allocator_number():
    assert allocator_number("12") == 12
    assert allocator_number("007") == 7
    assert allocator_number("\u00b2") is None
    assert allocator_number("\u0663") is None
    assert allocator_number("-1") is None
    assert allocator_number("") is None


# -----------------------------------------------------------------------------
# attach_answer / add_child / add_children
# -----------------------------------------------------------------------------


def test_attach_answer(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "Q1", "A1")
    child = tree_engine.add_child(C, O, "0", "Q2")
    tree_engine.attach_answer(C, O, child, "A2", ["https://example.org/a2.png"])
    node = tree_engine.get_node(C, O, child)
    assert node.answer == "A2"
    assert node.status == NodeStatus.ANSWERED
    assert node.image_urls == ["https://example.org/a2.png"]


def test_add_child_links_both_ways(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "Q1", "A1")
    child = tree_engine.add_child(C, O, "0", "Q2", "A2", ["https://example.org/i.png"])
    doc = tree_engine.get_document(C, O)
    assert doc.nodes["0"].children == [child]
    assert doc.nodes[child].parents == ["0"]
    assert doc.nodes[child].kind == NodeKind.NODE
    assert doc.nodes[child].status == NodeStatus.ANSWERED
    assert doc.metadata.total_nodes == 2
    assert doc.metadata.max_depth == 1


def test_add_children_allocates_contiguous_block(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "Q", "A")
    tree_engine.add_child(C, O, "0", "Existing child?")
    ids = tree_engine.add_children(C, O, "0", ["Q1", "Q2", "Q3"])
    assert ids == ["2", "3", "4"]
    doc = tree_engine.get_document(C, O)
    assert doc.nodes["0"].children == ["1", "2", "3", "4"]
    assert all(doc.nodes[i].status == NodeStatus.PENDING for i in ids)
    assert doc.next_id == "5"


def test_add_children_empty_batch(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "Q", "A")
    assert tree_engine.add_children(C, O, "0", []) == []
    assert tree_engine.get_document(C, O).next_id == "1"


def test_ids_are_monotonic_and_distinct(tree_engine: TreeEngine):
    issued = [tree_engine.create_root(C, O, "R1?", "a")]
    issued.append(tree_engine.add_child(C, O, issued[0], "c1?"))
    issued += tree_engine.add_children(C, O, issued[1], ["g1?", "g2?"])
    issued.append(tree_engine.create_root(C, O, "R2?"))
    issued.append(tree_engine.add_child(C, O, issued[-1], "c2?", "answer"))
    assert len(set(issued)) == len(issued)
    numeric = [int(i) for i in issued]
    assert numeric == sorted(numeric)
    assert int(tree_engine.get_document(C, O).next_id) > max(numeric)


@pytest.mark.parametrize("operation", ["attach_answer", "add_child", "add_children"])
def test_missing_node_leaves_document_unchanged(tree_engine: TreeEngine, store: TreeStore, operation):
    tree_engine.create_root(C, O, "Q", "A")
    before = store.get_with_version(C, O)
    with pytest.raises(NodeNotFound):
        if operation == "attach_answer":
            tree_engine.attach_answer(C, O, "99", "text")
        elif operation == "add_child":
            tree_engine.add_child(C, O, "99", "Orphan?")
        else:
            tree_engine.add_children(C, O, "99", ["Orphan?"])
    assert store.get_with_version(C, O) == before


def test_attach_answer_without_document_is_node_not_found(tree_engine: TreeEngine):
    with pytest.raises(NodeNotFound):
        tree_engine.attach_answer(C, O, "0", "text")


def test_add_child_without_document_is_document_not_found(tree_engine: TreeEngine, store: TreeStore):
    with pytest.raises(DocumentNotFound):
        tree_engine.add_child(C, O, "0", "Q?")
    assert store.get(C, O) is None


def test_reads_without_document(tree_engine: TreeEngine):
    with pytest.raises(DocumentNotFound):
        tree_engine.get_document(C, O)
    with pytest.raises(DocumentNotFound):
        tree_engine.breadth_first_answered_nodes(C, O)
    with pytest.raises(DocumentNotFound):
        tree_engine.max_depth(C, O)


# -----------------------------------------------------------------------------
# conversation_path
# -----------------------------------------------------------------------------


def test_conversation_path_follows_chain(tree_engine: TreeEngine):
    _chain(tree_engine)
    assert tree_engine.conversation_path(C, O, "2") == [
        ConversationTurn(question="Q1", answer="A1"),
        ConversationTurn(question="Q2", answer="A2"),
        ConversationTurn(question="Q3", answer="A3"),
    ]


def test_conversation_path_skips_unanswered_ancestors(tree_engine: TreeEngine):
    _chain(tree_engine, answer_middle=False)
    assert tree_engine.conversation_path(C, O, "2") == [
        ConversationTurn(question="Q1", answer="A1"),
        ConversationTurn(question="Q3", answer="A3"),
    ]


def test_conversation_path_pending_target_has_ancestors_only(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "Q1", "A1")
    child = tree_engine.add_child(C, O, "0", "Q2")
    assert tree_engine.conversation_path(C, O, child) == [ConversationTurn(question="Q1", answer="A1")]


def test_conversation_path_unreachable_is_empty(tree_engine: TreeEngine):
    _chain(tree_engine)
    assert tree_engine.conversation_path(C, O, "42") == []
    assert tree_engine.conversation_path("memo-unknown", O, "0") == []


def test_conversation_path_first_matching_root_wins():
    doc = TreeDocument(
        nodes={
            "0": _node("0", "first root?", "a0", children=["2"], kind=NodeKind.ROOT),
            "1": _node("1", "second root?", "a1", children=["2"], kind=NodeKind.ROOT),
            "2": _node("2", "shared?", "a2", parents=["0", "1"]),
        },
        root_ids=["0", "1"],
        next_id="3",
    )
    assert build_conversation_path(doc, "2") == [
        ConversationTurn(question="first root?", answer="a0"),
        ConversationTurn(question="shared?", answer="a2"),
    ]


def test_conversation_path_tolerates_cycles():
    doc = TreeDocument(
        nodes={
            "0": _node("0", "root?", "r", children=["1"], kind=NodeKind.ROOT),
            "1": _node("1", "loop?", "l", children=["0", "2"], parents=["0"]),
            "2": _node("2", "end?", "e", parents=["1"]),
        },
        root_ids=["0"],
        next_id="3",
    )
    assert [t.question for t in build_conversation_path(doc, "2")] == ["root?", "loop?", "end?"]


# -----------------------------------------------------------------------------
# breadth-first listing and depth
# -----------------------------------------------------------------------------


def test_breadth_first_order_and_depth(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "root?", "r")
    a = tree_engine.add_child(C, O, "0", "a?", "a")
    b = tree_engine.add_child(C, O, "0", "b?", "b")
    a1 = tree_engine.add_child(C, O, a, "a1?", "a1")
    b1 = tree_engine.add_child(C, O, b, "b1?", "b1")
    listing = tree_engine.breadth_first_answered_nodes(C, O)
    assert [(n.node_id, n.depth) for n in listing] == [("0", 0), (a, 1), (b, 1), (a1, 2), (b1, 2)]
    assert listing[3].question == "a1?"
    assert listing[3].answer == "a1"


def test_breadth_first_skips_pending_but_walks_through_them(tree_engine: TreeEngine):
    tree_engine.create_root(C, O, "root?", "r")
    pending = tree_engine.add_child(C, O, "0", "pending?")
    deep = tree_engine.add_child(C, O, pending, "deep?", "d")
    listing = tree_engine.breadth_first_answered_nodes(C, O)
    assert [(n.node_id, n.depth) for n in listing] == [("0", 0), (deep, 2)]


def test_breadth_first_visits_join_node_once():
    listing = collect_answered_nodes_bfs(_diamond())
    assert [(n.node_id, n.depth) for n in listing] == [("0", 0), ("1", 1), ("2", 1), ("3", 2), ("4", 3)]


def test_max_depth(tree_engine: TreeEngine):
    tree_engine.ensure_document(C, O)
    assert tree_engine.max_depth(C, O) == 0
    _chain(tree_engine)
    assert tree_engine.max_depth(C, O) == 2
    tree_engine.create_root(C, O, "Shallow?")
    assert tree_engine.max_depth(C, O) == 2
    assert tree_engine.get_document(C, O).metadata.max_depth == 2


def test_max_depth_through_join_node():
    assert compute_max_depth(_diamond()) == 3


def test_join_node_counts_once_in_total_nodes(tree_engine: TreeEngine, store: TreeStore):
    store.put(C, O, _diamond())
    tree_engine.add_child(C, O, "4", "deeper?")
    doc = tree_engine.get_document(C, O)
    assert doc.metadata.total_nodes == 6
    assert doc.metadata.max_depth == 4


# -----------------------------------------------------------------------------
# Concurrent writers
# -----------------------------------------------------------------------------


class RacingStore(TreeStore):
    """Runs `interloper` right after each read, before the reader gets to write."""

    def __init__(self, session_factory, interloper, times: int = 1):
        super().__init__(session_factory)
        self.interloper = interloper
        self.times = times

    def get_with_version(self, collection_id, owner_id):
        loaded = super().get_with_version(collection_id, owner_id)
        if self.times > 0:
            self.times -= 1
            self.interloper()
        return loaded


def test_concurrent_add_child_does_not_lose_nodes(tree_engine: TreeEngine, session_factory):
    tree_engine.create_root(C, O, "Q", "A")
    racing = TreeEngine(RacingStore(session_factory, lambda: tree_engine.add_child(C, O, "0", "Theirs?")))
    mine = racing.add_child(C, O, "0", "Mine?")
    doc = tree_engine.get_document(C, O)
    assert mine == "2"
    assert doc.nodes["0"].children == ["1", "2"]
    assert doc.nodes["1"].question == "Theirs?"
    assert doc.nodes["2"].question == "Mine?"
    assert doc.next_id == "3"


def test_concurrent_writers_exhaust_attempts(tree_engine: TreeEngine, session_factory):
    tree_engine.create_root(C, O, "Q", "A")
    store = RacingStore(session_factory, lambda: tree_engine.add_child(C, O, "0", "Theirs?"), times=10)
    racing = TreeEngine(store, write_attempts=2)
    with pytest.raises(VersionConflict):
        racing.add_child(C, O, "0", "Mine?")
    doc = tree_engine.get_document(C, O)
    assert all(node.question != "Mine?" for node in doc.nodes.values())
    assert len(doc.nodes["0"].children) == 2


def test_concurrent_document_creation(tree_engine: TreeEngine, session_factory):
    racing = TreeEngine(RacingStore(session_factory, lambda: tree_engine.create_root(C, O, "First?")))
    assert racing.create_root(C, O, "Second?") == "1"
    assert tree_engine.get_document(C, O).root_ids == ["0", "1"]


# -----------------------------------------------------------------------------
# validation
# -----------------------------------------------------------------------------


def test_engine_built_tree_has_no_issues(tree_engine: TreeEngine):
    _chain(tree_engine)
    tree_engine.add_children(C, O, "2", ["x?", "y?"])
    assert tree_engine.validate(C, O) == []


def test_find_tree_issues_reports_corruption():
    doc = TreeDocument(
        nodes={
            "0": _node("0", "root?", "r", children=["1", "9"], parents=["5"], kind=NodeKind.ROOT),
            "1": _node("1", "child?", parents=["0"]),
        },
        root_ids=["0", "7"],
        next_id="1",
    )
    codes = sorted(issue.code for issue in find_tree_issues(doc))
    assert codes == ["dangling_child", "dangling_parent", "dangling_root", "id_not_allocated", "root_has_parents"]
