"""
Read and mutate conversation trees directly.

Domain errors (DocumentNotFound, NodeNotFound) become 404 through the
exception handlers registered in backend.main.
"""

from typing import Any

from fastapi import APIRouter, Depends

from backend.dependencies import get_tree_engine
from backend.services.tree_engine import TreeEngine, collect_answered_nodes_bfs
from shared.schemas import (
    AddChildRequest,
    AddChildrenRequest,
    AttachAnswerRequest,
    CreateRootRequest,
    NodeIdsResponse,
)

router = APIRouter()


@router.get("/{collection_id}/{owner_id}")
def get_tree(collection_id: str, owner_id: str, engine: TreeEngine = Depends(get_tree_engine)) -> dict[str, Any]:
    """Whole tree document in its persisted (camelCase) layout."""
    return engine.get_document(collection_id, owner_id).to_json()


@router.get("/{collection_id}/{owner_id}/path/{node_id}")
def get_conversation_path(
    collection_id: str, owner_id: str, node_id: str, engine: TreeEngine = Depends(get_tree_engine)
):
    """Answered question/answer pairs from a root down to the node. Empty when unreachable."""
    path = engine.conversation_path(collection_id, owner_id, node_id)
    return {"node_id": node_id, "conversation_path": [turn.model_dump() for turn in path]}


@router.get("/{collection_id}/{owner_id}/answered")
def get_answered_nodes(collection_id: str, owner_id: str, engine: TreeEngine = Depends(get_tree_engine)):
    """Answered nodes in breadth-first order with their depth (input for summaries and digests)."""
    document = engine.get_document(collection_id, owner_id)
    nodes = collect_answered_nodes_bfs(document)
    return {
        "total_nodes": document.metadata.total_nodes,
        "answered_nodes": len(nodes),
        "nodes": [n.model_dump() for n in nodes],
    }


@router.get("/{collection_id}/{owner_id}/depth")
def get_max_depth(collection_id: str, owner_id: str, engine: TreeEngine = Depends(get_tree_engine)):
    return {"max_depth": engine.max_depth(collection_id, owner_id)}


@router.get("/{collection_id}/{owner_id}/validate")
def validate_tree(collection_id: str, owner_id: str, engine: TreeEngine = Depends(get_tree_engine)):
    """Structural checks on the stored document. Returns list of issues."""
    issues = engine.validate(collection_id, owner_id)
    return {"issues": [i.model_dump() for i in issues], "valid": len(issues) == 0}


@router.post("/{collection_id}/{owner_id}/roots", status_code=201)
def create_root(
    collection_id: str, owner_id: str, body: CreateRootRequest, engine: TreeEngine = Depends(get_tree_engine)
):
    """Start a new exploration thread. Creates the tree document if needed."""
    node_id = engine.create_root(collection_id, owner_id, body.question, body.answer, body.image_urls)
    return engine.get_node(collection_id, owner_id, node_id).model_dump(mode="json", by_alias=True)


@router.post("/{collection_id}/{owner_id}/nodes/{parent_id}/children", status_code=201)
def add_child(
    collection_id: str,
    owner_id: str,
    parent_id: str,
    body: AddChildRequest,
    engine: TreeEngine = Depends(get_tree_engine),
):
    node_id = engine.add_child(collection_id, owner_id, parent_id, body.question, body.answer, body.image_urls)
    return engine.get_node(collection_id, owner_id, node_id).model_dump(mode="json", by_alias=True)


@router.post("/{collection_id}/{owner_id}/nodes/{parent_id}/children/batch", response_model=NodeIdsResponse, status_code=201)
def add_children(
    collection_id: str,
    owner_id: str,
    parent_id: str,
    body: AddChildrenRequest,
    engine: TreeEngine = Depends(get_tree_engine),
):
    """Pending children for each question, allocated as one contiguous id block."""
    return NodeIdsResponse(node_ids=engine.add_children(collection_id, owner_id, parent_id, body.questions))


@router.put("/{collection_id}/{owner_id}/nodes/{node_id}/answer")
def attach_answer(
    collection_id: str,
    owner_id: str,
    node_id: str,
    body: AttachAnswerRequest,
    engine: TreeEngine = Depends(get_tree_engine),
):
    engine.attach_answer(collection_id, owner_id, node_id, body.answer, body.image_urls)
    return engine.get_node(collection_id, owner_id, node_id).model_dump(mode="json", by_alias=True)
