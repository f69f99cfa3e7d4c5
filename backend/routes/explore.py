"""
Exploration endpoints: create a memo, answer a node, add a follow-up node.

Each call runs search + answer generation and writes the result into the
memo's conversation tree.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.database import get_db
from backend.dependencies import get_exploration_service
from backend.services import memo_service
from backend.services.exploration_service import ExplorationResult, ExplorationService
from shared.schemas import (
    AddNodeRequest,
    AddNodeResponse,
    CreateMemoRequest,
    CreateMemoResponse,
    Image,
    SearchRequest,
    SearchResponse,
    Source,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _sources(result: ExplorationResult) -> list[Source]:
    return [Source(title=r.title, url=r.url, author=r.author, image=r.image) for r in result.search.results]


def _images(result: ExplorationResult) -> list[Image]:
    return [Image(url=img.url, thumbnail=img.url, description=img.description) for img in result.search.images]


@router.post("/create-memo", response_model=CreateMemoResponse)
async def create_memo(
    body: CreateMemoRequest,
    db: Session = Depends(get_db),
    service: ExplorationService = Depends(get_exploration_service),
):
    """
    Create a memo whose tree starts with the answered query and its follow-up questions.
    The model names the memo; tags sent by the client take precedence over generated ones.
    """
    intent = await service.describe_memo(body.query)
    memo = memo_service.create_memo(db, body.user_id, body.query, body.tags or intent.tags, intent.title)
    try:
        result = await service.start(memo.id, body.user_id, body.query)
    except Exception:
        logger.warning("Exploration for memo %s failed; removing the memo", memo.id)
        memo_service.delete_memo(db, service.engine.store, body.user_id, memo.id)
        raise
    return CreateMemoResponse(
        memo_id=memo.id,
        title=memo.title,
        tags=memo.tags or [],
        root_node_id=result.node_id,
        answer=result.answer,
        follow_up_questions=result.follow_up_questions,
        new_follow_up_node_ids=result.follow_up_node_ids,
        image_urls=result.image_urls,
        sources=_sources(result),
        images=_images(result),
    )


@router.post("/search", response_model=SearchResponse)
async def search_and_answer(body: SearchRequest, service: ExplorationService = Depends(get_exploration_service)):
    """Answer a pending node and create its follow-up questions as new pending nodes."""
    result = await service.answer_node(body.memo_id, body.user_id, body.node_id, body.query)
    return SearchResponse(
        response=result.answer,
        follow_up_questions=result.follow_up_questions,
        contextual_query=body.query,
        node_id=result.node_id,
        new_follow_up_node_ids=result.follow_up_node_ids,
        sources=_sources(result),
        images=_images(result),
    )


@router.post("/add-node", response_model=AddNodeResponse)
async def add_node(body: AddNodeRequest, service: ExplorationService = Depends(get_exploration_service)):
    """Ask a new question under any existing node; returns the answered node and its follow-ups."""
    result = await service.add_node(body.memo_id, body.user_id, body.parent_id, body.question)
    return AddNodeResponse(
        node_id=result.node_id,
        question=result.question,
        answer=result.answer,
        parent_id=body.parent_id,
        follow_up_questions=result.follow_up_questions,
        new_follow_up_node_ids=result.follow_up_node_ids,
        sources=_sources(result),
        images=_images(result),
    )
