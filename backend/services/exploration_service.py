"""
Exploration flows: start a memo, answer a node, add a follow-up node.

Each flow asks the engine for the conversation path, runs search and
answer generation, then records the answer and allocates pending children
for the follow-up questions. Engine calls are synchronous database work and
run in a worker thread so the event loop stays free during LLM calls.
"""

import asyncio
import logging

from pydantic import BaseModel, Field

from backend.models.conversation_tree import ConversationTurn
from backend.services.llm_service import AnswerGenerator, GeneratedAnswer, MemoIntent, fallback_memo_intent
from backend.services.search_service import SearchProvider, SearchResults
from backend.services.tree_engine import TreeEngine

logger = logging.getLogger(__name__)


class AnswerGenerationError(Exception):
    """Search-grounded answer generation failed; nothing was written to the tree."""


class ExplorationResult(BaseModel):
    """Outcome of one answered node."""

    node_id: str
    question: str
    answer: str
    follow_up_questions: list[str] = Field(default_factory=list)
    follow_up_node_ids: list[str] = Field(default_factory=list)
    image_urls: list[str] = Field(default_factory=list)
    search: SearchResults = Field(default_factory=SearchResults)


class ExplorationService:
    def __init__(self, engine: TreeEngine, generator: AnswerGenerator, search: SearchProvider):
        self.engine = engine
        self.generator = generator
        self.search = search

    async def _search(self, query: str) -> SearchResults:
        try:
            return await self.search.search(query)
        except Exception as e:
            # Answers can still be grounded in the conversation alone
            logger.warning("Search failed for %r, answering without results: %s", query[:80], e)
            return SearchResults()

    async def _generate(self, path: list[ConversationTurn], query: str) -> tuple[GeneratedAnswer, SearchResults]:
        results = await self._search(query)
        try:
            generated = await self.generator.generate(path, query, results)
        except Exception as e:
            raise AnswerGenerationError(f"Answer generation failed: {e}") from e
        return generated, results

    async def describe_memo(self, query: str) -> MemoIntent:
        """Title and tags for a new memo. Falls back to the question itself if the model call fails."""
        try:
            return await self.generator.analyze_intent(query)
        except Exception as e:
            logger.warning("Intent analysis failed for %r, titling the memo from the question: %s", query[:80], e)
            return fallback_memo_intent(query)

    async def start(self, collection_id: str, owner_id: str, query: str) -> ExplorationResult:
        """Answer the opening question as a new root and create its follow-up nodes."""
        generated, results = await self._generate([], query)
        root_id = await asyncio.to_thread(
            self.engine.create_root, collection_id, owner_id, query, generated.answer_text, generated.image_urls
        )
        follow_up_ids = await asyncio.to_thread(
            self.engine.add_children, collection_id, owner_id, root_id, generated.follow_up_questions
        )
        return ExplorationResult(
            node_id=root_id,
            question=query,
            answer=generated.answer_text,
            follow_up_questions=generated.follow_up_questions,
            follow_up_node_ids=follow_up_ids,
            image_urls=generated.image_urls,
            search=results,
        )

    async def answer_node(self, collection_id: str, owner_id: str, node_id: str, query: str) -> ExplorationResult:
        """
        Answer an existing pending node. A node id the tree has never seen is
        recorded first as a pending root, so older clients that number nodes
        themselves keep working.
        """
        await asyncio.to_thread(self.engine.record_pending_node, collection_id, owner_id, node_id, query)
        path = await asyncio.to_thread(self.engine.conversation_path, collection_id, owner_id, node_id)
        generated, results = await self._generate(path, query)
        await asyncio.to_thread(
            self.engine.attach_answer, collection_id, owner_id, node_id, generated.answer_text, generated.image_urls
        )
        follow_up_ids = await asyncio.to_thread(
            self.engine.add_children, collection_id, owner_id, node_id, generated.follow_up_questions
        )
        return ExplorationResult(
            node_id=node_id,
            question=query,
            answer=generated.answer_text,
            follow_up_questions=generated.follow_up_questions,
            follow_up_node_ids=follow_up_ids,
            image_urls=generated.image_urls,
            search=results,
        )

    async def add_node(
        self,
        collection_id: str,
        owner_id: str,
        parent_id: str,
        question: str,
    ) -> ExplorationResult:
        """Ask a new question under parent_id; the answered child and its follow-ups are written."""
        # Fail before spending an LLM call on a missing parent
        await asyncio.to_thread(self.engine.get_node, collection_id, owner_id, parent_id)
        path = await asyncio.to_thread(self.engine.conversation_path, collection_id, owner_id, parent_id)
        generated, results = await self._generate(path, question)
        node_id = await asyncio.to_thread(
            self.engine.add_child,
            collection_id,
            owner_id,
            parent_id,
            question,
            generated.answer_text,
            generated.image_urls,
        )
        follow_up_ids = await asyncio.to_thread(
            self.engine.add_children, collection_id, owner_id, node_id, generated.follow_up_questions
        )
        return ExplorationResult(
            node_id=node_id,
            question=question,
            answer=generated.answer_text,
            follow_up_questions=generated.follow_up_questions,
            follow_up_node_ids=follow_up_ids,
            image_urls=generated.image_urls,
            search=results,
        )
