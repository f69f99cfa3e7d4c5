"""FastAPI dependencies for the tree engine and the answer/search capabilities."""

from fastapi import Depends

from backend.database import SessionLocal
from backend.services.exploration_service import ExplorationService
from backend.services.llm_service import AnswerGenerator, LLMAnswerGenerator
from backend.services.search_service import SearchProvider, get_search_provider
from backend.services.tree_engine import TreeEngine
from backend.services.tree_store import TreeStore


def get_tree_store() -> TreeStore:
    return TreeStore(SessionLocal)


def get_tree_engine(store: TreeStore = Depends(get_tree_store)) -> TreeEngine:
    return TreeEngine(store)


def get_answer_generator() -> AnswerGenerator:
    return LLMAnswerGenerator()


def get_search() -> SearchProvider:
    return get_search_provider()


def get_exploration_service(
    engine: TreeEngine = Depends(get_tree_engine),
    generator: AnswerGenerator = Depends(get_answer_generator),
    search: SearchProvider = Depends(get_search),
) -> ExplorationService:
    return ExplorationService(engine, generator, search)
